"""Tests for job creation and photo/mask uploads."""

from __future__ import annotations

import base64

import pytest
from PIL import Image

from magicbook.common.errors import ConflictError, InputError
from magicbook.pipeline import BookRequest, clamp_page_count, prepare_inputs, transparent_mask
from magicbook.pipeline.inputs import bounded_size, decode_upload
from magicbook.story_generation import ChildProfile

from conftest import FakeFallback, make_gateway, png_bytes


class TestPrepareInputs:
    """Decoding, validation and resizing of the uploaded pair."""

    def test_mismatched_dimensions_are_rejected(self):
        with pytest.raises(InputError, match="800x600"):
            prepare_inputs(png_bytes((800, 600)), png_bytes((600, 800), mode="RGBA", color=(0, 0, 0, 0)))

    def test_large_pair_is_bounded_and_keeps_alpha(self):
        prepared = prepare_inputs(
            png_bytes((2048, 1536)),
            png_bytes((2048, 1536), mode="RGBA", color=(0, 0, 0, 0)),
            max_side=1024,
        )

        assert prepared.size == (1024, 768)
        assert prepared.mask.size == (1024, 768)
        assert prepared.photo.mode == "RGB"
        assert prepared.mask.mode == "RGBA"

    def test_small_pair_is_not_enlarged(self):
        assert bounded_size((300, 200), 1024) == (300, 200)

    def test_data_url_upload(self):
        url = "data:image/png;base64," + base64.b64encode(png_bytes((32, 32))).decode("ascii")

        image = decode_upload(url, label="photo")

        assert image.size == (32, 32)

    @pytest.mark.parametrize("upload", [b"", b"not an image", "http://example.com/a.png", "data:image/png,abc"])
    def test_undecodable_uploads(self, upload):
        with pytest.raises(InputError):
            decode_upload(upload, label="photo")

    def test_transparent_mask(self):
        mask = transparent_mask((40, 30))
        assert mask.mode == "RGBA"
        assert mask.getextrema()[3] == (0, 0)


class TestBookJobService:
    """create_job and upload_inputs."""

    def test_page_count_is_clamped(self):
        assert clamp_page_count(2) == 4
        assert clamp_page_count(40) == 12
        assert clamp_page_count(None, default=8) == 8
        assert clamp_page_count("abc", default=6) == 6

    def test_create_job_normalizes_request(self, build_service, principal, store):
        service, _ = build_service(make_gateway(fallback=FakeFallback()))
        request = BookRequest(child=ChildProfile(name="Leo"), theme="unknown", style="COLOR", page_count=20)

        manifest = service.create_job(principal, request)

        stored = store.load(manifest.id)
        assert stored.owner_id == "user-1"
        assert stored.theme == "space"
        assert stored.style == "color"
        assert stored.page_count == 12
        assert stored.step == "created"

    def test_request_from_mapping(self):
        request = BookRequest.from_mapping({"name": "Ava", "age": "5", "gender": "she", "theme": "ocean", "pages": 6})

        assert request.child == ChildProfile(name="Ava", age=5, gender="girl")
        assert request.theme == "ocean"
        assert request.page_count == 6

    def test_mismatched_upload_leaves_job_untouched(self, build_service, principal, store):
        service, executor = build_service(make_gateway(fallback=FakeFallback()))
        manifest = service.create_job(principal, BookRequest(child=ChildProfile(name="Leo")))
        before = store.load(manifest.id).to_dict()

        with pytest.raises(InputError):
            service.upload_inputs(
                principal,
                manifest.id,
                png_bytes((800, 600)),
                png_bytes((600, 800), mode="RGBA", color=(0, 0, 0, 0)),
            )

        assert store.load(manifest.id).to_dict() == before
        assert not executor.workspace(manifest.id).photo.exists()

    def test_upload_records_both_assets(self, build_service, principal, store, storage):
        service, executor = build_service(make_gateway(fallback=FakeFallback()))
        manifest = service.create_job(principal, BookRequest(child=ChildProfile(name="Leo")))

        service.upload_inputs(
            principal,
            manifest.id,
            png_bytes((1600, 1200)),
            png_bytes((1600, 1200), mode="RGBA", color=(0, 0, 0, 0)),
        )

        stored = store.load(manifest.id)
        assert stored.photo.ok and stored.mask.ok
        assert (stored.photo.width, stored.photo.height) == (1024, 768)
        assert stored.photo.storage_key == f"user-1/{manifest.id}/edit_base.png"
        assert stored.mask.url.startswith("file://")
        with Image.open(executor.workspace(manifest.id).mask) as mask:
            assert mask.mode == "RGBA"
            assert mask.size == (1024, 768)

    def test_upload_after_start_is_rejected(self, build_service, ready_job, principal):
        service, executor = build_service(make_gateway(fallback=FakeFallback()))
        job_id = ready_job(service)
        executor.advance(principal, job_id)

        with pytest.raises(ConflictError):
            service.upload_inputs(principal, job_id, png_bytes(), png_bytes(mode="RGBA", color=(0, 0, 0, 0)))
