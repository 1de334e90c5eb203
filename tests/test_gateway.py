"""Tests for the provider gateway and its backends."""

from __future__ import annotations

from io import BytesIO
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
import requests
from PIL import Image

from magicbook.ai_generation import (
    OpenAIImageEditor,
    ProviderGateway,
    ReplicatePredictionBackend,
    classify_replicate_error,
)
from magicbook.ai_generation.replicate_service import PredictionSnapshot, is_high_demand_message
from magicbook.common.config import GatewayConfig
from magicbook.common.errors import PredictionUnavailable, ProviderError, ProviderTimeout, ProviderUnavailable

from conftest import FakeFallback, FakePrimary, make_gateway, png_bytes


class TestSubmitRetries:
    """Linear backoff around image submission."""

    def test_transient_failures_are_retried_with_linear_backoff(self):
        primary = FakePrimary(submit_errors=[ProviderUnavailable("busy"), ProviderUnavailable("busy")])
        sleeps: list[float] = []
        gateway = ProviderGateway(
            GatewayConfig(submit_attempts=3, backoff_seconds=2.0),
            story_generator=MagicMock(),
            primary=primary,
            sleep=sleeps.append,
        )

        handle = gateway.submit_image("prompt", png_bytes())

        assert handle == "pred-1"
        assert sleeps == [2.0, 4.0]

    def test_exhausted_timeouts_become_provider_error(self):
        primary = FakePrimary(submit_errors=[ProviderTimeout("slow")] * 3)
        gateway = make_gateway(primary=primary, submit_attempts=3)

        with pytest.raises(ProviderError) as excinfo:
            gateway.submit_image("prompt", png_bytes())

        assert not isinstance(excinfo.value, ProviderUnavailable)

    def test_exhausted_high_demand_stays_unavailable(self):
        primary = FakePrimary(submit_errors=[ProviderUnavailable("high demand")] * 3)
        gateway = make_gateway(primary=primary, submit_attempts=3)

        with pytest.raises(ProviderUnavailable):
            gateway.submit_image("prompt", png_bytes())

    def test_permanent_errors_are_not_retried(self):
        primary = FakePrimary(submit_errors=[ProviderError("bad input"), ProviderError("bad input")])
        gateway = make_gateway(primary=primary)

        with pytest.raises(ProviderError, match="bad input"):
            gateway.submit_image("prompt", png_bytes())
        assert len(primary.submit_errors) == 1


class TestPolling:
    """Single checks and the blocking wait helper."""

    def test_pending_then_done(self):
        primary = FakePrimary(polls_before_done=1)
        gateway = make_gateway(primary=primary)
        handle = gateway.submit_image("prompt", png_bytes())

        assert not gateway.poll_image(handle).done
        result = gateway.poll_image(handle)

        assert result.done
        assert result.image.size == (256, 256)

    def test_high_demand_failure_is_unavailable(self):
        primary = FakePrimary(failing_handles=1)
        gateway = make_gateway(primary=primary)
        handle = gateway.submit_image("prompt", png_bytes())

        with pytest.raises(PredictionUnavailable):
            gateway.poll_image(handle)

    def test_failed_status_check_is_not_a_dead_prediction(self):
        primary = FakePrimary(fetch_errors=[ProviderUnavailable("503 Service Unavailable")])
        gateway = make_gateway(primary=primary)
        handle = gateway.submit_image("prompt", png_bytes())

        with pytest.raises(ProviderUnavailable) as excinfo:
            gateway.poll_image(handle)
        assert not isinstance(excinfo.value, PredictionUnavailable)
        assert gateway.poll_image(handle).done

    def test_failed_output_download_is_not_a_dead_prediction(self):
        primary = MagicMock()
        primary.fetch.return_value = PredictionSnapshot(id="pred-1", status="succeeded", output="https://cdn.example.com/x.png")
        http_get = MagicMock(side_effect=requests.ConnectionError("reset"))
        gateway = ProviderGateway(GatewayConfig(), story_generator=MagicMock(), primary=primary, http_get=http_get)

        with pytest.raises(ProviderUnavailable) as excinfo:
            gateway.poll_image("pred-1")
        assert not isinstance(excinfo.value, PredictionUnavailable)

    def test_other_failure_is_provider_error(self):
        primary = FakePrimary(failing_handles=1, failure_message="NSFW content detected")
        gateway = make_gateway(primary=primary)
        handle = gateway.submit_image("prompt", png_bytes())

        with pytest.raises(ProviderError) as excinfo:
            gateway.poll_image(handle)
        assert not isinstance(excinfo.value, ProviderUnavailable)

    def test_wait_for_image_times_out(self):
        primary = FakePrimary(polls_before_done=1000)
        ticks = iter(range(0, 10_000, 5))
        gateway = ProviderGateway(
            GatewayConfig(),
            story_generator=MagicMock(),
            primary=primary,
            sleep=lambda _s: None,
            clock=lambda: next(ticks),
        )
        handle = gateway.submit_image("prompt", png_bytes())

        with pytest.raises(ProviderTimeout):
            gateway.wait_for_image(handle, timeout=20, interval=1)

    def test_wait_for_image_returns_image(self):
        gateway = make_gateway(primary=FakePrimary(polls_before_done=2))
        handle = gateway.submit_image("prompt", png_bytes())

        assert gateway.wait_for_image(handle, timeout=60, interval=0).size == (256, 256)


class TestFallbackBackend:
    """Synchronous edits through the fallback editor."""

    def test_edit_image_decodes_bytes(self, tmp_path):
        photo = tmp_path / "photo.png"
        photo.write_bytes(png_bytes())
        fallback = FakeFallback()
        gateway = make_gateway(fallback=fallback)

        image = gateway.edit_image("prompt", photo, photo)

        assert not gateway.uses_async_backend
        assert image.size == (256, 256)
        assert fallback.calls[0][0] == "prompt"

    def test_no_backend_configured(self, tmp_path):
        gateway = make_gateway()

        with pytest.raises(ProviderError):
            gateway.edit_image("prompt", tmp_path / "photo.png")

    def test_openai_editor_downloads_url_outputs(self, tmp_path, monkeypatch):
        photo = tmp_path / "photo.png"
        photo.write_bytes(png_bytes())
        client = MagicMock()
        client.images.edit.return_value = SimpleNamespace(data=[SimpleNamespace(b64_json=None, url="https://a/out.png")])
        fetched = MagicMock(return_value=b"png-bytes")
        monkeypatch.setattr("magicbook.ai_generation.openai_fallback.fetch_bytes", fetched)

        result = OpenAIImageEditor(client=client, timeout=30).edit("prompt", photo)

        assert result == b"png-bytes"
        fetched.assert_called_once_with("https://a/out.png", timeout=30)

    def test_openai_editor_without_data(self, tmp_path):
        photo = tmp_path / "photo.png"
        photo.write_bytes(png_bytes())
        client = MagicMock()
        client.images.edit.return_value = SimpleNamespace(data=[])

        with pytest.raises(ProviderError):
            OpenAIImageEditor(client=client).edit("prompt", photo)



class TestReplicateBackend:
    """The prediction wrapper and its error classification."""

    def _backend(self, client):
        config = GatewayConfig(replicate_api_token="r8_test", replicate_model="owner/model")
        return ReplicatePredictionBackend(config, client=client)

    def test_submit_resolves_latest_version_once(self):
        client = MagicMock()
        client.models.get.return_value = SimpleNamespace(latest_version=SimpleNamespace(id="v123"))
        client.predictions.create.return_value = SimpleNamespace(id="p1")
        backend = self._backend(client)

        assert backend.submit("a dragon", png_bytes_image()) == "p1"
        assert backend.submit("a dragon", png_bytes_image()) == "p1"

        client.models.get.assert_called_once_with("owner/model")
        kwargs = client.predictions.create.call_args.kwargs
        assert kwargs["version"] == "v123"
        assert kwargs["input"]["prompt"] == "a dragon"
        assert kwargs["input"]["image_input"][0].startswith("data:image/png;base64,")

    def test_fetch_snapshot(self):
        client = MagicMock()
        client.predictions.get.return_value = SimpleNamespace(status="failed", output=None, error="E003 high demand")
        snapshot = self._backend(client).fetch("p1")

        assert snapshot == PredictionSnapshot(id="p1", status="failed", output=None, error="E003 high demand")
        assert snapshot.failed and not snapshot.succeeded

    def test_submit_classifies_http_errors(self):
        client = MagicMock()
        client.models.get.return_value = SimpleNamespace(latest_version=SimpleNamespace(id="v1"))
        client.predictions.create.side_effect = httpx.ReadTimeout("read timed out")

        with pytest.raises(ProviderTimeout):
            self._backend(client).submit("prompt", png_bytes_image())

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (httpx.ConnectTimeout("slow"), ProviderTimeout),
            (httpx.ConnectError("refused"), ProviderUnavailable),
            (RuntimeError("Model is overloaded, try again"), ProviderUnavailable),
            (RuntimeError("invalid input: prompt"), ProviderError),
        ],
    )
    def test_classification(self, exc, expected):
        assert type(classify_replicate_error(exc)) is expected

    def test_status_code_classification(self):
        error = RuntimeError("too many requests")
        error.status = 429
        assert type(classify_replicate_error(error)) is ProviderUnavailable

    def test_high_demand_markers(self):
        assert is_high_demand_message("Service is currently unavailable due to high demand (E003)")
        assert not is_high_demand_message("prediction failed: invalid prompt")


def png_bytes_image():
    return Image.open(BytesIO(png_bytes((32, 32))))
