"""Tests for image output normalization and image prompts."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from magicbook.ai_generation import (
    InlineOutput,
    UrlOutput,
    build_cover_prompt,
    build_scene_prompt,
    load_image_output,
    parse_image_output,
)
from magicbook.ai_generation.outputs import fetch_bytes
from magicbook.common.errors import GenerationError, ProviderTimeout, ProviderUnavailable

from conftest import png_bytes


class TestParseImageOutput:
    """Every shape a backend may answer with."""

    def test_url_string(self):
        assert parse_image_output("https://cdn.example.com/out.png") == UrlOutput("https://cdn.example.com/out.png")

    def test_data_uri(self):
        data = png_bytes((8, 8))
        uri = "data:image/png;base64," + base64.b64encode(data).decode("ascii")
        assert parse_image_output(uri) == InlineOutput(data)

    def test_bare_base64(self):
        data = png_bytes((8, 8))
        assert parse_image_output(base64.b64encode(data).decode("ascii")) == InlineOutput(data)

    def test_list_takes_first_element(self):
        assert parse_image_output(["https://a/1.png", "https://a/2.png"]) == UrlOutput("https://a/1.png")

    def test_mapping_with_url_or_b64(self):
        assert parse_image_output({"url": "https://a/x.png"}) == UrlOutput("https://a/x.png")
        assert parse_image_output({"url": None, "b64_json": base64.b64encode(b"abc").decode()}) == InlineOutput(b"abc")

    def test_file_object_with_url_attribute(self):
        assert parse_image_output(SimpleNamespace(url="https://a/f.png")) == UrlOutput("https://a/f.png")

    def test_raw_bytes(self):
        assert parse_image_output(b"\x89PNG") == InlineOutput(b"\x89PNG")

    @pytest.mark.parametrize("raw", [None, [], "", "short", {"other": 1}, 42, b""])
    def test_unrecognized_shapes(self, raw):
        with pytest.raises(GenerationError):
            parse_image_output(raw)


class TestLoadImageOutput:
    """Materializing outputs into Pillow images."""

    def test_inline_output(self):
        image = load_image_output(InlineOutput(png_bytes((10, 12))))
        assert image.size == (10, 12)

    def test_url_output_is_downloaded(self):
        response = MagicMock(content=png_bytes((16, 16)))
        http_get = MagicMock(return_value=response)

        image = load_image_output(UrlOutput("https://a/x.png"), http_get=http_get, timeout=5)

        http_get.assert_called_once_with("https://a/x.png", timeout=5)
        assert image.size == (16, 16)

    def test_undecodable_bytes(self):
        with pytest.raises(GenerationError):
            load_image_output(InlineOutput(b"definitely not an image"))

    def test_download_timeout_is_transient(self):
        http_get = MagicMock(side_effect=requests.Timeout("slow"))
        with pytest.raises(ProviderTimeout):
            fetch_bytes("https://a/x.png", http_get=http_get)

    def test_download_error_is_transient(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
        with pytest.raises(ProviderUnavailable):
            fetch_bytes("https://a/x.png", http_get=MagicMock(return_value=response))


class TestImagePrompts:
    """Scene and cover prompts."""

    def test_scene_prompt_embeds_paragraph_and_identity_lock(self):
        prompt = build_scene_prompt("Mia  rides a\ncomet.", theme="space", child_name="Mia", style="read")

        assert '"Mia rides a comet."' in prompt.text
        assert "Do not alter identity" in prompt.text
        assert "Do NOT write any text" in prompt.text
        assert "Name (context): Mia." in str(prompt)

    def test_coloring_style(self):
        prompt = build_scene_prompt("A dragon sleeps.", theme="dragon", style="color")
        assert "BLACK AND WHITE" in prompt.text

    def test_empty_paragraph(self):
        with pytest.raises(ValueError):
            build_scene_prompt("   ", theme="space")

    def test_cover_prompt(self):
        prompt = build_cover_prompt(theme="ocean", child_name="Noa")
        assert "COVER" in prompt.text
        assert "under the sea" in prompt.text
