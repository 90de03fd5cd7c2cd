# tests/unit/rendering/test_unit_http_converter.py — v1
"""Tests for rendering/http_converter.py — primary converter client."""

from __future__ import annotations

import json

import httpx
import pytest

from permitpreview.pipeline.cancellation import CancellationToken
from permitpreview.rendering.base_renderer import ConverterUnavailableError, RenderError
from permitpreview.rendering.http_converter import (
    HttpConverterRenderer,
    extract_error_detail,
    is_converter_unavailable,
)

URL = "https://portal.example.com/api/export/docx-to-pdf"


def _renderer(handler, **kwargs) -> HttpConverterRenderer:
    return HttpConverterRenderer(URL, transport=httpx.MockTransport(handler), **kwargs)


class TestIsConverterUnavailable:
    def test_markers(self):
        markers = ("soffice", "enoent", "engine not found")
        assert is_converter_unavailable("spawn soffice ENOENT", markers)
        assert is_converter_unavailable("Engine Not Found", markers)
        assert not is_converter_unavailable("template missing", markers)


class TestExtractErrorDetail:
    def test_json_fields_joined(self):
        response = httpx.Response(500, json={"error": "Conversion failed", "details": "spawn soffice ENOENT"})
        assert extract_error_detail(response) == "spawn soffice ENOENT | Conversion failed"

    def test_plain_text(self):
        response = httpx.Response(502, text="Bad gateway")
        assert extract_error_detail(response) == "Bad gateway"

    def test_json_without_known_fields(self):
        response = httpx.Response(500, json={"code": 7})
        assert "7" in extract_error_detail(response)


class TestHttpConverterRenderer:
    def test_name(self):
        assert HttpConverterRenderer(URL).name == "HttpConverterRenderer"

    @pytest.mark.asyncio
    async def test_success(self, primary_pdf):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=primary_pdf, headers={"content-type": "application/pdf"})

        data = await _renderer(handler, token="secret").render("rec_1", CancellationToken())
        assert data == primary_pdf
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"applicationId": "rec_1"}
        assert seen[0].headers["authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self, primary_pdf):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=primary_pdf)

        await _renderer(handler).render("rec_1", CancellationToken())
        assert "authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_engine_missing_is_recoverable(self):
        handler = lambda r: httpx.Response(
            500, json={"error": "DOCX to PDF conversion failed", "details": "spawn soffice ENOENT"}
        )
        with pytest.raises(ConverterUnavailableError, match="soffice"):
            await _renderer(handler).render("rec_1", CancellationToken())

    @pytest.mark.asyncio
    async def test_custom_markers(self):
        handler = lambda r: httpx.Response(503, text="LibreOffice is not installed")
        renderer = _renderer(handler, unavailable_markers=["libreoffice is not installed"])
        with pytest.raises(ConverterUnavailableError):
            await renderer.render("rec_1", CancellationToken())

    @pytest.mark.asyncio
    async def test_other_http_error_is_hard(self):
        handler = lambda r: httpx.Response(500, json={"error": "template not found"})
        with pytest.raises(RenderError) as exc_info:
            await _renderer(handler).render("rec_1", CancellationToken())
        assert not isinstance(exc_info.value, ConverterUnavailableError)
        assert "HTTP 500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RenderError, match="request failed"):
            await _renderer(handler).render("rec_1", CancellationToken())

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RenderError, match="timed out"):
            await _renderer(handler).render("rec_1", CancellationToken())

    @pytest.mark.asyncio
    async def test_invalid_pdf_body(self):
        handler = lambda r: httpx.Response(200, content=b"<html>login</html>")
        with pytest.raises(RenderError, match="invalid PDF"):
            await _renderer(handler).render("rec_1", CancellationToken())

    @pytest.mark.asyncio
    async def test_no_url_means_unavailable(self):
        with pytest.raises(ConverterUnavailableError, match="engine not found"):
            await HttpConverterRenderer("").render("rec_1", CancellationToken())
