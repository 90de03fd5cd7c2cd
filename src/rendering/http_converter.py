# src/rendering/http_converter.py — v1
"""Primary renderer: server-side DOCX-to-PDF conversion over HTTP.

POSTs {"applicationId": ...} to the converter endpoint. Error bodies are
JSON with "details"/"error" fields; when they mention the conversion
engine being missing (soffice, ENOENT, ...) the failure is classified as
ConverterUnavailableError so the orchestrator can fall back quietly.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from permitpreview.pipeline.cancellation import CancellationToken
from permitpreview.rendering.base_renderer import (
    BasePrimaryRenderer,
    ConverterUnavailableError,
    RenderError,
)
from permitpreview.rendering.pdf_document import InvalidDocumentError, count_pages

logger = logging.getLogger(__name__)

DEFAULT_UNAVAILABLE_MARKERS = ("soffice", "enoent", "engine not found")


def is_converter_unavailable(detail: str, markers: tuple[str, ...] | list[str]) -> bool:
    """True when an error detail carries a recognized 'engine missing' marker."""
    lowered = detail.lower()
    return any(m in lowered for m in markers)


def extract_error_detail(response: httpx.Response) -> str:
    """Pull a readable error message out of a converter error response."""
    try:
        payload: Any = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(payload, dict):
        parts = [str(payload[k]) for k in ("details", "error", "message") if payload.get(k)]
        if parts:
            return " | ".join(parts)
    return str(payload)[:500]


class HttpConverterRenderer(BasePrimaryRenderer):
    """Calls the high-fidelity conversion endpoint.

    Args:
        url: Converter endpoint (e.g. https://portal/api/export/docx-to-pdf).
        token: Bearer token sent in the Authorization header.
        timeout_s: Request timeout.
        unavailable_markers: Substrings identifying a missing engine.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout_s: float = 60.0,
        unavailable_markers: list[str] | tuple[str, ...] = DEFAULT_UNAVAILABLE_MARKERS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout_s
        self._markers = tuple(m.lower() for m in unavailable_markers)
        self._transport = transport

    async def render(self, record_id: str, token: CancellationToken) -> bytes:
        if not self._url:
            raise ConverterUnavailableError("engine not found: no converter URL configured")

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._url, json={"applicationId": record_id}, headers=headers
                )
        except httpx.TimeoutException as e:
            raise RenderError(f"Converter timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            raise RenderError(f"Converter request failed: {e}") from e

        token.raise_if_cancelled()

        if not response.is_success:
            detail = extract_error_detail(response)
            if is_converter_unavailable(detail, self._markers):
                raise ConverterUnavailableError(
                    f"Converter unavailable (HTTP {response.status_code}): {detail}"
                )
            raise RenderError(f"Converter returned HTTP {response.status_code}: {detail}")

        data = response.content
        try:
            pages = count_pages(data)
        except InvalidDocumentError as e:
            raise RenderError(f"Converter returned an invalid PDF: {e}") from e

        logger.debug("Converter produced %d page(s) for %s", pages, record_id)
        return data
