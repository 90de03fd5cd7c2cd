# src/rendering/local_renderer.py — v1
"""Fallback renderer: lay the unconverted DOCX out locally.

Fetches the populated DOCX from the export endpoint and writes its
paragraphs and table rows, in body order, onto PDF pages with PyMuPDF.
Styling, images and exact pagination are lost; the text is all there.
Requires 'python-docx' and 'pymupdf'.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from permitpreview.pipeline.cancellation import CancellationToken
from permitpreview.rendering.base_renderer import BaseFallbackRenderer, RenderError
from permitpreview.rendering.pdf_document import import_fitz

logger = logging.getLogger(__name__)

_BODY_FONT = "helv"
_HEADING_FONT = "hebo"


@dataclass(frozen=True)
class TextBlock:
    """One paragraph or table row to lay out."""

    text: str
    heading: bool = False


def docx_to_blocks(docx_bytes: bytes) -> list[TextBlock]:
    """Read paragraphs and table rows from a DOCX in document body order."""
    try:
        import docx
        from docx.table import Table
        from docx.text.paragraph import Paragraph
    except ImportError as e:
        raise ImportError(
            "python-docx package required for local rendering: pip install python-docx"
        ) from e

    document = docx.Document(io.BytesIO(docx_bytes))
    blocks: list[TextBlock] = []
    for child in document.element.body.iterchildren():
        tag = child.tag.rsplit("}", 1)[-1]
        if tag == "p":
            para = Paragraph(child, document)
            text = para.text.strip()
            if not text:
                continue
            style_name = (para.style.name if para.style is not None else "") or ""
            style_name = style_name.lower()
            blocks.append(TextBlock(text, heading="heading" in style_name or style_name == "title"))
        elif tag == "tbl":
            for row in Table(child, document).rows:
                cells = [cell.text.strip() for cell in row.cells]
                # Merged cells repeat their text across the row
                deduped = [c for i, c in enumerate(cells) if c and (i == 0 or c != cells[i - 1])]
                if deduped:
                    blocks.append(TextBlock(" | ".join(deduped)))
    return blocks


def layout_blocks(
    blocks: list[TextBlock],
    page_width: float,
    page_height: float,
    margin: float,
    font_size: float = 10.0,
) -> bytes:
    """Write text blocks onto fixed-size PDF pages and return the PDF bytes."""
    fitz = import_fitz()
    doc = fitz.open()
    usable_width = page_width - 2 * margin
    page: Any = None
    y = 0.0

    def new_page() -> None:
        nonlocal page, y
        page = doc.new_page(width=page_width, height=page_height)
        y = margin

    try:
        new_page()
        for block in blocks:
            size = font_size + 2 if block.heading else font_size
            font = _HEADING_FONT if block.heading else _BODY_FONT
            line_height = size * 1.4
            for line in _wrap(block.text, usable_width, size, font, fitz):
                if y + line_height > page_height - margin:
                    new_page()
                page.insert_text((margin, y + size), line, fontsize=size, fontname=font)
                y += line_height
            y += font_size * 0.6
        return doc.tobytes(garbage=3, deflate=True)
    finally:
        doc.close()


def _wrap(text: str, width: float, size: float, font: str, fitz: Any) -> list[str]:
    lines: list[str] = []
    for raw_line in text.splitlines() or [""]:
        current = ""
        for word in raw_line.split():
            candidate = f"{current} {word}" if current else word
            if fitz.get_text_length(candidate, fontname=font, fontsize=size) <= width:
                current = candidate
                continue
            if current:
                lines.append(current)
            current = word
        lines.append(current)
    return lines


class LocalDocxRenderer(BaseFallbackRenderer):
    """Degraded local rendering of the exported DOCX.

    Args:
        docx_url: Export endpoint returning the populated DOCX.
        token: Bearer token for the export endpoint.
        page_width / page_height / margin: Output page geometry (points).
        font_size: Body font size.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        docx_url: str,
        token: str = "",
        page_width: float = 612.0,
        page_height: float = 936.0,
        margin: float = 36.0,
        font_size: float = 10.0,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = docx_url
        self._token = token
        self._page_width = page_width
        self._page_height = page_height
        self._margin = margin
        self._font_size = font_size
        self._timeout = timeout_s
        self._transport = transport

    async def render(self, record_id: str, token: CancellationToken) -> bytes:
        if not self._url:
            raise RenderError("No DOCX export URL configured for local rendering")

        docx_bytes = await self._fetch_docx(record_id)
        token.raise_if_cancelled()

        try:
            blocks = docx_to_blocks(docx_bytes)
            data = layout_blocks(
                blocks,
                page_width=self._page_width,
                page_height=self._page_height,
                margin=self._margin,
                font_size=self._font_size,
            )
        except ImportError:
            raise
        except Exception as e:
            raise RenderError(f"Local rendering failed for {record_id}: {e}") from e

        logger.info("Rendered %s locally (%d text blocks)", record_id, len(blocks))
        return data

    async def _fetch_docx(self, record_id: str) -> bytes:
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
        except httpx.RequestError as e:
            raise RenderError(f"DOCX export request failed: {e}") from e
        if not response.is_success:
            raise RenderError(f"DOCX export returned HTTP {response.status_code}")
        return response.content
