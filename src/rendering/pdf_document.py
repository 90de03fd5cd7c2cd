# src/rendering/pdf_document.py — v1
"""Thin PyMuPDF (fitz) helpers shared by renderers, normalizer and merger.

Requires the 'pymupdf' package.
"""

from __future__ import annotations

from typing import Any


class InvalidDocumentError(ValueError):
    """Raised when bytes do not form a readable, non-empty PDF."""


def import_fitz() -> Any:
    """Import PyMuPDF with a clear message when it is missing."""
    try:
        import fitz  # PyMuPDF
    except ImportError as e:
        raise ImportError(
            "pymupdf package required for PDF composition: pip install pymupdf"
        ) from e
    return fitz


def open_pdf(data: bytes) -> Any:
    """Open PDF bytes as a fitz.Document.

    Raises:
        InvalidDocumentError: If the bytes cannot be parsed as a PDF.
    """
    fitz = import_fitz()
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:  # fitz raises its own FileDataError / RuntimeError
        raise InvalidDocumentError(f"Unreadable PDF ({len(data)} bytes): {e}") from e
    # fitz sniffs the stream and may open HTML or images despite filetype="pdf"
    if not doc.is_pdf:
        doc.close()
        raise InvalidDocumentError("Not a PDF document")
    if doc.page_count < 1:
        doc.close()
        raise InvalidDocumentError("PDF has no pages")
    return doc


def count_pages(data: bytes) -> int:
    """Validate PDF bytes and return their page count."""
    doc = open_pdf(data)
    try:
        return doc.page_count
    finally:
        doc.close()
