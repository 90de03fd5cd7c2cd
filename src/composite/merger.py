# src/composite/merger.py — v1
"""Composite merger: concatenate page-bearing documents into one PDF.

Page order is the primary (or fallback) output first, then attachments in
the order they appear on the record. Nothing is re-sorted.
"""

from __future__ import annotations

import logging

from permitpreview.rendering.pdf_document import InvalidDocumentError, import_fitz, open_pdf
from permitpreview.resources.handle import Handle, HandleReleasedError
from permitpreview.resources.lifecycle import ResourceLifecycleManager

logger = logging.getLogger(__name__)


class MergeError(Exception):
    """The composite could not be produced."""


def merge_documents(parts: list[bytes]) -> tuple[bytes, int]:
    """Concatenate PDFs in the given order.

    Returns:
        Tuple of (merged PDF bytes, total page count).

    Raises:
        MergeError: If any part is unreadable or the merge fails.
    """
    if not parts:
        raise MergeError("Nothing to merge")

    fitz = import_fitz()
    merged = fitz.open()
    try:
        for index, data in enumerate(parts):
            try:
                src = open_pdf(data)
            except InvalidDocumentError as e:
                raise MergeError(f"Part {index} is not a readable PDF: {e}") from e
            try:
                merged.insert_pdf(src)
            finally:
                src.close()
        page_count = merged.page_count
        return merged.tobytes(garbage=3, deflate=True), page_count
    except MergeError:
        raise
    except Exception as e:
        raise MergeError(f"Merge failed: {e}") from e
    finally:
        merged.close()


class CompositeMerger:
    """Builds composite handles through the lifecycle manager."""

    def __init__(self, lifecycle: ResourceLifecycleManager) -> None:
        self._lifecycle = lifecycle

    def merge(
        self,
        primary: Handle,
        attachments: list[Handle],
        owner: str | None = None,
    ) -> Handle | None:
        """Merge primary and attachment handles into a composite handle.

        Returns:
            The composite handle, or None when there are no attachments
            (the primary handle is then the deliverable on its own).

        Raises:
            MergeError: If merging fails.
        """
        if not attachments:
            return None

        try:
            parts = [primary.read(), *(h.read() for h in attachments)]
        except HandleReleasedError as e:
            raise MergeError(str(e)) from e
        data, page_count = merge_documents(parts)
        handle = self._lifecycle.create(
            data,
            kind="composite",
            page_count=page_count,
            owner=owner,
            label=f"{primary.label or 'preview'} + {len(attachments)} attachment(s)",
        )
        logger.info(
            "Merged composite: %d page(s) from primary + %d attachment(s)",
            page_count, len(attachments),
        )
        return handle
