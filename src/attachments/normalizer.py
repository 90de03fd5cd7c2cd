# src/attachments/normalizer.py — v1
"""Attachment normalizer: turn approved requirement files into PDF handles.

Each approved file is fetched and converted independently:
  - PDF attachments are validated and passed through unchanged.
  - Raster images are placed on a fixed-size page (see PageLayout), via a
    direct PyMuPDF embed first and a Pillow re-decode when the declared
    content type turns out to be wrong.
  - Anything else is skipped.

Fetches run concurrently (bounded) and a slow or failing file never blocks
or aborts the others. Output preserves record order.
Requires 'pymupdf' and 'Pillow'.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Any, Literal

from permitpreview.attachments.base_fetcher import BaseAttachmentFetcher
from permitpreview.attachments.page_layout import PageLayout
from permitpreview.core.models import AttachmentFile
from permitpreview.pipeline.cancellation import CancellationToken, GenerationCancelled
from permitpreview.rendering.pdf_document import count_pages, import_fitz
from permitpreview.resources.handle import Handle
from permitpreview.resources.lifecycle import ResourceLifecycleManager

logger = logging.getLogger(__name__)

AttachmentKind = Literal["pdf", "image"]

_GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream", "application/binary"}

# Magic-byte prefixes used when the source does not declare a usable type.
_MAGIC: list[tuple[bytes, AttachmentKind]] = [
    (b"%PDF-", "pdf"),
    (b"\x89PNG\r\n\x1a\n", "image"),
    (b"\xff\xd8\xff", "image"),
    (b"GIF87a", "image"),
    (b"GIF89a", "image"),
    (b"BM", "image"),
    (b"II*\x00", "image"),
    (b"MM\x00*", "image"),
]


class AttachmentConversionError(Exception):
    """An attachment was fetched but could not be turned into PDF pages."""


class UnsupportedAttachmentError(AttachmentConversionError):
    """The attachment's content type is neither a paged document nor an image."""


@dataclass(frozen=True)
class NormalizedAttachment:
    """A record file together with its page-bearing handle."""

    file: AttachmentFile
    handle: Handle


def classify_content(content_type: str, data: bytes) -> AttachmentKind | None:
    """Decide how to treat an attachment from its content type and bytes."""
    declared = content_type.split(";", 1)[0].strip().lower()
    if "pdf" in declared:
        return "pdf"
    if declared.startswith("image/"):
        return "image"
    if declared in _GENERIC_TYPES:
        return sniff_kind(data)
    return None


def sniff_kind(data: bytes) -> AttachmentKind | None:
    """Guess the attachment kind from magic bytes."""
    for prefix, kind in _MAGIC:
        if data.startswith(prefix):
            return kind
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image"
    return None


def image_to_pdf(data: bytes, layout: PageLayout) -> bytes:
    """Place a raster image on one page, scaled to fit and centered.

    Raises:
        AttachmentConversionError: If neither decode path can read the image.
    """
    fitz = import_fitz()
    try:
        width, height = _probe_image(data, fitz)
        return _place_on_page(data, width, height, layout, fitz)
    except Exception as direct_error:  # MuPDF rejects the declared format
        logger.debug("Direct image embed failed (%s), re-decoding with Pillow", direct_error)

    png, width, height = _reencode_as_png(data)
    try:
        return _place_on_page(png, width, height, layout, fitz)
    except Exception as e:
        raise AttachmentConversionError(f"Could not embed re-encoded image: {e}") from e


def _probe_image(data: bytes, fitz: Any) -> tuple[int, int]:
    pix = fitz.Pixmap(data)
    return pix.width, pix.height


def _place_on_page(
    image: bytes, width: int, height: int, layout: PageLayout, fitz: Any
) -> bytes:
    doc = fitz.open()
    try:
        page = doc.new_page(width=layout.width, height=layout.height)
        page.insert_image(fitz.Rect(*layout.fit_image(width, height)), stream=image)
        return doc.tobytes(deflate=True)
    finally:
        doc.close()


def _reencode_as_png(data: bytes) -> tuple[bytes, int, int]:
    """Generic bitmap path: decode with Pillow and re-encode as PNG."""
    try:
        from PIL import Image, ImageOps, UnidentifiedImageError
    except ImportError as e:
        raise ImportError(
            "Pillow package required for image attachments: pip install Pillow"
        ) from e

    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            has_alpha = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
            converted = img.convert("RGBA" if has_alpha else "RGB")
            out = io.BytesIO()
            converted.save(out, format="PNG")
            return out.getvalue(), converted.width, converted.height
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise AttachmentConversionError(f"Unreadable image: {e}") from e


class AttachmentNormalizer:
    """Fetch and convert approved attachments into page-bearing handles.

    Args:
        fetcher: Attachment retrieval backend.
        lifecycle: Manager that creates and tracks the output handles.
        layout: Page geometry for images.
        max_concurrency: Maximum number of fetches pending at once.
        approval_marker: Status substring that marks a file as approved.
    """

    def __init__(
        self,
        fetcher: BaseAttachmentFetcher,
        lifecycle: ResourceLifecycleManager,
        layout: PageLayout | None = None,
        max_concurrency: int = 4,
        approval_marker: str = "approve",
    ) -> None:
        self._fetcher = fetcher
        self._lifecycle = lifecycle
        self._layout = layout if layout is not None else PageLayout()
        self._max_concurrency = max_concurrency
        self._approval_marker = approval_marker

    def select(self, files: list[AttachmentFile]) -> list[AttachmentFile]:
        """Approved files that carry a retrieval reference, in input order."""
        return [
            f for f in files
            if f.is_approved(self._approval_marker) and f.download_url
        ]

    async def normalize(
        self,
        files: list[AttachmentFile],
        token: CancellationToken,
        owner: str | None = None,
    ) -> list[NormalizedAttachment]:
        """Normalize approved files; failed or unsupported files are omitted.

        Raises:
            GenerationCancelled: If the token fires; handles created so far
                are released first.
        """
        selected = self.select(files)
        if not selected:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_one(f: AttachmentFile) -> NormalizedAttachment | None:
            async with semaphore:
                return await self._normalize_one(f, token, owner)

        results = await asyncio.gather(
            *(run_one(f) for f in selected), return_exceptions=True
        )

        normalized: list[NormalizedAttachment] = []
        cancelled = token.cancelled
        for f, result in zip(selected, results):
            if isinstance(result, NormalizedAttachment):
                normalized.append(result)
            elif isinstance(result, (GenerationCancelled, asyncio.CancelledError)):
                cancelled = True
            elif isinstance(result, BaseException):
                # _normalize_one absorbs Exceptions; anything else is fatal
                raise result

        if cancelled:
            for item in normalized:
                self._lifecycle.release(item.handle)
            raise GenerationCancelled(token.reason or "cancelled")

        logger.info("Normalized %d/%d approved attachment(s)", len(normalized), len(selected))
        return normalized

    async def _normalize_one(
        self, f: AttachmentFile, token: CancellationToken, owner: str | None
    ) -> NormalizedAttachment | None:
        try:
            fetched = await token.guard(self._fetcher.fetch(f.download_url or "", token))
            content_type = fetched.content_type or f.content_type or ""
            kind = classify_content(content_type, fetched.data)
            if kind is None:
                raise UnsupportedAttachmentError(f"Unsupported content type {content_type!r}")

            if kind == "pdf":
                data = fetched.data
                pages = count_pages(data)
            else:
                data = image_to_pdf(fetched.data, self._layout)
                pages = 1
        except GenerationCancelled:
            raise
        except UnsupportedAttachmentError as e:
            logger.info("Skipping attachment %s: %s", f.id, e)
            return None
        except Exception as e:
            logger.warning("Failed to fetch/convert attachment %s: %s", f.id, e)
            return None

        handle = self._lifecycle.create(
            data,
            kind="attachment",
            page_count=pages,
            owner=owner,
            label=f.file_name or f.id,
        )
        return NormalizedAttachment(file=f, handle=handle)
