# tests/conftest.py — v1
"""Shared test fixtures for all unit tests.

Provides real PDFs and images (built with PyMuPDF and Pillow), sample
records, and in-process fakes for the renderers and the attachment
fetcher. No network I/O.
"""

from __future__ import annotations

import asyncio
import io
from typing import Callable

import fitz
import pytest
from PIL import Image

from permitpreview.api.facade import PreviewService, create_preview_service
from permitpreview.attachments.base_fetcher import (
    AttachmentFetchError,
    BaseAttachmentFetcher,
    FetchedAttachment,
)
from permitpreview.cache.cache_factory import create_preview_cache
from permitpreview.cache.preview_cache import PreviewCache
from permitpreview.config.settings import Settings
from permitpreview.core.models import AttachmentFile, Record, Requirement
from permitpreview.pipeline.cancellation import CancellationToken
from permitpreview.records.source import InMemoryRecordSource
from permitpreview.rendering.base_renderer import BaseFallbackRenderer, BasePrimaryRenderer


# === Helpers ===


def make_pdf(*page_texts: str) -> bytes:
    """Build a PDF with one page per text, each page carrying its text."""
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def pdf_page_texts(data: bytes) -> list[str]:
    """Extract the stripped text of each page."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return [page.get_text().strip() for page in doc]
    finally:
        doc.close()


def make_png(width: int = 40, height: int = 20, color: str = "red", mode: str = "RGB") -> bytes:
    out = io.BytesIO()
    Image.new(mode, (width, height), color).save(out, format="PNG")
    return out.getvalue()


def make_jpeg(width: int = 40, height: int = 20) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), "blue").save(out, format="JPEG")
    return out.getvalue()


# === Fakes ===


class FakeRenderer:
    """Counts calls, returns configured bytes or raises a configured error.

    When `gate` is set, render() waits for it before answering so tests can
    cancel or supersede a request mid-flight.
    """

    def __init__(self, result: bytes | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.aborted = 0

    async def render(self, record_id: str, token: CancellationToken) -> bytes:
        self.calls.append(record_id)
        self.started.set()
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.aborted += 1
                raise
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class FakePrimaryRenderer(FakeRenderer, BasePrimaryRenderer):
    @property
    def name(self) -> str:
        return "fake-primary"


class FakeFallbackRenderer(FakeRenderer, BaseFallbackRenderer):
    @property
    def name(self) -> str:
        return "fake-fallback"


class FakeFetcher(BaseAttachmentFetcher):
    """Serves attachments from a dict of reference -> FetchedAttachment | Exception."""

    def __init__(self, responses: dict[str, FetchedAttachment | Exception] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[str] = []
        self.delays: dict[str, asyncio.Event] = {}

    async def fetch(self, reference: str, token: CancellationToken) -> FetchedAttachment:
        self.calls.append(reference)
        gate = self.delays.get(reference)
        if gate is not None:
            await gate.wait()
        response = self.responses.get(reference)
        if response is None:
            raise AttachmentFetchError(f"404 for {reference}")
        if isinstance(response, Exception):
            raise response
        return response


# === FIXTURES: Sample data ===


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def primary_pdf() -> bytes:
    return make_pdf("FORM-1", "FORM-2")


@pytest.fixture
def fallback_pdf() -> bytes:
    return make_pdf("LOCAL-1")


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def sample_file() -> AttachmentFile:
    return AttachmentFile(
        id="f1",
        file_name="permit.png",
        status="approved",
        uploaded_at=1700000000000,
        file_hash="abc123",
        file_size=2048,
        download_url="https://files.example.com/f1.png",
        content_type="image/png",
    )


@pytest.fixture
def sample_record(sample_file: AttachmentFile) -> Record:
    """Record X: approved, one approved PNG attachment F1."""
    return Record(
        id="rec_x",
        status="approved",
        overall_status="approved",
        application_date="2024-03-01",
        updated_at=1700000000000,
        applicant_name="Jane Doe",
        business_name="Corner Bakery",
        requirements=[
            Requirement(id="req_1", name="Barangay Clearance", files=[sample_file]),
        ],
    )


@pytest.fixture
def bare_record() -> Record:
    """Record without requirements."""
    return Record(id="rec_bare", status="pending", updated_at=1)


# === FIXTURES: Pipeline collaborators ===


@pytest.fixture
def primary(primary_pdf: bytes) -> FakePrimaryRenderer:
    return FakePrimaryRenderer(result=primary_pdf)


@pytest.fixture
def fallback(fallback_pdf: bytes) -> FakeFallbackRenderer:
    return FakeFallbackRenderer(result=fallback_pdf)


@pytest.fixture
def fetcher(png_bytes: bytes) -> FakeFetcher:
    return FakeFetcher({
        "https://files.example.com/f1.png": FetchedAttachment(png_bytes, "image/png"),
    })


@pytest.fixture
def cache() -> PreviewCache:
    return create_preview_cache()


@pytest.fixture
def records(sample_record: Record, bare_record: Record) -> InMemoryRecordSource:
    return InMemoryRecordSource([sample_record, bare_record])


@pytest.fixture
def service(
    settings: Settings,
    records: InMemoryRecordSource,
    primary: FakePrimaryRenderer,
    fallback: FakeFallbackRenderer,
    fetcher: FakeFetcher,
    cache: PreviewCache,
) -> PreviewService:
    return create_preview_service(
        settings,
        records=records,
        primary=primary,
        fallback=fallback,
        fetcher=fetcher,
        cache=cache,
    )


@pytest.fixture
def page_texts() -> Callable[[bytes], list[str]]:
    return pdf_page_texts


@pytest.fixture
def pdf_factory() -> Callable[..., bytes]:
    return make_pdf


@pytest.fixture
def png_factory() -> Callable[..., bytes]:
    return make_png


@pytest.fixture
def jpeg_factory() -> Callable[..., bytes]:
    return make_jpeg


@pytest.fixture
def renderer_factory() -> Callable[..., FakeRenderer]:
    """Build fake renderers: renderer_factory("primary", result=..., error=...)."""

    def build(role: str = "primary", **kwargs: object) -> FakeRenderer:
        cls = FakePrimaryRenderer if role == "primary" else FakeFallbackRenderer
        return cls(**kwargs)  # type: ignore[arg-type]

    return build


@pytest.fixture
def fetcher_factory() -> Callable[..., FakeFetcher]:
    return FakeFetcher
