# src/api/facade.py — v1
"""Public API facade — single entry point for document previews.

Usage:
    from permitpreview.api.facade import create_preview_service
    service = create_preview_service(records=JsonFileRecordSource(path))
    async with service.open_session() as session:
        result = await session.request_preview(record_id)
    service.shutdown()

One service owns one process-wide cache/lifecycle pair; every session
opened from it shares that cache.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from permitpreview.api.session import NoticeCallback, PreviewSession
from permitpreview.attachments.normalizer import AttachmentNormalizer
from permitpreview.attachments.page_layout import PageLayout
from permitpreview.cache.cache_factory import create_preview_cache
from permitpreview.composite.merger import CompositeMerger
from permitpreview.config.settings import Settings
from permitpreview.pipeline.orchestrator import PreviewOrchestrator

if TYPE_CHECKING:
    from permitpreview.attachments.base_fetcher import BaseAttachmentFetcher
    from permitpreview.cache.preview_cache import PreviewCache
    from permitpreview.rendering.base_renderer import BaseFallbackRenderer, BasePrimaryRenderer
    from permitpreview.records.source import BaseRecordSource

logger = logging.getLogger(__name__)


class PreviewService:
    """Process-wide preview context: shared cache plus a session factory."""

    def __init__(
        self,
        orchestrator: PreviewOrchestrator,
        records: BaseRecordSource,
        settings: Settings,
    ) -> None:
        self._orchestrator = orchestrator
        self._records = records
        self._settings = settings
        self._closed = False

    @property
    def orchestrator(self) -> PreviewOrchestrator:
        return self._orchestrator

    @property
    def cache(self) -> PreviewCache:
        return self._orchestrator.cache

    @property
    def settings(self) -> Settings:
        return self._settings

    def open_session(
        self,
        view_id: str | None = None,
        on_notice: NoticeCallback | None = None,
    ) -> PreviewSession:
        """Create a session for one preview view."""
        if self._closed:
            raise RuntimeError("Preview service has been shut down")
        return PreviewSession(
            self._orchestrator, self._records, view_id=view_id, on_notice=on_notice
        )

    def shutdown(self) -> int:
        """Drop the cache and release every handle still alive.

        Returns:
            Number of handles released.
        """
        if self._closed:
            return 0
        self._closed = True
        cache = self._orchestrator.cache
        cache.clear()
        count = cache.lifecycle.shutdown()
        logger.info("Preview service shut down")
        return count


def create_preview_service(
    settings: Settings | None = None,
    records: BaseRecordSource | None = None,
    primary: BasePrimaryRenderer | None = None,
    fallback: BaseFallbackRenderer | None = None,
    fetcher: BaseAttachmentFetcher | None = None,
    cache: PreviewCache | None = None,
) -> PreviewService:
    """Wire a PreviewService from settings, overriding any collaborator.

    Args:
        settings: Global settings. Loaded from .env if None.
        records: Record source. Defaults to an empty in-memory source.
        primary: Primary renderer. Defaults to the HTTP converter.
        fallback: Fallback renderer. Defaults to the local DOCX renderer.
        fetcher: Attachment fetcher. Defaults to the httpx fetcher.
        cache: Preview cache. Defaults to a fresh one from settings.

    Returns:
        Ready-to-use PreviewService.
    """
    if settings is None:
        settings = Settings()

    if records is None:
        from permitpreview.records.source import InMemoryRecordSource

        records = InMemoryRecordSource()
    if primary is None:
        from permitpreview.rendering.renderer_factory import create_primary_renderer

        primary = create_primary_renderer(settings)
    if fallback is None:
        from permitpreview.rendering.renderer_factory import create_fallback_renderer

        fallback = create_fallback_renderer(settings)
    if fetcher is None:
        from permitpreview.attachments.http_fetcher import HttpAttachmentFetcher

        fetcher = HttpAttachmentFetcher(
            proxy_url=settings.attachment_proxy_url,
            allowed_hosts=settings.attachment_allowed_hosts_list,
            timeout_s=settings.attachment_fetch_timeout_s,
        )

    if cache is None:
        cache = create_preview_cache(settings)
    normalizer = AttachmentNormalizer(
        fetcher,
        cache.lifecycle,
        layout=PageLayout.from_settings(settings),
        max_concurrency=settings.attachment_max_concurrency,
        approval_marker=settings.approval_status_marker,
    )
    orchestrator = PreviewOrchestrator(
        primary=primary,
        fallback=fallback,
        normalizer=normalizer,
        merger=CompositeMerger(cache.lifecycle),
        cache=cache,
    )
    logger.debug(
        "Preview service ready: primary=%s, fallback=%s", primary.name, fallback.name
    )
    return PreviewService(orchestrator, records, settings)
