# src/api/session.py — v1
"""Preview session: the per-view surface the rest of the application uses.

A session stands for one preview view. It holds at most one in-flight
request, cancels it when the view switches to another record or closes,
and on close releases every handle it created that the shared cache does
not retain.

Usage:
    async with service.open_session() as session:
        result = await session.request_preview("app-123")
        show(result.deliverable.uri)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable

from permitpreview.api.models import PreviewResult
from permitpreview.pipeline.cancellation import CancellationToken
from permitpreview.pipeline.orchestrator import PreviewOrchestrator
from permitpreview.records.source import BaseRecordSource
from permitpreview.resources.handle import Handle

logger = logging.getLogger(__name__)

NoticeCallback = Callable[[str], None]


class PreviewSession:
    """One consumer view of the preview pipeline.

    Args:
        orchestrator: Shared generation orchestrator.
        records: Source of current record state.
        view_id: Owner key for handles created on behalf of this view.
        on_notice: Called once per distinct advisory (e.g. fallback in use).
    """

    def __init__(
        self,
        orchestrator: PreviewOrchestrator,
        records: BaseRecordSource,
        view_id: str | None = None,
        on_notice: NoticeCallback | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._records = records
        self._lifecycle = orchestrator.cache.lifecycle
        self.view_id = view_id or f"view_{uuid.uuid4().hex[:8]}"
        self._on_notice = on_notice
        self._seen_notices: set[str] = set()
        self._token: CancellationToken | None = None
        self._record_id: str | None = None
        self._current: PreviewResult | None = None

    @property
    def current(self) -> PreviewResult | None:
        """The result most recently delivered to this view."""
        return self._current

    @property
    def pending(self) -> bool:
        return self._token is not None and not self._token.cancelled

    async def request_preview(self, record_id: str) -> PreviewResult:
        """Produce the preview for a record, reusing the cache when valid.

        Raises:
            GenerationCancelled: If cancelled or superseded before delivery.
            RecordNotFoundError: If the record source does not know the id.
            PreviewUnavailableError: If both rendering strategies failed.
        """
        if self._token is not None and self._record_id != record_id:
            logger.info(
                "View %s switched from %s to %s, cancelling pending preview",
                self.view_id, self._record_id, record_id,
            )
            self._token.cancel("view switched record")

        token = CancellationToken()
        self._token = token
        self._record_id = record_id
        try:
            record = await token.guard(self._records.require(record_id))
            result = await self._orchestrator.generate(
                record, view_id=self.view_id, token=token
            )
        finally:
            if self._token is token:
                self._token = None

        self._replace_current(result)
        result.notices = self._first_time(result.notices)
        return result

    def start_preview(self, record_id: str) -> asyncio.Task[PreviewResult]:
        """Schedule request_preview() and return the task (future-style delivery)."""
        return asyncio.create_task(
            self.request_preview(record_id), name=f"preview:{record_id}"
        )

    def cancel_preview(self) -> bool:
        """Cancel the in-flight request of this view, if any."""
        if self._token is None or self._token.cancelled:
            return False
        self._token.cancel("cancelled by caller")
        logger.info("Cancelled pending preview of %s", self._record_id)
        return True

    def close_preview(self) -> list[Handle]:
        """Cancel pending work and release what this view holds outside the cache.

        Returns:
            Handles released by this call.
        """
        self.cancel_preview()
        self._current = None
        return self._lifecycle.release_owner(self.view_id)

    async def __aenter__(self) -> PreviewSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close_preview()

    # ------------------------------------------------------------------

    def _replace_current(self, result: PreviewResult) -> None:
        """Swap the displayed result; release the old one unless the cache keeps it."""
        previous = self._current
        self._current = result
        if previous is None:
            return
        keep = {result.primary.handle_id}
        if result.composite is not None:
            keep.add(result.composite.handle_id)
        for handle in (previous.primary, previous.composite):
            if handle is not None and handle.handle_id not in keep:
                self._lifecycle.release(handle)

    def _first_time(self, notices: list[str]) -> list[str]:
        fresh = [n for n in notices if n not in self._seen_notices]
        for notice in fresh:
            self._seen_notices.add(notice)
            logger.info("Notice for %s: %s", self.view_id, notice)
            if self._on_notice is not None:
                self._on_notice(notice)
        return fresh
