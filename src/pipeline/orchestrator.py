# src/pipeline/orchestrator.py — v1
"""Generation orchestrator: cache gate, strategy fallback, attachments, merge.

Drives one GenerationRequest through its state machine:

    REQUEST_ISSUED -> (cache hit) CACHED
    REQUEST_ISSUED -> PRIMARY_ATTEMPT -> PRIMARY_SUCCEEDED
                   -> PRIMARY_FAILED_RECOVERABLE -> FALLBACK_ATTEMPT
                        -> FALLBACK_SUCCEEDED
                        -> FALLBACK_FAILED -> REPORTED
    (primary|fallback succeeded) -> ATTACHMENT_COLLECTION [-> MERGE] -> CACHED
    any non-terminal stage -> CANCELLED

Every transition first checks the request's cancellation token. Outputs
are committed to the cache stage by stage under the request's generation;
a cancelled or superseded request rolls its staged entry back and releases
everything it created.
"""

from __future__ import annotations

import logging
import time

from permitpreview.api.models import PreviewResult
from permitpreview.attachments.normalizer import AttachmentNormalizer
from permitpreview.cache.preview_cache import PreviewCache
from permitpreview.cache.signature import compute_signature
from permitpreview.composite.merger import CompositeMerger, MergeError
from permitpreview.core.models import Record
from permitpreview.logging.context import clear_context, set_request_context, set_stage_context
from permitpreview.pipeline.cancellation import CancellationToken, GenerationCancelled
from permitpreview.pipeline.state import GenerationRequest, GenerationStage
from permitpreview.rendering.base_renderer import (
    BaseFallbackRenderer,
    BasePrimaryRenderer,
    ConverterUnavailableError,
)
from permitpreview.rendering.pdf_document import count_pages
from permitpreview.resources.handle import Handle, HandleKind

logger = logging.getLogger(__name__)

FALLBACK_NOTICE = (
    "Server-side PDF conversion unavailable; falling back to local preview."
)


class PreviewUnavailableError(Exception):
    """Both rendering strategies failed; the preview cannot be produced."""

    def __init__(
        self,
        record_id: str,
        primary_error: BaseException | None,
        fallback_error: BaseException | None,
    ) -> None:
        self.record_id = record_id
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        super().__init__(
            f"Unable to produce preview for {record_id}: "
            f"primary={primary_error!s}; fallback={fallback_error!s}"
        )


class PreviewOrchestrator:
    """Top-level entry point of the preview pipeline.

    Args:
        primary: High-fidelity renderer.
        fallback: Degraded local renderer.
        normalizer: Attachment normalizer.
        merger: Composite merger.
        cache: Preview cache (its lifecycle manager creates handles).
    """

    def __init__(
        self,
        primary: BasePrimaryRenderer,
        fallback: BaseFallbackRenderer,
        normalizer: AttachmentNormalizer,
        merger: CompositeMerger,
        cache: PreviewCache,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._normalizer = normalizer
        self._merger = merger
        self._cache = cache
        self._lifecycle = cache.lifecycle
        self._inflight: dict[str, GenerationRequest] = {}

    @property
    def cache(self) -> PreviewCache:
        return self._cache

    def in_flight(self, record_id: str) -> GenerationRequest | None:
        return self._inflight.get(record_id)

    def cancel(self, record_id: str, reason: str = "cancelled") -> bool:
        """Cancel the in-flight request for a record, if any."""
        request = self._inflight.get(record_id)
        if request is None:
            return False
        request.token.cancel(reason)
        return True

    async def generate(
        self,
        record: Record,
        view_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> PreviewResult:
        """Produce (or reuse) the preview for a record.

        Raises:
            GenerationCancelled: If the request was cancelled or superseded.
            PreviewUnavailableError: If both strategies failed.
        """
        signature = compute_signature(record)
        request = GenerationRequest(
            record_id=record.id,
            signature=signature,
            view_id=view_id,
            token=token if token is not None else CancellationToken(),
        )
        set_request_context(record.id, request.request_id, view_id)
        try:
            self._enter(request, GenerationStage.REQUEST_ISSUED)

            cached = self._cache.get(record.id, signature)
            if cached is not None:
                request.advance(GenerationStage.CACHED)
                logger.info("Preview cache hit for %s", record.id)
                return PreviewResult.from_entry(cached, request_id=request.request_id)

            previous = self._inflight.get(record.id)
            if previous is not None:
                logger.info("Superseding in-flight request %s", previous.request_id)
                previous.token.cancel("superseded")
            self._inflight[record.id] = request

            return await self._run(request, record)
        except GenerationCancelled as e:
            logger.debug("Request %s cancelled: %s", request.request_id, e)
            self._abandon(request)
            if not request.is_terminal:
                request.advance(GenerationStage.CANCELLED)
            raise
        except BaseException:
            self._abandon(request)
            raise
        finally:
            if self._inflight.get(record.id) is request:
                del self._inflight[record.id]
            clear_context()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(self, request: GenerationRequest, record: Record) -> PreviewResult:
        start = time.monotonic()
        token = request.token
        notices: list[str] = []

        base_kind: HandleKind = "primary"
        self._enter(request, GenerationStage.PRIMARY_ATTEMPT)
        data, primary_error = await self._try_primary(record.id, token)

        if data is not None:
            self._enter(request, GenerationStage.PRIMARY_SUCCEEDED)
        else:
            self._enter(request, GenerationStage.PRIMARY_FAILED_RECOVERABLE)
            if isinstance(primary_error, ConverterUnavailableError):
                logger.info("Primary converter unavailable, using fallback: %s", primary_error)
                notices.append(FALLBACK_NOTICE)
            else:
                logger.warning("Primary rendering failed, trying fallback: %s", primary_error)

            self._enter(request, GenerationStage.FALLBACK_ATTEMPT)
            data = await self._try_fallback(request, record.id, primary_error)
            self._enter(request, GenerationStage.FALLBACK_SUCCEEDED)
            base_kind = "fallback"

        base = self._create(request, data, base_kind, label=record.display_title)
        self._commit(request, primary=base)

        self._enter(request, GenerationStage.ATTACHMENT_COLLECTION)
        files = [f for req in record.requirements for f in req.files]
        normalized = await self._normalizer.normalize(files, token, owner=request.view_id)
        attachment_handles = [request.adopt(n.handle) for n in normalized]

        composite: Handle | None = None
        if attachment_handles:
            self._commit(request, temporaries=attachment_handles)
            self._enter(request, GenerationStage.MERGE)
            try:
                composite = request.adopt(
                    self._merger.merge(base, attachment_handles, owner=request.view_id)
                )
            except MergeError as e:
                logger.warning("Composite merge failed, delivering primary only: %s", e)

        self._commit(request, composite=composite, complete=True)
        request.advance(GenerationStage.CACHED)

        logger.info(
            "Preview ready for %s in %.2fs (%s, %d attachment(s), composite=%s)",
            record.id, time.monotonic() - start, base_kind,
            len(attachment_handles), composite is not None,
        )
        return PreviewResult(
            record_id=record.id,
            signature=request.signature,
            primary=base,
            composite=composite,
            used_fallback=base_kind == "fallback",
            attachment_count=len(attachment_handles),
            request_id=request.request_id,
            notices=notices,
        )

    async def _try_primary(
        self, record_id: str, token: CancellationToken
    ) -> tuple[bytes | None, Exception | None]:
        try:
            data = await token.guard(self._primary.render(record_id, token))
            count_pages(data)
            return data, None
        except GenerationCancelled:
            raise
        except Exception as e:  # every primary failure gets one fallback attempt
            return None, e

    async def _try_fallback(
        self,
        request: GenerationRequest,
        record_id: str,
        primary_error: Exception | None,
    ) -> bytes:
        token = request.token
        try:
            data = await token.guard(self._fallback.render(record_id, token))
            count_pages(data)
            return data
        except GenerationCancelled:
            raise
        except Exception as e:
            request.advance(GenerationStage.FALLBACK_FAILED)
            request.advance(GenerationStage.REPORTED)
            logger.error("Fallback rendering failed for %s: %s", record_id, e)
            raise PreviewUnavailableError(record_id, primary_error, e) from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(self, request: GenerationRequest, stage: GenerationStage) -> None:
        request.token.raise_if_cancelled()
        request.advance(stage)
        set_stage_context(stage.value)

    def _create(
        self, request: GenerationRequest, data: bytes, kind: HandleKind, label: str
    ) -> Handle:
        handle = self._lifecycle.create(
            data,
            kind=kind,
            page_count=count_pages(data),
            owner=request.view_id,
            label=label,
        )
        request.adopt(handle)
        return handle

    def _commit(self, request: GenerationRequest, **fields: object) -> None:
        """Write a stage to the cache, unless cancelled or outrun by a newer request."""
        request.token.raise_if_cancelled()
        accepted = self._cache.put(
            request.record_id,
            request.signature,
            generation=request.generation,
            **fields,  # type: ignore[arg-type]
        )
        if not accepted:
            request.token.cancel("superseded by a newer result")
            request.token.raise_if_cancelled()

    def _abandon(self, request: GenerationRequest) -> None:
        """Roll back staged cache writes and release the request's handles."""
        self._cache.discard(request.record_id, generation=request.generation)
        released = self._lifecycle.release_all(request.handles)
        if released:
            logger.debug(
                "Released %d handle(s) of abandoned request %s",
                len(released), request.request_id,
            )
