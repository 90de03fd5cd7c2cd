# tests/unit/pipeline/test_unit_orchestrator.py — v1
"""Tests for pipeline/orchestrator.py — cache gate, fallback, merge, cancellation."""

from __future__ import annotations

import asyncio

import pytest

from permitpreview.attachments.base_fetcher import FetchedAttachment
from permitpreview.composite.merger import MergeError
from permitpreview.core.models import AttachmentFile, Record, Requirement
from permitpreview.pipeline.cancellation import CancellationToken, GenerationCancelled
from permitpreview.pipeline.orchestrator import FALLBACK_NOTICE, PreviewUnavailableError
from permitpreview.pipeline.state import GenerationStage
from permitpreview.rendering.base_renderer import ConverterUnavailableError, RenderError

F1_URL = "https://files.example.com/f1.png"


@pytest.fixture
def orchestrator(service):
    return service.orchestrator


def _set_f1_status(record: Record, status: str) -> Record:
    req = record.requirements[0]
    f1 = req.files[0].model_copy(update={"status": status})
    return record.model_copy(update={"requirements": [req.model_copy(update={"files": [f1]})]})


def _record_with_pdfs(*names: str) -> Record:
    files = [
        AttachmentFile(
            id=name,
            status="approved",
            download_url=f"https://files.example.com/{name}.pdf",
            content_type="application/pdf",
        )
        for name in names
    ]
    return Record(id="rec_pdfs", status="approved", requirements=[Requirement(id="q", files=files)])


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_request_served_from_cache(self, orchestrator, primary, sample_record):
        first = await orchestrator.generate(sample_record)
        second = await orchestrator.generate(sample_record)

        assert primary.calls == ["rec_x"]
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.primary is first.primary
        assert second.composite is first.composite
        assert second.signature == first.signature

    @pytest.mark.asyncio
    async def test_fallback_result_also_cached(
        self, orchestrator, primary, fallback, sample_record
    ):
        primary.error = ConverterUnavailableError("spawn soffice ENOENT")
        await orchestrator.generate(sample_record)
        second = await orchestrator.generate(sample_record)
        assert len(primary.calls) == 1
        assert len(fallback.calls) == 1
        assert second.from_cache and second.used_fallback


class TestSignatureSensitivity:
    @pytest.mark.asyncio
    async def test_changed_field_forces_regeneration(
        self, orchestrator, primary, sample_record
    ):
        pending = _set_f1_status(sample_record, "pending")
        first = await orchestrator.generate(pending)
        assert first.composite is None

        approved = _set_f1_status(sample_record, "approved")
        second = await orchestrator.generate(approved)
        assert len(primary.calls) == 2
        assert second.from_cache is False
        assert second.composite is not None
        assert first.primary.released


class TestCancellationSafety:
    @pytest.mark.asyncio
    async def test_cancel_during_primary(self, orchestrator, primary, cache, sample_record):
        primary.gate = asyncio.Event()
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.generate(sample_record, token=token))
        await primary.started.wait()
        assert orchestrator.in_flight("rec_x").stage == GenerationStage.PRIMARY_ATTEMPT

        token.cancel("view closed")
        with pytest.raises(GenerationCancelled):
            await task
        assert primary.aborted == 1
        assert "rec_x" not in cache
        assert cache.lifecycle.tracked_count == 0
        assert orchestrator.in_flight("rec_x") is None

    @pytest.mark.asyncio
    async def test_cancel_during_attachments_rolls_back_staged_primary(
        self, orchestrator, fetcher, cache, sample_record
    ):
        fetcher.delays[F1_URL] = asyncio.Event()
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.generate(sample_record, token=token))
        await _until(lambda: fetcher.calls)

        staged = cache.peek("rec_x")
        assert staged is not None and staged.complete is False
        staged_primary = staged.primary

        token.cancel()
        with pytest.raises(GenerationCancelled):
            await task
        assert "rec_x" not in cache
        assert staged_primary.released
        assert cache.lifecycle.tracked_count == 0

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, orchestrator, primary, cache, sample_record):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(GenerationCancelled):
            await orchestrator.generate(sample_record, token=token)
        assert primary.calls == []
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cancel_helper(self, orchestrator, primary, sample_record):
        primary.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.generate(sample_record))
        await primary.started.wait()
        assert orchestrator.cancel("rec_x") is True
        assert orchestrator.cancel("unknown") is False
        with pytest.raises(GenerationCancelled):
            await task

    @pytest.mark.asyncio
    async def test_superseded_request_never_commits(
        self, orchestrator, primary, cache, sample_record
    ):
        primary.gate = asyncio.Event()
        older = asyncio.create_task(orchestrator.generate(sample_record))
        await primary.started.wait()

        newer = asyncio.create_task(orchestrator.generate(sample_record))
        with pytest.raises(GenerationCancelled, match="superseded"):
            await older

        primary.gate.set()
        result = await newer
        entry = cache.get("rec_x", result.signature)
        assert entry is not None
        assert entry.primary is result.primary
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_late_stale_write_rejected(self, orchestrator, cache, sample_record):
        result = await orchestrator.generate(sample_record)
        entry = cache.peek("rec_x")
        stale = cache.lifecycle.create(b"%PDF-stale", kind="primary")
        accepted = cache.put(
            "rec_x", result.signature, generation=entry.generation - 1, primary=stale
        )
        assert accepted is False
        assert cache.peek("rec_x").primary is result.primary


class TestMergeOrdering:
    @pytest.mark.asyncio
    async def test_primary_then_attachments_in_record_order(
        self, orchestrator, fetcher, pdf_factory, page_texts
    ):
        fetcher.responses["https://files.example.com/A.pdf"] = FetchedAttachment(
            pdf_factory("A-1", "A-2"), "application/pdf"
        )
        fetcher.responses["https://files.example.com/B.pdf"] = FetchedAttachment(
            pdf_factory("B-1"), "application/pdf"
        )
        # B resolves first; order must still follow the record
        gate = asyncio.Event()
        fetcher.delays["https://files.example.com/A.pdf"] = gate
        task = asyncio.create_task(orchestrator.generate(_record_with_pdfs("A", "B")))
        await _until(lambda: len(fetcher.calls) == 2)
        await asyncio.sleep(0)
        gate.set()
        result = await task

        assert result.attachment_count == 2
        assert page_texts(result.composite.read()) == ["FORM-1", "FORM-2", "A-1", "A-2", "B-1"]
        assert result.deliverable is result.composite

    @pytest.mark.asyncio
    async def test_no_attachments_no_composite(self, orchestrator, cache, bare_record):
        result = await orchestrator.generate(bare_record)
        assert result.composite is None
        assert result.deliverable is result.primary
        entry = cache.get("rec_bare", result.signature)
        assert entry.complete is True
        assert entry.composite is None

    @pytest.mark.asyncio
    async def test_failed_attachment_omitted(self, orchestrator, fetcher, pdf_factory, page_texts):
        fetcher.responses["https://files.example.com/B.pdf"] = FetchedAttachment(
            pdf_factory("B-1"), "application/pdf"
        )
        result = await orchestrator.generate(_record_with_pdfs("A", "B"))
        assert result.attachment_count == 1
        assert page_texts(result.composite.read()) == ["FORM-1", "FORM-2", "B-1"]

    @pytest.mark.asyncio
    async def test_merge_failure_delivers_primary(self, orchestrator, cache, sample_record, monkeypatch):
        def broken_merge(*args, **kwargs):
            raise MergeError("corrupt input")

        monkeypatch.setattr(orchestrator._merger, "merge", broken_merge)
        result = await orchestrator.generate(sample_record)
        assert result.composite is None
        assert result.deliverable is result.primary
        assert cache.get("rec_x", result.signature) is not None


class TestFallback:
    @pytest.mark.asyncio
    async def test_engine_unavailable_triggers_fallback(
        self, orchestrator, primary, fallback, sample_record, page_texts
    ):
        primary.error = ConverterUnavailableError("Converter unavailable: spawn soffice ENOENT")
        result = await orchestrator.generate(sample_record)

        assert fallback.calls == ["rec_x"]
        assert result.used_fallback is True
        assert result.primary.kind == "fallback"
        assert result.notices == [FALLBACK_NOTICE]
        assert page_texts(result.composite.read())[0] == "LOCAL-1"

    @pytest.mark.asyncio
    async def test_other_primary_failure_also_tries_fallback(
        self, orchestrator, primary, fallback, bare_record
    ):
        primary.error = RenderError("Converter returned HTTP 500: template missing")
        result = await orchestrator.generate(bare_record)
        assert fallback.calls == ["rec_bare"]
        assert result.used_fallback is True
        assert result.notices == []

    @pytest.mark.asyncio
    async def test_invalid_primary_output_tries_fallback(
        self, orchestrator, primary, fallback, bare_record
    ):
        primary.result = b"<html>not a pdf</html>"
        result = await orchestrator.generate(bare_record)
        assert result.used_fallback is True
        assert fallback.calls == ["rec_bare"]
        assert result.primary.kind == "fallback"

    @pytest.mark.asyncio
    async def test_both_fail(self, orchestrator, primary, fallback, cache, sample_record):
        primary.error = ConverterUnavailableError("engine not found")
        fallback.error = RenderError("No DOCX export URL configured")
        with pytest.raises(PreviewUnavailableError) as exc_info:
            await orchestrator.generate(sample_record)

        err = exc_info.value
        assert err.record_id == "rec_x"
        assert isinstance(err.primary_error, ConverterUnavailableError)
        assert isinstance(err.fallback_error, RenderError)
        assert len(cache) == 0
        assert cache.lifecycle.tracked_count == 0

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, orchestrator, primary, fallback, bare_record):
        primary.error = RenderError("down")
        fallback.error = RenderError("down too")
        with pytest.raises(PreviewUnavailableError):
            await orchestrator.generate(bare_record)
        fallback.error = None
        result = await orchestrator.generate(bare_record)
        assert result.used_fallback is True
        assert len(fallback.calls) == 2

    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback(self, orchestrator, fallback, bare_record):
        result = await orchestrator.generate(bare_record)
        assert fallback.calls == []
        assert result.used_fallback is False
        assert result.primary.kind == "primary"


class TestNoPrematureRelease:
    @pytest.mark.asyncio
    async def test_other_record_does_not_release_cached_handles(
        self, orchestrator, cache, sample_record, bare_record
    ):
        x = await orchestrator.generate(sample_record)
        y = await orchestrator.generate(bare_record)

        entry = cache.get("rec_x", x.signature)
        assert entry is not None
        assert not any(h.released for h in entry.handles())
        assert not y.primary.released

    @pytest.mark.asyncio
    async def test_concurrent_generations_of_different_records(
        self, orchestrator, cache, sample_record, bare_record
    ):
        x, y = await asyncio.gather(
            orchestrator.generate(sample_record),
            orchestrator.generate(bare_record),
        )
        for result in (x, y):
            entry = cache.get(result.record_id, result.signature)
            assert entry is not None
            assert not any(h.released for h in entry.handles())

    @pytest.mark.asyncio
    async def test_cached_handles_survive_view_release(self, orchestrator, cache, sample_record):
        result = await orchestrator.generate(sample_record, view_id="view_1")
        released = cache.lifecycle.release_owner("view_1")
        assert released == []
        assert not result.deliverable.released


class TestExampleScenario:
    @pytest.mark.asyncio
    async def test_rejecting_attachment_drops_its_page(
        self, orchestrator, primary, cache, sample_record, page_texts
    ):
        first = await orchestrator.generate(sample_record)
        assert first.primary.page_count == 2
        assert first.composite is not None
        assert first.composite.page_count == 3
        assert page_texts(first.composite.read())[:2] == ["FORM-1", "FORM-2"]
        assert cache.get("rec_x", first.signature).composite is first.composite

        rejected = _set_f1_status(sample_record, "rejected")
        second = await orchestrator.generate(rejected)

        assert len(primary.calls) == 2
        assert second.signature != first.signature
        assert second.composite is None
        assert second.deliverable.page_count == 2
        assert first.composite.released
        assert cache.get("rec_x", first.signature) is None
        assert cache.get("rec_x", second.signature) is not None
