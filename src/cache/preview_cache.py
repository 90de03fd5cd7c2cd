# src/cache/preview_cache.py — v1
"""Signature-gated preview cache, keyed by record id.

Entries are built in stages (primary output first, composite later), so
put() merges into the entry written by the same request instead of
overwriting it. Every accepted put hands the previous and next entry to the
lifecycle manager, which releases whatever the new entry no longer
references. Writes from an older generation than the stored entry are
rejected so a late, superseded request can never overwrite a newer result.

All methods are synchronous: between two awaits of the event loop a
cache mutation runs to completion, so writes for one key never interleave.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from permitpreview.cache.models import CacheEntry
from permitpreview.resources.handle import Handle
from permitpreview.resources.lifecycle import ResourceLifecycleManager

logger = logging.getLogger(__name__)

_UNSET: object = object()


class PreviewCache:
    """Process-wide cache of generated previews.

    Args:
        lifecycle: Manager that owns retention and release of handles.
    """

    def __init__(self, lifecycle: ResourceLifecycleManager) -> None:
        self._lifecycle = lifecycle
        self._entries: dict[str, CacheEntry] = {}

    @property
    def lifecycle(self) -> ResourceLifecycleManager:
        return self._lifecycle

    def get(self, record_id: str, signature: str | None) -> CacheEntry | None:
        """Return the complete entry for record_id if its signature matches.

        A signature mismatch evicts the stale entry and releases its handles.
        A matching but incomplete entry is a miss and is left untouched.
        """
        entry = self._entries.get(record_id)
        if entry is None:
            return None
        if entry.signature != signature:
            logger.info("Stale preview for %s, evicting", record_id)
            self._evict(record_id)
            return None
        if not entry.complete:
            return None
        return entry

    def peek(self, record_id: str) -> CacheEntry | None:
        """Return the stored entry without signature checks."""
        return self._entries.get(record_id)

    def put(
        self,
        record_id: str,
        signature: str | None,
        *,
        generation: int,
        primary: Handle | None | object = _UNSET,
        composite: Handle | None | object = _UNSET,
        temporaries: list[Handle] | object = _UNSET,
        complete: bool | None = None,
    ) -> bool:
        """Store (part of) an entry for record_id.

        Fields left unset keep their value from the existing entry when the
        write belongs to the same signature and generation; otherwise a new
        entry is started.

        Returns:
            False if the write was rejected because a newer generation
            already committed for this record.
        """
        existing = self._entries.get(record_id)
        if existing is not None and existing.generation > generation:
            logger.info(
                "Rejected stale write for %s (generation %d < %d)",
                record_id, generation, existing.generation,
            )
            return False

        same_stage_chain = (
            existing is not None
            and existing.signature == signature
            and existing.generation == generation
        )
        base = existing if same_stage_chain else None

        entry = CacheEntry(
            record_id=record_id,
            signature=signature,
            generation=generation,
            primary=_pick(primary, base.primary if base else None),
            composite=_pick(composite, base.composite if base else None),
            temporaries=list(_pick(temporaries, base.temporaries if base else [])),
            complete=complete if complete is not None else (base.complete if base else False),
            created_at=base.created_at if base else datetime.now(timezone.utc),
        )
        self._entries[record_id] = entry
        self._lifecycle.diff(existing, entry)
        return True

    def discard(self, record_id: str, generation: int | None = None) -> bool:
        """Remove the entry for record_id and release its handles.

        Args:
            generation: Only discard if the entry was written by this
                generation (rollback of a cancelled request).
        """
        entry = self._entries.get(record_id)
        if entry is None:
            return False
        if generation is not None and entry.generation != generation:
            return False
        self._evict(record_id)
        return True

    def clear(self) -> None:
        """Drop every entry, releasing all cached handles."""
        for record_id in list(self._entries):
            self._evict(record_id)

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def _evict(self, record_id: str) -> None:
        entry = self._entries.pop(record_id, None)
        if entry is not None:
            self._lifecycle.diff(entry, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._entries


def _pick(value: object, fallback: object) -> object:
    return fallback if value is _UNSET else value
