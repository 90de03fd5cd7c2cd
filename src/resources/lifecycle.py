# src/resources/lifecycle.py — v1
"""Resource lifecycle manager: the single place that decides what is retained.

Every handle produced by the pipeline is created and tracked here under an
owner (the view/session that asked for it). Handles referenced by a current
cache entry are *retained*: plain release requests for them are refused
until the cache itself supersedes or evicts the entry.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from permitpreview.resources.handle import Handle, HandleKind

if TYPE_CHECKING:
    from permitpreview.cache.models import CacheEntry

logger = logging.getLogger(__name__)


class ResourceLifecycleManager:
    """Tracks ephemeral handles and releases them exactly once.

    Args:
        spool_dir: Directory to mirror handle bytes into. None keeps
            handles in memory only.
    """

    def __init__(self, spool_dir: Path | None = None) -> None:
        self._spool_dir = spool_dir
        self._tracked: dict[str, tuple[Handle, str | None]] = {}
        # handle_id -> cache key (record id) of the entry retaining it
        self._retained: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Creation / tracking
    # ------------------------------------------------------------------

    def create(
        self,
        data: bytes,
        *,
        kind: HandleKind,
        page_count: int = 0,
        owner: str | None = None,
        label: str = "",
        media_type: str = "application/pdf",
    ) -> Handle:
        """Build a handle for generated bytes and track it under owner."""
        handle = Handle(
            data,
            kind=kind,
            media_type=media_type,
            page_count=page_count,
            label=label,
            spool_dir=self._spool_dir,
        )
        self.track(handle, owner)
        return handle

    def track(self, handle: Handle, owner: str | None = None) -> None:
        """Start tracking a handle. Re-tracking keeps the first owner."""
        if handle.handle_id not in self._tracked:
            self._tracked[handle.handle_id] = (handle, owner)

    def is_tracked(self, handle: Handle) -> bool:
        return handle.handle_id in self._tracked

    def is_retained(self, handle: Handle) -> bool:
        return handle.handle_id in self._retained

    @property
    def tracked_count(self) -> int:
        return len(self._tracked)

    def owned_by(self, owner: str) -> list[Handle]:
        """Live handles tracked for an owner."""
        return [h for h, o in self._tracked.values() if o == owner]

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(self, handle: Handle, *, force: bool = False) -> bool:
        """Release a handle unless a current cache entry retains it.

        Args:
            handle: Handle to release.
            force: Release even if retained (used by the cache when it
                supersedes or evicts the retaining entry).

        Returns:
            True if the handle was released by this call.
        """
        if not force and handle.handle_id in self._retained:
            logger.debug(
                "Refusing to release %r: retained by cache entry %s",
                handle, self._retained[handle.handle_id],
            )
            return False
        self._retained.pop(handle.handle_id, None)
        self._tracked.pop(handle.handle_id, None)
        released = handle.release()
        if released:
            logger.debug("Released %r", handle)
        return released

    def release_all(self, handles: list[Handle]) -> list[Handle]:
        """Release every non-retained handle; return those released."""
        return [h for h in handles if self.release(h)]

    def release_owner(self, owner: str) -> list[Handle]:
        """Release all handles tracked for an owner that no cache entry retains."""
        released = self.release_all(self.owned_by(owner))
        if released:
            logger.info("Released %d handle(s) for %s", len(released), owner)
        return released

    # ------------------------------------------------------------------
    # Cache-driven retention
    # ------------------------------------------------------------------

    def retain(self, entry: CacheEntry) -> None:
        """Mark every handle of a current cache entry as retained."""
        for handle in entry.handles():
            self.track(handle)
            self._retained[handle.handle_id] = entry.record_id

    def diff(self, old: CacheEntry | None, new: CacheEntry | None) -> list[Handle]:
        """Swap retention from old to new, releasing handles only old references.

        A handle reused across an incremental put (present in both entries)
        stays alive. Handles that only the superseded entry referenced are
        released unconditionally.

        Returns:
            Handles released by this diff.
        """
        keep = new.handle_ids() if new is not None else set()
        released: list[Handle] = []
        if old is not None:
            for handle in old.handles():
                if handle.handle_id in keep:
                    continue
                if self.release(handle, force=True):
                    released.append(handle)
        if new is not None:
            self.retain(new)
        if released:
            logger.debug(
                "Diff released %d superseded handle(s) for %s",
                len(released), (old or new).record_id,  # type: ignore[union-attr]
            )
        return released

    def shutdown(self) -> int:
        """Release everything tracked, retained or not. Returns count released."""
        count = 0
        for handle, _owner in list(self._tracked.values()):
            if self.release(handle, force=True):
                count += 1
        self._retained.clear()
        logger.info("Lifecycle manager shut down, released %d handle(s)", count)
        return count
