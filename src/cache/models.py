# src/cache/models.py — v1
"""Cache domain models: CacheEntry.

An entry is valid only while its signature equals the signature of the
record's current state.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from permitpreview.resources.handle import Handle


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """Generated outputs for one record, keyed by record id."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    record_id: str
    signature: str | None
    generation: int
    primary: Handle | None = None
    composite: Handle | None = None
    temporaries: list[Handle] = Field(default_factory=list)
    complete: bool = False
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def handles(self) -> list[Handle]:
        """All handles referenced by this entry, in any role, without duplicates."""
        seen: dict[str, Handle] = {}
        for h in [self.primary, self.composite, *self.temporaries]:
            if h is not None:
                seen.setdefault(h.handle_id, h)
        return list(seen.values())

    def handle_ids(self) -> set[str]:
        return {h.handle_id for h in self.handles()}

    @property
    def deliverable(self) -> Handle | None:
        """Composite when present, otherwise the primary output."""
        return self.composite or self.primary
