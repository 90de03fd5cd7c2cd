# src/api/models.py — v1
"""API-level models returned to the rest of the application."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from permitpreview.cache.models import CacheEntry
from permitpreview.resources.handle import Handle


class PreviewResult(BaseModel):
    """Outcome of request_preview(): the primary artifact and, if any, the composite.

    "composite absent, primary present" is a valid terminal state: the
    record simply had no usable approved attachments.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    record_id: str
    signature: str | None
    primary: Handle
    composite: Handle | None = None
    from_cache: bool = False
    used_fallback: bool = False
    attachment_count: int = 0
    request_id: str | None = None
    notices: list[str] = Field(default_factory=list)

    @property
    def deliverable(self) -> Handle:
        """The artifact to show or print."""
        return self.composite or self.primary

    @classmethod
    def from_entry(cls, entry: CacheEntry, request_id: str | None = None) -> PreviewResult:
        if entry.primary is None:
            raise ValueError(f"Cache entry for {entry.record_id} has no primary output")
        return cls(
            record_id=entry.record_id,
            signature=entry.signature,
            primary=entry.primary,
            composite=entry.composite,
            from_cache=True,
            used_fallback=entry.primary.kind == "fallback",
            attachment_count=len(entry.temporaries),
            request_id=request_id,
        )
