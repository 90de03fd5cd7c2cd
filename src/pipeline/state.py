# src/pipeline/state.py — v1
"""Per-request generation state: stage enum and GenerationRequest.

A GenerationRequest lives from the moment a caller asks for a preview
until the result is delivered, cancelled or superseded. It owns every
handle it creates until those handles are committed to the cache.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, field
from enum import Enum

from permitpreview.pipeline.cancellation import CancellationToken
from permitpreview.resources.handle import Handle


class GenerationStage(str, Enum):
    IDLE = "idle"
    REQUEST_ISSUED = "request_issued"
    PRIMARY_ATTEMPT = "primary_attempt"
    PRIMARY_SUCCEEDED = "primary_succeeded"
    PRIMARY_FAILED_RECOVERABLE = "primary_failed_recoverable"
    FALLBACK_ATTEMPT = "fallback_attempt"
    FALLBACK_SUCCEEDED = "fallback_succeeded"
    FALLBACK_FAILED = "fallback_failed"
    ATTACHMENT_COLLECTION = "attachment_collection"
    MERGE = "merge"
    CACHED = "cached"
    REPORTED = "reported"
    CANCELLED = "cancelled"


TERMINAL_STAGES = frozenset(
    {GenerationStage.CACHED, GenerationStage.REPORTED, GenerationStage.CANCELLED}
)

# Process-wide, strictly increasing: later requests always win cache writes.
_generation_counter = itertools.count(1)


def next_generation() -> int:
    return next(_generation_counter)


@dataclass
class GenerationRequest:
    """One in-flight preview generation."""

    record_id: str
    signature: str | None
    view_id: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)
    generation: int = field(default_factory=next_generation)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    stage: GenerationStage = GenerationStage.IDLE
    handles: list[Handle] = field(default_factory=list)
    history: list[GenerationStage] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def advance(self, stage: GenerationStage) -> None:
        """Move to the next stage; terminal stages are final."""
        if self.is_terminal:
            raise RuntimeError(
                f"Request {self.request_id} already {self.stage.value}, cannot enter {stage.value}"
            )
        self.stage = stage
        self.history.append(stage)

    def adopt(self, handle: Handle | None) -> Handle | None:
        """Record a handle created on behalf of this request."""
        if handle is not None:
            self.handles.append(handle)
        return handle
