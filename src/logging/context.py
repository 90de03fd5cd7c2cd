# src/logging/context.py — v1
"""Contextual logging support: attach record_id, request_id, view_id, stage to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per generation request.
_record_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "record_id", default=None
)
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_view_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "view_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    record_id: str | None = None
    request_id: str | None = None
    view_id: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        record_id=_record_id.get(),
        request_id=_request_id.get(),
        view_id=_view_id.get(),
        stage=_stage.get(),
    )


def set_request_context(record_id: str, request_id: str, view_id: str | None = None) -> None:
    """Set request-level context (called once per generation request)."""
    _record_id.set(record_id)
    _request_id.set(request_id)
    _view_id.set(view_id)


def set_stage_context(stage: str | None) -> None:
    """Set the current state-machine stage."""
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _record_id.set(None)
    _request_id.set(None)
    _view_id.set(None)
    _stage.set(None)
