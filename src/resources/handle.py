# src/resources/handle.py — v1
"""Handle: opaque reference to generated PDF output with explicit release.

A handle keeps its bytes in memory and, when a spool directory is
configured, mirrors them to a file a viewer or printer can open. Release
drops the bytes and deletes the file; it is idempotent.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

HandleKind = Literal["primary", "fallback", "attachment", "composite"]


class HandleReleasedError(RuntimeError):
    """Raised when reading from a handle that has already been released."""


class Handle:
    """Reference to one generated, page-bearing artifact."""

    def __init__(
        self,
        data: bytes,
        kind: HandleKind,
        media_type: str = "application/pdf",
        page_count: int = 0,
        label: str = "",
        spool_dir: Path | None = None,
    ) -> None:
        self.handle_id = uuid.uuid4().hex
        self.kind = kind
        self.media_type = media_type
        self.page_count = page_count
        self.label = label
        self.size = len(data)
        self._data: bytes | None = data
        self._released = False
        self.path: Path | None = None
        if spool_dir is not None:
            self.path = self._spool(data, Path(spool_dir).expanduser())

    def _spool(self, data: bytes, spool_dir: Path) -> Path:
        spool_dir.mkdir(parents=True, exist_ok=True)
        path = spool_dir / f"{self.kind}_{self.handle_id}.pdf"
        path.write_bytes(data)
        return path

    @property
    def released(self) -> bool:
        return self._released

    @property
    def uri(self) -> str:
        """File URI when spooled, otherwise an in-process reference."""
        if self.path is not None:
            return self.path.resolve().as_uri()
        return f"mem://{self.kind}/{self.handle_id}"

    def read(self) -> bytes:
        """Return the artifact bytes.

        Raises:
            HandleReleasedError: If the handle was released.
        """
        if self._released or self._data is None:
            raise HandleReleasedError(f"Handle {self.handle_id} ({self.kind}) was released")
        return self._data

    def release(self) -> bool:
        """Drop the bytes and delete the spooled file.

        Returns:
            True if this call released the handle, False if already released.
        """
        if self._released:
            return False
        self._released = True
        self._data = None
        if self.path is not None:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to delete spooled handle %s: %s", self.path, e)
        return True

    def __repr__(self) -> str:
        state = "released" if self._released else f"{self.page_count}p"
        return f"Handle({self.kind}, {self.handle_id[:8]}, {state})"
