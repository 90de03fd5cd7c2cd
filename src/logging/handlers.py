# src/logging/handlers.py — v1
"""Size-based rotating file handler for log files."""

from __future__ import annotations

import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

_SIZE_RE = re.compile(r"^(\d+)\s*(B|KB|MB|GB)?$", re.IGNORECASE)
_MULTIPLIERS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(size_str: str) -> int:
    """Parse a size string like '10MB' into bytes.

    A bare number is taken as bytes. Supported suffixes: B, KB, MB, GB
    (case-insensitive).
    """
    match = _SIZE_RE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    unit = (match.group(2) or "B").upper()
    return int(match.group(1)) * _MULTIPLIERS[unit]


def create_rotating_handler(
    log_file: str,
    rotation: str = "10MB",
    retention: int = 30,
) -> RotatingFileHandler:
    """Create a rotating file handler, creating parent directories.

    The file is opened lazily on first emit.
    """
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    return RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
        delay=True,
    )
