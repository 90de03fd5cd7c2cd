# src/records/source.py — v1
"""Record sources: where the pipeline reads application records from.

Records are owned by the surrounding application; the pipeline only reads
them. A source is asked for the current state of a record each time a
preview is requested so that the signature always reflects the latest
fields.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from permitpreview.core.models import Record

logger = logging.getLogger(__name__)


class RecordNotFoundError(LookupError):
    """The requested record is unknown to the record source."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class BaseRecordSource(ABC):
    """Abstract read-only access to application records."""

    @abstractmethod
    async def get(self, record_id: str) -> Record | None:
        """Return the current state of a record, or None if unknown."""

    async def require(self, record_id: str) -> Record:
        """Like get(), but raise RecordNotFoundError instead of returning None."""
        record = await self.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record


class InMemoryRecordSource(BaseRecordSource):
    """Records held in a dict; put() replaces the stored state."""

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._records: dict[str, Record] = {r.id: r for r in records}

    async def get(self, record_id: str) -> Record | None:
        return self._records.get(record_id)

    def put(self, record: Record) -> None:
        self._records[record.id] = record

    def ids(self) -> list[str]:
        return list(self._records)


class JsonFileRecordSource(BaseRecordSource):
    """Records read from a JSON file.

    The file holds either a list of records or an object mapping record id
    to record. It is re-read on every get() so edits between two previews
    are picked up.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, record_id: str) -> Record | None:
        return self.load().get(record_id)

    def load(self) -> dict[str, Record]:
        """Parse the whole file into records keyed by id.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is not valid JSON or a record is malformed.
        """
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid records file {self._path}: {e}") from e

        items: list[Any]
        if isinstance(raw, dict):
            items = [
                {"id": key, **value} if isinstance(value, dict) and "id" not in value else value
                for key, value in raw.items()
            ]
        elif isinstance(raw, list):
            items = raw
        else:
            raise ValueError(f"Records file {self._path} must hold a list or an object")

        records: dict[str, Record] = {}
        for index, item in enumerate(items):
            try:
                record = Record.model_validate(item)
            except ValidationError as e:
                raise ValueError(f"Malformed record #{index} in {self._path}: {e}") from e
            records[record.id] = record
        logger.debug("Loaded %d record(s) from %s", len(records), self._path)
        return records
