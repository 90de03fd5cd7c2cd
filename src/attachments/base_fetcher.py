# src/attachments/base_fetcher.py — v1
"""Abstract attachment retrieval interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from permitpreview.pipeline.cancellation import CancellationToken


class AttachmentFetchError(Exception):
    """A single attachment could not be retrieved."""


@dataclass(frozen=True)
class FetchedAttachment:
    """Raw attachment bytes with the content type reported by the source."""

    data: bytes
    content_type: str = ""


class BaseAttachmentFetcher(ABC):
    """Unified interface for attachment retrieval backends."""

    @abstractmethod
    async def fetch(self, reference: str, token: CancellationToken) -> FetchedAttachment:
        """Retrieve the attachment behind a retrieval reference (download URL).

        Raises:
            AttachmentFetchError: If the attachment cannot be retrieved.
        """
