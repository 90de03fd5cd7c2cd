# src/attachments/http_fetcher.py — v1
"""HTTP attachment fetcher using httpx.

Files live in object storage behind signed download URLs. Requests can be
routed through the portal's proxy endpoint (``?url=<encoded>``), and an
allowed-host list keeps the fetcher from being pointed at arbitrary hosts.
"""

from __future__ import annotations

import logging
from urllib.parse import quote, urlparse

import httpx

from permitpreview.attachments.base_fetcher import (
    AttachmentFetchError,
    BaseAttachmentFetcher,
    FetchedAttachment,
)
from permitpreview.pipeline.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class HttpAttachmentFetcher(BaseAttachmentFetcher):
    """Fetch attachments over HTTP(S).

    Args:
        proxy_url: Optional proxy endpoint; the reference is appended as
            the ``url`` query parameter.
        allowed_hosts: Hostnames references may point at. Empty = any.
        timeout_s: Per-request timeout.
        transport: Optional httpx transport (tests).
    """

    def __init__(
        self,
        proxy_url: str = "",
        allowed_hosts: list[str] | None = None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._proxy_url = proxy_url
        self._allowed_hosts = {h.lower() for h in (allowed_hosts or [])}
        self._timeout = timeout_s
        self._transport = transport

    def resolve_url(self, reference: str) -> str:
        """Validate a reference and return the URL to request.

        Raises:
            AttachmentFetchError: If the reference is malformed or its host
                is not allowed.
        """
        parsed = urlparse(reference)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise AttachmentFetchError(f"Unsupported attachment reference: {reference!r}")
        if self._allowed_hosts and parsed.hostname.lower() not in self._allowed_hosts:
            raise AttachmentFetchError(f"Host not allowed: {parsed.hostname}")
        if not self._proxy_url:
            return reference
        sep = "&" if "?" in self._proxy_url else "?"
        return f"{self._proxy_url}{sep}url={quote(reference, safe='')}"

    async def fetch(self, reference: str, token: CancellationToken) -> FetchedAttachment:
        url = self.resolve_url(reference)
        token.raise_if_cancelled()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.RequestError as e:
            raise AttachmentFetchError(f"Fetch failed for {reference}: {e}") from e

        if not response.is_success:
            raise AttachmentFetchError(
                f"Fetch returned HTTP {response.status_code} for {reference}"
            )

        content_type = response.headers.get("content-type", "")
        return FetchedAttachment(data=response.content, content_type=content_type)
