# src/rendering/base_renderer.py — v1
"""Abstract strategies for producing the application-form PDF.

The primary strategy is a high-fidelity external converter; the fallback
is a degraded local renderer. Both are black boxes to the orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from permitpreview.pipeline.cancellation import CancellationToken


class RenderError(Exception):
    """A whole-document rendering strategy failed."""


class ConverterUnavailableError(RenderError):
    """The high-fidelity converter is structurally unavailable (e.g. engine not found).

    Recoverable: the orchestrator falls back silently and surfaces a
    one-time advisory.
    """


class BasePrimaryRenderer(ABC):
    """High-fidelity document conversion."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def render(self, record_id: str, token: CancellationToken) -> bytes:
        """Return PDF bytes for the record's application form.

        Raises:
            ConverterUnavailableError: Converter absent or misconfigured.
            RenderError: Any other conversion failure.
        """


class BaseFallbackRenderer(ABC):
    """Degraded, local document rendering."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def render(self, record_id: str, token: CancellationToken) -> bytes:
        """Return PDF bytes for the record's application form.

        Raises:
            RenderError: If local rendering fails.
        """
