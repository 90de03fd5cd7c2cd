# src/rendering/renderer_factory.py — v1
"""Factory: instantiate the primary and fallback renderers from settings."""

from __future__ import annotations

from permitpreview.config.settings import Settings
from permitpreview.rendering.base_renderer import BaseFallbackRenderer, BasePrimaryRenderer


def create_primary_renderer(settings: Settings) -> BasePrimaryRenderer:
    """Build the high-fidelity HTTP converter client.

    An empty CONVERTER_URL yields a renderer that reports the engine as
    unavailable, so every request goes to the fallback.
    """
    from permitpreview.rendering.http_converter import HttpConverterRenderer

    return HttpConverterRenderer(
        url=settings.converter_url,
        token=settings.converter_token,
        timeout_s=settings.converter_timeout_s,
        unavailable_markers=settings.converter_unavailable_markers_list,
    )


def create_fallback_renderer(settings: Settings) -> BaseFallbackRenderer:
    """Build the local DOCX layout renderer."""
    from permitpreview.rendering.local_renderer import LocalDocxRenderer

    return LocalDocxRenderer(
        docx_url=settings.fallback_docx_url,
        token=settings.converter_token,
        page_width=settings.page_width_pt,
        page_height=settings.page_height_pt,
        margin=max(settings.page_margin_pt, 36.0),
        font_size=settings.fallback_font_size,
        timeout_s=settings.converter_timeout_s,
    )
