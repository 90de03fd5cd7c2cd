# src/cache/cache_factory.py — v1
"""Factory for the preview cache and its lifecycle manager.

The cache is process-wide state owned by whoever manages the application
session (see api/facade.py); tests build isolated instances here.
"""

from __future__ import annotations

from permitpreview.cache.preview_cache import PreviewCache
from permitpreview.config.settings import Settings
from permitpreview.resources.lifecycle import ResourceLifecycleManager


def create_preview_cache(settings: Settings | None = None) -> PreviewCache:
    """Instantiate a preview cache backed by a fresh lifecycle manager.

    Args:
        settings: Application settings. None keeps handles in memory.

    Returns:
        Empty PreviewCache.
    """
    spool_dir = None if settings is None else settings.spool_dir
    return PreviewCache(ResourceLifecycleManager(spool_dir=spool_dir))
