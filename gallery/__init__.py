"""Asset derivation and delivery pipeline for the video gallery server."""
from __future__ import annotations

from .cache import MetadataCache, MetadataRecord
from .config import Settings
from .queues import PreviewQueue, ThumbnailQueue
from .scanner import AssetSummary, Library

__all__ = [
    "AssetSummary",
    "Library",
    "MetadataCache",
    "MetadataRecord",
    "PreviewQueue",
    "Settings",
    "ThumbnailQueue",
]
