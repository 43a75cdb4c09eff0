"""Library discovery and per-file asset summaries."""
from __future__ import annotations
import asyncio
import io
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import quote

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from .cache import MetadataCache, MetadataRecord
from .config import Settings
from .errors import AccessDenied, InvalidUpload
from .logs import log
from .queues import PreviewQueue, ThumbnailJob, ThumbnailQueue

FLAT_SEP = "__"
THUMBNAIL_SUFFIX = ".jpg"
PREVIEW_SUFFIX = "_preview_9.mp4"
THUMBNAILS_URL = "/thumbnails"
STREAM_URL = "/api/stream"


class AssetSummary(BaseModel):
    name: str
    url: str
    thumbnail: Optional[str] = None
    preview: Optional[str] = None
    size: int
    date: datetime
    duration: float = 0
    resolution: str = "Unknown"
    width: Optional[int] = None
    height: Optional[int] = None


def flatten(rel: str) -> str:
    """subdir/video.mp4 -> subdir__video.mp4"""
    return FLAT_SEP.join(PurePosixPath(rel.replace(os.sep, "/")).parts)


def _is_hidden(rel_parts: Iterable[str]) -> bool:
    return any(part.startswith(".") for part in rel_parts)


def iter_videos(root: Path, exts: Iterable[str]) -> List[str]:
    """Relative POSIX paths of all media files under root, hidden entries skipped, sorted."""
    allowed = {e.lower() for e in exts}
    if not root.is_dir():
        return []
    out: List[str] = []
    for p in root.rglob("*"):
        try:
            rel = p.relative_to(root)
        except ValueError:
            continue
        if _is_hidden(rel.parts):
            continue
        if p.suffix.lower() not in allowed or not p.is_file():
            continue
        out.append(rel.as_posix())
    out.sort()
    return out


def _mtime_ms(st: os.stat_result) -> int:
    return int(st.st_mtime_ns // 1_000_000)


class Library:
    """
    Walks the library root, consults the metadata cache, and feeds missing
    thumbnails/previews to the generation queues.
    """

    def __init__(
        self,
        settings: Settings,
        cache: MetadataCache,
        thumbnails: ThumbnailQueue,
        previews: PreviewQueue,
    ):
        self.settings = settings
        self.cache = cache
        self.thumbnails = thumbnails
        self.previews = previews

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        probe=None,
        thumbnail_runner=None,
        preview_runner=None,
    ) -> "Library":
        return cls(
            settings,
            MetadataCache(settings.cache_file, probe, ffprobe_bin=settings.ffprobe_bin),
            ThumbnailQueue.from_settings(settings, thumbnail_runner),
            PreviewQueue.from_settings(settings, preview_runner),
        )

    @property
    def root(self) -> Path:
        return self.settings.video_dir

    @property
    def thumbnails_dir(self) -> Path:
        return self.settings.thumbnails_dir

    def thumbnail_path(self, rel: str) -> Path:
        return self.thumbnails_dir / f"{flatten(rel)}{THUMBNAIL_SUFFIX}"

    def preview_path(self, rel: str) -> Path:
        return self.thumbnails_dir / f"{flatten(rel)}{PREVIEW_SUFFIX}"

    def needs_thumbnail(self, rel: str) -> bool:
        return not self.thumbnail_path(rel).exists()

    def needs_preview(self, rel: str, meta: MetadataRecord) -> bool:
        """Only sources longer than PREVIEW_MIN_DURATION get a preview."""
        if not meta.duration or meta.duration <= self.settings.preview_min_duration:
            return False
        return not self.preview_path(rel).exists()

    def queue_missing(
        self,
        rel: str,
        meta: MetadataRecord,
        *,
        thumbnail: bool = True,
        preview: bool = True,
    ) -> Tuple[bool, bool]:
        """Queue generation of whichever derived assets `rel` lacks; return (thumbnail, preview) admitted."""
        source = self.root / rel
        queued_thumbnail = queued_preview = False
        if thumbnail and self.needs_thumbnail(rel):
            queued_thumbnail = self.thumbnails.enqueue(ThumbnailJob(source, self.thumbnail_path(rel), rel))
        if preview and self.needs_preview(rel, meta):
            queued_preview = self.previews.enqueue(source, self.preview_path(rel), meta.duration)
        return queued_thumbnail, queued_preview

    async def list_assets(self) -> List[AssetSummary]:
        files = await asyncio.to_thread(iter_videos, self.root, self.settings.media_exts)
        log("scan", f"Found {len(files)} videos in {self.root}")
        batch_size = max(1, int(self.settings.scan_batch_size))
        videos: List[AssetSummary] = []
        for i in range(0, len(files), batch_size):
            batch = files[i:i + batch_size]
            results = await asyncio.gather(*(self._summarize(rel) for rel in batch))
            videos.extend(r for r in results if r is not None)
        return videos

    async def _summarize(self, rel: str) -> Optional[AssetSummary]:
        file_path = self.root / rel
        try:
            st = file_path.stat()
            flat = flatten(rel)
            thumbnail_path = self.thumbnail_path(rel)
            preview_path = self.preview_path(rel)
            thumbnail_url = f"{THUMBNAILS_URL}/{quote(flat)}{THUMBNAIL_SUFFIX}"
            preview_url = f"{THUMBNAILS_URL}/{quote(flat)}{PREVIEW_SUFFIX}"

            meta = await self.cache.get(file_path, st)

            has_preview = preview_path.exists()
            self.queue_missing(rel, meta)

            thumbnail: Optional[str] = None
            if thumbnail_path.exists():
                try:
                    thumbnail = f"{thumbnail_url}?t={_mtime_ms(thumbnail_path.stat())}"
                except OSError:
                    thumbnail = thumbnail_url

            return AssetSummary(
                name=rel,
                url=f"{STREAM_URL}?file={quote(rel, safe='')}",
                thumbnail=thumbnail,
                preview=preview_url if has_preview else None,
                size=st.st_size,
                date=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                duration=meta.duration or 0,
                resolution=meta.resolution,
                width=meta.width,
                height=meta.height,
            )
        except Exception as e:
            log("scan", f"Error processing file {rel}: {e}", logging.ERROR)
            return None

    def save_cover(self, video_name: str, data: bytes) -> str:
        """Store an uploaded cover image as the thumbnail for `video_name`; return its URL."""
        base = self.thumbnails_dir.resolve()
        dest = (base / f"{video_name}{THUMBNAIL_SUFFIX}").resolve()
        if dest.parent != base:
            raise AccessDenied("Access denied")
        if not data:
            raise InvalidUpload("No file uploaded")
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                rgb = img.convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidUpload(f"Not an image: {e}") from e
        base.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".tmp")
        rgb.save(tmp, format="JPEG", quality=90)
        tmp.replace(dest)
        log("upload", f"Thumbnail updated for: {video_name}")
        return f"{THUMBNAILS_URL}/{quote(video_name)}{THUMBNAIL_SUFFIX}?t={int(time.time() * 1000)}"

    def status(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "cache_entries": len(self.cache),
            "thumbnails_pending": self.thumbnails.pending,
            "previews_pending": self.previews.pending,
        }

    async def close(self) -> None:
        await self.thumbnails.close()
        await self.previews.close()
