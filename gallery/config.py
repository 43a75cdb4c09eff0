from __future__ import annotations
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


# -----------------------------
# Env helpers
# -----------------------------
def _env_int(name: str, default: int) -> int:
    try:
        v = os.environ.get(name)
        return int(v) if v is not None and str(v).strip() != "" else int(default)
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        v = os.environ.get(name)
        return float(v) if v is not None and str(v).strip() != "" else float(default)
    except Exception:
        return float(default)


def _env_path(name: str, default: Path) -> Path:
    v = os.environ.get(name)
    p = Path(v).expanduser() if v else default
    return p.resolve()


def _media_exts() -> set[str]:
    """
    Allowed media extensions (lowercased with dot).
    Configure via MEDIA_EXTS env (comma-separated).
    """
    env = os.environ.get("MEDIA_EXTS")
    if env:
        out: set[str] = set()
        for part in env.split(","):
            s = part.strip().lower()
            if not s:
                continue
            if not s.startswith("."):
                s = "." + s
            out.add(s)
        if out:
            return out
    return {".mp4", ".webm", ".mov", ".mkv"}


def _ffmpeg_threads_flags() -> list[str]:
    """
    Build ffmpeg threading flags from env. When unset, return [].
    - FFMPEG_THREADS=auto -> ["-threads", "0"] (ffmpeg auto threads)
    - FFMPEG_THREADS=<int> -> ["-threads", str(int)]
    """
    v = os.environ.get("FFMPEG_THREADS")
    if not v:
        return []
    if str(v).strip().lower() == "auto":
        return ["-threads", "0"]
    try:
        n = int(str(v).strip())
        if n >= 0:
            return ["-threads", str(n)]
    except Exception:
        pass
    return []


def _ffmpeg_hwaccel_flags() -> list[str]:
    """
    Optional decoder hwaccel hint before -i via FFMPEG_HWACCEL env (e.g., 'auto', 'videotoolbox', 'vaapi').
    Only used when set to avoid compatibility issues on devices without support.
    """
    v = os.environ.get("FFMPEG_HWACCEL")
    if v:
        return ["-hwaccel", str(v)]
    return []


class Settings(BaseModel):
    """Runtime configuration; build from the environment with `Settings.from_env()`."""

    video_dir: Path
    mp4_dir: Path
    thumbnails_dir: Path
    cache_file: Path
    client_dist: Optional[Path] = None
    media_exts: set[str] = Field(default_factory=lambda: {".mp4", ".webm", ".mov", ".mkv"})
    scan_batch_size: int = 5
    preview_min_duration: float = 5.0
    thumbnail_width: int = 320
    thumbnail_quality: int = 8
    preview_width: int = 320
    preview_crf: int = 32
    transcode_max_height: int = 720
    transcode_crf: int = 28
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    ffmpeg_timelimit: float = 0.0
    ffmpeg_extra_input: list[str] = Field(default_factory=list)
    ffmpeg_extra_output: list[str] = Field(default_factory=list)
    host: str = "0.0.0.0"
    port: int = 3000

    @classmethod
    def from_env(cls, base: Optional[Path] = None) -> "Settings":
        base = Path(base or Path.cwd())
        return cls(
            video_dir=_env_path("VIDEO_PATH", base / "videos"),
            mp4_dir=_env_path("MP4_PATH", base / "mp4"),
            thumbnails_dir=_env_path("THUMBNAILS_DIR", base / "thumbnails"),
            cache_file=_env_path("METADATA_CACHE_FILE", base / "metadata_cache.json"),
            client_dist=_env_path("CLIENT_DIST", base / "client" / "dist"),
            media_exts=_media_exts(),
            scan_batch_size=max(1, _env_int("SCAN_BATCH_SIZE", 5)),
            preview_min_duration=_env_float("PREVIEW_MIN_DURATION", 5.0),
            thumbnail_width=max(16, _env_int("THUMBNAIL_WIDTH", 320)),
            # JPEG/MJPEG scale: 2(best)..31(worst)
            thumbnail_quality=max(2, min(31, _env_int("THUMBNAIL_QUALITY", 8))),
            preview_width=max(16, _env_int("PREVIEW_WIDTH", 320)),
            preview_crf=max(10, min(51, _env_int("PREVIEW_CRF_H264", 32))),
            transcode_max_height=max(144, _env_int("TRANSCODE_MAX_HEIGHT", 720)),
            transcode_crf=max(10, min(51, _env_int("TRANSCODE_CRF", 28))),
            ffmpeg_bin=os.environ.get("FFMPEG") or "ffmpeg",
            ffprobe_bin=os.environ.get("FFPROBE") or "ffprobe",
            ffmpeg_timelimit=max(0.0, _env_float("FFMPEG_TIMELIMIT", 0.0)),
            ffmpeg_extra_input=_ffmpeg_hwaccel_flags(),
            ffmpeg_extra_output=_ffmpeg_threads_flags(),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
        )
