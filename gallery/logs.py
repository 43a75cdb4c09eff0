"""Category-gated application logging.

Set LOG_ALL=0 to disable all categories unless explicitly enabled, LOG_ALL=1
(default) to enable all unless explicitly disabled. Per-category env vars
override: LOG_SCAN, LOG_CACHE, LOG_THUMBNAIL, LOG_PREVIEW, LOG_STREAM,
LOG_UPLOAD, LOG_FFMPEG. Values: 1 enable, 0 disable.
"""
from __future__ import annotations
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger("gallery")

_FMT = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATEFMT = "%H:%M:%S"


def _log_enabled(cat: str) -> bool:
    try:
        base = os.environ.get("LOG_ALL", "1")
        base_on = str(base).lower() not in ("0", "false", "no")
        specific = os.environ.get(f"LOG_{cat.upper()}")
        if specific is not None:
            return str(specific).lower() in ("1", "true", "yes")
        return base_on
    except Exception:
        return True


def log(cat: str, msg: str, level: int = logging.INFO) -> None:
    """Emit an application log line for a given category.

    Errors are always emitted; category switches only silence INFO/DEBUG noise.
    """
    if level < logging.WARNING and not _log_enabled(cat):
        return
    logger.log(level, "[%s] %s", cat, msg)


def _daily_log_path(log_dir: Path) -> Path:
    return log_dir / f"{time.strftime('%Y-%m-%d')}.log"


def _log_uncaught(exc_type, exc, tb) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("CRITICAL ERROR (uncaught): %s", exc, exc_info=(exc_type, exc, tb))


def configure_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> None:
    """Install console (and optional per-day file) handlers on the `gallery` logger."""
    if log_dir is None and os.environ.get("LOG_DIR"):
        log_dir = Path(os.environ["LOG_DIR"]).expanduser()
    logger.setLevel(level)
    if not any(getattr(h, "_gallery", False) for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_FMT, _DATEFMT))
        console._gallery = True  # type: ignore[attr-defined]
        logger.addHandler(console)
        if log_dir is not None:
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                fh = logging.FileHandler(_daily_log_path(log_dir), encoding="utf-8")
                fh.setFormatter(logging.Formatter(_FMT, _DATEFMT))
                fh._gallery = True  # type: ignore[attr-defined]
                logger.addHandler(fh)
            except OSError as e:
                logger.error("Failed to open log file in %s: %s", log_dir, e)
        logger.propagate = False
    sys.excepthook = _log_uncaught
