"""Probe metadata cache keyed by file fingerprint (path, mtime, size)."""
from __future__ import annotations
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from . import ffmpeg
from .errors import ProbeFailure
from .logs import log

ProbeFn = Callable[[Path], Awaitable[Dict[str, Any]]]

_RATIONAL_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*(?:/\s*([0-9]+(?:\.[0-9]+)?)\s*)?$")


class MetadataRecord(BaseModel):
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None

    @property
    def resolution(self) -> str:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return "Unknown"


def parse_frame_rate(text: Any) -> Optional[float]:
    """Parse ffprobe's "N/D" frame rate (or a bare number). Returns None when malformed."""
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text) if text > 0 else None
    if not isinstance(text, str):
        return None
    m = _RATIONAL_RE.match(text)
    if not m:
        return None
    num = float(m.group(1))
    den = float(m.group(2)) if m.group(2) is not None else 1.0
    if den == 0:
        return None
    return num / den


def fingerprint(path: Path, stats: os.stat_result) -> str:
    mtime_ms = int(stats.st_mtime_ns // 1_000_000)
    return f"{path}_{mtime_ms}_{stats.st_size}"


def _int_or_none(v: Any) -> Optional[int]:
    try:
        return int(v) if v is not None else None
    except (TypeError, ValueError):
        return None


def record_from_probe(info: Dict[str, Any]) -> MetadataRecord:
    return MetadataRecord(
        duration=info.get("duration"),
        width=_int_or_none(info.get("width")),
        height=_int_or_none(info.get("height")),
        fps=parse_frame_rate(info.get("r_frame_rate")),
    )


class MetadataCache:
    """
    Memoizes probe results. Entries are never mutated or evicted: a changed file
    simply yields a new fingerprint. Every insert rewrites the whole snapshot.
    """

    def __init__(self, path: Path, probe: Optional[ProbeFn] = None, *, ffprobe_bin: str = "ffprobe"):
        self.path = Path(path)
        self._entries: Dict[str, MetadataRecord] = {}
        if probe is None:
            async def probe(p: Path) -> Dict[str, Any]:
                return await ffmpeg.probe(p, binary=ffprobe_bin)
        self.probe: ProbeFn = probe
        self.load()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log("cache", f"Failed to load metadata cache: {e}", logging.ERROR)
            return
        if not isinstance(raw, dict):
            log("cache", f"Ignoring metadata cache with unexpected shape: {self.path}", logging.WARNING)
            return
        for key, value in raw.items():
            try:
                self._entries[str(key)] = MetadataRecord.model_validate(value)
            except ValidationError:
                continue
        log("cache", f"Loaded metadata cache with {len(self._entries)} entries")

    def save(self) -> None:
        """Write the snapshot atomically (tmp file + replace)."""
        data = {k: v.model_dump() for k, v in self._entries.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            log("cache", f"Failed to save metadata cache: {e}", logging.ERROR)

    async def get(self, file_path: Path, stats: os.stat_result) -> MetadataRecord:
        key = fingerprint(file_path, stats)
        hit = self._entries.get(key)
        if hit is not None:
            return hit
        try:
            record = record_from_probe(await self.probe(file_path))
        except ProbeFailure as e:
            log("cache", f"probe failed path={file_path}: {e.message}", logging.WARNING)
            return MetadataRecord()
        if record.duration:
            self._entries[key] = record
            self.save()
        return record
