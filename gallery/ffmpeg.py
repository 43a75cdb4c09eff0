"""Async wrappers around the ffmpeg / ffprobe executables."""
from __future__ import annotations
import asyncio
import json
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .errors import ProbeFailure
from .logs import log


def ffmpeg_available(binary: str = "ffmpeg") -> bool:
    """
    Return True if an ffmpeg executable is available on PATH (or via FFMPEG env).
    """
    try:
        cmd = os.environ.get("FFMPEG") or shutil.which(binary)
        return bool(cmd)
    except Exception:
        return False


def ffprobe_available(binary: str = "ffprobe") -> bool:
    try:
        cmd = os.environ.get("FFPROBE") or shutil.which(binary)
        return bool(cmd)
    except Exception:
        return False


@dataclass
class ProcResult:
    cmd: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes
    elapsed: float

    def stderr_tail(self, limit: int = 1200) -> str:
        err = self.stderr.decode(errors="ignore").strip()
        if len(err) > limit:
            err = "..." + err[-limit:]
        return err


async def run(cmd: list[str], *, timelimit: float = 0.0) -> ProcResult:
    """
    Run a subprocess to completion without blocking the event loop.
    If timelimit (>0) is given, kill the process once it is exceeded.
    Raises FileNotFoundError when the executable is missing.
    """
    t0 = time.time()
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        if timelimit and timelimit > 0:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=timelimit)
        else:
            out, err = await proc.communicate()
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise RuntimeError(f"subprocess timed out after {timelimit}s: {' '.join(cmd[:4])}...")
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
        raise
    elapsed = time.time() - t0
    log("ffmpeg", f"exec rc={proc.returncode} elapsed={elapsed:.3f}s cmd={' '.join(cmd[:6])}...")
    return ProcResult(cmd, int(proc.returncode or 0), out or b"", err or b"", elapsed)


def parse_probe_payload(payload: Any) -> dict[str, Any]:
    """
    Reduce ffprobe's -show_format -show_streams JSON to the fields we keep:
    duration from the format block, width/height/r_frame_rate from the first video stream.
    """
    if not isinstance(payload, dict) or not payload:
        raise ProbeFailure("invalid ffprobe json")
    fmt = payload.get("format") or {}
    duration: Optional[float]
    try:
        d = fmt.get("duration")
        duration = float(d) if d not in (None, "", "N/A") else None
    except (TypeError, ValueError):
        duration = None
    video = next(
        (s for s in (payload.get("streams") or []) if isinstance(s, dict) and s.get("codec_type") == "video"),
        None,
    )
    return {
        "duration": duration,
        "width": (video or {}).get("width"),
        "height": (video or {}).get("height"),
        "r_frame_rate": (video or {}).get("r_frame_rate"),
    }


async def probe(path: Path, *, binary: str = "ffprobe") -> dict[str, Any]:
    """Probe a media file; raise ProbeFailure when ffprobe is missing or fails."""
    cmd = [
        binary, "-v", "error",
        "-print_format", "json",
        "-show_format", "-show_streams",
        str(path),
    ]
    try:
        res = await run(cmd)
    except (FileNotFoundError, PermissionError) as e:
        raise ProbeFailure(f"ffprobe unavailable: {e}") from e
    if res.returncode != 0:
        raise ProbeFailure(res.stderr_tail() or f"ffprobe exited with {res.returncode}")
    try:
        payload = json.loads(res.stdout.decode(errors="ignore") or "{}")
    except ValueError as e:
        raise ProbeFailure(f"invalid ffprobe json: {e}") from e
    return parse_probe_payload(payload)
