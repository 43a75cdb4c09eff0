"""
Playback delivery decisions: original file, pre-rendered MP4, or live transcode.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence, Union

from .errors import AccessDenied, NotFound, TranscodeFailure
from .logs import log

PRERENDERED_EXT = ".mp4"
PRERENDERED_FALLBACK_SUFFIX = "_1"


@dataclass(frozen=True)
class TranscodeParams:
    container: str = "mp4"
    # Fragmented MP4 so the response can be streamed while encoding
    movflags: str = "frag_keyframe+empty_moov"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    preset: str = "ultrafast"
    crf: int = 28
    pix_fmt: str = "yuv420p"
    max_height: int = 720

    def output_args(self) -> list[str]:
        return [
            "-f", self.container,
            "-c:v", self.video_codec,
            "-c:a", self.audio_codec,
            "-movflags", self.movflags,
            "-preset", self.preset,
            "-crf", str(int(self.crf)),
            "-pix_fmt", self.pix_fmt,
            "-vf", f"scale=-2:'min({int(self.max_height)},ih)'",
        ]


@dataclass(frozen=True)
class ServeOriginal:
    path: Path
    download: bool = False


@dataclass(frozen=True)
class ServePreRendered:
    path: Path
    download: bool = False


@dataclass(frozen=True)
class TranscodeOnTheFly:
    source: Path
    params: TranscodeParams = field(default_factory=TranscodeParams)
    download_name: Optional[str] = None


StreamDecision = Union[ServeOriginal, ServePreRendered, TranscodeOnTheFly]


def safe_resolve(root: Path, rel: str) -> Path:
    """Resolve `rel` under `root` (symlinks followed); it must land strictly inside root."""
    try:
        base = Path(root).resolve()
        target = (base / rel).resolve()
    except (OSError, ValueError) as e:
        raise AccessDenied("Access denied") from e
    if target == base:
        raise AccessDenied("Access denied")
    try:
        target.relative_to(base)
    except ValueError:
        raise AccessDenied("Access denied")
    return target


def find_prerendered(prerendered_dir: Optional[Path], stem: str) -> Optional[Path]:
    if prerendered_dir is None or not prerendered_dir.is_dir():
        return None
    for name in (f"{stem}{PRERENDERED_EXT}", f"{stem}{PRERENDERED_FALLBACK_SUFFIX}{PRERENDERED_EXT}"):
        candidate = prerendered_dir / name
        if candidate.is_file():
            return candidate
    return None


def resolve(
    library_root: Path,
    requested: str,
    *,
    download: bool = False,
    original: bool = False,
    prerendered_dir: Optional[Path] = None,
    params: Optional[TranscodeParams] = None,
) -> StreamDecision:
    target = safe_resolve(library_root, requested)
    if not target.is_file():
        raise NotFound("File not found")
    if original:
        log("stream", f"Serving original file: {requested} (Download: {download})")
        return ServeOriginal(target, download)
    stem = Path(requested).stem
    pre = find_prerendered(prerendered_dir, stem)
    if pre is not None:
        log("stream", f"Serving pre-generated MP4 for: {requested} (Download: {download})")
        return ServePreRendered(pre, download)
    log("stream", f"Starting transcode stream for: {requested} (No pre-generated MP4 found)")
    return TranscodeOnTheFly(
        target,
        params or TranscodeParams(),
        f"{stem}.mp4" if download else None,
    )


def transcode_command(
    decision: TranscodeOnTheFly,
    *,
    ffmpeg_bin: str = "ffmpeg",
    input_flags: Sequence[str] = (),
) -> list[str]:
    return [
        ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-nostdin",
        *input_flags,
        "-i", str(decision.source),
        *decision.params.output_args(),
        "pipe:1",
    ]


async def start_transcode(
    decision: TranscodeOnTheFly,
    *,
    ffmpeg_bin: str = "ffmpeg",
    input_flags: Sequence[str] = (),
) -> asyncio.subprocess.Process:
    cmd = transcode_command(decision, ffmpeg_bin=ffmpeg_bin, input_flags=input_flags)
    try:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TranscodeFailure(f"Failed to start ffmpeg for {decision.source.name}: {e}") from e


async def transcode_stream(
    proc: asyncio.subprocess.Process,
    label: str,
    *,
    chunk_size: int = 64 * 1024,
) -> AsyncIterator[bytes]:
    """
    Yield the transcoder's stdout as it is produced.
    A client going away closes/cancels this generator: the process is killed and
    nothing is logged as an error. Other failures are logged and the stream ends.
    """
    assert proc.stdout is not None and proc.stderr is not None
    stderr_task = asyncio.ensure_future(proc.stderr.read())
    finished = False
    try:
        while True:
            chunk = await proc.stdout.read(chunk_size)
            if not chunk:
                break
            yield chunk
        finished = True
    except (GeneratorExit, asyncio.CancelledError):
        log("stream", f"Transcode stream closed by client: {label}", logging.DEBUG)
        raise
    finally:
        if not finished:
            if proc.returncode is None:
                proc.kill()
            stderr_task.cancel()
    rc = await proc.wait()
    err = (await stderr_task).decode(errors="ignore").strip()
    if rc != 0:
        log("stream", f"Streaming error for {label}: ffmpeg exited with {rc}: {err[-1200:]}", logging.ERROR)
