"""Multi-clip hover preview ("montage") construction."""
from __future__ import annotations
import math
from pathlib import Path
from typing import Sequence

DEFAULT_CLIPS = 9
DEFAULT_CLIP_SECONDS = 2
SHORT_VIDEO_SECONDS = 20
SHORT_CLIPS = 5
SHORT_CLIP_SECONDS = 1
FALLBACK_CLIPS = 3


def montage_params(duration: float) -> tuple[int, int]:
    """Return (clip_count, clip_duration) for a source of `duration` seconds."""
    clip_count, clip_duration = DEFAULT_CLIPS, DEFAULT_CLIP_SECONDS
    if duration < SHORT_VIDEO_SECONDS:
        clip_count, clip_duration = SHORT_CLIPS, SHORT_CLIP_SECONDS
    if clip_count * clip_duration > duration:
        # Very short source: a few clips a quarter of the length each
        clip_count = FALLBACK_CLIPS
        clip_duration = max(1, int(math.floor(duration / 4)))
    return clip_count, clip_duration


def clip_starts(duration: float, clip_count: int) -> list[float]:
    step = float(duration) / (clip_count + 1)
    return [max(0.0, step * i) for i in range(1, clip_count + 1)]


def montage_filter(starts: Sequence[float], clip_duration: float, width: int) -> str:
    """
    Single filter graph: split the video stream once per clip, trim each branch,
    reset timestamps, scale to `width` keeping aspect, then concat video-only.
    """
    n = len(starts)
    split_labels = "".join(f"[v{i}]" for i in range(n))
    parts = [f"[0:v]split={n}{split_labels}"]
    for i, start in enumerate(starts):
        parts.append(
            f"[v{i}]trim=start={start:.3f}:duration={clip_duration},"
            f"setpts=PTS-STARTPTS,scale={int(width)}:-2[s{i}]"
        )
    concat_inputs = "".join(f"[s{i}]" for i in range(n))
    parts.append(f"{concat_inputs}concat=n={n}:v=1:a=0[outv]")
    return ";".join(parts)


def montage_command(
    source: Path,
    output: Path,
    duration: float,
    *,
    width: int = 320,
    crf: int = 32,
    ffmpeg_bin: str = "ffmpeg",
    input_flags: Sequence[str] = (),
    output_flags: Sequence[str] = (),
) -> list[str]:
    clip_count, clip_duration = montage_params(duration)
    graph = montage_filter(clip_starts(duration, clip_count), clip_duration, width)
    return [
        ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-nostdin", "-y",
        *input_flags,
        "-i", str(source),
        "-filter_complex", graph,
        "-map", "[outv]",
        "-an",
        "-c:v", "libx264", "-preset", "ultrafast", "-crf", str(int(crf)),
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
        *output_flags,
        str(output),
    ]
