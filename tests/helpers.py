from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from gallery.errors import ProbeFailure


class FakeProbe:
    """Stands in for ffprobe; durations keyed by file name."""

    def __init__(self, default: float = 8.0):
        self.default = default
        self.durations: dict[str, float | None] = {}
        self.fail: set[str] = set()
        self.crash: set[str] = set()
        self.calls: list[Path] = []

    async def __call__(self, path: Path) -> dict:
        self.calls.append(path)
        if path.name in self.fail:
            raise ProbeFailure("unreadable")
        if path.name in self.crash:
            raise RuntimeError("probe exploded")
        return {
            "duration": self.durations.get(path.name, self.default),
            "width": 1280,
            "height": 720,
            "r_frame_rate": "30000/1001",
        }


class RecordingRunner:
    """Fake generation job: records the job and writes a small output file."""

    def __init__(self, *, write: bool = True, gate: asyncio.Event | None = None, fail: bool = False):
        self.write = write
        self.gate = gate
        self.fail = fail
        self.calls: list = []

    async def __call__(self, job) -> None:
        self.calls.append(job)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("ffmpeg failed")
        if self.write:
            job.output_path.parent.mkdir(parents=True, exist_ok=True)
            job.output_path.write_bytes(b"generated")


def write_video(root: Path, name: str, size: int = 16) -> Path:
    p = root / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(b"0" * max(1, size))
    return p


def fake_ffmpeg(tmp_path: Path, body: str) -> str:
    """Executable stand-in for ffmpeg; `body` runs with the output path in `out`."""
    script = tmp_path / "fake-ffmpeg"
    script.write_text(
        f"#!{sys.executable}\n"
        "import sys, time\n"
        "out = sys.argv[-1]\n"
        f"{body}\n"
    )
    script.chmod(0o755)
    return str(script)
