"""
Background generation lanes for thumbnails and montage previews.

Each queue is a FIFO backlog drained by a single worker task on the event loop,
so at most one job per queue runs at a time. An in-flight set keyed by output
path covers both queued and executing jobs; submitting an output that is
already in flight is a no-op. Failures are logged and the worker moves on.
A job that does not finish cleanly (ffmpeg error, time limit, shutdown) leaves
no output behind, so the next listing queues it again.
"""
from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Deque, Generic, Optional, Sequence, Set, TypeVar

from . import ffmpeg
from .config import Settings
from .errors import GenerationFailure
from .logs import log
from .montage import montage_command


@dataclass(frozen=True)
class ThumbnailJob:
    source_path: Path
    output_path: Path
    label: str


@dataclass(frozen=True)
class PreviewJob:
    source_path: Path
    output_path: Path
    duration: float


J = TypeVar("J", ThumbnailJob, PreviewJob)


class SerialJobQueue(ABC, Generic[J]):
    category = "queue"
    empty_output_message = "ffmpeg wrote no output"

    def __init__(
        self,
        runner: Optional[Callable[[J], Awaitable[None]]] = None,
        *,
        ffmpeg_bin: str = "ffmpeg",
        input_flags: Sequence[str] = (),
        output_flags: Sequence[str] = (),
        timelimit: float = 0.0,
    ):
        self._backlog: Deque[J] = deque()
        self._in_flight: Set[str] = set()
        self._worker: Optional[asyncio.Task] = None
        self.runner: Callable[[J], Awaitable[None]] = runner or self._execute
        self.ffmpeg_bin = ffmpeg_bin
        self.input_flags = list(input_flags)
        self.output_flags = list(output_flags)
        self.timelimit = timelimit

    @property
    def pending(self) -> int:
        """Jobs queued or executing."""
        return len(self._in_flight)

    def __contains__(self, output_path: object) -> bool:
        return str(output_path) in self._in_flight

    def submit(self, job: J) -> bool:
        key = str(job.output_path)
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        self._backlog.append(job)
        self._kick()
        return True

    def _kick(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        loop = asyncio.get_running_loop()
        self._worker = loop.create_task(self._drain(), name=f"{self.category}-worker")

    async def _drain(self) -> None:
        while self._backlog:
            job = self._backlog.popleft()
            try:
                await self._run_one(job)
            finally:
                self._in_flight.discard(str(job.output_path))

    async def _run_one(self, job: J) -> None:
        try:
            await self.runner(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed(job, e)
        else:
            self._succeeded(job)

    @abstractmethod
    def _succeeded(self, job: J) -> None: ...

    @abstractmethod
    def _failed(self, job: J, exc: Exception) -> None: ...

    @abstractmethod
    def command(self, job: J) -> list[str]:
        """ffmpeg argv producing `job.output_path`."""

    async def _execute(self, job: J) -> None:
        job.output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            try:
                res = await ffmpeg.run(self.command(job), timelimit=self.timelimit)
            except FileNotFoundError as e:
                raise GenerationFailure(f"ffmpeg unavailable: {e}") from e
            if res.returncode != 0:
                raise GenerationFailure(res.stderr_tail() or f"ffmpeg exited with {res.returncode}")
            if not job.output_path.exists() or job.output_path.stat().st_size == 0:
                raise GenerationFailure(self.empty_output_message)
        except BaseException:
            # A partial file would be listed as finished and never regenerated
            job.output_path.unlink(missing_ok=True)
            raise

    async def join(self) -> None:
        """Wait until the backlog has been drained."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def close(self) -> None:
        self._backlog.clear()
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._in_flight.clear()




class ThumbnailQueue(SerialJobQueue[ThumbnailJob]):
    category = "thumbnail"
    SEEK_SECONDS = 1.0
    empty_output_message = "ffmpeg wrote no frame (source shorter than 1s?)"

    def __init__(
        self,
        runner: Optional[Callable[[ThumbnailJob], Awaitable[None]]] = None,
        *,
        width: int = 320,
        quality: int = 8,
        **ffmpeg_opts,
    ):
        super().__init__(runner, **ffmpeg_opts)
        self.width = width
        self.quality = quality

    @classmethod
    def from_settings(cls, settings: Settings, runner=None) -> "ThumbnailQueue":
        return cls(
            runner,
            width=settings.thumbnail_width,
            quality=settings.thumbnail_quality,
            ffmpeg_bin=settings.ffmpeg_bin,
            input_flags=settings.ffmpeg_extra_input,
            output_flags=settings.ffmpeg_extra_output,
            timelimit=settings.ffmpeg_timelimit,
        )

    def enqueue(self, job: ThumbnailJob) -> bool:
        return self.submit(job)

    def command(self, job: ThumbnailJob) -> list[str]:
        return [
            self.ffmpeg_bin, "-hide_banner", "-loglevel", "error", "-nostdin", "-y",
            *self.input_flags,
            "-ss", f"{self.SEEK_SECONDS:.3f}",
            "-i", str(job.source_path),
            "-frames:v", "1",
            # Width fixed, height follows the aspect ratio and stays even
            "-vf", f"scale={int(self.width)}:-2",
            "-q:v", str(max(2, min(31, int(self.quality)))),
            *self.output_flags,
            str(job.output_path),
        ]

    async def _run_one(self, job: ThumbnailJob) -> None:
        log(self.category, f"Generating thumbnail for: {job.label}")
        await super()._run_one(job)

    def _succeeded(self, job: ThumbnailJob) -> None:
        log(self.category, f"Generated thumbnail for: {job.label}")

    def _failed(self, job: ThumbnailJob, exc: Exception) -> None:
        log(self.category, f"Error generating thumbnail for {job.label}: {exc}", logging.ERROR)


class PreviewQueue(SerialJobQueue[PreviewJob]):
    category = "preview"

    def __init__(
        self,
        runner: Optional[Callable[[PreviewJob], Awaitable[None]]] = None,
        *,
        width: int = 320,
        crf: int = 32,
        **ffmpeg_opts,
    ):
        super().__init__(runner, **ffmpeg_opts)
        self.width = width
        self.crf = crf

    @classmethod
    def from_settings(cls, settings: Settings, runner=None) -> "PreviewQueue":
        return cls(
            runner,
            width=settings.preview_width,
            crf=settings.preview_crf,
            ffmpeg_bin=settings.ffmpeg_bin,
            input_flags=settings.ffmpeg_extra_input,
            output_flags=settings.ffmpeg_extra_output,
            timelimit=settings.ffmpeg_timelimit,
        )

    def enqueue(self, source_path: Path, output_path: Path, duration: float) -> bool:
        added = self.submit(PreviewJob(source_path, output_path, float(duration)))
        if added:
            log(self.category, f"Added to preview queue: {source_path.name}")
        return added

    def command(self, job: PreviewJob) -> list[str]:
        return montage_command(
            job.source_path,
            job.output_path,
            job.duration,
            width=self.width,
            crf=self.crf,
            ffmpeg_bin=self.ffmpeg_bin,
            input_flags=self.input_flags,
            output_flags=self.output_flags,
        )

    async def _run_one(self, job: PreviewJob) -> None:
        log(self.category, f"Processing preview queue: {job.source_path.name} (Remaining: {len(self._backlog)})")
        await super()._run_one(job)

    def _succeeded(self, job: PreviewJob) -> None:
        log(self.category, f"Successfully generated preview for: {job.source_path.name}")

    def _failed(self, job: PreviewJob, exc: Exception) -> None:
        log(self.category, f"Error processing preview for {job.source_path.name}: {exc}", logging.ERROR)
