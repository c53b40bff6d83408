"""
Encoding lifecycle orchestration.

One submitted job is one FFmpeg process. A job moves
``pending -> running -> succeeded | failed`` exactly once; the caller can
await the terminal outcome, iterate lifecycle events, or pass callbacks.

Resource policy:
- A semaphore bounds how many encodes run at once
- Every encode carries a cancellation event and a timeout; both kill the
  process, as does cancelling the task awaiting the result
- Progress comes from ``-progress pipe:1`` and is clamped to [0, 1] and
  never reported backwards
"""

import asyncio
import logging
import os
import re
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Optional
from uuid import uuid4

from slidecast.config import Settings, get_settings
from slidecast.exceptions import EncodingError
from slidecast.render.filter_graph import FilterGraph
from slidecast.utils.timecode import parse_timecode

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 200


class EncodeState(str, Enum):
    """Lifecycle state of one encode."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EncodeEventKind(str, Enum):
    START = "start"
    PROGRESS = "progress"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class EncodeEvent:
    """One lifecycle notification."""

    kind: EncodeEventKind
    command: Optional[list[str]] = None
    fraction: Optional[float] = None
    output_path: Optional[str] = None
    diagnostic: Optional[str] = None


class ProgressTracker:
    """Turns FFmpeg progress lines into a monotonic fraction in [0, 1]."""

    def __init__(self, total_duration: float):
        self.total_duration = total_duration
        self.fraction = 0.0

    def update(self, elapsed_seconds: float) -> Optional[float]:
        """Record elapsed encode time; returns the new fraction only if it advanced."""
        if self.total_duration <= 0:
            return None
        fraction = min(max(elapsed_seconds / self.total_duration, 0.0), 1.0)
        if fraction <= self.fraction:
            return None
        self.fraction = fraction
        return fraction

    def feed_line(self, line: str) -> Optional[float]:
        """Consume one ``key=value`` line of ``-progress`` output."""
        key, _, value = line.strip().partition("=")
        if key == "out_time":
            return self.update(parse_timecode(value))
        if key == "progress" and value == "end":
            return self.complete()
        return None

    def complete(self) -> Optional[float]:
        if self.fraction >= 1.0:
            return None
        self.fraction = 1.0
        return 1.0


OnStart = Callable[[list[str]], None]
OnProgress = Callable[[float], None]
OnSuccess = Callable[[], None]
OnFailure = Callable[[str], None]


@dataclass
class _Callbacks:
    on_start: Optional[OnStart] = None
    on_progress: Optional[OnProgress] = None
    on_success: Optional[OnSuccess] = None
    on_failure: Optional[OnFailure] = None


class EncodeHandle:
    """Caller-side view of one submitted encode."""

    def __init__(self, command: list[str], output_path: str, cancel_event: asyncio.Event):
        self.id = uuid4().hex
        self.command = command
        self.output_path = output_path
        self.state = EncodeState.PENDING
        self.progress = 0.0
        self.diagnostic: Optional[str] = None
        self._cancel_event = cancel_event
        self._events: asyncio.Queue[Optional[EncodeEvent]] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self.state in (EncodeState.SUCCEEDED, EncodeState.FAILED)

    def cancel(self) -> None:
        """Ask the orchestrator to kill the encode."""
        self._cancel_event.set()

    async def result(self) -> str:
        """Wait for the terminal outcome.

        Returns:
            The output path

        Raises:
            EncodingError: If the encode failed, was cancelled or timed out
        """
        if self._task is None:
            raise RuntimeError(f"Encode {self.id} was never submitted")
        return await self._task

    async def events(self) -> AsyncIterator[EncodeEvent]:
        """Iterate lifecycle events until the terminal one."""
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    def _emit(self, event: EncodeEvent) -> None:
        self._events.put_nowait(event)
        if event.kind in (EncodeEventKind.SUCCESS, EncodeEventKind.FAILURE):
            self._events.put_nowait(None)


def _double_rate(rate: str) -> str:
    match = re.fullmatch(r"(\d+(?:\.\d+)?)([kKmM]?)", rate.strip())
    if not match:
        return rate
    value = float(match.group(1)) * 2
    return f"{value:g}{match.group(2)}"


class EncodingOrchestrator:
    """Runs FFmpeg encodes for compiled filter graphs."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_renders)

    def build_command(self, graph: FilterGraph, audio_path: str, output_path: str) -> list[str]:
        """Build the FFmpeg command for one job without executing it.

        Args:
            graph: Compiled filter graph (image inputs come first)
            audio_path: Narration track, bound as the input after the images
            output_path: Path for the final MP4

        Returns:
            FFmpeg command as list[str]
        """
        s = self.settings
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            *graph.input_args(),
            "-i", audio_path,
            "-filter_complex", graph.to_filter_complex(),
            "-map", f"[{graph.output_label}]",
            "-map", f"{graph.audio_stream_index}:a:0",
            "-c:v", s.render_video_codec,
            "-preset", s.render_preset,
            "-crf", str(s.render_crf),
            "-maxrate", s.render_video_bitrate,
            "-bufsize", _double_rate(s.render_video_bitrate),
            "-pix_fmt", "yuv420p",
            "-r", str(graph.fps),
            "-c:a", s.render_audio_codec,
            "-b:a", s.render_audio_bitrate,
            "-movflags", "+faststart",
            "-shortest",
            "-progress", "pipe:1",
            "-nostats",
            output_path,
        ]

    def submit(
        self,
        graph: FilterGraph,
        audio_path: str,
        output_path: str,
        total_duration_hint: float,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_s: float | None = None,
        on_start: OnStart | None = None,
        on_progress: OnProgress | None = None,
        on_success: OnSuccess | None = None,
        on_failure: OnFailure | None = None,
    ) -> EncodeHandle:
        """
        Start one encode. Must be called from a running event loop.

        Args:
            graph: Compiled filter graph
            audio_path: Narration track
            output_path: Destination MP4
            total_duration_hint: Expected output length, for progress
            cancel_event: Setting it kills the encode
            timeout_s: Wall-clock limit (defaults to ``settings.render_timeout_s``)

        Returns:
            EncodeHandle; ``await handle.result()`` resolves or raises once
        """
        command = self.build_command(graph, audio_path, output_path)
        handle = EncodeHandle(command, output_path, cancel_event or asyncio.Event())
        callbacks = _Callbacks(on_start, on_progress, on_success, on_failure)
        timeout = self.settings.render_timeout_s if timeout_s is None else timeout_s

        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle, total_duration_hint, timeout, callbacks)
        )
        return handle

    async def encode(
        self,
        graph: FilterGraph,
        audio_path: str,
        output_path: str,
        total_duration_hint: float,
        **kwargs,
    ) -> str:
        """Submit and await the outcome."""
        handle = self.submit(graph, audio_path, output_path, total_duration_hint, **kwargs)
        return await handle.result()

    # ========================================================================
    # Internals
    # ========================================================================

    @staticmethod
    def _notify(callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("[ENCODE] Lifecycle callback raised")

    def _report_progress(self, handle: EncodeHandle, fraction: Optional[float], callbacks: _Callbacks) -> None:
        if fraction is None:
            return
        handle.progress = fraction
        handle._emit(EncodeEvent(EncodeEventKind.PROGRESS, fraction=fraction))
        self._notify(callbacks.on_progress, fraction)

    def _fail(self, handle: EncodeHandle, diagnostic: str, callbacks: _Callbacks) -> EncodingError:
        handle.state = EncodeState.FAILED
        handle.diagnostic = diagnostic
        logger.error(f"[ENCODE] Job {handle.id} failed: {diagnostic}")
        handle._emit(EncodeEvent(EncodeEventKind.FAILURE, diagnostic=diagnostic))
        self._notify(callbacks.on_failure, diagnostic)
        return EncodingError("Video encoding failed", diagnostic=diagnostic)

    async def _read_progress(
        self,
        stream: asyncio.StreamReader,
        tracker: ProgressTracker,
        handle: EncodeHandle,
        callbacks: _Callbacks,
    ) -> None:
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace")
            self._report_progress(handle, tracker.feed_line(line), callbacks)

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, tail: deque) -> None:
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                tail.append(line)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    @staticmethod
    async def _stop(*tasks: asyncio.Task) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(
        self,
        handle: EncodeHandle,
        total_duration_hint: float,
        timeout_s: float,
        callbacks: _Callbacks,
    ) -> str:
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            logger.warning(f"[ENCODE] Job {handle.id} cancelled by caller while queued")
            self._fail(handle, "Encode cancelled by caller", callbacks)
            raise

        try:
            if handle._cancel_event.is_set():
                raise self._fail(handle, "Encode cancelled", callbacks)
            return await self._execute(handle, total_duration_hint, timeout_s, callbacks)
        finally:
            self._semaphore.release()

    async def _execute(
        self,
        handle: EncodeHandle,
        total_duration_hint: float,
        timeout_s: float,
        callbacks: _Callbacks,
    ) -> str:
        handle.state = EncodeState.RUNNING
        logger.info(f"[ENCODE] Job {handle.id} starting: {' '.join(handle.command)}")
        handle._emit(EncodeEvent(EncodeEventKind.START, command=handle.command))
        self._notify(callbacks.on_start, handle.command)

        try:
            process = await asyncio.create_subprocess_exec(
                *handle.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise self._fail(handle, f"Failed to start ffmpeg: {e}", callbacks) from e

        tracker = ProgressTracker(total_duration_hint)
        stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        readers = (
            asyncio.create_task(self._read_progress(process.stdout, tracker, handle, callbacks)),
            asyncio.create_task(self._drain(process.stderr, stderr_tail)),
        )
        waiter = asyncio.create_task(process.wait())
        cancelled = asyncio.create_task(handle._cancel_event.wait())

        try:
            done, _ = await asyncio.wait(
                {waiter, cancelled},
                timeout=timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            logger.warning(f"[ENCODE] Job {handle.id} cancelled by caller, killing ffmpeg")
            await self._kill(process)
            await self._stop(waiter, cancelled, *readers)
            self._fail(handle, "Encode cancelled by caller", callbacks)
            raise

        if waiter not in done:
            reason = "Encode cancelled" if cancelled in done else f"Encode timed out after {timeout_s}s"
            logger.warning(f"[ENCODE] Job {handle.id}: {reason}, killing ffmpeg")
            await self._kill(process)
            await self._stop(waiter, cancelled, *readers)
            raise self._fail(handle, reason, callbacks)

        cancelled.cancel()
        # pipes hit EOF once the process has exited
        await asyncio.gather(*readers, return_exceptions=True)

        diagnostic = "\n".join(stderr_tail)
        if process.returncode != 0:
            raise self._fail(
                handle,
                diagnostic or f"ffmpeg exited with code {process.returncode}",
                callbacks,
            )
        if not os.path.exists(handle.output_path):
            raise self._fail(handle, f"ffmpeg produced no output: {handle.output_path}", callbacks)

        self._report_progress(handle, tracker.complete(), callbacks)
        handle.state = EncodeState.SUCCEEDED
        logger.info(f"[ENCODE] Job {handle.id} finished: {handle.output_path}")
        handle._emit(EncodeEvent(EncodeEventKind.SUCCESS, output_path=handle.output_path))
        self._notify(callbacks.on_success)
        return handle.output_path
