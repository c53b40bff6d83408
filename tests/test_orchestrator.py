"""
Tests for the encoding orchestrator.

The FFmpeg process is replaced by a fake whose stdout/stderr are real
asyncio.StreamReader objects, so progress parsing, cancellation, timeouts
and the terminal-state guarantees run through the production code paths.
"""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from slidecast.exceptions import EncodingError
from slidecast.render.filter_graph import GraphConfig, compile_graph
from slidecast.render.orchestrator import (
    EncodeEventKind,
    EncodeHandle,
    EncodeState,
    EncodingOrchestrator,
    ProgressTracker,
    _double_rate,
)


class FakeProcess:
    """Minimal stand-in for asyncio.subprocess.Process."""

    def __init__(self, stdout_lines=(), stderr_lines=(), returncode=0, hang=False):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(f"{line}\n".encode())
        for line in stderr_lines:
            self.stderr.feed_data(f"{line}\n".encode())
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.returncode = None
        self.killed = False
        self._exit_code = returncode
        self._exited = asyncio.Event()
        if not hang:
            self._exited.set()

    async def wait(self):
        await self._exited.wait()
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9
        self._exited.set()


def _fake_exec(processes: list, write_output: bool = True):
    """Patch target for create_subprocess_exec handing out ``processes`` in order."""
    commands: list[tuple] = []

    async def _exec(*cmd, stdout=None, stderr=None):
        commands.append(cmd)
        if write_output:
            Path(cmd[-1]).write_bytes(b"\0\0\0\x18ftypmp42")
        return processes[len(commands) - 1]

    _exec.commands = commands
    return _exec


PROGRESS_LINES = [
    "frame=10",
    "out_time=00:00:01.000000",
    "progress=continue",
    "out_time=00:00:00.500000",  # out of order, must not go backwards
    "out_time=00:00:03.000000",
    "out_time=N/A",
    "progress=end",
]


@pytest.fixture
def graph():
    return compile_graph(["/data/a.jpg", "/data/b.jpg"], [2.0, 2.0], None, GraphConfig(320, 180, 10))


@pytest.fixture
def output_path(tmp_path: Path) -> str:
    return str(tmp_path / "video.mp4")


class TestProgressTracker:
    """Test the monotonic progress fraction."""

    def test_fraction(self):
        tracker = ProgressTracker(10.0)
        assert tracker.update(5.0) == 0.5

    def test_never_goes_backwards(self):
        tracker = ProgressTracker(10.0)
        tracker.update(5.0)
        assert tracker.update(3.0) is None
        assert tracker.fraction == 0.5

    def test_clamped_to_one(self):
        tracker = ProgressTracker(10.0)
        assert tracker.update(25.0) == 1.0
        assert tracker.update(30.0) is None

    def test_unknown_total(self):
        assert ProgressTracker(0.0).update(5.0) is None

    def test_feed_lines(self):
        tracker = ProgressTracker(4.0)
        assert tracker.feed_line("out_time=00:00:01.000000\n") == 0.25
        assert tracker.feed_line("progress=continue") is None
        assert tracker.feed_line("out_time=N/A") is None
        assert tracker.feed_line("progress=end") == 1.0
        assert tracker.complete() is None


class TestBuildCommand:
    """Test the FFmpeg command for a compiled graph."""

    def test_inputs_and_maps(self, settings, graph, output_path):
        cmd = EncodingOrchestrator(settings).build_command(graph, "/data/voice.mp3", output_path)

        inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
        assert inputs == ["/data/a.jpg", "/data/b.jpg", "/data/voice.mp3"]

        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[vcat]", "2:a:0"]

        assert cmd[cmd.index("-filter_complex") + 1] == graph.to_filter_complex()
        assert "-shortest" in cmd
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[cmd.index("-preset") + 1] == "ultrafast"
        assert cmd[-1] == output_path

    def test_bufsize_is_twice_the_rate(self, settings, graph, output_path):
        cmd = EncodingOrchestrator(settings).build_command(graph, "/data/voice.mp3", output_path)
        assert cmd[cmd.index("-maxrate") + 1] == "4000k"
        assert cmd[cmd.index("-bufsize") + 1] == "8000k"

    @pytest.mark.parametrize("rate,expected", [("4000k", "8000k"), ("2.5M", "5M"), ("900", "1800"), ("fast", "fast")])
    def test_double_rate(self, rate, expected):
        assert _double_rate(rate) == expected


class TestEncodeLifecycle:
    """Test terminal states and lifecycle events."""

    @pytest.mark.asyncio
    async def test_success(self, settings, graph, output_path):
        process = FakeProcess(stdout_lines=PROGRESS_LINES)
        on_start, on_progress, on_success, on_failure = MagicMock(), MagicMock(), MagicMock(), MagicMock()
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            handle = orchestrator.submit(
                graph, "/data/voice.mp3", output_path, 4.0,
                on_start=on_start, on_progress=on_progress, on_success=on_success, on_failure=on_failure,
            )
            assert await handle.result() == output_path

        assert handle.state == EncodeState.SUCCEEDED
        assert handle.progress == 1.0
        on_start.assert_called_once_with(handle.command)
        on_success.assert_called_once_with()
        on_failure.assert_not_called()

        fractions = [call.args[0] for call in on_progress.call_args_list]
        assert fractions == [0.25, 0.75, 1.0]

    @pytest.mark.asyncio
    async def test_event_stream(self, settings, graph, output_path):
        process = FakeProcess(stdout_lines=PROGRESS_LINES)
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            handle = orchestrator.submit(graph, "/data/voice.mp3", output_path, 4.0)
            events = [event async for event in handle.events()]

        kinds = [event.kind for event in events]
        assert kinds[0] == EncodeEventKind.START
        assert kinds[-1] == EncodeEventKind.SUCCESS
        assert kinds.count(EncodeEventKind.SUCCESS) == 1
        assert EncodeEventKind.FAILURE not in kinds
        progress = [event.fraction for event in events if event.kind == EncodeEventKind.PROGRESS]
        assert progress == sorted(progress)
        assert all(0.0 <= f <= 1.0 for f in progress)

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, settings, graph, output_path):
        """A failing encode surfaces the engine's stderr tail."""
        process = FakeProcess(
            stderr_lines=["[xfade] First input link main timebase do not match", "Error initializing filters"],
            returncode=1,
        )
        on_success, on_failure = MagicMock(), MagicMock()
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            handle = orchestrator.submit(
                graph, "/data/voice.mp3", output_path, 4.0, on_success=on_success, on_failure=on_failure
            )
            with pytest.raises(EncodingError) as exc_info:
                await handle.result()

        assert handle.state == EncodeState.FAILED
        assert "Error initializing filters" in exc_info.value.diagnostic
        on_failure.assert_called_once()
        on_success.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_output_is_a_failure(self, settings, graph, output_path):
        process = FakeProcess()
        orchestrator = EncodingOrchestrator(settings)

        with patch(
            "slidecast.render.orchestrator.asyncio.create_subprocess_exec",
            new=_fake_exec([process], write_output=False),
        ):
            with pytest.raises(EncodingError, match="encoding failed"):
                await orchestrator.encode(graph, "/data/voice.mp3", output_path, 4.0)

    @pytest.mark.asyncio
    async def test_engine_cannot_start(self, settings, graph, output_path):
        orchestrator = EncodingOrchestrator(settings)

        async def _missing(*cmd, stdout=None, stderr=None):
            raise FileNotFoundError(2, "No such file or directory", "ffmpeg")

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_missing):
            handle = orchestrator.submit(graph, "/data/voice.mp3", output_path, 4.0)
            with pytest.raises(EncodingError):
                await handle.result()

        assert handle.state == EncodeState.FAILED
        assert "Failed to start ffmpeg" in handle.diagnostic

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_the_encode(self, settings, graph, output_path):
        process = FakeProcess(stdout_lines=PROGRESS_LINES)
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            handle = orchestrator.submit(
                graph, "/data/voice.mp3", output_path, 4.0, on_progress=MagicMock(side_effect=ValueError("boom"))
            )
            assert await handle.result() == output_path


class TestCancellation:
    """Test that every way of stopping an encode kills the process."""

    @pytest.mark.asyncio
    async def test_cancel_token(self, settings, graph, output_path):
        process = FakeProcess(hang=True)
        orchestrator = EncodingOrchestrator(settings)
        cancel_event = asyncio.Event()

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            handle = orchestrator.submit(graph, "/data/voice.mp3", output_path, 4.0, cancel_event=cancel_event)
            await asyncio.sleep(0.01)
            assert handle.state == EncodeState.RUNNING
            cancel_event.set()
            with pytest.raises(EncodingError) as exc_info:
                await handle.result()

        assert process.killed
        assert handle.state == EncodeState.FAILED
        assert exc_info.value.diagnostic == "Encode cancelled"

    @pytest.mark.asyncio
    async def test_handle_cancel(self, settings, graph, output_path):
        process = FakeProcess(hang=True)
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            handle = orchestrator.submit(graph, "/data/voice.mp3", output_path, 4.0)
            await asyncio.sleep(0.01)
            handle.cancel()
            with pytest.raises(EncodingError):
                await handle.result()
            events = [event async for event in handle.events()]

        assert process.killed
        assert events[-1].kind == EncodeEventKind.FAILURE

    @pytest.mark.asyncio
    async def test_timeout(self, settings, graph, output_path):
        process = FakeProcess(hang=True)
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            with pytest.raises(EncodingError) as exc_info:
                await orchestrator.encode(graph, "/data/voice.mp3", output_path, 4.0, timeout_s=0.05)

        assert process.killed
        assert "timed out" in exc_info.value.diagnostic

    @pytest.mark.asyncio
    async def test_caller_task_cancelled(self, settings, graph, output_path):
        """Cancelling the awaiting task kills the process instead of leaking it."""
        process = FakeProcess(hang=True)
        orchestrator = EncodingOrchestrator(settings)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([process])):
            task = asyncio.create_task(orchestrator.encode(graph, "/data/voice.mp3", output_path, 4.0))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert process.killed


class TestConcurrencyLimit:
    """Test the bound on simultaneous encodes."""

    @pytest.mark.asyncio
    async def test_second_encode_waits(self, settings, graph, tmp_path):
        limited = settings.model_copy(update={"max_concurrent_renders": 1})
        first, second = FakeProcess(hang=True), FakeProcess(hang=True)
        orchestrator = EncodingOrchestrator(limited)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=_fake_exec([first, second])):
            h1 = orchestrator.submit(graph, "/data/voice.mp3", str(tmp_path / "one.mp4"), 4.0)
            h2 = orchestrator.submit(graph, "/data/voice.mp3", str(tmp_path / "two.mp4"), 4.0)
            await asyncio.sleep(0.01)
            assert h1.state == EncodeState.RUNNING
            assert h2.state == EncodeState.PENDING

            h1.cancel()
            with pytest.raises(EncodingError):
                await h1.result()
            await asyncio.sleep(0.01)
            assert h2.state == EncodeState.RUNNING

            h2.cancel()
            with pytest.raises(EncodingError):
                await h2.result()

    @pytest.mark.asyncio
    async def test_queued_encode_cancelled_by_caller(self, settings, graph, tmp_path):
        """A caller giving up while queued still gets a terminal failure event."""
        limited = settings.model_copy(update={"max_concurrent_renders": 1})
        first = FakeProcess(hang=True)
        exec_ = _fake_exec([first])
        orchestrator = EncodingOrchestrator(limited)

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=exec_):
            h1 = orchestrator.submit(graph, "/data/voice.mp3", str(tmp_path / "one.mp4"), 4.0)
            h2 = orchestrator.submit(graph, "/data/voice.mp3", str(tmp_path / "two.mp4"), 4.0)
            await asyncio.sleep(0.01)

            waiter = asyncio.create_task(h2.result())
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            events = await asyncio.wait_for(_collect(h2), timeout=1.0)

            h1.cancel()
            with pytest.raises(EncodingError):
                await h1.result()

        assert h2.state == EncodeState.FAILED
        assert [event.kind for event in events] == [EncodeEventKind.FAILURE]
        assert len(exec_.commands) == 1

    @pytest.mark.asyncio
    async def test_queued_encode_cancelled_by_token_never_starts(self, settings, graph, tmp_path):
        limited = settings.model_copy(update={"max_concurrent_renders": 1})
        first = FakeProcess(hang=True)
        exec_ = _fake_exec([first])
        orchestrator = EncodingOrchestrator(limited)
        on_start = MagicMock()

        with patch("slidecast.render.orchestrator.asyncio.create_subprocess_exec", new=exec_):
            h1 = orchestrator.submit(graph, "/data/voice.mp3", str(tmp_path / "one.mp4"), 4.0)
            h2 = orchestrator.submit(graph, "/data/voice.mp3", str(tmp_path / "two.mp4"), 4.0, on_start=on_start)
            await asyncio.sleep(0.01)

            h2.cancel()
            h1.cancel()
            with pytest.raises(EncodingError):
                await h1.result()
            with pytest.raises(EncodingError) as exc_info:
                await h2.result()

        assert exc_info.value.diagnostic == "Encode cancelled"
        assert h2.state == EncodeState.FAILED
        on_start.assert_not_called()
        assert len(exec_.commands) == 1


class TestEncodeHandle:
    @pytest.mark.asyncio
    async def test_result_without_submit(self):
        handle = EncodeHandle(["ffmpeg"], "/tmp/out.mp4", asyncio.Event())
        with pytest.raises(RuntimeError, match="never submitted"):
            await handle.result()


async def _collect(handle) -> list:
    return [event async for event in handle.events()]
