"""
Pytest fixtures for slidecast tests.

Most tests mock ffmpeg/ffprobe. Tests that run the real binaries are marked
with @pytest.mark.requires_ffmpeg and skip themselves when the binaries are
not on PATH. Run `pytest -m "not requires_ffmpeg"` to deselect them.
"""

import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest

from slidecast.config import Settings


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as running the real ffmpeg/ffprobe binaries",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


@pytest.fixture
def ffmpeg_available():
    """Skip the requesting test when ffmpeg/ffprobe are not installed."""
    if not _ffmpeg_available():
        pytest.skip("ffmpeg/ffprobe not available")


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="slidecast_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a per-test directory."""
    (tmp_path / "tmp").mkdir()
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        output_dir=str(tmp_path / "output" / "videos"),
        ledger_path=str(tmp_path / "output" / "mappings.json"),
        temp_dir=str(tmp_path / "tmp"),
        render_output_width=320,
        render_output_height=180,
        render_fps=10,
        render_preset="ultrafast",
    )


@pytest.fixture
def missing_tools_settings(settings: Settings) -> Settings:
    """Settings whose ffmpeg/ffprobe cannot be started, so every probe tier fails."""
    return settings.model_copy(
        update={
            "ffmpeg_path": "/nonexistent/bin/ffmpeg",
            "ffprobe_path": "/nonexistent/bin/ffprobe",
        }
    )


@pytest.fixture
def make_tone(ffmpeg_available, tmp_path: Path):
    """Factory writing a sine tone of the given length with ffmpeg."""

    def _make(name: str, seconds: float, frequency: int = 440) -> Path:
        path = tmp_path / name
        subprocess.run(
            [
                "ffmpeg", "-y",
                "-f", "lavfi",
                "-i", f"sine=frequency={frequency}:duration={seconds}",
                "-ar", "44100",
                "-ac", "2",
                str(path),
            ],
            capture_output=True,
            check=True,
        )
        return path

    return _make


@pytest.fixture
def make_image(ffmpeg_available, tmp_path: Path):
    """Factory writing a solid-colour PNG with ffmpeg."""

    def _make(name: str, color: str = "red", size: str = "640x360") -> Path:
        path = tmp_path / name
        subprocess.run(
            [
                "ffmpeg", "-y",
                "-f", "lavfi",
                "-i", f"color=c={color}:s={size}:d=1",
                "-frames:v", "1",
                str(path),
            ],
            capture_output=True,
            check=True,
        )
        return path

    return _make
