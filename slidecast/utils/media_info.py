"""Media file information utilities using FFprobe."""

import json
import subprocess
from typing import Any, Optional

from slidecast.config import Settings, get_settings


def _run_ffprobe(file_path: str, *args: str, settings: Settings | None = None) -> dict:
    """Run ffprobe and return parsed JSON.

    Raises:
        RuntimeError: If ffprobe exits non-zero or prints invalid JSON
        OSError: If the ffprobe binary cannot be started
        subprocess.TimeoutExpired: If ffprobe hangs past the probe timeout
    """
    settings = settings or get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    result = subprocess.run(cmd, capture_output=True, text=True, timeout=settings.probe_timeout_s)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def _positive_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def get_media_duration(file_path: str, settings: Settings | None = None) -> float:
    """
    Get media file duration in seconds.

    The first audio stream's duration is preferred; the container duration
    is used when the stream does not carry one.

    Args:
        file_path: Path to media file
        settings: Settings providing the ffprobe path and timeout

    Returns:
        Duration in seconds

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(
        file_path,
        "-show_format",
        "-show_streams",
        "-select_streams", "a:0",
        settings=settings,
    )

    for stream in data.get("streams", []):
        duration = _positive_float(stream.get("duration"))
        if duration is not None:
            return duration

    duration = _positive_float(data.get("format", {}).get("duration"))
    if duration is None:
        raise RuntimeError(f"Duration not found in: {file_path}")
    return duration
