"""
Narration duration estimation and segment timing.

``estimate_total`` tries, in order, and the first tier that yields a
positive duration wins:
1. ffprobe metadata (audio stream, then container)
2. the ``Duration:`` line FFmpeg prints when opening the file for a
   discarded null encode
3. file size at a reference bitrate, clamped to a safety window
4. the caller's fallback

No tier raises; failures are logged and the next tier is tried.
"""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from slidecast.config import Settings, get_settings
from slidecast.exceptions import ValidationError
from slidecast.utils.media_info import get_media_duration
from slidecast.utils.timecode import find_duration

logger = logging.getLogger(__name__)

_PROBE_ERRORS = (RuntimeError, OSError, subprocess.TimeoutExpired)


@dataclass(frozen=True)
class DurationEstimate:
    """Estimated duration and the tier that produced it."""

    seconds: float
    source: str  # probe | diagnostic | size | fallback


def probe_duration(audio_path: str, settings: Settings | None = None) -> Optional[float]:
    """Tier 1: ffprobe metadata."""
    try:
        return get_media_duration(audio_path, settings=settings)
    except _PROBE_ERRORS as e:
        logger.warning(f"[DURATION] ffprobe failed for {audio_path}: {e}")
        return None


def diagnostic_duration(audio_path: str, settings: Settings | None = None) -> Optional[float]:
    """Tier 2: parse ``Duration:`` from FFmpeg's stderr for a zero-length null encode."""
    settings = settings or get_settings()
    cmd = [
        settings.ffmpeg_path,
        "-hide_banner",
        "-i", audio_path,
        "-t", "0",
        "-f", "null",
        "-",
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=settings.probe_timeout_s)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"[DURATION] ffmpeg diagnostic pass failed for {audio_path}: {e}")
        return None

    duration = find_duration(result.stderr)
    return duration if duration > 0 else None


def size_based_duration(audio_path: str, settings: Settings | None = None) -> Optional[float]:
    """Tier 3: ``size * 8 / bitrate`` clamped to the configured window."""
    settings = settings or get_settings()
    try:
        size = os.path.getsize(audio_path)
    except OSError as e:
        logger.warning(f"[DURATION] Cannot stat {audio_path}: {e}")
        return None
    if size <= 0:
        return None

    raw = size * 8 / settings.duration_estimate_bitrate
    clamped = min(max(raw, settings.duration_estimate_min_s), settings.duration_estimate_max_s)
    if clamped != raw:
        logger.info(f"[DURATION] Size estimate {raw:.2f}s clamped to {clamped:.2f}s")
    return clamped


def estimate(
    audio_path: str,
    fallback_seconds: float | None = None,
    settings: Settings | None = None,
) -> DurationEstimate:
    """Run the tiers in order and report which one answered."""
    settings = settings or get_settings()

    seconds = probe_duration(audio_path, settings)
    if seconds:
        return DurationEstimate(seconds, "probe")

    seconds = diagnostic_duration(audio_path, settings)
    if seconds:
        logger.info(f"[DURATION] Recovered {seconds:.2f}s from ffmpeg diagnostics: {audio_path}")
        return DurationEstimate(seconds, "diagnostic")

    seconds = size_based_duration(audio_path, settings)
    if seconds:
        logger.info(f"[DURATION] Estimated {seconds:.2f}s from file size: {audio_path}")
        return DurationEstimate(seconds, "size")

    fallback = settings.duration_fallback_s if fallback_seconds is None else fallback_seconds
    logger.warning(f"[DURATION] All tiers failed for {audio_path}, using fallback {fallback}s")
    return DurationEstimate(fallback, "fallback")


def estimate_total(
    audio_path: str,
    fallback_seconds: float | None = None,
    settings: Settings | None = None,
) -> float:
    """
    Total narration duration in seconds.

    Args:
        audio_path: Audio file to measure
        fallback_seconds: Returned when every tier fails (defaults to
            ``settings.duration_fallback_s``)
        settings: Settings (defaults to ``get_settings()``)

    Returns:
        Duration in seconds
    """
    return estimate(audio_path, fallback_seconds, settings).seconds


async def estimate_total_async(
    audio_path: str,
    fallback_seconds: float | None = None,
    settings: Settings | None = None,
) -> float:
    """``estimate_total`` without blocking the event loop."""
    return await asyncio.to_thread(estimate_total, audio_path, fallback_seconds, settings)


def segment_durations(total_seconds: float, image_count: int) -> list[float]:
    """
    Split the narration evenly across the images.

    Raises:
        ValidationError: If ``image_count < 1`` or ``total_seconds <= 0``
    """
    if image_count < 1:
        raise ValidationError("At least one image is required")
    if total_seconds <= 0:
        raise ValidationError(f"Total duration must be positive, got {total_seconds}")
    return [total_seconds / image_count] * image_count
