"""Timecode parsing for FFmpeg progress and diagnostic output."""

import re

_TIMECODE_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")
_DURATION_RE = re.compile(r"Duration:\s*(\d+:\d{1,2}:\d{1,2}(?:\.\d+)?)")


def parse_timecode(value: str | None) -> float:
    """
    Parse ``HH:MM:SS(.ff)`` into seconds.

    Never raises: anything that is not a well-formed timecode, including
    ``None``, ``""`` and FFmpeg's ``N/A``, yields ``0.0``.
    """
    if not value or not isinstance(value, str):
        return 0.0

    match = _TIMECODE_RE.match(value.strip())
    if not match:
        return 0.0

    hours, minutes, seconds = match.groups()
    if int(minutes) >= 60 or float(seconds) >= 60:
        return 0.0
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def find_duration(diagnostic: str | None) -> float:
    """Extract the ``Duration: HH:MM:SS.ff`` value FFmpeg prints for an input.

    Returns ``0.0`` when the text carries no usable duration.
    """
    if not diagnostic:
        return 0.0
    match = _DURATION_RE.search(diagnostic)
    if not match:
        return 0.0
    return parse_timecode(match.group(1))
