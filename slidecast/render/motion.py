"""Per-frame camera motion for a single still-image segment.

``motion_at`` is the reference model: for every frame of a segment it yields
the zoom factor, the top-left corner of the visible window (in pixels of the
cover-cropped W x H frame) and the rotation angle. ``motion_filter`` emits the
same formulas as FFmpeg ``zoompan`` / ``rotate`` expressions.
"""

import math
from dataclasses import dataclass

from slidecast.config import Settings, get_settings
from slidecast.effects.catalog import Motion

SHAKE_FREQUENCY_X = 10.0  # rad/s
SHAKE_FREQUENCY_Y = 8.0


def format_number(value: float) -> str:
    """Compact decimal text for filter expressions (no exponent, no trailing zeros)."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


@dataclass(frozen=True)
class MotionConfig:
    """Zoom/pan/shake constants shared by every segment of a job."""

    fps: int = 30
    ken_burns_zoom: float = 1.2
    ken_burns_zoom_step: float = 0.0015
    zoom_ramp_factor: float = 1.4
    pan_zoom: float = 1.3
    shake_zoom: float = 1.1
    shake_amplitude_x: float = 5.0
    shake_amplitude_y: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MotionConfig":
        settings = settings or get_settings()
        return cls(
            fps=settings.render_fps,
            ken_burns_zoom=settings.ken_burns_zoom,
            ken_burns_zoom_step=settings.ken_burns_zoom_step,
            zoom_ramp_factor=settings.zoom_ramp_factor,
            pan_zoom=settings.pan_zoom,
            shake_zoom=settings.shake_zoom,
            shake_amplitude_x=settings.shake_amplitude_x,
            shake_amplitude_y=settings.shake_amplitude_y,
        )


@dataclass(frozen=True)
class MotionFrame:
    """Camera state for one output frame."""

    zoom: float
    offset_x: float
    offset_y: float
    angle: float = 0.0  # radians, positive is clockwise


def frame_count(duration_s: float, fps: int) -> int:
    """Number of frames needed to cover ``duration_s`` at ``fps``."""
    # round away float noise such as 10.000000000002 * 30 before the ceiling
    return max(1, math.ceil(round(duration_s * fps, 6)))


def _progress(frame_index: int, frame_total: int) -> float:
    if frame_total <= 1:
        return 0.0
    return min(max(frame_index / (frame_total - 1), 0.0), 1.0)


def _centered(zoom: float, width: int, height: int) -> tuple[float, float]:
    return (width - width / zoom) / 2, (height - height / zoom) / 2


def motion_at(
    motion: Motion,
    frame_index: int,
    frame_total: int,
    width: int,
    height: int,
    config: MotionConfig,
) -> MotionFrame:
    """Compute the camera state of ``motion`` at ``frame_index`` of ``frame_total`` frames."""
    p = _progress(frame_index, frame_total)

    if motion == Motion.KENBURNS:
        zoom = min(1.0 + config.ken_burns_zoom_step * frame_index, config.ken_burns_zoom)
        return MotionFrame(zoom, *_centered(zoom, width, height))

    if motion == Motion.ZOOM_IN:
        zoom = 1.0 + (config.zoom_ramp_factor - 1.0) * p
        return MotionFrame(zoom, *_centered(zoom, width, height))

    if motion == Motion.ZOOM_OUT:
        zoom = config.zoom_ramp_factor - (config.zoom_ramp_factor - 1.0) * p
        return MotionFrame(zoom, *_centered(zoom, width, height))

    if motion in (Motion.PAN_LEFT, Motion.PAN_RIGHT, Motion.PAN_UP, Motion.PAN_DOWN):
        zoom = config.pan_zoom
        span_x = width - width / zoom
        span_y = height - height / zoom
        center_x, center_y = span_x / 2, span_y / 2
        if motion == Motion.PAN_LEFT:
            return MotionFrame(zoom, span_x * (1.0 - p), center_y)
        if motion == Motion.PAN_RIGHT:
            return MotionFrame(zoom, span_x * p, center_y)
        if motion == Motion.PAN_UP:
            return MotionFrame(zoom, center_x, span_y * (1.0 - p))
        return MotionFrame(zoom, center_x, span_y * p)

    if motion in (Motion.ROTATE_CLOCKWISE, Motion.ROTATE_COUNTER):
        sign = 1.0 if motion == Motion.ROTATE_CLOCKWISE else -1.0
        angle = sign * 2 * math.pi * frame_index / max(frame_total, 1)
        return MotionFrame(1.0, 0.0, 0.0, angle)

    if motion == Motion.SHAKE:
        zoom = config.shake_zoom
        center_x, center_y = _centered(zoom, width, height)
        t = frame_index / config.fps
        return MotionFrame(
            zoom,
            center_x + math.sin(t * SHAKE_FREQUENCY_X) * config.shake_amplitude_x,
            center_y + math.cos(t * SHAKE_FREQUENCY_Y) * config.shake_amplitude_y,
        )

    # static and anything unrecognised
    return MotionFrame(1.0, 0.0, 0.0)


def _zoompan(zoom: str, x: str, y: str, width: int, height: int, fps: int) -> str:
    return f"zoompan=z='{zoom}':x='{x}':y='{y}':d=1:s={width}x{height}:fps={fps}"


def motion_filter(
    motion: Motion,
    frame_total: int,
    width: int,
    height: int,
    config: MotionConfig,
) -> str:
    """FFmpeg filter chain implementing ``motion_at`` for one segment.

    The chain always ends with a constant frame rate, yuv420p and zeroed
    timestamps so every segment can be concatenated or blended.
    """
    fps = config.fps
    last = format_number(max(frame_total - 1, 1))
    p = f"min(on/{last},1)"
    center_x = "(iw-iw/zoom)/2"
    center_y = "(ih-ih/zoom)/2"

    if motion == Motion.KENBURNS:
        step = format_number(config.ken_burns_zoom_step)
        peak = format_number(config.ken_burns_zoom)
        chain = _zoompan(f"min(1+{step}*on,{peak})", center_x, center_y, width, height, fps)
    elif motion == Motion.ZOOM_IN:
        ramp = format_number(config.zoom_ramp_factor - 1.0)
        chain = _zoompan(f"1+{ramp}*{p}", center_x, center_y, width, height, fps)
    elif motion == Motion.ZOOM_OUT:
        peak = format_number(config.zoom_ramp_factor)
        ramp = format_number(config.zoom_ramp_factor - 1.0)
        chain = _zoompan(f"{peak}-{ramp}*{p}", center_x, center_y, width, height, fps)
    elif motion == Motion.PAN_LEFT:
        zoom = format_number(config.pan_zoom)
        chain = _zoompan(zoom, f"(iw-iw/zoom)*(1-{p})", center_y, width, height, fps)
    elif motion == Motion.PAN_RIGHT:
        zoom = format_number(config.pan_zoom)
        chain = _zoompan(zoom, f"(iw-iw/zoom)*{p}", center_y, width, height, fps)
    elif motion == Motion.PAN_UP:
        zoom = format_number(config.pan_zoom)
        chain = _zoompan(zoom, center_x, f"(ih-ih/zoom)*(1-{p})", width, height, fps)
    elif motion == Motion.PAN_DOWN:
        zoom = format_number(config.pan_zoom)
        chain = _zoompan(zoom, center_x, f"(ih-ih/zoom)*{p}", width, height, fps)
    elif motion in (Motion.ROTATE_CLOCKWISE, Motion.ROTATE_COUNTER):
        sign = "" if motion == Motion.ROTATE_CLOCKWISE else "-"
        chain = f"rotate=a='{sign}2*PI*n/{max(frame_total, 1)}':c=black:ow={width}:oh={height}"
    elif motion == Motion.SHAKE:
        zoom = format_number(config.shake_zoom)
        amp_x = format_number(config.shake_amplitude_x)
        amp_y = format_number(config.shake_amplitude_y)
        freq_x = format_number(SHAKE_FREQUENCY_X)
        freq_y = format_number(SHAKE_FREQUENCY_Y)
        chain = _zoompan(
            zoom,
            f"{center_x}+sin(on/{fps}*{freq_x})*{amp_x}",
            f"{center_y}+cos(on/{fps}*{freq_y})*{amp_y}",
            width,
            height,
            fps,
        )
    else:
        chain = ""

    tail = f"setpts=PTS-STARTPTS,fps={fps},format=yuv420p"
    return f"{chain},{tail}" if chain else tail
