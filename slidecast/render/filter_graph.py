"""
Filter graph compiler.

Turns (image paths, per-segment durations, resolved effects) into an ordered
list of FFmpeg filter operations that ends in exactly one video label. The
audio stream is bound at encode time by index (it is the input after the
images), and the encode uses ``-shortest``.

Graph layout for N images:
1. scale_crop  [i:v] -> [s{i}]      cover-scale + centre crop to W x H
2. motion      [s{i}] -> [m{i}]     zoompan / rotate, constant fps
3. concat      [m0]..[mN-1] -> [vcat]          (no transition)
   transition  [prev][m{i}] -> [x{i}]          (chained xfade)
4. color_grade [..] -> [vgraded]               (optional)
5. overlay     [..] -> [vout]                  (optional)

With a transition every non-final segment is rendered ``transition_duration``
longer and each xfade starts at the segment boundary, so the composed
timeline is exactly as long as the narration.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

from slidecast.config import Settings, get_settings
from slidecast.effects.catalog import ColorGrade, EffectSpec, Motion, Overlay, Transition
from slidecast.exceptions import ValidationError
from slidecast.render.motion import MotionConfig, format_number, frame_count, motion_filter

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    """Kind of a filter graph operation."""

    SCALE_CROP = "scale_crop"
    MOTION = "motion"
    TRANSITION = "transition"
    COLOR_GRADE = "color_grade"
    OVERLAY = "overlay"
    CONCAT = "concat"


# ============================================================================
# Effect tables
# ============================================================================


XFADE_NAMES: dict[Transition, str] = {
    Transition.FADE: "fade",
    Transition.CROSSFADE: "fadeblack",
    Transition.WIPE_LEFT: "wipeleft",
    Transition.WIPE_RIGHT: "wiperight",
    Transition.WIPE_UP: "wipeup",
    Transition.WIPE_DOWN: "wipedown",
    Transition.SLIDE_UP: "slideup",
    Transition.SLIDE_DOWN: "slidedown",
    Transition.SLIDE_LEFT: "slideleft",
    Transition.SLIDE_RIGHT: "slideright",
    Transition.CIRCLE_CROP: "circlecrop",
    Transition.RECT_CROP: "rectcrop",
    Transition.DISSOLVE: "dissolve",
}

COLOR_FILTERS: dict[ColorGrade, str] = {
    ColorGrade.VINTAGE: "curves=preset=vintage,colorbalance=rs=0.1:gs=-0.1:bs=-0.1:rm=0.05:gm=0:bm=-0.05",
    ColorGrade.SEPIA: "colorchannelmixer=0.393:0.769:0.189:0:0.349:0.686:0.168:0:0.272:0.534:0.131",
    ColorGrade.BLACK_WHITE: "hue=s=0",
    ColorGrade.HIGH_CONTRAST: "curves=all='0/0 0.4/0.3 0.6/0.7 1/1'",
    ColorGrade.LOW_CONTRAST: "curves=all='0/0.1 0.4/0.45 0.6/0.55 1/0.9'",
    ColorGrade.WARM: "colortemperature=temperature=3000",
    ColorGrade.COOL: "colortemperature=temperature=7000",
    ColorGrade.VIBRANT: "vibrance=intensity=0.5,eq=saturation=1.3",
    ColorGrade.DESATURATED: "hue=s=0.3",
    ColorGrade.FILM_GRAIN: "noise=alls=20:allf=t+u,unsharp=5:5:0.8:3:3:0.4",
    ColorGrade.VIGNETTE: "vignette=PI/4",
}


@dataclass(frozen=True)
class OverlayRecipe:
    """Secondary layer and how it is blended onto the main stream.

    ``layer`` is a ``geq`` expression set applied to a synthetic black clip,
    or ``None`` when the layer is derived from the main stream itself via
    ``derive``.
    """

    mode: str
    opacity: float
    layer: Optional[str] = None
    base_color: str = "black"
    derive: Optional[str] = None


OVERLAY_RECIPES: dict[Overlay, OverlayRecipe] = {
    Overlay.PARTICLES: OverlayRecipe(
        mode="screen",
        opacity=0.4,
        layer="lum='if(gt(random(1),0.999),255,0)':cb=128:cr=128",
    ),
    Overlay.LIGHT_LEAKS: OverlayRecipe(
        mode="screen",
        opacity=0.3,
        layer="lum='255*exp(-pow(X-W*(0.2+0.6*mod(T/8,1)),2)/(2*pow(W/6,2)))':cb=96:cr=170",
    ),
    Overlay.DUST: OverlayRecipe(
        mode="screen",
        opacity=0.25,
        layer="lum='if(gt(random(1),0.997),255*random(2),0)':cb=128:cr=128",
    ),
    Overlay.SCRATCHES: OverlayRecipe(
        mode="screen",
        opacity=0.5,
        layer="lum='if(lt(abs(X-mod(N*7919,W)),1),220,0)':cb=128:cr=128",
    ),
    Overlay.BOKEH: OverlayRecipe(
        mode="screen",
        opacity=0.35,
        derive="gblur=sigma=20",
    ),
    Overlay.LENS_FLARE: OverlayRecipe(
        mode="screen",
        opacity=0.25,
        layer="lum='if(lt(hypot(X-W*0.75,Y-H*0.25),H/4),255-hypot(X-W*0.75,Y-H*0.25)*1020/H,0)':cb=128:cr=128",
    ),
    Overlay.RAIN: OverlayRecipe(
        mode="screen",
        opacity=0.3,
        layer="lum='if(lt(mod(X+Y*0.2,97),1)*lt(mod(Y+N*40,211),30),255,0)':cb=128:cr=128",
    ),
    Overlay.SNOW: OverlayRecipe(
        mode="screen",
        opacity=0.6,
        layer="lum='if(gt(random(1),0.9985),255,0)':cb=128:cr=128",
    ),
}


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass(frozen=True)
class Operation:
    """One labelled step of the filter graph.

    ``setup`` holds helper chains the step needs (synthetic sources, splits);
    their labels are private to the operation.
    """

    kind: OperationKind
    inputs: tuple[str, ...]
    output: str
    expression: str
    params: dict[str, Any] = field(default_factory=dict, compare=False)
    setup: tuple[str, ...] = ()

    def render(self) -> str:
        head = "".join(f"[{label}]" for label in self.inputs)
        return ";".join([*self.setup, f"{head}{self.expression}[{self.output}]"])


@dataclass(frozen=True)
class ImageInput:
    """A looped still image fed to the graph as one video input."""

    path: str
    duration: float  # seconds the input is looped for
    frame_count: int


@dataclass
class FilterGraph:
    """Compiled graph for one job."""

    inputs: list[ImageInput]
    operations: list[Operation]
    output_label: str
    audio_stream_index: int
    total_duration: float
    width: int
    height: int
    fps: int

    def to_filter_complex(self) -> str:
        """Render the ``-filter_complex`` argument."""
        return ";".join(op.render() for op in self.operations)

    def input_args(self) -> list[str]:
        """FFmpeg input arguments for the image inputs, in stream order."""
        args: list[str] = []
        for image in self.inputs:
            args.extend(
                [
                    "-loop", "1",
                    "-framerate", str(self.fps),
                    "-t", format_number(image.duration),
                    "-i", image.path,
                ]
            )
        return args

    def operations_of(self, kind: OperationKind) -> list[Operation]:
        return [op for op in self.operations if op.kind == kind]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "inputs": [
                {"path": i.path, "duration": i.duration, "frame_count": i.frame_count}
                for i in self.inputs
            ],
            "operations": [
                {"kind": op.kind.value, "inputs": list(op.inputs), "output": op.output, "params": op.params}
                for op in self.operations
            ],
            "output_label": self.output_label,
            "audio_stream_index": self.audio_stream_index,
            "total_duration": self.total_duration,
        }


@dataclass(frozen=True)
class GraphConfig:
    """Output geometry plus motion constants."""

    width: int = 1920
    height: int = 1080
    fps: int = 30
    motion: MotionConfig = field(default_factory=MotionConfig)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GraphConfig":
        settings = settings or get_settings()
        return cls(
            width=settings.render_output_width,
            height=settings.render_output_height,
            fps=settings.render_fps,
            motion=MotionConfig.from_settings(settings),
        )


# ============================================================================
# Compiler
# ============================================================================


def clamp_transition_duration(requested: float, segment_durations: Sequence[float]) -> float:
    """Limit a transition to half of the shortest segment."""
    if not segment_durations:
        return 0.0
    return max(0.0, min(requested, min(segment_durations) / 2))


def _scale_crop(index: int, width: int, height: int) -> Operation:
    return Operation(
        kind=OperationKind.SCALE_CROP,
        inputs=(f"{index}:v",),
        output=f"s{index}",
        expression=(
            f"scale={width}:{height}:force_original_aspect_ratio=increase,"
            f"crop={width}:{height},setsar=1"
        ),
        params={"width": width, "height": height},
    )


def _motion(index: int, motion: Motion, frames: int, config: GraphConfig) -> Operation:
    return Operation(
        kind=OperationKind.MOTION,
        inputs=(f"s{index}",),
        output=f"m{index}",
        expression=motion_filter(motion, frames, config.width, config.height, config.motion),
        params={"motion": motion.value, "frame_count": frames},
    )


def _color_grade(source: str, color: ColorGrade) -> Operation:
    return Operation(
        kind=OperationKind.COLOR_GRADE,
        inputs=(source,),
        output="vgraded",
        expression=COLOR_FILTERS[color],
        params={"color": color.value},
    )


def _overlay(source: str, overlay: Overlay, total: float, config: GraphConfig) -> Operation:
    recipe = OVERLAY_RECIPES[overlay]
    blend = (
        f"blend=all_mode={recipe.mode}:all_opacity={format_number(recipe.opacity)}:shortest=1,"
        "format=yuv420p"
    )

    if recipe.derive:
        setup = (
            f"[{source}]split=2[ovbase][ovsrc]",
            f"[ovsrc]{recipe.derive}[ovlayer]",
        )
        inputs = ("ovbase", "ovlayer")
    else:
        # one extra second so the layer never ends before the main stream
        setup = (
            f"color=c={recipe.base_color}:s={config.width}x{config.height}"
            f":r={config.fps}:d={format_number(total + 1)},"
            f"format=yuv420p,geq={recipe.layer}[ovlayer]",
        )
        inputs = (source, "ovlayer")

    return Operation(
        kind=OperationKind.OVERLAY,
        inputs=inputs,
        output="vout",
        expression=blend,
        params={"overlay": overlay.value, "mode": recipe.mode, "opacity": recipe.opacity},
        setup=setup,
    )


def compile_graph(
    image_paths: Sequence[str],
    segment_durations: Sequence[float],
    effects: EffectSpec | None = None,
    config: GraphConfig | None = None,
) -> FilterGraph:
    """
    Compile the filter graph for one job.

    Args:
        image_paths: Absolute image paths, in display order
        segment_durations: Display time (seconds) of each image
        effects: Resolved, already validated effects (``None`` = none)
        config: Output geometry and motion constants

    Returns:
        FilterGraph ending in a single video label

    Raises:
        ValidationError: If there are no images or the durations do not match
    """
    if not image_paths:
        raise ValidationError("At least one image is required to build a video")
    if len(segment_durations) != len(image_paths):
        raise ValidationError(
            f"Expected {len(image_paths)} segment durations, got {len(segment_durations)}"
        )
    if any(d <= 0 for d in segment_durations):
        raise ValidationError("Segment durations must be positive")

    effects = effects or EffectSpec()
    config = config or GraphConfig.from_settings()
    count = len(image_paths)

    motion = Motion.coerce(effects.motion) if effects.motion else Motion.STATIC
    transition = Transition.coerce(effects.transition) if effects.transition else None
    overlap = 0.0
    if transition is not None and count > 1:
        overlap = clamp_transition_duration(effects.transition_duration, segment_durations)
        if overlap <= 0:
            transition = None

    inputs: list[ImageInput] = []
    operations: list[Operation] = []

    for index, (path, duration) in enumerate(zip(image_paths, segment_durations)):
        length = duration + (overlap if transition is not None and index < count - 1 else 0.0)
        frames = frame_count(length, config.fps)
        inputs.append(ImageInput(path=path, duration=length, frame_count=frames))
        operations.append(_scale_crop(index, config.width, config.height))
        operations.append(_motion(index, motion, frames, config))

    if transition is None or count == 1:
        labels = tuple(f"m{i}" for i in range(count))
        operations.append(
            Operation(
                kind=OperationKind.CONCAT,
                inputs=labels,
                output="vcat",
                expression=f"concat=n={count}:v=1:a=0",
                params={"segments": count},
            )
        )
        current = "vcat"
    else:
        xfade = XFADE_NAMES.get(transition, XFADE_NAMES[Transition.FADE])
        current = "m0"
        offset = 0.0
        for index in range(1, count):
            offset += segment_durations[index - 1]
            output = f"x{index}"
            operations.append(
                Operation(
                    kind=OperationKind.TRANSITION,
                    inputs=(current, f"m{index}"),
                    output=output,
                    expression=(
                        f"xfade=transition={xfade}:duration={format_number(overlap)}"
                        f":offset={format_number(offset)}"
                    ),
                    params={"transition": transition.value, "duration": overlap, "offset": offset},
                )
            )
            current = output

    total = float(sum(segment_durations))

    if effects.color is not None:
        grade = _color_grade(current, effects.color)
        operations.append(grade)
        current = grade.output

    if effects.overlay is not None:
        layer = _overlay(current, effects.overlay, total, config)
        operations.append(layer)
        current = layer.output

    graph = FilterGraph(
        inputs=inputs,
        operations=operations,
        output_label=current,
        audio_stream_index=count,
        total_duration=total,
        width=config.width,
        height=config.height,
        fps=config.fps,
    )
    logger.info(
        f"[FILTER GRAPH] {count} segments, {len(operations)} operations, "
        f"transition={transition.value if transition else None}, overlap={overlap:.3f}s, "
        f"total={total:.3f}s, output=[{current}]"
    )
    return graph
