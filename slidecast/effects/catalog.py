"""Effect catalog: the closed sets of transitions, motions, color grades and
overlays, the preset registry, and validation of caller-supplied options.

Everything here is pure data plus predicates; the compiler consumes the
resolved ``EffectSpec``.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from slidecast.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION_DURATION = 0.8


# ============================================================================
# Enums
# ============================================================================


class Transition(str, Enum):
    """Blend between two adjacent segments."""

    FADE = "fade"
    CROSSFADE = "crossfade"
    WIPE_LEFT = "wipeleft"
    WIPE_RIGHT = "wiperight"
    WIPE_UP = "wipeup"
    WIPE_DOWN = "wipedown"
    SLIDE_UP = "slideup"
    SLIDE_DOWN = "slidedown"
    SLIDE_LEFT = "slideleft"
    SLIDE_RIGHT = "slideright"
    CIRCLE_CROP = "circlecrop"
    RECT_CROP = "rectcrop"
    DISSOLVE = "dissolve"

    @classmethod
    def coerce(cls, value: Any) -> "Transition":
        """Unknown names fall back to ``fade``."""
        try:
            return cls(value)
        except ValueError:
            return cls.FADE


class Motion(str, Enum):
    """Per-image camera motion."""

    STATIC = "static"
    KENBURNS = "kenburns"
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    PAN_LEFT = "pan_left"
    PAN_RIGHT = "pan_right"
    PAN_UP = "pan_up"
    PAN_DOWN = "pan_down"
    ROTATE_CLOCKWISE = "rotate_clockwise"
    ROTATE_COUNTER = "rotate_counter"
    SHAKE = "shake"

    @classmethod
    def coerce(cls, value: Any) -> "Motion":
        """Unknown names fall back to ``static``."""
        try:
            return cls(value)
        except ValueError:
            return cls.STATIC


class ColorGrade(str, Enum):
    """Color grade applied once to the composed stream."""

    VINTAGE = "vintage"
    SEPIA = "sepia"
    BLACK_WHITE = "black_white"
    HIGH_CONTRAST = "high_contrast"
    LOW_CONTRAST = "low_contrast"
    WARM = "warm"
    COOL = "cool"
    VIBRANT = "vibrant"
    DESATURATED = "desaturated"
    FILM_GRAIN = "film_grain"
    VIGNETTE = "vignette"


class Overlay(str, Enum):
    """Secondary layer composited onto the composed stream."""

    PARTICLES = "particles"
    LIGHT_LEAKS = "light_leaks"
    DUST = "dust"
    SCRATCHES = "scratches"
    BOKEH = "bokeh"
    LENS_FLARE = "lens_flare"
    RAIN = "rain"
    SNOW = "snow"


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass(frozen=True)
class EffectSpec:
    """Resolved effect selection for one job. ``None`` means not applied."""

    transition: Optional[Transition] = None
    motion: Optional[Motion] = None
    color: Optional[ColorGrade] = None
    overlay: Optional[Overlay] = None
    transition_duration: float = DEFAULT_TRANSITION_DURATION

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "transition": self.transition.value if self.transition else None,
            "motion": self.motion.value if self.motion else None,
            "color": self.color.value if self.color else None,
            "overlay": self.overlay.value if self.overlay else None,
            "transition_duration": self.transition_duration,
        }

    @property
    def is_empty(self) -> bool:
        return not any((self.transition, self.motion, self.color, self.overlay))


@dataclass(frozen=True)
class Preset:
    """Named, immutable bundle of effect choices."""

    name: str
    transition: Optional[Transition]
    motion: Optional[Motion]
    color: Optional[ColorGrade]
    overlay: Optional[Overlay]
    description: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "transition": self.transition.value if self.transition else None,
            "motion": self.motion.value if self.motion else None,
            "color": self.color.value if self.color else None,
            "overlay": self.overlay.value if self.overlay else None,
            "description": self.description,
        }


@dataclass
class ValidationResult:
    """Outcome of validating effect options."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)


# ============================================================================
# Registry
# ============================================================================


PRESETS: Mapping[str, Preset] = MappingProxyType(
    {
        "cinematic": Preset(
            name="cinematic",
            transition=Transition.FADE,
            motion=Motion.KENBURNS,
            color=ColorGrade.VINTAGE,
            overlay=Overlay.LIGHT_LEAKS,
            description="Cinematic look with warm tones and subtle movement",
        ),
        "modern": Preset(
            name="modern",
            transition=Transition.CROSSFADE,
            motion=Motion.ZOOM_IN,
            color=ColorGrade.HIGH_CONTRAST,
            overlay=None,
            description="Clean modern style with sharp contrasts",
        ),
        "nostalgic": Preset(
            name="nostalgic",
            transition=Transition.DISSOLVE,
            motion=Motion.PAN_RIGHT,
            color=ColorGrade.SEPIA,
            overlay=Overlay.SCRATCHES,
            description="Vintage nostalgic feel with sepia tones",
        ),
        "dynamic": Preset(
            name="dynamic",
            transition=Transition.SLIDE_RIGHT,
            motion=Motion.SHAKE,
            color=ColorGrade.VIBRANT,
            overlay=Overlay.PARTICLES,
            description="High-energy dynamic presentation",
        ),
        "minimal": Preset(
            name="minimal",
            transition=Transition.FADE,
            motion=Motion.STATIC,
            color=ColorGrade.BLACK_WHITE,
            overlay=None,
            description="Clean minimal black and white style",
        ),
        "nature": Preset(
            name="nature",
            transition=Transition.WIPE_LEFT,
            motion=Motion.ZOOM_OUT,
            color=ColorGrade.COOL,
            overlay=Overlay.BOKEH,
            description="Natural outdoor feeling with cool tones",
        ),
    }
)

EFFECT_DESCRIPTIONS: Mapping[str, Mapping[str, str]] = MappingProxyType(
    {
        "transition": {
            Transition.FADE.value: "Smooth fade from one image to the next",
            Transition.CROSSFADE.value: "Fade through black between images",
            Transition.WIPE_LEFT.value: "Next image wipes in from the right edge",
            Transition.WIPE_RIGHT.value: "Next image wipes in from the left edge",
            Transition.WIPE_UP.value: "Next image wipes in from the bottom edge",
            Transition.WIPE_DOWN.value: "Next image wipes in from the top edge",
            Transition.SLIDE_UP.value: "Next image slides up over the current one",
            Transition.SLIDE_DOWN.value: "Next image slides down over the current one",
            Transition.SLIDE_LEFT.value: "Next image slides in to the left",
            Transition.SLIDE_RIGHT.value: "Next image slides in to the right",
            Transition.CIRCLE_CROP.value: "Circular iris reveals the next image",
            Transition.RECT_CROP.value: "Rectangular iris reveals the next image",
            Transition.DISSOLVE.value: "Pixel dissolve into the next image",
        },
        "motion": {
            Motion.STATIC.value: "Image stays still",
            Motion.KENBURNS.value: "Slow continuous zoom towards the centre",
            Motion.ZOOM_IN.value: "Linear zoom in, centred",
            Motion.ZOOM_OUT.value: "Linear zoom out, centred",
            Motion.PAN_LEFT.value: "Camera pans from right to left",
            Motion.PAN_RIGHT.value: "Camera pans from left to right",
            Motion.PAN_UP.value: "Camera pans from bottom to top",
            Motion.PAN_DOWN.value: "Camera pans from top to bottom",
            Motion.ROTATE_CLOCKWISE.value: "One full clockwise turn per image",
            Motion.ROTATE_COUNTER.value: "One full counter-clockwise turn per image",
            Motion.SHAKE.value: "Handheld-style jitter around the centre",
        },
        "color": {
            ColorGrade.VINTAGE.value: "Faded vintage tone curve with warm highlights",
            ColorGrade.SEPIA.value: "Classic sepia channel mix",
            ColorGrade.BLACK_WHITE.value: "Fully desaturated black and white",
            ColorGrade.HIGH_CONTRAST.value: "Steep S-curve for punchy contrast",
            ColorGrade.LOW_CONTRAST.value: "Flattened curve with lifted blacks",
            ColorGrade.WARM.value: "Warm colour temperature (3000K)",
            ColorGrade.COOL.value: "Cool colour temperature (7000K)",
            ColorGrade.VIBRANT.value: "Boosted vibrance and saturation",
            ColorGrade.DESATURATED.value: "Muted colours at 30% saturation",
            ColorGrade.FILM_GRAIN.value: "Temporal film grain with light sharpening",
            ColorGrade.VIGNETTE.value: "Darkened corners",
        },
        "overlay": {
            Overlay.PARTICLES.value: "Sparse floating light particles",
            Overlay.LIGHT_LEAKS.value: "Drifting warm light leaks",
            Overlay.DUST.value: "Fine dust specks",
            Overlay.SCRATCHES.value: "Vertical film scratches",
            Overlay.BOKEH.value: "Soft out-of-focus glow",
            Overlay.LENS_FLARE.value: "Radial lens flare in the upper frame",
            Overlay.RAIN.value: "Falling rain streaks",
            Overlay.SNOW.value: "Falling snowflakes",
        },
    }
)

_CATEGORY_ENUMS: dict[str, type[Enum]] = {
    "transition": Transition,
    "motion": Motion,
    "color": ColorGrade,
    "overlay": Overlay,
}

_DURATION_KEYS = ("transitionDuration", "transition_duration")
ALLOWED_OPTION_KEYS = frozenset({*_CATEGORY_ENUMS, *_DURATION_KEYS, "preset"})


# ============================================================================
# Catalog operations
# ============================================================================


def list_effects() -> dict[str, list[str]]:
    """Return every valid identifier per category."""
    return {
        "transitions": [t.value for t in Transition],
        "motions": [m.value for m in Motion],
        "colors": [c.value for c in ColorGrade],
        "overlays": [o.value for o in Overlay],
    }


def list_presets() -> Mapping[str, Preset]:
    """Return the (read-only) preset registry."""
    return PRESETS


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


def _parse_duration(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        duration = float(value)
    except (TypeError, ValueError):
        return None
    if duration <= 0 or duration != duration:  # NaN
        return None
    return duration


def validate(options: Mapping[str, Any] | None) -> ValidationResult:
    """Check effect options against the catalog.

    Every present category field must be a member of its enumeration, a
    named preset must exist, the transition duration must be a positive
    number, and no other keys are accepted.
    """
    if not options:
        return ValidationResult(is_valid=True)
    if not isinstance(options, Mapping):
        return ValidationResult(is_valid=False, errors=["Effect options must be an object"])

    errors: list[str] = []

    for key in options:
        if key not in ALLOWED_OPTION_KEYS:
            errors.append(f"Unknown effect option: {key}")

    for category, enum_cls in _CATEGORY_ENUMS.items():
        value = options.get(category)
        if not _is_set(value):
            continue
        if value not in {member.value for member in enum_cls}:
            errors.append(f"Invalid {category} effect: {value}")

    preset = options.get("preset")
    if _is_set(preset) and preset not in PRESETS:
        errors.append(f"Invalid effect preset: {preset}")

    for key in _DURATION_KEYS:
        if key in options and _is_set(options[key]) and _parse_duration(options[key]) is None:
            errors.append(f"Invalid transition duration: {options[key]}")

    return ValidationResult(is_valid=not errors, errors=errors)


def apply_preset(name: str) -> EffectSpec:
    """Expand a preset into a full EffectSpec.

    Raises:
        NotFoundError: If the preset is not registered
    """
    preset = PRESETS.get(name)
    if preset is None:
        raise NotFoundError("Preset", name)

    return EffectSpec(
        transition=preset.transition,
        motion=preset.motion,
        color=preset.color,
        overlay=preset.overlay,
        transition_duration=DEFAULT_TRANSITION_DURATION,
    )


def resolve_effects(
    options: Mapping[str, Any] | None,
    default_transition_duration: float = DEFAULT_TRANSITION_DURATION,
) -> EffectSpec:
    """Validate options and merge them over the named preset, if any.

    Fields explicitly supplied by the caller always win; every other field
    keeps the preset's value.

    Raises:
        ValidationError: If the options fail catalog validation
    """
    result = validate(options)
    if not result.is_valid:
        raise ValidationError(errors=result.errors)

    options = options or {}
    preset_name = options.get("preset")
    if _is_set(preset_name):
        base = apply_preset(preset_name)
    else:
        base = EffectSpec(transition_duration=default_transition_duration)

    fields: dict[str, Any] = {
        "transition": base.transition,
        "motion": base.motion,
        "color": base.color,
        "overlay": base.overlay,
        "transition_duration": base.transition_duration,
    }
    for category, enum_cls in _CATEGORY_ENUMS.items():
        value = options.get(category)
        if _is_set(value):
            fields[category] = enum_cls(value)
    for key in _DURATION_KEYS:
        if key in options and _is_set(options[key]):
            fields["transition_duration"] = _parse_duration(options[key])

    spec = EffectSpec(**fields)
    logger.info(f"[EFFECTS] Resolved effects (preset={preset_name or 'none'}): {spec.to_dict()}")
    return spec


def describe_effect(effect_type: str, name: str) -> dict[str, Any]:
    """Look up the description of one effect or preset (no rendering).

    Raises:
        NotFoundError: If the type or name is unknown
    """
    if effect_type == "preset":
        preset = PRESETS.get(name)
        if preset is None:
            raise NotFoundError("Preset", name)
        return {
            "type": "preset",
            "name": name,
            "description": preset.description,
            "effects": apply_preset(name).to_dict(),
        }

    descriptions = EFFECT_DESCRIPTIONS.get(effect_type)
    if descriptions is None:
        raise NotFoundError("Effect type", effect_type)
    if name not in descriptions:
        raise NotFoundError(f"{effect_type.capitalize()} effect", name)

    return {"type": effect_type, "name": name, "description": descriptions[name]}
