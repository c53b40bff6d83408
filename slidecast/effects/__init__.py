from slidecast.effects.catalog import (
    PRESETS,
    ColorGrade,
    EffectSpec,
    Motion,
    Overlay,
    Preset,
    Transition,
    apply_preset,
    list_effects,
    list_presets,
    resolve_effects,
    validate,
)

__all__ = [
    "PRESETS",
    "ColorGrade",
    "EffectSpec",
    "Motion",
    "Overlay",
    "Preset",
    "Transition",
    "apply_preset",
    "list_effects",
    "list_presets",
    "resolve_effects",
    "validate",
]
