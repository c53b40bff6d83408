from pydantic import BaseModel


class PresetInfo(BaseModel):
    name: str
    transition: str | None
    motion: str | None
    color: str | None
    overlay: str | None
    description: str


class EffectCatalogResponse(BaseModel):
    transitions: list[str]
    motions: list[str]
    colors: list[str]
    overlays: list[str]
    presets: dict[str, PresetInfo]


class EffectDescription(BaseModel):
    type: str
    name: str
    description: str
    effects: dict | None = None  # resolved effects, presets only
