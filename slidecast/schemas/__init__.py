from slidecast.schemas.effects import EffectCatalogResponse, EffectDescription, PresetInfo
from slidecast.schemas.envelope import EnvelopeResponse, ErrorInfo, ResponseMeta
from slidecast.schemas.render import GenerateVideoResponse, LedgerEntry, MappingsResponse

__all__ = [
    "EnvelopeResponse",
    "ErrorInfo",
    "ResponseMeta",
    "EffectCatalogResponse",
    "EffectDescription",
    "PresetInfo",
    "GenerateVideoResponse",
    "LedgerEntry",
    "MappingsResponse",
]
