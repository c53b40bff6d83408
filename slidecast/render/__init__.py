from slidecast.render.audio_concat import AudioConcatenator
from slidecast.render.filter_graph import FilterGraph, compile_graph
from slidecast.render.orchestrator import EncodingOrchestrator
from slidecast.render.pipeline import RenderPipeline

__all__ = [
    "RenderPipeline",
    "EncodingOrchestrator",
    "AudioConcatenator",
    "FilterGraph",
    "compile_graph",
]
