from hybridedit.render.media import FFmpegMediaProcessor, MediaInfo, MediaProcessor, build_filter_chain
from hybridedit.render.plan import EffectStep, RenderPlan, build_render_plan
from hybridedit.render.workers import RenderResult, RenderWorker

__all__ = [
    "RenderWorker",
    "RenderResult",
    "RenderPlan",
    "EffectStep",
    "build_render_plan",
    "build_filter_chain",
    "MediaInfo",
    "MediaProcessor",
    "FFmpegMediaProcessor",
]
