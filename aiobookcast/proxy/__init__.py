"""Public interface for the audio proxy package."""

from .fade import CancelToken, Fade, FadeResult, fade_in, fade_out, fade_volume
from .gain import MAX_GAIN, MIN_GAIN, UNITY_GAIN, GainStage, clamp_gain
from .pipeline import AudioPipeline, PipelineError, PipelineOptions, PipelineOutput
from .process import ProcessHandle, SubprocessHandle
from .server import (
    ProxyEvent,
    ProxyServer,
    SessionEndedEvent,
    SessionStartedEvent,
    StreamSession,
    StreamSource,
)

__all__ = [
    "MAX_GAIN",
    "MIN_GAIN",
    "UNITY_GAIN",
    "AudioPipeline",
    "CancelToken",
    "Fade",
    "FadeResult",
    "GainStage",
    "PipelineError",
    "PipelineOptions",
    "PipelineOutput",
    "ProcessHandle",
    "ProxyEvent",
    "ProxyServer",
    "SessionEndedEvent",
    "SessionStartedEvent",
    "StreamSession",
    "StreamSource",
    "SubprocessHandle",
    "clamp_gain",
    "fade_in",
    "fade_out",
    "fade_volume",
]
