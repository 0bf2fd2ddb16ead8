"""External-tool stages: process runner, ffmpeg stages and demucs separation."""
from .ffmpeg import FFmpeg, build_karaoke_filter, ensure_extension
from .runner import PipelineStage, ProcessRunner, StageResult
from .separation import SeparationPipeline, find_accompaniment

__all__ = [
    "FFmpeg",
    "build_karaoke_filter",
    "ensure_extension",
    "PipelineStage",
    "ProcessRunner",
    "StageResult",
    "SeparationPipeline",
    "find_accompaniment",
]
