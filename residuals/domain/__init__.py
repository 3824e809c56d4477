"""Domain layer definitions."""

from .pipeline import PipelineMetrics, PipelineProgress, PipelineSnapshot, PipelineView, StageStates

__all__ = [
    "PipelineMetrics",
    "PipelineProgress",
    "PipelineSnapshot",
    "PipelineView",
    "StageStates",
]
