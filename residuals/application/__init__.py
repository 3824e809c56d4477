"""Application services."""

from .aggregator import StatusAggregator
from .coordinator import (
    PipelineCoordinator,
    configure_pipeline_coordinator,
    get_pipeline_coordinator,
    reset_pipeline_coordinator,
)

__all__ = [
    "PipelineCoordinator",
    "StatusAggregator",
    "configure_pipeline_coordinator",
    "get_pipeline_coordinator",
    "reset_pipeline_coordinator",
]
