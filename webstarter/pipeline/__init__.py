"""
Build pipeline: an explicit stage graph and the starter kit's stages.
"""

from .graph import (
    Pipeline,
    PipelineGraphError,
    PipelineResult,
    Stage,
    StageFailedError,
    StageOutput,
    StageResult,
    StageStatus,
)
from .stages import SERVICE_WORKER_FILENAME, build_default_pipeline, delegated_pipeline

__all__ = [
    "Pipeline",
    "PipelineGraphError",
    "PipelineResult",
    "SERVICE_WORKER_FILENAME",
    "Stage",
    "StageFailedError",
    "StageOutput",
    "StageResult",
    "StageStatus",
    "build_default_pipeline",
    "delegated_pipeline",
]
