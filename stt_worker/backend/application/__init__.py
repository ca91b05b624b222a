"""Application layer: progress, chunk window, pipeline cache and jobs."""

from stt_worker.backend.application.chunk_accumulator import ChunkAccumulator
from stt_worker.backend.application.pipeline_cache import (
    AcquireResult,
    PipelineCache,
    PipelineHandle,
)
from stt_worker.backend.application.progress import (
    ProgressEstimator,
    ProgressEvent,
    ProgressPolicy,
)
from stt_worker.backend.application.session import (
    CancellationToken,
    ModelLoadJob,
    SessionSettings,
    TranscriptionRequest,
    TranscriptionSession,
)

__all__ = [
    "AcquireResult",
    "CancellationToken",
    "ChunkAccumulator",
    "ModelLoadJob",
    "PipelineCache",
    "PipelineHandle",
    "ProgressEstimator",
    "ProgressEvent",
    "ProgressPolicy",
    "SessionSettings",
    "TranscriptionRequest",
    "TranscriptionSession",
]
