"""Collaborator interfaces for inference engine implementations."""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence

from stt_worker.model.types import DecodeChunk, LoadProgress, TranscriptionResult


@dataclass(frozen=True)
class ChunkBoundary:
    """Signal that the engine finished decoding one audio window."""

    tokens: Optional[Sequence[int]] = None
    is_last: bool = False
    time_offset: float = 0.0


@dataclass(frozen=True)
class DecodeStep:
    """Cumulative token ids for the window currently being decoded."""

    output_token_ids: Sequence[int]
    time_offset: Optional[float] = None


ChunkBoundaryHandler = Callable[[ChunkBoundary], None]
DecodeStepHandler = Callable[[DecodeStep], None]
LoadProgressHandler = Callable[[LoadProgress], None]


@dataclass(frozen=True)
class InferenceOptions:
    """Options for a single long-running inference call.

    Handlers may raise to abort the call; the engine must let the exception
    propagate out of ``__call__``.
    """

    chunk_length_s: float
    stride_length_s: float
    language: Optional[str] = None
    task: str = "transcribe"
    return_timestamps: bool = True
    on_chunk_boundary: Optional[ChunkBoundaryHandler] = None
    on_decode_step: Optional[DecodeStepHandler] = None


class TranscriptionPipeline(Protocol):
    """A loaded, ready-to-run model instance."""

    time_precision: float

    def __call__(self, samples: Any, options: InferenceOptions) -> Any:
        """Run inference over the full sample buffer."""
        raise NotImplementedError

    def decode_chunks(
        self, chunks: Sequence[DecodeChunk], time_precision: float
    ) -> TranscriptionResult:
        """Turn token chunks into text plus timestamped segments."""
        raise NotImplementedError

    def dispose(self) -> None:
        """Release model weights."""
        raise NotImplementedError


class PipelineFactory(Protocol):
    """Callable that builds a pipeline for a model identifier."""

    def __call__(
        self,
        task: str,
        model_id: str,
        *,
        quantized: bool,
        revision: str,
        on_progress: Optional[LoadProgressHandler] = None,
    ) -> TranscriptionPipeline:
        """Create a pipeline instance."""
        raise NotImplementedError
