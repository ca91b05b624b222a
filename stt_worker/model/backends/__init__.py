"""Backend registry for inference engine implementations."""

from typing import Any

from stt_worker.errors import ErrorCode, InitializationError
from stt_worker.model.backends.base import PipelineFactory


def get_pipeline_factory(name: str = "faster_whisper", **kwargs: Any) -> PipelineFactory:
    """Resolve and build a pipeline factory by backend name."""
    normalized = (name or "faster_whisper").lower()
    if normalized in {"faster_whisper", "faster-whisper", "fw"}:
        try:
            from stt_worker.model.backends.faster_whisper import (
                FasterWhisperPipelineFactory,
            )
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise InitializationError(
                "faster_whisper backend requires the faster-whisper package.",
                code=ErrorCode.ENGINE_UNAVAILABLE,
                details=str(exc),
            ) from exc

        return FasterWhisperPipelineFactory(**kwargs)
    raise InitializationError(
        f"Unknown model backend: {name}", code=ErrorCode.ENGINE_UNAVAILABLE
    )


__all__ = ["get_pipeline_factory"]
