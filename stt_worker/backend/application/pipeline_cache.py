"""Single-slot cache for the loaded transcription pipeline."""

import logging
import threading
from typing import Any, Dict, NamedTuple, Optional, Sequence

from stt_worker.config.default import (
    DEFAULT_REVISION,
    PIPELINE_TASK,
    default_revision_overrides,
)
from stt_worker.errors import (
    CancellationError,
    ErrorCode,
    ModelLoadError,
    WorkerError,
)
from stt_worker.model.backends.base import (
    InferenceOptions,
    LoadProgressHandler,
    PipelineFactory,
    TranscriptionPipeline,
)
from stt_worker.model.types import DecodeChunk, ModelSpec, TranscriptionResult

LOGGER = logging.getLogger("stt_worker.pipeline_cache")


class PipelineHandle:
    """A loaded pipeline tagged with the spec it was built from.

    Once disposed the handle refuses to run, so a session still holding it
    observes a failure instead of using released weights.
    """

    def __init__(self, spec: ModelSpec, pipeline: TranscriptionPipeline) -> None:
        self.spec = spec
        self._pipeline: Optional[TranscriptionPipeline] = pipeline
        self._lock = threading.Lock()

    @property
    def disposed(self) -> bool:
        return self._pipeline is None

    @property
    def time_precision(self) -> float:
        return float(getattr(self._require(), "time_precision", 0.02))

    def __call__(self, samples: Any, options: InferenceOptions) -> Any:
        return self._require()(samples, options)

    def decode_chunks(
        self, chunks: Sequence[DecodeChunk], time_precision: float
    ) -> TranscriptionResult:
        return self._require().decode_chunks(chunks, time_precision)

    def dispose(self) -> None:
        with self._lock:
            pipeline = self._pipeline
            self._pipeline = None
        if pipeline is not None:
            pipeline.dispose()

    def _require(self) -> TranscriptionPipeline:
        pipeline = self._pipeline
        if pipeline is None:
            raise CancellationError(
                f"Pipeline for '{self.spec.identifier}' was disposed",
                code=ErrorCode.MODEL_DISPOSED,
            )
        return pipeline


def _is_live_match(handle: Optional[PipelineHandle], spec: Optional[ModelSpec]) -> bool:
    return handle is not None and not handle.disposed and handle.spec.equivalent(spec)


class AcquireResult(NamedTuple):
    handle: PipelineHandle
    reused: bool


class PipelineCache:
    """Owns at most one PipelineHandle; disposes it before loading another."""

    def __init__(
        self,
        factory: PipelineFactory,
        default_revision: str = DEFAULT_REVISION,
        revision_overrides: Optional[Dict[str, str]] = None,
    ) -> None:
        self._factory = factory
        # _load_lock serializes load/dispose; _state_lock guards the slot so
        # status reads never wait behind a model download.
        self._load_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._handle: Optional[PipelineHandle] = None
        self._default_revision = default_revision
        self._revision_overrides = (
            dict(revision_overrides)
            if revision_overrides is not None
            else default_revision_overrides()
        )

    @property
    def current_spec(self) -> Optional[ModelSpec]:
        with self._state_lock:
            return self._handle.spec if self._handle is not None else None

    def holds(self, spec: Optional[ModelSpec]) -> bool:
        """Check if a live handle equivalent to ``spec`` is loaded."""
        with self._state_lock:
            handle = self._handle
        return _is_live_match(handle, spec)

    def resolve_revision(self, identifier: str) -> str:
        for pattern, revision in self._revision_overrides.items():
            if pattern in identifier:
                return revision
        return self._default_revision

    def acquire(
        self,
        spec: ModelSpec,
        on_progress: Optional[LoadProgressHandler] = None,
    ) -> AcquireResult:
        """Return a handle for ``spec``, loading it if needed."""
        with self._load_lock:
            with self._state_lock:
                current = self._handle
            if _is_live_match(current, spec):
                assert current is not None
                LOGGER.debug("Reusing pipeline for model '%s'", spec.identifier)
                return AcquireResult(current, True)

            self._dispose_current()

            revision = self.resolve_revision(spec.identifier)
            LOGGER.info(
                "Loading model '%s' quantized=%s revision=%s",
                spec.identifier,
                spec.quantized,
                revision,
            )
            try:
                pipeline = self._factory(
                    PIPELINE_TASK,
                    spec.identifier,
                    quantized=spec.quantized,
                    revision=revision,
                    on_progress=on_progress,
                )
            except CancellationError:
                LOGGER.info("Model load cancelled for '%s'", spec.identifier)
                raise
            except WorkerError as exc:
                LOGGER.exception("Failed to load model '%s'", spec.identifier)
                raise ModelLoadError(
                    exc.detail, code=exc.code, details=exc.details, spec=spec
                ) from exc
            except Exception as exc:
                LOGGER.exception("Failed to load model '%s'", spec.identifier)
                raise ModelLoadError(
                    f"Failed to load model '{spec.identifier}': {exc}",
                    details=repr(exc),
                    spec=spec,
                ) from exc

            handle = PipelineHandle(spec, pipeline)
            with self._state_lock:
                self._handle = handle
            LOGGER.info("Successfully loaded model '%s'", spec.identifier)
            return AcquireResult(handle, False)

    def release(self) -> bool:
        """Dispose the loaded handle; returns whether one was loaded."""
        with self._load_lock:
            return self._dispose_current()

    def close(self) -> None:
        self.release()

    def _dispose_current(self) -> bool:
        with self._state_lock:
            handle = self._handle
            self._handle = None
        if handle is None:
            return False
        LOGGER.info("Disposing pipeline for model '%s'", handle.spec.identifier)
        try:
            handle.dispose()
        except Exception:
            LOGGER.exception(
                "%s for '%s'",
                ErrorCode.MODEL_DISPOSE_FAILED.value,
                handle.spec.identifier,
            )
        return True


__all__ = ["AcquireResult", "PipelineCache", "PipelineHandle"]
