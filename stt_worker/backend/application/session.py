"""Per-request jobs: model loading and end-to-end transcription."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence, Tuple

from stt_worker.backend.application.chunk_accumulator import ChunkAccumulator
from stt_worker.backend.application.events import (
    WorkerEvent,
    cancelled_event,
    complete_event,
    error_event,
    loading_event,
    progress_event,
    ready_event,
    transcribing_event,
    update_event,
)
from stt_worker.backend.application.pipeline_cache import (
    PipelineCache,
    PipelineHandle,
)
from stt_worker.backend.application.progress import ProgressEstimator, ProgressPolicy
from stt_worker.config.default import (
    DEFAULT_CHUNK_LENGTH_S,
    DEFAULT_DISTIL_CHUNK_LENGTH_S,
    DEFAULT_DISTIL_STRIDE_LENGTH_S,
    DEFAULT_LANGUAGE,
    DEFAULT_MAX_RETAINED_CHUNKS,
    DEFAULT_RETURN_TIMESTAMPS,
    DEFAULT_STRIDE_LENGTH_S,
    DEFAULT_TASK,
    is_distil_identifier,
)
from stt_worker.errors import (
    CancellationError,
    ErrorCode,
    InferenceError,
    WorkerError,
)
from stt_worker.model.backends.base import ChunkBoundary, DecodeStep, InferenceOptions
from stt_worker.model.types import (
    DecodeChunk,
    LoadProgress,
    ModelSpec,
    SessionStatus,
    TranscriptionResult,
)
from stt_worker.utils.logger import clear_session_id, set_session_id

LOGGER = logging.getLogger("stt_worker.session")

EventSink = Callable[[WorkerEvent], None]


class CancellationToken:
    """Cooperative cancellation flag polled at the job's callback sites."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self, where: str = "") -> None:
        if self._event.is_set():
            detail = "Transcription cancelled by user"
            if where:
                detail = f"{detail} ({where})"
            raise CancellationError(detail)


@dataclass(frozen=True)
class SessionSettings:
    """Decode and progress settings shared by every job of one channel."""

    chunk_length_s: float = DEFAULT_CHUNK_LENGTH_S
    stride_length_s: float = DEFAULT_STRIDE_LENGTH_S
    distil_chunk_length_s: float = DEFAULT_DISTIL_CHUNK_LENGTH_S
    distil_stride_length_s: float = DEFAULT_DISTIL_STRIDE_LENGTH_S
    return_timestamps: bool = DEFAULT_RETURN_TIMESTAMPS
    default_language: Optional[str] = DEFAULT_LANGUAGE
    default_task: str = DEFAULT_TASK
    max_retained_chunks: int = DEFAULT_MAX_RETAINED_CHUNKS
    progress_policy: ProgressPolicy = field(default_factory=ProgressPolicy)

    @classmethod
    def from_config(cls, config: Any) -> "SessionSettings":
        return cls(
            chunk_length_s=float(config.chunk_length_s),
            stride_length_s=float(config.stride_length_s),
            distil_chunk_length_s=float(config.distil_chunk_length_s),
            distil_stride_length_s=float(config.distil_stride_length_s),
            return_timestamps=bool(config.return_timestamps),
            default_language=config.language,
            default_task=config.task,
            max_retained_chunks=int(config.max_retained_chunks),
            progress_policy=ProgressPolicy(
                update_interval_ms=int(config.update_interval_ms),
                min_step_percent=int(config.min_step_percent),
                smoothing_weight=float(config.smoothing_weight),
                final_chunk_headroom=float(config.final_chunk_headroom),
                estimate_min_progress=float(config.estimate_min_progress),
            ),
        )

    def chunking_for(self, identifier: str) -> Tuple[float, float]:
        """Distilled checkpoints were trained on shorter windows."""
        if is_distil_identifier(identifier):
            return self.distil_chunk_length_s, self.distil_stride_length_s
        return self.chunk_length_s, self.stride_length_s


@dataclass(frozen=True)
class TranscriptionRequest:
    spec: ModelSpec
    audio: Any
    language: Optional[str] = None
    subtask: Optional[str] = None


class PipelineJob:
    """Shared loading phase and terminal bookkeeping for worker jobs."""

    kind = "job"

    def __init__(
        self,
        cache: PipelineCache,
        spec: ModelSpec,
        emit: EventSink,
        settings: Optional[SessionSettings] = None,
        token: Optional[CancellationToken] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.cache = cache
        self.spec = spec
        self.settings = settings or SessionSettings()
        self.token = token or CancellationToken()
        self.session_id = session_id or uuid.uuid4().hex
        self._emit = emit
        self._status = SessionStatus.IDLE
        self._status_lock = threading.Lock()
        self._settled = False
        self._done = threading.Event()

    @property
    def status(self) -> SessionStatus:
        with self._status_lock:
            return self._status

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def model(self) -> str:
        return self.spec.identifier

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Request cancellation; False once the job has settled its outcome.

        A True return guarantees the job ends with a ``cancelled`` event and
        a released cache, however late the request arrives.
        """
        with self._status_lock:
            if self._settled or self._done.is_set():
                return False
            self.token.cancel(reason)
            return True

    def run(self) -> SessionStatus:
        set_session_id(self.session_id)
        try:
            LOGGER.info("Starting %s model=%s", self.kind, self.model)
            self.token.raise_if_cancelled("before start")
            self._execute()
            self._seal()
        except CancellationError as exc:
            LOGGER.info("%s cancelled: %s", self.kind, exc.detail)
            self._on_cancelled()
        except WorkerError as exc:
            LOGGER.error("%s failed: %s", self.kind, exc)
            self._finish(SessionStatus.ERROR, error_event(exc, self.model))
        except Exception as exc:  # pragma: no cover - defensive
            LOGGER.exception("%s failed unexpectedly", self.kind)
            self._finish(SessionStatus.ERROR, error_event(exc, self.model))
        finally:
            self._done.set()
            clear_session_id()
        return self.status

    def _execute(self) -> None:
        raise NotImplementedError

    def _load(self) -> PipelineHandle:
        self._set_status(SessionStatus.LOADING)
        if not self.cache.holds(self.spec):
            self._post(loading_event(self.model))
        result = self.cache.acquire(self.spec, on_progress=self._on_load_progress)
        LOGGER.debug("Pipeline acquired model=%s reused=%s", self.model, result.reused)
        self.token.raise_if_cancelled("after model load")
        self._set_status(SessionStatus.READY)
        self._post(ready_event(self.model))
        return result.handle

    def _on_load_progress(self, tick: LoadProgress) -> None:
        self.token.raise_if_cancelled("during model load")
        self._post(progress_event(tick))

    def _on_cancelled(self) -> None:
        # A partially consumed streaming decode cannot be resumed.
        self.cache.release()
        self._finish(SessionStatus.CANCELLED, cancelled_event(self.model))

    def _finish(self, status: SessionStatus, event: WorkerEvent) -> None:
        with self._status_lock:
            if self._settled:
                LOGGER.warning(
                    "Dropping %s event; job already ended as %s",
                    event.status.value,
                    self._status.value,
                )
                return
            self._settled = True
            # A cancel accepted after the last token check still wins.
            late_cancel = (
                status is not SessionStatus.CANCELLED and self.token.cancelled
            )
            if late_cancel:
                status = SessionStatus.CANCELLED
                event = cancelled_event(self.model)
            self._status = status
        if late_cancel:
            LOGGER.info("%s cancelled before it could finish", self.kind)
            self.cache.release()
        self._post(event)

    def _seal(self) -> None:
        """Close the cancel window for a job that ends without a terminal event."""
        with self._status_lock:
            if self._settled or not self.token.cancelled:
                self._settled = True
                return
        raise CancellationError(f"{self.kind.capitalize()} cancelled by user")

    def _set_status(self, status: SessionStatus) -> None:
        with self._status_lock:
            self._status = status

    def _post(self, event: WorkerEvent) -> None:
        self._emit(event)


class ModelLoadJob(PipelineJob):
    """Loads (or reuses) a model without transcribing."""

    kind = "model load"

    def _execute(self) -> None:
        self._load()


class TranscriptionSession(PipelineJob):
    """Runs one transcription request from model acquisition to a terminal event."""

    kind = "transcription"

    def __init__(
        self,
        cache: PipelineCache,
        request: TranscriptionRequest,
        emit: EventSink,
        settings: Optional[SessionSettings] = None,
        token: Optional[CancellationToken] = None,
        session_id: Optional[str] = None,
    ) -> None:
        super().__init__(cache, request.spec, emit, settings, token, session_id)
        self.request = request
        self.estimator = ProgressEstimator(self.settings.progress_policy)
        self.accumulator = ChunkAccumulator(self.settings.max_retained_chunks)
        self._handle: Optional[PipelineHandle] = None
        self._time_precision = 0.0

    def _execute(self) -> None:
        handle = self._load()
        self.token.raise_if_cancelled("after pipeline check")

        self._handle = handle
        self._time_precision = handle.time_precision
        self.estimator.reset()
        self.accumulator = ChunkAccumulator(self.settings.max_retained_chunks)
        self._set_status(SessionStatus.TRANSCRIBING)
        self._post(transcribing_event(self.model))

        options = self._inference_options()
        LOGGER.info(
            "Transcribing model=%s chunk_length_s=%s stride_length_s=%s "
            "language=%s task=%s",
            self.model,
            options.chunk_length_s,
            options.stride_length_s,
            options.language or "auto",
            options.task,
        )
        try:
            output = handle(self.request.audio, options)
        except CancellationError:
            raise
        except Exception as exc:
            raise InferenceError(
                f"Transcription failed: {exc}", details=repr(exc)
            ) from exc
        self.token.raise_if_cancelled("after inference")

        result = TranscriptionResult.from_payload(output)
        LOGGER.info(
            "Transcription complete model=%s text_length=%d chunks=%d",
            self.model,
            len(result.text),
            len(result.chunks),
        )
        self._finish(
            SessionStatus.COMPLETE,
            complete_event(result, self.model, self.estimator.finish()),
        )

    def _inference_options(self) -> InferenceOptions:
        chunk_length_s, stride_length_s = self.settings.chunking_for(self.model)
        return InferenceOptions(
            chunk_length_s=chunk_length_s,
            stride_length_s=stride_length_s,
            language=self._language(),
            task=self.request.subtask or self.settings.default_task,
            return_timestamps=self.settings.return_timestamps,
            on_chunk_boundary=self._on_chunk_boundary,
            on_decode_step=self._on_decode_step,
        )

    def _language(self) -> Optional[str]:
        if not self.spec.multilingual:
            # English-only checkpoints reject other language tokens.
            return "en"
        return self.request.language or self.settings.default_language

    def _on_chunk_boundary(self, boundary: ChunkBoundary) -> None:
        self.token.raise_if_cancelled("at chunk boundary")
        self.accumulator.finalize(boundary)
        LOGGER.debug(
            "Chunk finalized is_last=%s finalized=%d retained=%d",
            boundary.is_last,
            self.accumulator.finalized_count(),
            len(self.accumulator),
        )

    def _on_decode_step(self, step: DecodeStep) -> None:
        self.token.raise_if_cancelled("during decode")
        self.accumulator.append(step.output_token_ids, step.time_offset)
        window = self.accumulator.current_window()
        progress = self.estimator.update(window)
        if progress is None:
            return
        self._post(update_event(self._decode_window(window), progress))

    def _decode_window(self, window: Sequence[DecodeChunk]) -> TranscriptionResult:
        if not self.accumulator.has_finalized() or self._handle is None:
            return TranscriptionResult.empty()
        try:
            return self._handle.decode_chunks(window, self._time_precision)
        except CancellationError:
            raise
        except Exception:
            # An intermediate decode failure must not fail the whole request.
            LOGGER.exception(
                "%s incremental decode failed", ErrorCode.DECODE_FAILED.value
            )
            return TranscriptionResult.empty()


__all__ = [
    "CancellationToken",
    "EventSink",
    "ModelLoadJob",
    "PipelineJob",
    "SessionSettings",
    "TranscriptionRequest",
    "TranscriptionSession",
]
