"""Message-passing boundary between a caller and the transcription worker."""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional

from stt_worker.backend.application.events import (
    EventStatus,
    NO_MODEL_LOADED_MESSAGE,
    WORKER_INITIALIZED_MESSAGE,
    WorkerEvent,
    cancelled_event,
    error_event,
    loading_event,
    ready_event,
)
from stt_worker.backend.application.pipeline_cache import PipelineCache
from stt_worker.backend.application.session import (
    ModelLoadJob,
    PipelineJob,
    SessionSettings,
    TranscriptionSession,
)
from stt_worker.backend.transport.commands import (
    CancelCommand,
    Command,
    LoadModelCommand,
    StatusCommand,
    TranscribeCommand,
    decode_command,
)
from stt_worker.errors import ProtocolError, WorkerError
from stt_worker.model.types import ModelSpec, SessionStatus

LOGGER = logging.getLogger("stt_worker.channel")

MessageSink = Callable[[Dict[str, Any]], None]


class WorkerChannel:
    """Owns one PipelineCache and runs its jobs off the caller's thread.

    Callers enqueue command dictionaries with ``post_message``; a dispatcher
    thread decodes them and hands model work to a single job thread, so a
    ``cancel`` is seen while a transcription is running. Events leave only
    through ``post``.
    """

    def __init__(
        self,
        cache: PipelineCache,
        post: MessageSink,
        settings: Optional[SessionSettings] = None,
        name: str = "worker",
    ) -> None:
        self.cache = cache
        self.settings = settings or SessionSettings()
        self.name = name
        self._post = post
        self._post_lock = threading.Lock()
        self._inbound: "queue.Queue[Optional[Any]]" = queue.Queue()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{name}-job"
        )
        self._jobs_lock = threading.Lock()
        self._jobs: List[PipelineJob] = []
        self._last_spec: Optional[ModelSpec] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._closed = False

    @property
    def last_spec(self) -> Optional[ModelSpec]:
        return self._last_spec

    def active_jobs(self) -> List[PipelineJob]:
        with self._jobs_lock:
            return [job for job in self._jobs if not job.done]

    def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name=f"{self.name}-dispatcher", daemon=True
        )
        self._dispatcher.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the dispatcher after the queued messages are handled."""
        dispatcher = self._dispatcher
        if dispatcher is None:
            return
        self._inbound.put(None)
        dispatcher.join(timeout=timeout)
        self._dispatcher = None

    def close(self, timeout: Optional[float] = None) -> None:
        """Cancel outstanding jobs, stop all threads and dispose the model."""
        if self._closed:
            return
        self._closed = True
        self.stop(timeout=timeout)
        for job in self.active_jobs():
            job.cancel("channel closed")
        self._executor.shutdown(wait=True)
        self.cache.close()
        LOGGER.info("Worker channel '%s' closed", self.name)

    def post_message(self, message: Any) -> None:
        """Enqueue a command; never blocks on model work."""
        if self._closed:
            LOGGER.warning("Dropping message for closed channel '%s'", self.name)
            return
        self._inbound.put(message)

    def announce(self) -> None:
        self._emit(ready_event(message=WORKER_INITIALIZED_MESSAGE))

    def handle(self, message: Any) -> None:
        """Decode and dispatch one message; failures become one error event."""
        try:
            command = decode_command(message)
        except ProtocolError as exc:
            LOGGER.warning("Ignoring message: %s", exc)
            return
        except WorkerError as exc:
            LOGGER.error("Rejected command: %s", exc)
            self._emit(error_event(exc, _model_of(message)))
            return

        LOGGER.debug("Received message: %s", command.type)
        try:
            self._dispatch(command)
        except WorkerError as exc:
            LOGGER.error("Command %s failed: %s", command.type, exc)
            self._emit(error_event(exc, _model_of(message)))
        except Exception as exc:  # pragma: no cover - defensive
            LOGGER.exception("Command %s failed unexpectedly", command.type)
            self._emit(error_event(exc, _model_of(message)))

    def _dispatch_loop(self) -> None:
        while True:
            message = self._inbound.get()
            if message is None:
                break
            self.handle(message)

    def _dispatch(self, command: Command) -> None:
        if isinstance(command, StatusCommand):
            self._handle_status()
        elif isinstance(command, CancelCommand):
            self._handle_cancel()
        elif isinstance(command, LoadModelCommand):
            spec = command.to_spec()
            LOGGER.info(
                "Loading model: %s (quantized: %s, multilingual: %s)",
                spec.identifier,
                spec.quantized,
                spec.multilingual,
            )
            self._submit(ModelLoadJob(self.cache, spec, self._emit, self.settings))
        elif isinstance(command, TranscribeCommand):
            request = command.to_request()
            self._submit(
                TranscriptionSession(self.cache, request, self._emit, self.settings)
            )

    def _submit(self, job: PipelineJob) -> None:
        with self._jobs_lock:
            active = [pending for pending in self._jobs if not pending.done]
            if any(not pending.spec.equivalent(job.spec) for pending in active):
                # Switching models mid-flight is cancel-then-load.
                LOGGER.info(
                    "Model switch to '%s'; cancelling %d pending job(s)",
                    job.spec.identifier,
                    len(active),
                )
                for pending in active:
                    pending.cancel("model switch")
            self._jobs.append(job)
            self._last_spec = job.spec
        self._executor.submit(self._run_job, job)

    def _run_job(self, job: PipelineJob) -> None:
        try:
            job.run()
        finally:
            with self._jobs_lock:
                if job in self._jobs:
                    self._jobs.remove(job)

    def _handle_cancel(self) -> None:
        LOGGER.info("Cancellation requested")
        with self._jobs_lock:
            active = [job for job in self._jobs if not job.done]
            cancelled = [job for job in active if job.cancel("cancel command")]
        if cancelled:
            return
        # Nothing running: dispose anyway so the next request loads cleanly.
        current = self.cache.current_spec or self._last_spec
        self.cache.release()
        self._emit(cancelled_event(current.identifier if current else None))

    def _handle_status(self) -> None:
        active = self.active_jobs()
        if active:
            self._emit(_status_of(active[0]))
            return
        spec = self._last_spec
        if spec is not None and self.cache.holds(spec):
            self._emit(ready_event(spec.identifier, message="Model ready"))
            return
        current = self.cache.current_spec
        self._emit(
            loading_event(
                current.identifier if current else None,
                message=NO_MODEL_LOADED_MESSAGE,
            )
        )

    def _emit(self, event: WorkerEvent) -> None:
        message = event.to_message()
        with self._post_lock:
            try:
                self._post(message)
            except Exception:  # pragma: no cover - defensive logging
                LOGGER.exception("Failed to post %s event", event.status.value)


def _status_of(job: PipelineJob) -> WorkerEvent:
    status = job.status
    if status is SessionStatus.TRANSCRIBING:
        return WorkerEvent(
            EventStatus.TRANSCRIBING,
            {"model": job.model, "message": "Transcription in progress"},
        )
    if status is SessionStatus.READY:
        return ready_event(job.model, message="Model ready")
    return loading_event(job.model, message="Loading model")


def _model_of(message: Any) -> Optional[str]:
    if isinstance(message, Mapping):
        model = message.get("model")
        return model if isinstance(model, str) and model else None
    return None


__all__ = ["MessageSink", "WorkerChannel"]
