"""Caller-side transcription handle backed by an in-process worker channel."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

from stt_worker.backend.runtime import WorkerRuntime
from stt_worker.backend.transport.channel import WorkerChannel
from stt_worker.config import WorkerConfig, load_config
from stt_worker.model.types import TranscriptChunk, TranscriptionResult
from stt_worker.utils.audio import decode_audio_file, duration_seconds

LOGGER = logging.getLogger("stt_client.transcriber")

T = TypeVar("T")
AudioSource = Union[str, Path, Any]


class Observable(Generic[T]):
    """Thread-safe value holder that notifies subscribers on every set."""

    def __init__(self, value: T) -> None:
        self._value = value
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(value)
            except Exception:  # pragma: no cover - defensive logging
                LOGGER.exception("Observable subscriber failed")

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and call it with the current value."""
        with self._lock:
            self._subscribers.append(callback)
            current = self._value
        callback(current)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe


@dataclass(frozen=True)
class TranscriberData:
    is_busy: bool
    text: str = ""
    chunks: List[TranscriptChunk] = field(default_factory=list)
    progress: Optional[int] = None
    time: Optional[Dict[str, Any]] = None

    @classmethod
    def from_result(
        cls,
        result: TranscriptionResult,
        is_busy: bool,
        progress: Optional[int] = None,
        time: Optional[Dict[str, Any]] = None,
    ) -> "TranscriberData":
        return cls(
            is_busy=is_busy,
            text=result.text,
            chunks=list(result.chunks),
            progress=progress,
            time=time,
        )


@dataclass(frozen=True)
class WorkerStatus:
    status: str
    message: Optional[str] = None
    model: Optional[str] = None


class Transcriber:
    """UI-facing handle that exposes worker state as observables."""

    def __init__(
        self,
        config: Optional[WorkerConfig] = None,
        runtime: Optional[WorkerRuntime] = None,
    ) -> None:
        self.config = config or (runtime.config if runtime else load_config())
        self.runtime = runtime or WorkerRuntime(self.config)
        self.is_busy: Observable[bool] = Observable(False)
        self.transcript: Observable[Optional[TranscriberData]] = Observable(None)
        self.worker_status: Observable[WorkerStatus] = Observable(
            WorkerStatus("loading", "Loading model...")
        )
        self._status_changed = threading.Condition()
        self._channel: WorkerChannel = self.runtime.create_channel(
            self._on_message, name="transcriber"
        )
        self._channel.start()
        self._channel.post_message({"type": "status"})

    def transcribe(
        self,
        file: AudioSource,
        model: Optional[str] = None,
        language: Optional[str] = None,
        subtask: str = "transcribe",
        quantized: Optional[bool] = None,
        multilingual: Optional[bool] = None,
    ) -> None:
        """Decode ``file`` and post a transcription request; returns immediately."""
        self.is_busy.set(True)
        self.transcript.set(TranscriberData(is_busy=True))
        self._set_status(WorkerStatus("transcribing", "Transcribing..."))
        try:
            audio = decode_audio_file(file)
        except Exception as exc:
            LOGGER.error("Failed to decode audio: %s", exc)
            self._set_status(WorkerStatus("error", f"Error: {exc}"))
            self.is_busy.set(False)
            raise
        LOGGER.info("Submitting %.1fs of audio for transcription", duration_seconds(audio))
        self._channel.post_message(
            {
                "type": "transcribe",
                "audio": audio,
                "model": model or self.config.model,
                "quantized": self.config.quantized if quantized is None else quantized,
                "multilingual": multilingual,
                "subtask": subtask,
                "language": language or self.config.language,
            }
        )

    def load_model(
        self,
        model: str,
        quantized: bool = True,
        multilingual: Optional[bool] = None,
    ) -> None:
        self._set_status(WorkerStatus("loading", f"Loading {model}...", model))
        self._channel.post_message(
            {
                "type": "load-model",
                "model": model,
                "quantized": quantized,
                "multilingual": multilingual,
            }
        )

    def cancel_transcription(self) -> None:
        self._channel.post_message({"type": "cancel"})

    def request_status(self) -> None:
        self._channel.post_message({"type": "status"})

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker reports ``ready``; expiry becomes an error status.

        ``timeout`` defaults to the configured ``ready_timeout_sec``.
        """
        if timeout is None:
            timeout = self.config.ready_timeout_sec
        with self._status_changed:
            ready = self._status_changed.wait_for(
                lambda: self.worker_status.value.status == "ready", timeout=timeout
            )
        if not ready:
            model = self.worker_status.value.model
            self._set_status(
                WorkerStatus("error", "Timed out waiting for the model to load", model)
            )
        return ready

    def close(self) -> None:
        self._channel.close()

    def __enter__(self) -> "Transcriber":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _on_message(self, message: Dict[str, Any]) -> None:
        status = message.get("status")
        model = message.get("model")
        if status == "ready":
            self._set_status(
                WorkerStatus("ready", message.get("message") or "Model ready", model)
            )
        elif status == "loading":
            self._set_status(
                WorkerStatus(
                    "loading", message.get("message") or "Loading model...", model
                )
            )
        elif status == "progress":
            self._set_status(
                WorkerStatus(
                    "loading",
                    f"Loading {message.get('file')} "
                    f"({message.get('percentComplete', 0)}%)",
                    message.get("modelName"),
                )
            )
        elif status == "transcribing":
            self._set_status(WorkerStatus("transcribing", "Transcribing...", model))
        elif status == "update":
            result = TranscriptionResult.from_payload(message.get("data"))
            self.transcript.set(
                TranscriberData.from_result(
                    result,
                    is_busy=True,
                    progress=message.get("progress"),
                    time=message.get("time"),
                )
            )
            self._set_status(WorkerStatus("transcribing", "Transcribing...", model))
        elif status == "complete":
            result = TranscriptionResult.from_payload(message.get("data"))
            self.transcript.set(
                TranscriberData.from_result(
                    result,
                    is_busy=False,
                    progress=message.get("progress"),
                    time=message.get("time"),
                )
            )
            self._set_status(
                WorkerStatus("complete", "Transcription complete", model)
            )
            self.is_busy.set(False)
        elif status == "cancelled":
            self._set_status(
                WorkerStatus("cancelled", "Transcription cancelled", model)
            )
            self.is_busy.set(False)
        elif status == "error":
            self._set_status(
                WorkerStatus("error", message.get("message") or "Error", model)
            )
            self.is_busy.set(False)
        else:
            LOGGER.debug("Ignoring worker event: %s", status)

    def _set_status(self, status: WorkerStatus) -> None:
        self.worker_status.set(status)
        with self._status_changed:
            self._status_changed.notify_all()


__all__ = [
    "Observable",
    "TranscriberData",
    "Transcriber",
    "WorkerStatus",
]
