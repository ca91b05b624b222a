"""Outbound worker events and their message builders."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from stt_worker.backend.application.progress import ProgressEvent
from stt_worker.errors import ErrorCode, WorkerError, spec_for
from stt_worker.model.types import LoadProgress, TranscriptionResult

WORKER_INITIALIZED_MESSAGE = "Worker initialized"
NO_MODEL_LOADED_MESSAGE = "No model loaded"


class EventStatus(str, Enum):
    READY = "ready"
    LOADING = "loading"
    PROGRESS = "progress"
    TRANSCRIBING = "transcribing"
    UPDATE = "update"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WorkerEvent:
    status: EventStatus
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"status": self.status.value}
        message.update(self.fields)
        return message


def ready_event(model: Optional[str] = None, message: Optional[str] = None) -> WorkerEvent:
    fields: Dict[str, Any] = {}
    if model is not None:
        fields["model"] = model
    if message is not None:
        fields["message"] = message
    return WorkerEvent(EventStatus.READY, fields)


def loading_event(model: Optional[str] = None, message: Optional[str] = None) -> WorkerEvent:
    fields: Dict[str, Any] = {}
    if model is not None:
        fields["model"] = model
    if message is not None:
        fields["message"] = message
    return WorkerEvent(EventStatus.LOADING, fields)


def progress_event(tick: LoadProgress) -> WorkerEvent:
    return WorkerEvent(EventStatus.PROGRESS, tick.to_dict())


def transcribing_event(model: str) -> WorkerEvent:
    return WorkerEvent(EventStatus.TRANSCRIBING, {"model": model})


def update_event(result: TranscriptionResult, progress: ProgressEvent) -> WorkerEvent:
    return WorkerEvent(
        EventStatus.UPDATE,
        {
            "data": result.to_dict(),
            "progress": progress.progress,
            "time": progress.time_payload(),
        },
    )


def complete_event(
    result: TranscriptionResult,
    model: str,
    progress: Optional[ProgressEvent] = None,
) -> WorkerEvent:
    fields: Dict[str, Any] = {"data": result.to_dict(), "model": model}
    if progress is not None:
        fields["progress"] = progress.progress
        fields["time"] = progress.time_payload()
    return WorkerEvent(EventStatus.COMPLETE, fields)


def cancelled_event(model: Optional[str] = None) -> WorkerEvent:
    return WorkerEvent(EventStatus.CANCELLED, {"model": model})


def error_event(exc: Exception, model: Optional[str] = None) -> WorkerEvent:
    """Describe ``exc`` for the caller; ``message`` is meant to be shown verbatim."""
    if isinstance(exc, WorkerError):
        code = exc.code
        detail = exc.detail
        details = exc.details
    else:
        code = ErrorCode.WORKER_UNEXPECTED
        detail = str(exc) or spec_for(code).message
        details = repr(exc)
    fields: Dict[str, Any] = {
        "error": detail,
        "message": f"Error: {detail}",
        "code": code.value,
        "model": model,
    }
    if details is not None:
        fields["details"] = details
    return WorkerEvent(EventStatus.ERROR, fields)


__all__ = [
    "EventStatus",
    "NO_MODEL_LOADED_MESSAGE",
    "WORKER_INITIALIZED_MESSAGE",
    "WorkerEvent",
    "cancelled_event",
    "complete_event",
    "error_event",
    "loading_event",
    "progress_event",
    "ready_event",
    "transcribing_event",
    "update_event",
]
