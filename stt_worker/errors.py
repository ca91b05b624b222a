"""Centralized error codes and the worker exception taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Final, Optional


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced to callers and logs."""

    # initialization (ERR100x)
    WORKER_INIT_FAILED = "ERR1001"
    ENGINE_UNAVAILABLE = "ERR1002"

    # model lifecycle (ERR200x)
    MODEL_LOAD_FAILED = "ERR2001"
    MODEL_DISPOSE_FAILED = "ERR2002"
    MODEL_DISPOSED = "ERR2003"

    # transcription (ERR300x)
    TRANSCRIPTION_CANCELLED = "ERR3001"
    TRANSCRIPTION_FAILED = "ERR3002"
    DECODE_FAILED = "ERR3003"

    # protocol (ERR400x)
    MESSAGE_INVALID = "ERR4001"
    MESSAGE_TYPE_UNKNOWN = "ERR4002"
    MODEL_REQUIRED = "ERR4003"
    AUDIO_REQUIRED = "ERR4004"
    COMMAND_INVALID = "ERR4005"

    # internal (ERR500x)
    WORKER_UNEXPECTED = "ERR5001"


@dataclass(frozen=True)
class ErrorSpec:
    """Maps an error code to its default message and recoverability."""

    code: ErrorCode
    message: str
    recoverable: bool = True


ERROR_SPECS: Final[Dict[ErrorCode, ErrorSpec]] = {
    ErrorCode.WORKER_INIT_FAILED: ErrorSpec(
        ErrorCode.WORKER_INIT_FAILED, "Failed to initialize worker", False
    ),
    ErrorCode.ENGINE_UNAVAILABLE: ErrorSpec(
        ErrorCode.ENGINE_UNAVAILABLE, "Inference engine is not available", False
    ),
    ErrorCode.MODEL_LOAD_FAILED: ErrorSpec(
        ErrorCode.MODEL_LOAD_FAILED, "Failed to load model"
    ),
    ErrorCode.MODEL_DISPOSE_FAILED: ErrorSpec(
        ErrorCode.MODEL_DISPOSE_FAILED, "Failed to dispose model"
    ),
    ErrorCode.MODEL_DISPOSED: ErrorSpec(
        ErrorCode.MODEL_DISPOSED, "Model pipeline has been disposed"
    ),
    ErrorCode.TRANSCRIPTION_CANCELLED: ErrorSpec(
        ErrorCode.TRANSCRIPTION_CANCELLED, "Transcription cancelled by user"
    ),
    ErrorCode.TRANSCRIPTION_FAILED: ErrorSpec(
        ErrorCode.TRANSCRIPTION_FAILED, "Transcription failed"
    ),
    ErrorCode.DECODE_FAILED: ErrorSpec(
        ErrorCode.DECODE_FAILED, "Failed to decode transcription chunks"
    ),
    ErrorCode.MESSAGE_INVALID: ErrorSpec(
        ErrorCode.MESSAGE_INVALID, "Message must be an object with a type"
    ),
    ErrorCode.MESSAGE_TYPE_UNKNOWN: ErrorSpec(
        ErrorCode.MESSAGE_TYPE_UNKNOWN, "Unknown message type"
    ),
    ErrorCode.MODEL_REQUIRED: ErrorSpec(
        ErrorCode.MODEL_REQUIRED, "No model specified"
    ),
    ErrorCode.AUDIO_REQUIRED: ErrorSpec(
        ErrorCode.AUDIO_REQUIRED, "No audio data provided"
    ),
    ErrorCode.COMMAND_INVALID: ErrorSpec(
        ErrorCode.COMMAND_INVALID, "Invalid command"
    ),
    ErrorCode.WORKER_UNEXPECTED: ErrorSpec(
        ErrorCode.WORKER_UNEXPECTED, "Unexpected worker error"
    ),
}


def spec_for(code: ErrorCode) -> ErrorSpec:
    """Return the ErrorSpec for a given error code."""
    return ERROR_SPECS[code]


def format_error(code: ErrorCode, detail: Optional[str] = None) -> str:
    """Format an error code and optional detail into a message."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return f"{spec.code.value} {message}"


class WorkerError(RuntimeError):
    """Raised for worker-defined errors with a stable code."""

    default_code: ErrorCode = ErrorCode.WORKER_UNEXPECTED

    def __init__(
        self,
        detail: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        details: Any = None,
    ) -> None:
        self.code = code or self.default_code
        self.detail = detail or ERROR_SPECS[self.code].message
        self.details = details
        self.recoverable = ERROR_SPECS[self.code].recoverable
        super().__init__(format_error(self.code, detail))


class InitializationError(WorkerError):
    """The worker or its inference engine failed to start."""

    default_code = ErrorCode.WORKER_INIT_FAILED


class ModelLoadError(WorkerError):
    """Model construction or disposal failed; the next request retries."""

    default_code = ErrorCode.MODEL_LOAD_FAILED

    def __init__(
        self,
        detail: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        details: Any = None,
        spec: Any = None,
    ) -> None:
        super().__init__(detail, code, details)
        self.spec = spec


class CancellationError(WorkerError):
    """Internal signal raised from engine callbacks to abort a request."""

    default_code = ErrorCode.TRANSCRIPTION_CANCELLED


class InferenceError(WorkerError):
    """The engine or chunk decoder raised during transcription."""

    default_code = ErrorCode.TRANSCRIPTION_FAILED


class ProtocolError(WorkerError):
    """Malformed or unsupported inbound message; logged and ignored."""

    default_code = ErrorCode.MESSAGE_INVALID


__all__ = [
    "ErrorCode",
    "ErrorSpec",
    "ERROR_SPECS",
    "WorkerError",
    "InitializationError",
    "ModelLoadError",
    "CancellationError",
    "InferenceError",
    "ProtocolError",
    "format_error",
    "spec_for",
]
