"""Inbound command envelopes accepted by the worker channel."""

from typing import Any, Dict, Literal, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from stt_worker.backend.application.session import TranscriptionRequest
from stt_worker.errors import ErrorCode, ProtocolError, WorkerError
from stt_worker.model.types import ModelSpec


class _Command(BaseModel):
    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)


class StatusCommand(_Command):
    type: Literal["status"] = "status"


class CancelCommand(_Command):
    type: Literal["cancel"] = "cancel"


class LoadModelCommand(_Command):
    type: Literal["load-model", "loadModel"] = "load-model"
    model: Optional[str] = None
    quantized: Optional[bool] = True
    multilingual: Optional[bool] = None

    def to_spec(self) -> ModelSpec:
        if not self.model:
            raise WorkerError(code=ErrorCode.MODEL_REQUIRED)
        return ModelSpec(
            self.model,
            quantized=True if self.quantized is None else self.quantized,
            multilingual=self.multilingual,
        )


class TranscribeCommand(_Command):
    type: Literal["transcribe"] = "transcribe"
    audio: Any = None
    model: Optional[str] = None
    multilingual: Optional[bool] = None
    quantized: Optional[bool] = True
    subtask: Optional[Literal["transcribe", "translate"]] = None
    language: Optional[str] = None

    def to_request(self) -> TranscriptionRequest:
        if not _has_audio(self.audio):
            raise WorkerError(code=ErrorCode.AUDIO_REQUIRED)
        if not self.model:
            raise WorkerError(code=ErrorCode.MODEL_REQUIRED)
        spec = ModelSpec(
            self.model,
            quantized=True if self.quantized is None else self.quantized,
            multilingual=self.multilingual,
        )
        return TranscriptionRequest(
            spec=spec,
            audio=self.audio,
            language=self.language,
            subtask=self.subtask,
        )


Command = Union[StatusCommand, CancelCommand, LoadModelCommand, TranscribeCommand]

COMMAND_TYPES: Dict[str, Type[_Command]] = {
    "status": StatusCommand,
    "cancel": CancelCommand,
    "load-model": LoadModelCommand,
    "loadModel": LoadModelCommand,
    "transcribe": TranscribeCommand,
}


def _has_audio(audio: Any) -> bool:
    if audio is None:
        return False
    try:
        return len(audio) > 0
    except TypeError:
        return False


def decode_command(message: Any) -> Command:
    """Validate an inbound payload.

    Raises ProtocolError for envelopes the worker does not understand and
    WorkerError (COMMAND_INVALID) for known commands with bad fields.
    """
    if not isinstance(message, Mapping):
        raise ProtocolError(
            f"Message must be an object, got {type(message).__name__}",
            code=ErrorCode.MESSAGE_INVALID,
        )
    kind = message.get("type")
    command_cls = COMMAND_TYPES.get(kind) if isinstance(kind, str) else None
    if command_cls is None:
        raise ProtocolError(
            f"Unknown message type: {kind!r}", code=ErrorCode.MESSAGE_TYPE_UNKNOWN
        )
    try:
        return command_cls.model_validate(dict(message))  # type: ignore[return-value]
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise WorkerError(
            f"Invalid {kind} command: {problems}",
            code=ErrorCode.COMMAND_INVALID,
        ) from exc


__all__ = [
    "COMMAND_TYPES",
    "CancelCommand",
    "Command",
    "LoadModelCommand",
    "StatusCommand",
    "TranscribeCommand",
    "decode_command",
]
