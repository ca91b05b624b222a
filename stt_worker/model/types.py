"""Data model shared by the worker core and the engine adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

ENGLISH_ONLY_SUFFIX = ".en"


def is_multilingual_identifier(identifier: str) -> bool:
    """English-only checkpoints are published with a ``.en`` suffix."""
    return not identifier.lower().endswith(ENGLISH_ONLY_SUFFIX)


@dataclass(frozen=True)
class ModelSpec:
    """Which model to load. Equivalence ignores ``multilingual``."""

    identifier: str
    quantized: bool = True
    multilingual: Optional[bool] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.multilingual is None:
            object.__setattr__(
                self, "multilingual", is_multilingual_identifier(self.identifier)
            )

    def equivalent(self, other: Optional["ModelSpec"]) -> bool:
        if other is None:
            return False
        return (
            self.identifier == other.identifier and self.quantized == other.quantized
        )


@dataclass
class DecodeChunk:
    """Decode state of one audio window; only the newest may be open."""

    tokens: List[int] = field(default_factory=list)
    finalized: bool = False
    time_offset: float = 0.0


@dataclass(frozen=True)
class TranscriptChunk:
    text: str
    timestamp: Tuple[float, Optional[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "timestamp": [self.timestamp[0], self.timestamp[1]]}


@dataclass(frozen=True)
class TranscriptionResult:
    """Normalized transcription output, immutable once emitted."""

    text: str = ""
    chunks: Tuple[TranscriptChunk, ...] = ()

    @classmethod
    def empty(cls) -> "TranscriptionResult":
        return cls()

    @classmethod
    def from_payload(cls, payload: Any) -> "TranscriptionResult":
        """Normalize engine/event payloads into one result type.

        Accepts an existing result, ``{"text", "chunks"}`` mappings, and the
        array form ``[text, {"chunks": [...]}]``. Anything else is empty.
        """
        if isinstance(payload, TranscriptionResult):
            return payload
        if payload is None:
            return cls.empty()
        if isinstance(payload, (list, tuple)):
            text = payload[0] if payload else ""
            extra = payload[1] if len(payload) > 1 else None
            chunks = extra.get("chunks") if isinstance(extra, Mapping) else None
            return cls(text=str(text or ""), chunks=_parse_chunks(chunks))
        if isinstance(payload, Mapping):
            return cls(
                text=str(payload.get("text") or ""),
                chunks=_parse_chunks(payload.get("chunks")),
            )
        return cls.empty()

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "chunks": [chunk.to_dict() for chunk in self.chunks]}


def _parse_chunks(raw: Any) -> Tuple[TranscriptChunk, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return ()
    parsed: List[TranscriptChunk] = []
    for item in raw:
        if isinstance(item, TranscriptChunk):
            parsed.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        parsed.append(
            TranscriptChunk(
                text=str(item.get("text") or ""),
                timestamp=_parse_time_range(
                    item.get("timestamp", item.get("time_range"))
                ),
            )
        )
    return tuple(parsed)


def _parse_time_range(raw: Any) -> Tuple[float, Optional[float]]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)) or not raw:
        return (0.0, None)
    start = _to_float(raw[0]) or 0.0
    end = _to_float(raw[1]) if len(raw) > 1 else None
    return (start, end)


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class LoadProgress:
    """One model download/initialization tick reported by the engine."""

    file: str
    percent_complete: float
    model_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "percentComplete": round(self.percent_complete, 2),
            "modelName": self.model_name,
        }


class SessionStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    TRANSCRIBING = "transcribing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


__all__ = [
    "ModelSpec",
    "DecodeChunk",
    "TranscriptChunk",
    "TranscriptionResult",
    "LoadProgress",
    "SessionStatus",
    "is_multilingual_identifier",
]
