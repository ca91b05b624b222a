"""Default values and helpers for model-related configuration."""

from typing import Dict

PIPELINE_TASK = "automatic-speech-recognition"

DEFAULT_MODEL_NAME = "tiny"
DEFAULT_QUANTIZED = True
DEFAULT_MULTILINGUAL = False
DEFAULT_DEVICE = "cpu"
DEFAULT_QUANTIZED_COMPUTE_TYPE = "int8"
DEFAULT_FULL_COMPUTE_TYPE = "float32"
DEFAULT_TASK = "transcribe"
DEFAULT_LANGUAGE = "en"
DEFAULT_REVISION = "main"

# The medium export on the hub ships broken attention outputs; pin the branch
# that was re-exported without them.
DEFAULT_REVISION_OVERRIDES: Dict[str, str] = {"/whisper-medium": "no_attentions"}

DEFAULT_CHUNK_LENGTH_S = 30.0
DEFAULT_STRIDE_LENGTH_S = 5.0
DEFAULT_DISTIL_CHUNK_LENGTH_S = 20.0
DEFAULT_DISTIL_STRIDE_LENGTH_S = 3.0
DEFAULT_RETURN_TIMESTAMPS = True
DISTIL_MODEL_MARKER = "distil-"


def is_distil_identifier(identifier: str) -> bool:
    """Match ``distil-whisper/<x>``, ``distil-<size>`` aliases and converted repos."""
    return DISTIL_MODEL_MARKER in identifier.rsplit("/", 1)[-1].lower()


def default_revision_overrides() -> Dict[str, str]:
    """Return a fresh copy of the default revision override map."""
    return dict(DEFAULT_REVISION_OVERRIDES)


MODEL_SECTION_MAP = {
    "name": "model",
    "quantized": "quantized",
    "multilingual": "multilingual",
    "device": "device",
    "quantized_compute_type": "quantized_compute_type",
    "full_compute_type": "full_compute_type",
    "cache_dir": "cache_dir",
    "language": "language",
    "task": "task",
    "default_revision": "default_revision",
}

DECODE_SECTION_MAP = {
    "chunk_length_s": "chunk_length_s",
    "stride_length_s": "stride_length_s",
    "distil_chunk_length_s": "distil_chunk_length_s",
    "distil_stride_length_s": "distil_stride_length_s",
    "return_timestamps": "return_timestamps",
}


__all__ = [
    "PIPELINE_TASK",
    "DEFAULT_MODEL_NAME",
    "DEFAULT_QUANTIZED",
    "DEFAULT_MULTILINGUAL",
    "DEFAULT_DEVICE",
    "DEFAULT_QUANTIZED_COMPUTE_TYPE",
    "DEFAULT_FULL_COMPUTE_TYPE",
    "DEFAULT_TASK",
    "DEFAULT_LANGUAGE",
    "DEFAULT_REVISION",
    "DEFAULT_REVISION_OVERRIDES",
    "DEFAULT_CHUNK_LENGTH_S",
    "DEFAULT_STRIDE_LENGTH_S",
    "DEFAULT_DISTIL_CHUNK_LENGTH_S",
    "DEFAULT_DISTIL_STRIDE_LENGTH_S",
    "DEFAULT_RETURN_TIMESTAMPS",
    "DISTIL_MODEL_MARKER",
    "is_distil_identifier",
    "default_revision_overrides",
    "MODEL_SECTION_MAP",
    "DECODE_SECTION_MAP",
]
