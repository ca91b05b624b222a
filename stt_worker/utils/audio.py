from typing import Any, BinaryIO, Union

import librosa
import numpy as np
import soundfile as sf

WHISPER_SAMPLE_RATE = 16000

AudioSource = Union[str, bytes, BinaryIO, Any]


def to_float32(samples: Any) -> np.ndarray:
    """Coerce a sample buffer (array, list or float32 bytes) to a 1-D float32 array."""
    if isinstance(samples, (bytes, bytearray, memoryview)):
        return np.frombuffer(samples, dtype=np.float32).copy()
    audio = np.asarray(samples, dtype=np.float32)
    if audio.ndim > 1:
        audio = audio.reshape(-1)
    return audio


def ensure_sample_rate(audio: np.ndarray, src_rate: int, target_rate: int) -> np.ndarray:
    """Resample input audio to the rate the model expects when needed."""
    if src_rate == target_rate:
        return audio
    return librosa.resample(audio, orig_sr=src_rate, target_sr=target_rate)


def decode_audio_file(
    source: AudioSource, sample_rate: int = WHISPER_SAMPLE_RATE
) -> np.ndarray:
    """Decode an audio file into mono float32 samples at ``sample_rate``.

    ``source`` may be a path or a file-like object readable by soundfile.
    Only the first channel is kept.
    """
    audio, src_rate = sf.read(source, dtype="float32", always_2d=True)
    mono = np.ascontiguousarray(audio[:, 0])
    return ensure_sample_rate(mono, int(src_rate), sample_rate).astype(
        np.float32, copy=False
    )


def duration_seconds(audio: np.ndarray, sample_rate: int = WHISPER_SAMPLE_RATE) -> float:
    """Return the duration of a sample buffer in seconds."""
    if sample_rate <= 0:
        return 0.0
    return len(audio) / float(sample_rate)
