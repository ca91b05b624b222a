"""faster-whisper backend implementation."""

import gc
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Sequence

from faster_whisper import WhisperModel
from faster_whisper.tokenizer import Tokenizer
from huggingface_hub import snapshot_download
from huggingface_hub.utils import tqdm as hf_tqdm

from stt_worker.config.default.model import (
    DEFAULT_DEVICE,
    DEFAULT_FULL_COMPUTE_TYPE,
    DEFAULT_QUANTIZED_COMPUTE_TYPE,
    DEFAULT_REVISION,
    PIPELINE_TASK,
)
from stt_worker.errors import CancellationError, ErrorCode
from stt_worker.model.backends.base import (
    ChunkBoundary,
    DecodeStep,
    InferenceOptions,
    LoadProgressHandler,
)
from stt_worker.model.types import (
    DecodeChunk,
    LoadProgress,
    TranscriptChunk,
    TranscriptionResult,
)
from stt_worker.utils.audio import to_float32

LOGGER = logging.getLogger("stt_worker.model_backend")

MODEL_REPO_MAP = {
    "tiny": "Systran/faster-whisper-tiny",
    "tiny.en": "Systran/faster-whisper-tiny.en",
    "base": "Systran/faster-whisper-base",
    "base.en": "Systran/faster-whisper-base.en",
    "small": "Systran/faster-whisper-small",
    "small.en": "Systran/faster-whisper-small.en",
    "medium": "Systran/faster-whisper-medium",
    "medium.en": "Systran/faster-whisper-medium.en",
    "large-v1": "Systran/faster-whisper-large-v1",
    "large-v2": "Systran/faster-whisper-large-v2",
    "large-v3": "Systran/faster-whisper-large-v3",
    "large": "Systran/faster-whisper-large-v3",
    "distil-small.en": "Systran/faster-distil-whisper-small.en",
    "distil-medium.en": "Systran/faster-distil-whisper-medium.en",
    "distil-large-v2": "Systran/faster-distil-whisper-large-v2",
    "distil-large-v3": "Systran/faster-distil-whisper-large-v3",
    # transformers and ONNX checkpoint ids map onto their CTranslate2 exports.
    "distil-whisper/distil-small.en": "Systran/faster-distil-whisper-small.en",
    "distil-whisper/distil-medium.en": "Systran/faster-distil-whisper-medium.en",
    "distil-whisper/distil-large-v2": "Systran/faster-distil-whisper-large-v2",
    "distil-whisper/distil-large-v3": "Systran/faster-distil-whisper-large-v3",
    "Xenova/whisper-tiny": "Systran/faster-whisper-tiny",
    "Xenova/whisper-tiny.en": "Systran/faster-whisper-tiny.en",
    "Xenova/whisper-base": "Systran/faster-whisper-base",
    "Xenova/whisper-base.en": "Systran/faster-whisper-base.en",
    "Xenova/whisper-small": "Systran/faster-whisper-small",
    "Xenova/whisper-small.en": "Systran/faster-whisper-small.en",
    "Xenova/whisper-medium": "Systran/faster-whisper-medium",
    "Xenova/whisper-medium.en": "Systran/faster-whisper-medium.en",
    "Xenova/whisper-large": "Systran/faster-whisper-large-v1",
    "Xenova/whisper-large-v2": "Systran/faster-whisper-large-v2",
    "Xenova/whisper-large-v3": "Systran/faster-whisper-large-v3",
}

# Branches that only exist on the source repos, not on the converted exports.
SOURCE_ONLY_REVISIONS = frozenset({"no_attentions"})

MODEL_FILE_PATTERNS = [
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
]

DEFAULT_TIME_PRECISION = 0.02
DEFAULT_TIME_PER_FRAME = 0.01


def resolve_repo_id(model_id: str) -> str:
    """Map size aliases to hub repositories; pass repo ids through."""
    return MODEL_REPO_MAP.get(model_id, model_id)


def resolve_revision(model_id: str, revision: str) -> str:
    """Drop pins for source-repo branches when the id maps to a converted repo."""
    if model_id in MODEL_REPO_MAP and revision in SOURCE_ONLY_REVISIONS:
        return DEFAULT_REVISION
    return revision


def _progress_bar_class(
    on_progress: LoadProgressHandler, model_name: str
) -> type:
    """Build a tqdm class that forwards hub download ticks as LoadProgress."""

    class _LoadProgressBar(hf_tqdm):
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            self._label = str(kwargs.get("desc") or model_name)
            kwargs["disable"] = True
            super().__init__(*args, **kwargs)

        def __iter__(self):
            # Disabled bars skip update() while iterating; drive it ourselves.
            for item in self.iterable:
                yield item
                self.update(1)

        def update(self, n: Optional[float] = 1) -> Optional[bool]:
            self.n += n or 0
            total = self.total or 0
            percent = min(100.0, 100.0 * self.n / total) if total else 0.0
            on_progress(
                LoadProgress(
                    file=self._label, percent_complete=percent, model_name=model_name
                )
            )
            return True

    return _LoadProgressBar


def decode_window_tokens(
    chunks: Sequence[DecodeChunk],
    time_precision: float,
    decode: Callable[[List[int]], str],
    eot: int,
    timestamp_begin: int,
) -> TranscriptionResult:
    """Split chunk tokens on timestamp tokens and decode each span.

    Timestamp tokens are relative to their window, so each chunk's
    ``time_offset`` is added back.
    """
    segments: List[TranscriptChunk] = []
    for chunk in chunks:
        start: Optional[float] = None
        text_tokens: List[int] = []
        for token in chunk.tokens:
            if token >= timestamp_begin:
                stamp = (token - timestamp_begin) * time_precision + chunk.time_offset
                if start is None:
                    start = stamp
                    continue
                if text_tokens:
                    segments.append(TranscriptChunk(decode(text_tokens), (start, stamp)))
                start = None
                text_tokens = []
            elif token < eot:
                text_tokens.append(token)
        if text_tokens:
            begin = start if start is not None else chunk.time_offset
            segments.append(TranscriptChunk(decode(text_tokens), (begin, None)))
    text = "".join(segment.text for segment in segments).strip()
    return TranscriptionResult(text=text, chunks=tuple(segments))


class FasterWhisperPipeline:
    """Callable wrapper exposing a WhisperModel through the pipeline interface."""

    def __init__(self, model: WhisperModel, model_id: str) -> None:
        self.model: Optional[WhisperModel] = model
        self.model_id = model_id
        self.time_precision = float(
            getattr(model, "time_precision", DEFAULT_TIME_PRECISION)
        )
        feature_extractor = getattr(model, "feature_extractor", None)
        self._time_per_frame = float(
            getattr(feature_extractor, "time_per_frame", DEFAULT_TIME_PER_FRAME)
        )
        self._tokenizer: Optional[Tokenizer] = None

    def __call__(self, samples: Any, options: InferenceOptions) -> TranscriptionResult:
        model = self._require_model()
        audio = to_float32(samples)
        decode_options = self._decode_options(options)
        segments, info = model.transcribe(audio, **decode_options)
        LOGGER.debug(
            "faster_whisper decoding model=%s duration=%.2fs language=%s",
            self.model_id,
            getattr(info, "duration", 0.0),
            getattr(info, "language", ""),
        )

        window_seek: Optional[int] = None
        window_tokens: List[int] = []
        collected: List[TranscriptChunk] = []
        for segment in segments:
            seek = int(getattr(segment, "seek", 0) or 0)
            if window_seek is not None and seek != window_seek:
                self._emit_boundary(options, window_tokens, False, window_seek)
                window_tokens = []
            window_seek = seek
            window_tokens.extend(int(token) for token in segment.tokens)
            if options.on_decode_step is not None:
                options.on_decode_step(
                    DecodeStep(tuple(window_tokens), seek * self._time_per_frame)
                )
            collected.append(
                TranscriptChunk(segment.text, (float(segment.start), float(segment.end)))
            )
        self._emit_boundary(options, window_tokens, True, window_seek or 0)

        text = "".join(chunk.text for chunk in collected).strip()
        return TranscriptionResult(text=text, chunks=tuple(collected))

    def decode_chunks(
        self, chunks: Sequence[DecodeChunk], time_precision: float
    ) -> TranscriptionResult:
        tokenizer = self._get_tokenizer()
        return decode_window_tokens(
            chunks,
            time_precision,
            tokenizer.decode,
            tokenizer.eot,
            tokenizer.timestamp_begin,
        )

    def dispose(self) -> None:
        model = self.model
        self.model = None
        self._tokenizer = None
        if model is None:
            return
        translator = getattr(model, "model", None)
        unload = getattr(translator, "unload_model", None)
        if callable(unload):
            unload()
        del model
        gc.collect()

    def _emit_boundary(
        self,
        options: InferenceOptions,
        tokens: List[int],
        is_last: bool,
        seek: int,
    ) -> None:
        if options.on_chunk_boundary is None:
            return
        options.on_chunk_boundary(
            ChunkBoundary(
                tokens=tuple(tokens),
                is_last=is_last,
                time_offset=seek * self._time_per_frame,
            )
        )

    def _decode_options(self, options: InferenceOptions) -> Dict[str, Any]:
        if options.stride_length_s:
            LOGGER.debug(
                "Ignoring stride_length_s=%s; faster-whisper decodes windows sequentially",
                options.stride_length_s,
            )
        # Greedy decoding, equivalent to top_k=0 / do_sample=False.
        return {
            "task": options.task,
            "language": options.language or None,
            "beam_size": 1,
            "best_of": 1,
            "temperature": 0.0,
            "without_timestamps": not options.return_timestamps,
            "chunk_length": int(options.chunk_length_s),
        }

    def _get_tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            model = self._require_model()
            multilingual = bool(model.model.is_multilingual)
            self._tokenizer = Tokenizer(
                model.hf_tokenizer,
                multilingual,
                task="transcribe" if multilingual else None,
                language="en" if multilingual else None,
            )
        return self._tokenizer

    def _require_model(self) -> WhisperModel:
        if self.model is None:
            raise CancellationError(
                f"Model '{self.model_id}' has been disposed",
                code=ErrorCode.MODEL_DISPOSED,
            )
        return self.model


class FasterWhisperPipelineFactory:
    """Builds FasterWhisperPipeline instances, downloading weights on demand."""

    def __init__(
        self,
        device: str = DEFAULT_DEVICE,
        quantized_compute_type: str = DEFAULT_QUANTIZED_COMPUTE_TYPE,
        full_compute_type: str = DEFAULT_FULL_COMPUTE_TYPE,
        cache_dir: Optional[str] = None,
    ) -> None:
        self.device = device
        self.quantized_compute_type = quantized_compute_type
        self.full_compute_type = full_compute_type
        self.cache_dir = cache_dir

    def __call__(
        self,
        task: str,
        model_id: str,
        *,
        quantized: bool,
        revision: str,
        on_progress: Optional[LoadProgressHandler] = None,
    ) -> FasterWhisperPipeline:
        if task != PIPELINE_TASK:
            raise ValueError(f"Unsupported pipeline task: {task}")
        model_path = self._fetch(model_id, revision, on_progress)
        compute_type = (
            self.quantized_compute_type if quantized else self.full_compute_type
        )
        model = WhisperModel(model_path, device=self.device, compute_type=compute_type)
        LOGGER.info(
            "faster_whisper loaded model=%s revision=%s device=%s compute_type=%s",
            model_id,
            revision,
            self.device,
            compute_type,
        )
        return FasterWhisperPipeline(model, model_id)

    def _fetch(
        self,
        model_id: str,
        revision: str,
        on_progress: Optional[LoadProgressHandler],
    ) -> str:
        if os.path.isdir(model_id):
            return model_id
        repo_id = resolve_repo_id(model_id)
        revision = resolve_revision(model_id, revision)
        kwargs: Dict[str, Any] = {
            "revision": revision,
            "allow_patterns": MODEL_FILE_PATTERNS,
            "cache_dir": self.cache_dir,
        }
        if on_progress is not None:
            kwargs["tqdm_class"] = _progress_bar_class(on_progress, model_id)
        LOGGER.debug("Fetching model files repo=%s revision=%s", repo_id, revision)
        return snapshot_download(repo_id, **kwargs)


__all__ = [
    "MODEL_REPO_MAP",
    "FasterWhisperPipeline",
    "FasterWhisperPipelineFactory",
    "decode_window_tokens",
    "resolve_repo_id",
    "resolve_revision",
]
