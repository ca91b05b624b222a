import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from stt_worker.model.backends.base import ChunkBoundary, DecodeStep, InferenceOptions
from stt_worker.model.types import (
    DecodeChunk,
    LoadProgress,
    TranscriptChunk,
    TranscriptionResult,
)
from stt_worker.utils.logger import stop_logging


class FakePipeline:
    """Test helper standing in for a loaded engine.

    ``windows`` lists, per audio window, the cumulative token ids delivered by
    successive decode steps. ``before_step`` runs ahead of every step so tests
    can block or cancel mid-call.
    """

    time_precision = 0.02

    def __init__(
        self,
        factory: "FakeFactory",
        model_id: str,
        windows: Sequence[Sequence[Sequence[int]]],
        result: Any,
        error: Optional[Exception] = None,
        before_step: Optional[Callable[[int], None]] = None,
        decode_error: Optional[Exception] = None,
    ) -> None:
        self.factory = factory
        self.model_id = model_id
        self.windows = windows
        self.result = result
        self.error = error
        self.before_step = before_step
        self.decode_error = decode_error
        self.calls: List[InferenceOptions] = []
        self.decoded: List[List[DecodeChunk]] = []
        self.disposed = False

    def __call__(self, samples: Any, options: InferenceOptions) -> Any:
        self.calls.append(options)
        step_index = 0
        for window_index, steps in enumerate(self.windows):
            tokens: Sequence[int] = ()
            for tokens in steps:
                if self.before_step is not None:
                    self.before_step(step_index)
                step_index += 1
                if options.on_decode_step is not None:
                    options.on_decode_step(DecodeStep(tuple(tokens), window_index * 30.0))
            if options.on_chunk_boundary is not None:
                options.on_chunk_boundary(
                    ChunkBoundary(
                        tokens=tuple(tokens),
                        is_last=window_index == len(self.windows) - 1,
                        time_offset=window_index * 30.0,
                    )
                )
        if self.error is not None:
            raise self.error
        return self.result

    def decode_chunks(
        self, chunks: Sequence[DecodeChunk], time_precision: float
    ) -> TranscriptionResult:
        if self.decode_error is not None:
            raise self.decode_error
        self.decoded.append(list(chunks))
        finalized = [chunk for chunk in chunks if chunk.finalized]
        pieces = [f"w{len(chunk.tokens)}" for chunk in finalized]
        return TranscriptionResult(
            text=" ".join(pieces),
            chunks=tuple(
                TranscriptChunk(piece, (chunk.time_offset, None))
                for piece, chunk in zip(pieces, finalized)
            ),
        )

    def dispose(self) -> None:
        self.disposed = True
        self.factory.log.append(("dispose", self.model_id))


class FakeFactory:
    """Test helper recording every pipeline construction."""

    def __init__(self) -> None:
        self.log: List[tuple] = []
        self.calls: List[Dict[str, Any]] = []
        self.pipelines: List[FakePipeline] = []
        self.windows: Sequence[Sequence[Sequence[int]]] = [[[1], [1, 2]], [[3], [3, 4]]]
        self.result: Any = {
            "text": " hello world",
            "chunks": [{"text": " hello world", "timestamp": [0.0, 1.5]}],
        }
        self.progress_files: Sequence[str] = ("config.json", "model.bin")
        self.load_error: Optional[Exception] = None
        self.run_error: Optional[Exception] = None
        self.decode_error: Optional[Exception] = None
        self.before_step: Optional[Callable[[int], None]] = None
        self.before_load: Optional[Callable[[], None]] = None

    def __call__(
        self,
        task: str,
        model_id: str,
        *,
        quantized: bool,
        revision: str,
        on_progress: Optional[Callable[[LoadProgress], None]] = None,
    ) -> FakePipeline:
        self.calls.append(
            {
                "task": task,
                "model_id": model_id,
                "quantized": quantized,
                "revision": revision,
            }
        )
        self.log.append(("load", model_id))
        if self.before_load is not None:
            self.before_load()
        if on_progress is not None:
            for name in self.progress_files:
                on_progress(LoadProgress(name, 100.0, model_id))
        if self.load_error is not None:
            raise self.load_error
        pipeline = FakePipeline(
            self,
            model_id,
            self.windows,
            self.result,
            error=self.run_error,
            before_step=self.before_step,
            decode_error=self.decode_error,
        )
        self.pipelines.append(pipeline)
        return pipeline


class EventRecorder:
    """Test helper collecting posted worker messages across threads."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []
        self._cond = threading.Condition()

    def __call__(self, message: Any) -> None:
        if hasattr(message, "to_message"):
            message = message.to_message()
        with self._cond:
            self.messages.append(message)
            self._cond.notify_all()

    def statuses(self) -> List[str]:
        with self._cond:
            return [message["status"] for message in self.messages]

    def of(self, status: str) -> List[Dict[str, Any]]:
        with self._cond:
            return [message for message in self.messages if message["status"] == status]

    def wait_for(self, predicate: Callable[[List[str]], bool], timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(
                lambda: predicate([message["status"] for message in self.messages]),
                timeout=timeout,
            )

    def wait_for_count(self, status: str, count: int = 1, timeout: float = 5.0) -> bool:
        return self.wait_for(lambda statuses: statuses.count(status) >= count, timeout)


@pytest.fixture
def fake_factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def restore_root_logger():
    """Undo configure_logging so later tests keep pytest's capture handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    stop_logging()
    root.handlers[:] = handlers
    root.setLevel(level)
