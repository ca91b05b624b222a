"""Rolling window of decode chunks used for incremental transcripts."""

import logging
from typing import List, Optional, Sequence

from stt_worker.config.default import DEFAULT_MAX_RETAINED_CHUNKS
from stt_worker.model.backends.base import ChunkBoundary
from stt_worker.model.types import DecodeChunk

LOGGER = logging.getLogger("stt_worker.chunk_accumulator")


class ChunkAccumulator:
    """Keeps the newest decode chunks; only the last one may be open.

    Older finalized chunks are dropped once the window is full, so
    intermediate text covers the retained window only. The final result is
    produced by the engine over the whole input and is unaffected.
    """

    def __init__(self, max_retained_chunks: int = DEFAULT_MAX_RETAINED_CHUNKS) -> None:
        if max_retained_chunks < 1:
            raise ValueError("max_retained_chunks must be >= 1")
        self._max_retained = max_retained_chunks
        self._chunks: List[DecodeChunk] = [DecodeChunk()]

    @property
    def max_retained_chunks(self) -> int:
        return self._max_retained

    def append(self, tokens: Sequence[int], time_offset: Optional[float] = None) -> None:
        """Replace the open chunk's tokens; the engine sends cumulative ids."""
        last = self._chunks[-1]
        if last.finalized:
            LOGGER.debug("Dropping decode step after the last chunk was finalized")
            return
        last.tokens = list(tokens)
        if time_offset is not None:
            last.time_offset = time_offset

    def finalize(self, boundary: Optional[ChunkBoundary] = None) -> None:
        """Close the open chunk and open a new one unless it was the last."""
        boundary = boundary or ChunkBoundary()
        last = self._chunks[-1]
        if last.finalized:
            last = DecodeChunk()
            self._chunks.append(last)
        if boundary.tokens is not None:
            last.tokens = list(boundary.tokens)
        last.time_offset = boundary.time_offset
        last.finalized = True
        if not boundary.is_last:
            self._chunks.append(DecodeChunk())
        if len(self._chunks) > self._max_retained:
            del self._chunks[: len(self._chunks) - self._max_retained]

    def current_window(self) -> List[DecodeChunk]:
        return [
            DecodeChunk(
                tokens=list(chunk.tokens),
                finalized=chunk.finalized,
                time_offset=chunk.time_offset,
            )
            for chunk in self._chunks
        ]

    def finalized_count(self) -> int:
        return sum(1 for chunk in self._chunks if chunk.finalized)

    def has_finalized(self) -> bool:
        return any(chunk.finalized for chunk in self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)


__all__ = ["ChunkAccumulator"]
