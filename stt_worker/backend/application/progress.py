"""Progress smoothing and time estimation over decode chunk completion."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from stt_worker.config.default import (
    DEFAULT_ESTIMATE_MIN_PROGRESS,
    DEFAULT_FINAL_CHUNK_HEADROOM,
    DEFAULT_MIN_STEP_PERCENT,
    DEFAULT_SMOOTHING_WEIGHT,
    DEFAULT_UPDATE_INTERVAL_MS,
)
from stt_worker.model.types import DecodeChunk

COMPLETE_PERCENT = 100


@dataclass(frozen=True)
class ProgressPolicy:
    """Tunable constants for progress reporting.

    ``final_chunk_headroom`` scales the chunk total so raw progress stays
    under 100% until slightly past the last chunk boundary; the final chunk
    usually needs extra refinement passes. ``smoothing_weight`` is the weight
    of the previous smoothed value in the exponential average.
    """

    update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
    min_step_percent: int = DEFAULT_MIN_STEP_PERCENT
    smoothing_weight: float = DEFAULT_SMOOTHING_WEIGHT
    final_chunk_headroom: float = DEFAULT_FINAL_CHUNK_HEADROOM
    estimate_min_progress: float = DEFAULT_ESTIMATE_MIN_PROGRESS


@dataclass
class ProgressState:
    start_time: Optional[float] = None
    last_update_time: Optional[float] = None
    smoothed_progress: float = 0.0
    last_emitted_progress: int = 0
    update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
    min_step_percent: int = DEFAULT_MIN_STEP_PERCENT


@dataclass(frozen=True)
class ProgressEvent:
    progress: int
    elapsed_sec: float
    estimated_total_sec: Optional[float]

    def time_payload(self) -> dict:
        elapsed = round(self.elapsed_sec)
        remaining = None
        if self.estimated_total_sec is not None:
            remaining = max(0, round(self.estimated_total_sec) - elapsed)
        return {"elapsed": elapsed, "remaining": remaining}


class ProgressEstimator:
    """Turns chunk completion counts into throttled, smoothed progress events."""

    def __init__(
        self,
        policy: Optional[ProgressPolicy] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._policy = policy or ProgressPolicy()
        self._clock = clock
        self._state = self._fresh_state()

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def policy(self) -> ProgressPolicy:
        return self._policy

    def reset(self, now: Optional[float] = None) -> None:
        """Start a new session; nothing carries over from the previous one."""
        self._state = self._fresh_state()
        self._state.start_time = self._now(now)

    def raw_progress(self, chunks: Sequence[DecodeChunk]) -> float:
        total = len(chunks)
        if total == 0:
            return 0.0
        finalized = sum(1 for chunk in chunks if chunk.finalized)
        ratio = finalized / (total * self._policy.final_chunk_headroom) * 100.0
        return min(100.0, max(0.0, ratio))

    def update(
        self, chunks: Sequence[DecodeChunk], now: Optional[float] = None
    ) -> Optional[ProgressEvent]:
        """Fold the current window into the estimate; None when suppressed."""
        state = self._state
        current = self._now(now)
        if state.start_time is None:
            state.start_time = current
        if (
            state.last_update_time is not None
            and (current - state.last_update_time) * 1000.0 < state.update_interval_ms
        ):
            return None

        weight = self._policy.smoothing_weight
        raw = self.raw_progress(chunks)
        state.smoothed_progress = weight * state.smoothed_progress + (1.0 - weight) * raw
        progress = min(COMPLETE_PERCENT, round(state.smoothed_progress))
        # Chunk trimming can shrink the finalized count; never report a regression.
        progress = max(progress, state.last_emitted_progress)

        if (
            abs(progress - state.last_emitted_progress) < state.min_step_percent
            and progress != COMPLETE_PERCENT
        ):
            return None

        return self._emit(progress, current)

    def finish(self, now: Optional[float] = None) -> ProgressEvent:
        """Report completion unconditionally."""
        current = self._now(now)
        if self._state.start_time is None:
            self._state.start_time = current
        self._state.smoothed_progress = float(COMPLETE_PERCENT)
        return self._emit(COMPLETE_PERCENT, current)

    def _emit(self, progress: int, current: float) -> ProgressEvent:
        state = self._state
        state.last_emitted_progress = progress
        state.last_update_time = current
        elapsed = max(0.0, current - (state.start_time or current))
        estimate: Optional[float] = None
        if state.smoothed_progress > self._policy.estimate_min_progress:
            estimate = elapsed / (state.smoothed_progress / 100.0)
        return ProgressEvent(
            progress=progress, elapsed_sec=elapsed, estimated_total_sec=estimate
        )

    def _fresh_state(self) -> ProgressState:
        return ProgressState(
            update_interval_ms=self._policy.update_interval_ms,
            min_step_percent=self._policy.min_step_percent,
        )

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now


__all__ = [
    "COMPLETE_PERCENT",
    "ProgressEstimator",
    "ProgressEvent",
    "ProgressPolicy",
    "ProgressState",
]
