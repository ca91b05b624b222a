import logging

import pytest

from stt_worker.backend.application.chunk_accumulator import ChunkAccumulator
from stt_worker.model.backends.base import ChunkBoundary


def test_starts_with_one_open_chunk():
    """Test a fresh accumulator holds a single open chunk."""
    accumulator = ChunkAccumulator()

    window = accumulator.current_window()

    assert len(window) == 1
    assert window[0].tokens == []
    assert window[0].finalized is False
    assert accumulator.has_finalized() is False


def test_append_replaces_tokens_wholesale():
    """Test append treats token ids as cumulative for the open chunk."""
    accumulator = ChunkAccumulator()

    accumulator.append([1, 2])
    accumulator.append([1, 2, 3], time_offset=30.0)

    window = accumulator.current_window()
    assert window[-1].tokens == [1, 2, 3]
    assert window[-1].time_offset == 30.0


def test_finalize_opens_new_chunk_unless_last():
    """Test finalize closes the open chunk and opens another for non-final windows."""
    accumulator = ChunkAccumulator()
    accumulator.append([1, 2])

    accumulator.finalize(ChunkBoundary(tokens=(1, 2, 3), time_offset=0.0))
    window = accumulator.current_window()
    assert [chunk.finalized for chunk in window] == [True, False]
    assert window[0].tokens == [1, 2, 3]

    accumulator.append([7])
    accumulator.finalize(ChunkBoundary(is_last=True, time_offset=30.0))
    window = accumulator.current_window()
    assert [chunk.finalized for chunk in window] == [True, True]
    assert window[1].tokens == [7]
    assert window[1].time_offset == 30.0
    assert accumulator.finalized_count() == 2


def test_append_after_last_chunk_is_dropped(caplog):
    """Test decode steps after the terminal boundary do not alter finalized chunks."""
    accumulator = ChunkAccumulator()
    accumulator.append([1])
    accumulator.finalize(ChunkBoundary(is_last=True))

    with caplog.at_level(logging.DEBUG, logger="stt_worker.chunk_accumulator"):
        accumulator.append([9, 9])

    assert accumulator.current_window()[-1].tokens == [1]
    assert "Dropping decode step" in caplog.text


def test_retains_at_most_max_chunks():
    """Test the window never exceeds max_retained_chunks after any sequence."""
    accumulator = ChunkAccumulator(max_retained_chunks=3)
    for index in range(10):
        accumulator.append([index])
        accumulator.finalize(ChunkBoundary(time_offset=index * 30.0))
        assert len(accumulator) <= 3

    window = accumulator.current_window()
    assert len(window) == 3
    assert [chunk.tokens for chunk in window[:2]] == [[8], [9]]
    assert window[-1].finalized is False


def test_current_window_returns_copies():
    """Test callers cannot mutate accumulator state through the window."""
    accumulator = ChunkAccumulator()
    accumulator.append([1])

    window = accumulator.current_window()
    window[0].tokens.append(99)
    window[0].finalized = True

    assert accumulator.current_window()[0].tokens == [1]
    assert accumulator.has_finalized() is False


def test_rejects_non_positive_retention():
    """Test max_retained_chunks must be at least one."""
    with pytest.raises(ValueError):
        ChunkAccumulator(max_retained_chunks=0)
