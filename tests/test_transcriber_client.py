import threading

import numpy as np
import pytest
import soundfile as sf

from stt_client.sdk import Observable, Transcriber, WorkerStatus
from stt_worker.backend.runtime import WorkerRuntime
from stt_worker.config import WorkerConfig


@pytest.fixture
def wav_path(tmp_path):
    path = tmp_path / "silence.wav"
    sf.write(str(path), np.zeros(8000, dtype=np.float32), 8000)
    return path


@pytest.fixture
def transcriber(fake_factory):
    runtime = WorkerRuntime(WorkerConfig(), factory=fake_factory)
    client = Transcriber(runtime=runtime)
    yield client
    client.close()


def _wait_idle(client, timeout=5.0):
    """Helper blocking until the busy flag drops."""
    idle = threading.Event()
    unsubscribe = client.is_busy.subscribe(lambda busy: idle.set() if not busy else None)
    try:
        return idle.wait(timeout)
    finally:
        unsubscribe()


def test_observable_notifies_current_and_later_values():
    """Test subscribers get the current value immediately and later sets."""
    observable = Observable(1)
    seen = []

    unsubscribe = observable.subscribe(seen.append)
    observable.set(2)
    unsubscribe()
    observable.set(3)

    assert seen == [1, 2]
    assert observable.value == 3


def test_load_model_reaches_ready(transcriber, fake_factory):
    """Test load_model reports ready with the model name."""
    transcriber.load_model("base", quantized=False)

    assert transcriber.wait_until_ready(timeout=5.0) is True
    assert transcriber.worker_status.value == WorkerStatus("ready", "Model ready", "base")
    assert fake_factory.calls[0]["quantized"] is False


def test_transcribe_file_publishes_final_transcript(transcriber, wav_path):
    """Test a file transcription ends with a complete transcript and idle flag."""
    updates = []
    transcriber.transcript.subscribe(updates.append)

    transcriber.transcribe(wav_path)
    assert _wait_idle(transcriber)

    final = transcriber.transcript.value
    assert final.is_busy is False
    assert final.text == " hello world"
    assert final.progress == 100
    assert final.chunks[0].timestamp == (0.0, 1.5)
    assert transcriber.worker_status.value.status == "complete"
    assert updates[0] is None


def test_transcribe_failure_reports_error_status(transcriber, fake_factory, wav_path):
    """Test an engine error clears busy and surfaces the message."""
    fake_factory.run_error = RuntimeError("boom")

    transcriber.transcribe(wav_path)
    assert _wait_idle(transcriber)

    status = transcriber.worker_status.value
    assert status.status == "error"
    assert status.message == "Error: Transcription failed: boom"
    assert status.model == "tiny"


def test_unreadable_audio_raises(transcriber, tmp_path):
    """Test a file that cannot be decoded raises and reports an error."""
    bogus = tmp_path / "bogus.wav"
    bogus.write_bytes(b"not audio")

    with pytest.raises(Exception):
        transcriber.transcribe(bogus)

    assert transcriber.is_busy.value is False
    assert transcriber.worker_status.value.status == "error"


def test_wait_until_ready_timeout_sets_error(transcriber, fake_factory):
    """Test a load that outlives the timeout is reported as an error."""
    gate = threading.Event()
    fake_factory.before_load = lambda: gate.wait(timeout=5.0)
    try:
        transcriber.load_model("tiny")
        assert transcriber.wait_until_ready(timeout=0.05) is False
        status = transcriber.worker_status.value
        assert status.status == "error"
        assert status.message == "Timed out waiting for the model to load"
    finally:
        gate.set()
