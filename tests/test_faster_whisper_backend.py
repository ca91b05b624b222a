from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

pytest.importorskip("faster_whisper")

from stt_worker.backend.application.session import SessionSettings  # noqa: E402
from stt_worker.config.default import PIPELINE_TASK  # noqa: E402
from stt_worker.errors import CancellationError, ErrorCode  # noqa: E402
from stt_worker.model.backends import faster_whisper as fw  # noqa: E402
from stt_worker.model.backends.base import InferenceOptions  # noqa: E402
from stt_worker.model.types import DecodeChunk  # noqa: E402

EOT = 50257
TS = 50364  # <|0.00|>


def _decode(tokens):
    """Helper decoding token ids into readable words."""
    return "".join(f" t{token}" for token in tokens)


def _model():
    """Helper for a WhisperModel stand-in with three segments over two windows.

    Segment tokens keep their timestamp tokens, as faster-whisper reports them.
    """
    model = MagicMock()
    model.time_precision = 0.02
    model.feature_extractor.time_per_frame = 0.01
    segments = [
        SimpleNamespace(
            seek=0, tokens=[TS, 1, 2, TS + 50], text=" one", start=0.0, end=1.0
        ),
        SimpleNamespace(
            seek=0, tokens=[TS + 50, 3, TS + 100], text=" two", start=1.0, end=2.0
        ),
        SimpleNamespace(
            seek=3000, tokens=[TS, 4, TS + 50], text=" three", start=30.0, end=31.0
        ),
    ]
    model.transcribe.return_value = (
        iter(segments),
        SimpleNamespace(duration=31.0, language="en"),
    )
    return model


def test_resolve_repo_id_maps_aliases():
    """Test size aliases map to hub repositories and repo ids pass through."""
    assert fw.resolve_repo_id("tiny") == "Systran/faster-whisper-tiny"
    assert fw.resolve_repo_id("distil-large-v3") == "Systran/faster-distil-whisper-large-v3"
    assert fw.resolve_repo_id("org/custom-model") == "org/custom-model"


@pytest.mark.parametrize(
    "identifier, repo_id",
    [
        ("distil-whisper/distil-small.en", "Systran/faster-distil-whisper-small.en"),
        ("distil-large-v3", "Systran/faster-distil-whisper-large-v3"),
        ("Systran/faster-distil-whisper-large-v2", "Systran/faster-distil-whisper-large-v2"),
    ],
)
def test_distil_identifiers_load_converted_repo_with_distil_chunking(identifier, repo_id):
    """Test every distil identifier form resolves to a CTranslate2 repo and 20 s windows."""
    assert fw.resolve_repo_id(identifier) == repo_id
    assert SessionSettings().chunking_for(identifier) == (20.0, 3.0)


def test_xenova_identifiers_map_to_converted_repos():
    """Test ONNX checkpoint ids resolve to loadable repos and keep 30 s windows."""
    assert fw.resolve_repo_id("Xenova/whisper-tiny") == "Systran/faster-whisper-tiny"
    assert fw.resolve_repo_id("Xenova/whisper-medium.en") == "Systran/faster-whisper-medium.en"
    assert SessionSettings().chunking_for("Xenova/whisper-tiny") == (30.0, 5.0)


def test_resolve_revision_drops_source_only_branch():
    """Test a no_attentions pin is dropped for mapped ids and kept for raw repos."""
    assert fw.resolve_revision("Xenova/whisper-medium", "no_attentions") == "main"
    assert fw.resolve_revision("org/whisper-medium", "no_attentions") == "no_attentions"
    assert fw.resolve_revision("large-v3", "fp16") == "fp16"


def test_decode_window_tokens_splits_on_timestamps():
    """Test timestamp tokens delimit segments offset by the chunk start."""
    chunks = [
        DecodeChunk(tokens=[100, 1, 2, 125, 126, 3, 50], finalized=True, time_offset=30.0)
    ]

    result = fw.decode_window_tokens(chunks, 0.02, _decode, eot=50, timestamp_begin=100)

    assert result.text == "t1 t2 t3"
    assert [chunk.text for chunk in result.chunks] == [" t1 t2", " t3"]
    assert result.chunks[0].timestamp == pytest.approx((30.0, 30.5))
    assert result.chunks[1].timestamp[0] == pytest.approx(30.52)
    assert result.chunks[1].timestamp[1] is None


def test_decode_window_tokens_without_timestamps():
    """Test chunks without timestamp tokens start at their window offset."""
    chunks = [DecodeChunk(tokens=[5, 6], time_offset=60.0)]

    result = fw.decode_window_tokens(chunks, 0.02, _decode, eot=50, timestamp_begin=100)

    assert result.text == "t5 t6"
    assert result.chunks[0].timestamp == (60.0, None)


def test_pipeline_reports_steps_and_boundaries():
    """Test decode steps are cumulative per window and boundaries mark windows."""
    model = _model()
    pipeline = fw.FasterWhisperPipeline(model, "tiny")
    steps = []
    boundaries = []
    options = InferenceOptions(
        chunk_length_s=30.0,
        stride_length_s=5.0,
        language="en",
        on_decode_step=steps.append,
        on_chunk_boundary=boundaries.append,
    )

    result = pipeline([0.0] * 16000, options)

    first_window = (TS, 1, 2, TS + 50, TS + 50, 3, TS + 100)
    assert [tuple(step.output_token_ids) for step in steps] == [
        (TS, 1, 2, TS + 50),
        first_window,
        (TS, 4, TS + 50),
    ]
    assert [step.time_offset for step in steps] == pytest.approx([0.0, 0.0, 30.0])
    assert [(b.is_last, tuple(b.tokens)) for b in boundaries] == [
        (False, first_window),
        (True, (TS, 4, TS + 50)),
    ]
    assert boundaries[1].time_offset == pytest.approx(30.0)
    assert result.text == "one two three"
    assert result.chunks[2].timestamp == (30.0, 31.0)

    audio = model.transcribe.call_args.args[0]
    kwargs = model.transcribe.call_args.kwargs
    assert audio.dtype == np.float32
    assert kwargs["chunk_length"] == 30
    assert kwargs["beam_size"] == 1
    assert kwargs["language"] == "en"
    assert kwargs["without_timestamps"] is False


def test_decode_chunks_over_reported_boundaries():
    """Test window tokens from the engine decode into offset, timestamped segments."""
    model = _model()
    pipeline = fw.FasterWhisperPipeline(model, "tiny")
    pipeline._tokenizer = SimpleNamespace(decode=_decode, eot=EOT, timestamp_begin=TS)
    boundaries = []
    options = InferenceOptions(
        chunk_length_s=30.0, stride_length_s=5.0, on_chunk_boundary=boundaries.append
    )
    pipeline([0.0] * 16000, options)
    chunks = [
        DecodeChunk(tokens=list(b.tokens), finalized=True, time_offset=b.time_offset)
        for b in boundaries
    ]

    result = pipeline.decode_chunks(chunks, pipeline.time_precision)

    assert result.text == "t1 t2 t3 t4"
    assert [chunk.text for chunk in result.chunks] == [" t1 t2", " t3", " t4"]
    stamps = [stamp for chunk in result.chunks for stamp in chunk.timestamp]
    assert stamps == pytest.approx([0.0, 1.0, 1.0, 2.0, 30.0, 31.0])


def test_pipeline_propagates_callback_errors():
    """Test an exception raised from a handler aborts the call."""
    pipeline = fw.FasterWhisperPipeline(_model(), "tiny")

    def abort(_step):
        raise RuntimeError("stop")

    options = InferenceOptions(chunk_length_s=30.0, stride_length_s=5.0, on_decode_step=abort)
    with pytest.raises(RuntimeError, match="stop"):
        pipeline([0.0], options)


def test_dispose_unloads_and_refuses_further_calls():
    """Test dispose releases weights and later calls abort like a cancellation."""
    model = _model()
    pipeline = fw.FasterWhisperPipeline(model, "tiny")

    pipeline.dispose()
    pipeline.dispose()

    model.model.unload_model.assert_called_once()
    with pytest.raises(CancellationError) as excinfo:
        pipeline([0.0], InferenceOptions(chunk_length_s=30.0, stride_length_s=5.0))
    assert excinfo.value.code == ErrorCode.MODEL_DISPOSED


def test_progress_bar_forwards_download_ticks():
    """Test hub tqdm updates are reported as load progress."""
    ticks = []
    bar_cls = fw._progress_bar_class(ticks.append, "tiny")

    bar = bar_cls(total=10, desc="model.bin")
    bar.update(5)
    bar.update(5)

    assert [tick.percent_complete for tick in ticks] == [50.0, 100.0]
    assert ticks[0].file == "model.bin"
    assert ticks[0].model_name == "tiny"


def test_factory_downloads_and_selects_compute_type(monkeypatch):
    """Test the factory fetches the mapped repo and picks the compute type."""
    fetched = {}

    def fake_snapshot_download(repo_id, **kwargs):
        fetched["repo_id"] = repo_id
        fetched.update(kwargs)
        return "/tmp/models/tiny"

    built = MagicMock(return_value=_model())
    monkeypatch.setattr(fw, "snapshot_download", fake_snapshot_download)
    monkeypatch.setattr(fw, "WhisperModel", built)
    factory = fw.FasterWhisperPipelineFactory(device="cpu", cache_dir="/tmp/hub")

    pipeline = factory(PIPELINE_TASK, "tiny", quantized=False, revision="main")

    assert isinstance(pipeline, fw.FasterWhisperPipeline)
    assert fetched["repo_id"] == "Systran/faster-whisper-tiny"
    assert fetched["revision"] == "main"
    assert fetched["cache_dir"] == "/tmp/hub"
    assert "tqdm_class" not in fetched
    built.assert_called_once_with("/tmp/models/tiny", device="cpu", compute_type="float32")


def test_factory_fetches_pinned_medium_from_converted_repo(monkeypatch):
    """Test a pinned Xenova medium id downloads the converted repo's main branch."""
    fetched = {}

    def fake_snapshot_download(repo_id, **kwargs):
        fetched["repo_id"] = repo_id
        fetched.update(kwargs)
        return "/tmp/models/medium"

    monkeypatch.setattr(fw, "snapshot_download", fake_snapshot_download)
    monkeypatch.setattr(fw, "WhisperModel", MagicMock(return_value=_model()))
    factory = fw.FasterWhisperPipelineFactory()

    factory(PIPELINE_TASK, "Xenova/whisper-medium", quantized=True, revision="no_attentions")

    assert fetched["repo_id"] == "Systran/faster-whisper-medium"
    assert fetched["revision"] == "main"


def test_factory_rejects_unknown_task():
    """Test the factory only builds speech recognition pipelines."""
    factory = fw.FasterWhisperPipelineFactory()

    with pytest.raises(ValueError):
        factory("text-generation", "tiny", quantized=True, revision="main")
