from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from stt_worker import PROJECT_ROOT
from stt_worker.config.default import (
    DECODE_SECTION_MAP,
    DEFAULT_CHUNK_LENGTH_S,
    DEFAULT_DEVICE,
    DEFAULT_DISTIL_CHUNK_LENGTH_S,
    DEFAULT_DISTIL_STRIDE_LENGTH_S,
    DEFAULT_ESTIMATE_MIN_PROGRESS,
    DEFAULT_FINAL_CHUNK_HEADROOM,
    DEFAULT_FULL_COMPUTE_TYPE,
    DEFAULT_HOST,
    DEFAULT_LANGUAGE,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_RETAINED_CHUNKS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_STEP_PERCENT,
    DEFAULT_MODEL_NAME,
    DEFAULT_MULTILINGUAL,
    DEFAULT_PORT,
    DEFAULT_QUANTIZED,
    DEFAULT_QUANTIZED_COMPUTE_TYPE,
    DEFAULT_READY_TIMEOUT_SEC,
    DEFAULT_RETURN_TIMESTAMPS,
    DEFAULT_REVISION,
    DEFAULT_SMOOTHING_WEIGHT,
    DEFAULT_STRIDE_LENGTH_S,
    DEFAULT_TASK,
    DEFAULT_UPDATE_INTERVAL_MS,
    MODEL_SECTION_MAP,
    SERVER_SECTION_MAP,
    default_revision_overrides,
)


@dataclass
class WorkerConfig:
    model: str = DEFAULT_MODEL_NAME
    quantized: bool = DEFAULT_QUANTIZED
    multilingual: bool = DEFAULT_MULTILINGUAL
    device: str = DEFAULT_DEVICE
    quantized_compute_type: str = DEFAULT_QUANTIZED_COMPUTE_TYPE
    full_compute_type: str = DEFAULT_FULL_COMPUTE_TYPE
    cache_dir: Optional[str] = None
    language: Optional[str] = DEFAULT_LANGUAGE
    task: str = DEFAULT_TASK
    default_revision: str = DEFAULT_REVISION
    revision_overrides: Dict[str, str] = field(
        default_factory=default_revision_overrides
    )
    chunk_length_s: float = DEFAULT_CHUNK_LENGTH_S
    stride_length_s: float = DEFAULT_STRIDE_LENGTH_S
    distil_chunk_length_s: float = DEFAULT_DISTIL_CHUNK_LENGTH_S
    distil_stride_length_s: float = DEFAULT_DISTIL_STRIDE_LENGTH_S
    return_timestamps: bool = DEFAULT_RETURN_TIMESTAMPS
    update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
    min_step_percent: int = DEFAULT_MIN_STEP_PERCENT
    max_retained_chunks: int = DEFAULT_MAX_RETAINED_CHUNKS
    smoothing_weight: float = DEFAULT_SMOOTHING_WEIGHT
    final_chunk_headroom: float = DEFAULT_FINAL_CHUNK_HEADROOM
    estimate_min_progress: float = DEFAULT_ESTIMATE_MIN_PROGRESS
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_workers: int = DEFAULT_MAX_WORKERS
    ready_timeout_sec: float = DEFAULT_READY_TIMEOUT_SEC
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = DEFAULT_LOG_FILE


DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "worker.yaml"

SECTION_MAP: Dict[str, Dict[str, str]] = {
    "model": MODEL_SECTION_MAP,
    "decode": DECODE_SECTION_MAP,
}
SECTION_MAP.update(SERVER_SECTION_MAP)


def load_config(path: Optional[Path] = None) -> WorkerConfig:
    """Load worker configuration from YAML, falling back to defaults."""
    cfg = WorkerConfig()
    data = _read_yaml(path or DEFAULT_CONFIG_PATH)
    if data:
        _apply_sections(cfg, data)
    return cfg


def _read_yaml(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if not path or not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if isinstance(data, dict):
        return data
    return None


def _apply_sections(cfg: WorkerConfig, raw: Dict[str, Any]) -> None:
    field_names = {f.name for f in fields(WorkerConfig)}
    for section, mapping in SECTION_MAP.items():
        data = raw.get(section)
        if not isinstance(data, dict):
            continue
        for key, attr in mapping.items():
            if key in data and data[key] is not None:
                setattr(cfg, attr, data[key])
        if section == "model":
            _apply_revision_overrides(cfg, data.get("revision_overrides"))

    for key, value in raw.items():
        if key in SECTION_MAP:
            continue
        if key == "revision_overrides":
            _apply_revision_overrides(cfg, value)
            continue
        if key in field_names and value is not None:
            setattr(cfg, key, value)


def _apply_revision_overrides(
    cfg: WorkerConfig, overrides: Optional[Dict[str, Any]]
) -> None:
    if not isinstance(overrides, dict):
        return
    normalized = {
        str(pattern): str(revision)
        for pattern, revision in overrides.items()
        if pattern and revision
    }
    cfg.revision_overrides = normalized


__all__ = [
    "WorkerConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
