"""Default values for worker runtime, progress and server configuration."""

from typing import Dict

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_MAX_WORKERS = 1
DEFAULT_READY_TIMEOUT_SEC = 300.0
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = None

# Progress smoothing policy. These were tuned by hand against real decode
# callbacks; treat them as defaults, not derived values.
DEFAULT_UPDATE_INTERVAL_MS = 200
DEFAULT_MIN_STEP_PERCENT = 1
DEFAULT_MAX_RETAINED_CHUNKS = 5
DEFAULT_SMOOTHING_WEIGHT = 0.7
DEFAULT_FINAL_CHUNK_HEADROOM = 0.9
DEFAULT_ESTIMATE_MIN_PROGRESS = 5.0

SERVER_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "server": {
        "host": "host",
        "port": "port",
        "max_workers": "max_workers",
        "ready_timeout_sec": "ready_timeout_sec",
    },
    "progress": {
        "update_interval_ms": "update_interval_ms",
        "min_step_percent": "min_step_percent",
        "max_retained_chunks": "max_retained_chunks",
        "smoothing_weight": "smoothing_weight",
        "final_chunk_headroom": "final_chunk_headroom",
        "estimate_min_progress": "estimate_min_progress",
    },
    "logging": {
        "level": "log_level",
        "file": "log_file",
    },
}

__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_READY_TIMEOUT_SEC",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_LOG_FILE",
    "DEFAULT_UPDATE_INTERVAL_MS",
    "DEFAULT_MIN_STEP_PERCENT",
    "DEFAULT_MAX_RETAINED_CHUNKS",
    "DEFAULT_SMOOTHING_WEIGHT",
    "DEFAULT_FINAL_CHUNK_HEADROOM",
    "DEFAULT_ESTIMATE_MIN_PROGRESS",
    "SERVER_SECTION_MAP",
]
