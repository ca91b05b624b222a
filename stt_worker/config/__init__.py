"""Configuration loader utilities."""

from .loader import DEFAULT_CONFIG_PATH, WorkerConfig, load_config

__all__ = [
    "WorkerConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
