import argparse
from pathlib import Path

from stt_worker.backend.runtime import WorkerRuntime
from stt_worker.backend.transport.ws_server import start_ws_server
from stt_worker.config import DEFAULT_CONFIG_PATH, WorkerConfig, load_config
from stt_worker.utils.logger import LOGGER, configure_logging, stop_logging


def serve(config: WorkerConfig) -> None:
    """Launch the worker WebSocket server and block until interrupted."""
    runtime = WorkerRuntime(config)
    handle = start_ws_server(
        runtime, config.host, config.port, max_workers=config.max_workers
    )
    LOGGER.info(
        "STT worker listening on ws://%s:%s/ws/worker (device=%s, max_workers=%s)",
        config.host,
        config.port,
        config.device,
        config.max_workers,
    )
    try:
        while handle.thread.is_alive():
            handle.thread.join(timeout=1.0)
    except KeyboardInterrupt:
        LOGGER.info("Shutting down STT worker")
    finally:
        handle.stop(timeout=10.0)
        stop_logging()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Transcription worker server")
    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--host", default=None, help="Interface to bind")
    parser.add_argument("--port", type=int, default=None, help="Port to bind")
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Maximum concurrent worker connections",
    )
    parser.add_argument(
        "--device", default=None, help="Target device passed to faster-whisper"
    )
    parser.add_argument(
        "--cache-dir", default=None, help="Directory for downloaded model files"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. TRACE, DEBUG, INFO); overrides config",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional log file path; overrides config",
    )
    return parser.parse_args()


def configure_from_args(args: argparse.Namespace) -> WorkerConfig:
    config_arg_path = Path(args.config).expanduser() if args.config else None
    effective_config_path = config_arg_path or DEFAULT_CONFIG_PATH
    config = load_config(effective_config_path)

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.max_workers is not None:
        config.max_workers = args.max_workers
    if args.device is not None:
        config.device = args.device
    if args.cache_dir is not None:
        config.cache_dir = args.cache_dir
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_file is not None:
        config.log_file = args.log_file

    configure_logging(config.log_level, config.log_file)
    if effective_config_path.exists():
        LOGGER.info("Loaded worker config from %s", effective_config_path)
    else:
        LOGGER.info(
            "Worker config file not found at %s; using defaults/CLI overrides",
            effective_config_path,
        )
    return config


def main() -> None:
    args = parse_args()
    config = configure_from_args(args)
    serve(config)


if __name__ == "__main__":
    main()
