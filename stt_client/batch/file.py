import argparse
import sys
import threading
from pathlib import Path
from typing import Optional

from stt_client.sdk import Transcriber, TranscriberData, WorkerStatus
from stt_worker.config import DEFAULT_CONFIG_PATH, load_config
from stt_worker.utils.logger import configure_logging, stop_logging

TASK_CHOICES = ("transcribe", "translate")
TERMINAL_STATUSES = ("complete", "error", "cancelled")


def _format_time(time_payload: Optional[dict]) -> str:
    if not time_payload:
        return ""
    remaining = time_payload.get("remaining")
    remaining_text = "?" if remaining is None else f"{remaining}s"
    return f" elapsed={time_payload.get('elapsed')}s remaining={remaining_text}"


def run(
    path: str,
    config_path: Optional[str],
    model: Optional[str],
    language: Optional[str],
    task: str,
    quantized: Optional[bool],
) -> int:
    config = load_config(Path(config_path).expanduser() if config_path else None)
    configure_logging(config.log_level, config.log_file)
    finished = threading.Event()
    outcome = {"status": "error"}

    def on_transcript(data: Optional[TranscriberData]) -> None:
        if data is None or not data.is_busy or data.progress is None:
            return
        print(f"[UPDATE] {data.progress}%{_format_time(data.time)} {data.text}")

    def on_status(status: WorkerStatus) -> None:
        if status.status == "loading":
            print(f"[LOADING] {status.message}")
        elif status.status == "error":
            print(f"[ERROR] {status.message}", file=sys.stderr)
        elif status.status == "cancelled":
            print("[CANCELLED] transcription cancelled")
        if status.status in TERMINAL_STATUSES:
            outcome["status"] = status.status
            finished.set()

    transcriber = Transcriber(config)
    try:
        transcriber.transcribe(
            path,
            model=model,
            language=language,
            subtask=task,
            quantized=quantized,
        )
        transcriber.transcript.subscribe(on_transcript)
        transcriber.worker_status.subscribe(on_status)
        try:
            while not finished.wait(timeout=0.5):
                pass
        except KeyboardInterrupt:
            transcriber.cancel_transcription()
            finished.wait()
        final = transcriber.transcript.value
        if outcome["status"] == "complete" and final is not None:
            print(f"[COMPLETE] {final.text}")
            for chunk in final.chunks:
                start, end = chunk.timestamp
                end_text = "?" if end is None else f"{end:.2f}"
                print(f"  [{start:.2f} -> {end_text}] {chunk.text.strip()}")
            return 0
        return 1
    finally:
        transcriber.close()
        stop_logging()


def main() -> None:
    parser = argparse.ArgumentParser(description="Transcribe an audio file")
    parser.add_argument(
        "audio_path",
        metavar="AUDIO",
        help="Path to an audio file readable by soundfile",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--model", default=None, help="Model identifier to use")
    parser.add_argument(
        "--language",
        default=None,
        help="Input language code (defaults to the configured language)",
    )
    parser.add_argument(
        "--task",
        choices=TASK_CHOICES,
        default="transcribe",
        help="Whisper task; default: %(default)s",
    )
    parser.add_argument(
        "--full-precision",
        dest="quantized",
        action="store_false",
        help="Load full-precision weights instead of the quantized variant",
    )
    parser.set_defaults(quantized=None)
    args = parser.parse_args()

    audio_path = Path(args.audio_path).expanduser()
    if not audio_path.exists():
        parser.error(f"Audio file not found: {audio_path}")

    sys.exit(
        run(
            str(audio_path),
            config_path=args.config,
            model=args.model,
            language=args.language,
            task=args.task,
            quantized=args.quantized,
        )
    )


if __name__ == "__main__":
    main()
