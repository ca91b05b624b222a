import contextvars
import logging
import logging.handlers
import queue
from pathlib import Path
from typing import List, Optional

# Custom TRACE level below DEBUG.
TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


def trace(self: logging.Logger, message: str, *args, **kwargs) -> None:
    """Logger helper for TRACE level."""
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore

LOG_QUEUE: "queue.Queue[logging.LogRecord]" = queue.Queue()
QUEUE_LISTENER: Optional[logging.handlers.QueueListener] = None
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s session_id=%(session_id)s: %(message)s"

_SESSION_ID: contextvars.ContextVar[str] = contextvars.ContextVar(
    "stt_worker_session_id", default="-"
)


class SessionIdFilter(logging.Filter):
    """Stamp the active session id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = _SESSION_ID.get()
        return True


def set_session_id(session_id: str) -> None:
    """Bind a session id to log records emitted from the current context."""
    _SESSION_ID.set(session_id or "-")


def clear_session_id() -> None:
    """Reset the session id for the current context."""
    _SESSION_ID.set("-")


def configure_logging(level: str, log_file: Optional[str]) -> None:
    """Configure root logging with queue-based handlers."""
    global QUEUE_LISTENER
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if level.upper() == "TRACE":
        numeric_level = TRACE_LEVEL_NUM

    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # The filter runs on the emitting thread so the context variable is visible.
    queue_handler = logging.handlers.QueueHandler(LOG_QUEUE)
    queue_handler.addFilter(SessionIdFilter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(queue_handler)

    if QUEUE_LISTENER:
        QUEUE_LISTENER.stop()
    QUEUE_LISTENER = logging.handlers.QueueListener(
        LOG_QUEUE, *handlers, respect_handler_level=True
    )
    QUEUE_LISTENER.start()


def stop_logging() -> None:
    """Flush and stop the queue listener if one is running."""
    global QUEUE_LISTENER
    if QUEUE_LISTENER:
        QUEUE_LISTENER.stop()
        for handler in QUEUE_LISTENER.handlers:
            handler.close()
        QUEUE_LISTENER = None


LOGGER = logging.getLogger("stt_worker")

__all__ = [
    "configure_logging",
    "stop_logging",
    "set_session_id",
    "clear_session_id",
    "SessionIdFilter",
    "LOGGER",
    "TRACE_LEVEL_NUM",
]
