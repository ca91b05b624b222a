"""Transport adapters for the worker channel."""

from stt_worker.backend.transport.channel import WorkerChannel
from stt_worker.backend.transport.commands import decode_command

__all__ = ["WorkerChannel", "decode_command"]
