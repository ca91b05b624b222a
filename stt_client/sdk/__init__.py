"""Client SDK for the transcription worker."""

from .transcriber import Observable, Transcriber, TranscriberData, WorkerStatus

__all__ = ["Observable", "Transcriber", "TranscriberData", "WorkerStatus"]
