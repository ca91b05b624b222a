"""Callers of the transcription worker: SDK handle and command-line tools."""
