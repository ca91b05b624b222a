"""Shared helpers for the stt_worker package."""
