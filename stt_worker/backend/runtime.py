"""Application wiring for the transcription worker."""

from __future__ import annotations

from typing import Optional

from stt_worker.backend.application.pipeline_cache import PipelineCache
from stt_worker.backend.application.session import SessionSettings
from stt_worker.backend.transport.channel import MessageSink, WorkerChannel
from stt_worker.config import WorkerConfig
from stt_worker.model.backends import get_pipeline_factory
from stt_worker.model.backends.base import PipelineFactory
from stt_worker.utils.logger import LOGGER


class WorkerRuntime:
    """Builds channels that share one engine factory and one set of settings.

    Each channel owns its own PipelineCache, so every connected caller has at
    most one model in memory.
    """

    def __init__(
        self,
        config: WorkerConfig,
        factory: Optional[PipelineFactory] = None,
    ) -> None:
        self.config = config
        self.settings = SessionSettings.from_config(config)
        self.factory = factory or get_pipeline_factory(
            device=config.device,
            quantized_compute_type=config.quantized_compute_type,
            full_compute_type=config.full_compute_type,
            cache_dir=config.cache_dir,
        )
        LOGGER.debug(
            "Worker runtime ready device=%s default_model=%s",
            config.device,
            config.model,
        )

    def create_cache(self) -> PipelineCache:
        return PipelineCache(
            self.factory,
            default_revision=self.config.default_revision,
            revision_overrides=self.config.revision_overrides,
        )

    def create_channel(self, post: MessageSink, name: str = "worker") -> WorkerChannel:
        return WorkerChannel(self.create_cache(), post, self.settings, name=name)


__all__ = ["WorkerRuntime"]
