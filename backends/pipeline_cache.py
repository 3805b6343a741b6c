"""
Single-slot pipeline cache.

Holds at most one loaded (encoder, sampler, decoder) triad, keyed by the
PipelineConfig that built it. A different config tears the old one down
before the new one is constructed, so two pipelines never coexist.
"""

import gc
import logging
from typing import Callable, Optional

from backends.base import LoadedPipeline, PipelineConfig, PipelineFactory

logger = logging.getLogger(__name__)


class PipelineCache:
    """
    Owns the process's only LoadedPipeline.

    Not thread-safe: ensure() is check-then-act, and the server runs one
    request at a time.
    """

    def __init__(
        self,
        factory: PipelineFactory,
        on_release: Optional[Callable[[], None]] = None,
    ):
        self._factory = factory
        self._on_release = on_release
        self._slot: Optional[LoadedPipeline] = None
        self.load_count = 0

    @property
    def current(self) -> Optional[LoadedPipeline]:
        return self._slot

    @property
    def config(self) -> Optional[PipelineConfig]:
        return self._slot.config if self._slot is not None else None

    def ensure(self, config: PipelineConfig) -> LoadedPipeline:
        """
        Return a pipeline built from `config`, loading it if needed.

        On a construction failure the slot is left empty and the error
        propagates; the next call retries from scratch.
        """
        if self._slot is not None and self._slot.config == config:
            return self._slot

        self.clear()

        logger.info(
            f"[PipelineCache] Loading models from assets_location={config.assets_location} "
            f"({config.width}x{config.height}, mode={config.mode})"
        )
        encoder, sampler, decoder = self._factory(config)

        self._slot = LoadedPipeline(
            encoder=encoder,
            sampler=sampler,
            decoder=decoder,
            config=config,
        )
        self.load_count += 1
        logger.info(f"[PipelineCache] Pipeline ready (load #{self.load_count})")
        return self._slot

    def clear(self) -> None:
        """Drop the cached pipeline, if any. Safe to call when empty."""
        if self._slot is None:
            return

        old = self._slot.config
        self._slot = None
        gc.collect()
        if self._on_release is not None:
            self._on_release()
        logger.info(f"[PipelineCache] Released pipeline for {old}")
