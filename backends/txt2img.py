# backends/txt2img.py
from __future__ import annotations

import logging
import time

from backends.base import (
    FAILURE_COMPUTE,
    FAILURE_CONFIG,
    ExecutionFailure,
    GenerationOutcome,
    GenerationResult,
    PipelineConfig,
)
from backends.pipeline_cache import PipelineCache
from backends.utils import rgb_to_png

logger = logging.getLogger(__name__)


def generate_png(
    cache: PipelineCache,
    config: PipelineConfig,
    prompt: str,
    negative_prompt: str,
    steps: int,
    seed: int,
) -> GenerationOutcome:
    """
    Run one text-to-image generation.

    Order is fixed: ensure pipeline, encode prompt, encode negative
    prompt, sample, decode, PNG-encode. Any failure stops the sequence and
    comes back as an ExecutionFailure; no partial image is returned.
    `seed` must already be resolved.
    """
    try:
        pipe = cache.ensure(config)
    except Exception as e:
        logger.error(f"[txt2img] Pipeline load failed: {e!r}")
        return ExecutionFailure(kind=FAILURE_CONFIG, message=str(e) or type(e).__name__)

    t0 = time.perf_counter()
    try:
        cond = pipe.encoder.encode(prompt)
        uncond = pipe.encoder.encode(negative_prompt)
        latent = pipe.sampler.sample(seed, steps, cond, uncond)
        pixels = pipe.decoder.decode(latent)
        png = rgb_to_png(pixels, config.width, config.height)
    except Exception as e:
        logger.error(f"[txt2img] Generation failed (seed={seed}, steps={steps}): {e!r}")
        return ExecutionFailure(kind=FAILURE_COMPUTE, message=str(e) or type(e).__name__)

    logger.info(
        f"[txt2img] {config.width}x{config.height} seed={seed} steps={steps} "
        f"in {time.perf_counter() - t0:.2f}s ({len(png)} bytes)"
    )
    return GenerationResult(png_bytes=png, seed=seed)
