# backends/diffusers_engine.py
from __future__ import annotations

import gc
import logging
import os
from dataclasses import dataclass
from typing import Optional

import numpy as np
import torch
from diffusers import EulerAncestralDiscreteScheduler, StableDiffusionPipeline

from backends.base import ModelPaths, PipelineConfig, PipelineParts

logger = logging.getLogger(__name__)

SUPPORTED_MODES = (0, 1)


@dataclass(frozen=True)
class EngineSettings:
    """Process-wide knobs that are not part of the pipeline cache key."""
    device: str = "auto"
    dtype: str = "fp32"
    guidance_scale: float = 7.5
    num_threads: Optional[int] = None


def _resolve_device(name: str) -> str:
    if name == "auto":
        return "cuda" if torch.cuda.is_available() else "cpu"
    return name


def _resolve_dtype(name: str, device: str) -> torch.dtype:
    if device == "cpu":
        # half precision kernels are missing/slow on CPU
        return torch.float32
    if name == "bf16":
        return torch.bfloat16
    if name == "fp16":
        return torch.float16
    return torch.float32


class ClipTextEncoder:
    """Tokenizer + CLIP text encoder. Empty text gives the unconditional embedding."""

    def __init__(self, tokenizer, text_encoder, device: str):
        self.tokenizer = tokenizer
        self.text_encoder = text_encoder
        self.device = device

    def encode(self, text: str) -> torch.Tensor:
        tokens = self.tokenizer(
            text,
            padding="max_length",
            max_length=self.tokenizer.model_max_length,
            truncation=True,
            return_tensors="pt",
        )
        with torch.inference_mode():
            return self.text_encoder(tokens.input_ids.to(self.device))[0]


class EulerAncestralSampler:
    """Classifier-free guided denoising loop over the UNet."""

    def __init__(self, unet, scheduler, height: int, width: int, device: str, dtype, guidance_scale: float):
        self.unet = unet
        self.scheduler = scheduler
        self.height = height
        self.width = width
        self.device = device
        self.dtype = dtype
        self.guidance_scale = guidance_scale

    def sample(self, seed: int, steps: int, conditioning, unconditioning) -> torch.Tensor:
        # torch seeds are unsigned 64-bit
        gen = torch.Generator(device="cpu").manual_seed(int(seed) % (2 ** 63))

        shape = (1, self.unet.config.in_channels, self.height // 8, self.width // 8)
        latents = torch.randn(shape, generator=gen, dtype=torch.float32)
        latents = latents.to(self.device, dtype=self.dtype)

        self.scheduler.set_timesteps(int(steps), device=self.device)
        latents = latents * self.scheduler.init_noise_sigma

        embeds = torch.cat([unconditioning, conditioning]).to(self.device, dtype=self.dtype)

        with torch.inference_mode():
            for t in self.scheduler.timesteps:
                model_in = torch.cat([latents] * 2)
                model_in = self.scheduler.scale_model_input(model_in, t)
                noise = self.unet(model_in, t, encoder_hidden_states=embeds).sample
                noise_uncond, noise_cond = noise.chunk(2)
                noise = noise_uncond + self.guidance_scale * (noise_cond - noise_uncond)
                latents = self.scheduler.step(noise, t, latents, generator=gen).prev_sample

        return latents


class VaeDecoder:
    """VAE decode, [-1, 1] -> 0..255, HWC RGB bytes."""

    def __init__(self, vae, height: int, width: int):
        self.vae = vae
        self.height = height
        self.width = width

    def decode(self, latent: torch.Tensor) -> bytes:
        with torch.inference_mode():
            latent = latent / self.vae.config.scaling_factor
            img = self.vae.decode(latent.to(self.vae.dtype)).sample

        img = ((img.float() + 1.0) * 127.5).clamp(0, 255).round()
        arr = img[0].permute(1, 2, 0).to(torch.uint8).cpu().numpy()

        if arr.shape != (self.height, self.width, 3):
            raise RuntimeError(
                f"decoder produced shape {arr.shape}, expected {(self.height, self.width, 3)}"
            )
        return np.ascontiguousarray(arr).tobytes()


def _load_pipeline(paths: ModelPaths, dtype: torch.dtype) -> StableDiffusionPipeline:
    if paths.is_diffusers_dir:
        return StableDiffusionPipeline.from_pretrained(
            paths.root,
            torch_dtype=dtype,
            safety_checker=None,
            requires_safety_checker=False,
        )
    return StableDiffusionPipeline.from_single_file(
        paths.root,
        torch_dtype=dtype,
        safety_checker=None,
        requires_safety_checker=False,
    )


def build_pipeline(config: PipelineConfig, settings: EngineSettings) -> PipelineParts:
    """
    Construct encoder, sampler and decoder for `config`.

    mode 0: plain; mode 1: memory-saving (attention slicing + VAE tiling).
    Raises FileNotFoundError / ValueError for unusable configurations.
    """
    if config.mode not in SUPPORTED_MODES:
        raise ValueError(f"unsupported mode {config.mode}, expected one of {list(SUPPORTED_MODES)}")

    paths = ModelPaths(root=config.assets_location)
    if not (paths.is_diffusers_dir or paths.is_single_file):
        raise FileNotFoundError(
            f"no diffusers model directory or checkpoint at '{config.assets_location}'"
        )

    if settings.num_threads:
        torch.set_num_threads(settings.num_threads)

    device = _resolve_device(settings.device)
    dtype = _resolve_dtype(settings.dtype, device)

    pipe = _load_pipeline(paths, dtype)
    pipe = pipe.to(device)

    if config.mode == 1:
        pipe.enable_attention_slicing()
        pipe.vae.enable_tiling()

    scheduler = EulerAncestralDiscreteScheduler.from_config(pipe.scheduler.config)

    logger.info(
        f"[engine] loaded {os.path.basename(os.path.normpath(paths.root))} "
        f"on {device} dtype={dtype} mode={config.mode}"
    )

    encoder = ClipTextEncoder(pipe.tokenizer, pipe.text_encoder, device)
    sampler = EulerAncestralSampler(
        pipe.unet,
        scheduler,
        config.height,
        config.width,
        device,
        dtype,
        settings.guidance_scale,
    )
    decoder = VaeDecoder(pipe.vae, config.height, config.width)
    return encoder, sampler, decoder


def release_memory() -> None:
    gc.collect()
    if torch.cuda.is_available():
        torch.cuda.empty_cache()
