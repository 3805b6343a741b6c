# backends/base.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol, Tuple, Union


@dataclass(frozen=True)
class PipelineConfig:
    """Everything needed to build one pipeline. Compared field by field."""
    assets_location: str
    height: int
    width: int
    mode: int


class TextEncoder(Protocol):
    def encode(self, text: str) -> Any:
        """Return the conditioning embedding for `text`."""


class Sampler(Protocol):
    def sample(self, seed: int, steps: int, conditioning: Any, unconditioning: Any) -> Any:
        """Return a single latent sample."""


class Decoder(Protocol):
    def decode(self, latent: Any) -> bytes:
        """
        Return height*width*3 bytes, RGB interleaved, already scaled to 0..255.
        """


PipelineParts = Tuple[TextEncoder, Sampler, Decoder]
PipelineFactory = Callable[[PipelineConfig], PipelineParts]


@dataclass
class LoadedPipeline:
    encoder: TextEncoder
    sampler: Sampler
    decoder: Decoder
    config: PipelineConfig


@dataclass(frozen=True)
class GenerationResult:
    png_bytes: bytes
    seed: int


# Failure kinds
FAILURE_CONFIG = "config"
FAILURE_IO = "io"
FAILURE_COMPUTE = "compute"

# JSON-RPC code per failure kind
FAILURE_CODES: Dict[str, int] = {
    FAILURE_CONFIG: -32000,
    FAILURE_IO: -32000,
    FAILURE_COMPUTE: -32000,
}


@dataclass(frozen=True)
class ExecutionFailure:
    kind: str
    message: str

    @property
    def code(self) -> int:
        return FAILURE_CODES[self.kind]


GenerationOutcome = Union[GenerationResult, ExecutionFailure]


@dataclass(frozen=True)
class ModelPaths:
    root: str

    @property
    def model_index(self) -> str:
        return os.path.join(self.root, "model_index.json")

    @property
    def is_diffusers_dir(self) -> bool:
        return os.path.isdir(self.root) and os.path.exists(self.model_index)

    @property
    def is_single_file(self) -> bool:
        return os.path.isfile(self.root) and self.root.endswith((".safetensors", ".ckpt"))
