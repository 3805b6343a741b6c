"""
sd_txt2img argument parsing.

Type-permissive by design of the wire contract: a field with the wrong JSON
type silently takes its default. Only prompt, output and the image size
are checked, and those failures are InvalidParams (-32602).
"""

import math
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from backends.base import PipelineConfig
from server.rpc import InvalidParams

TOOL_NAME = "sd_txt2img"

OUTPUT_MODES = ("base64", "file", "both")
SUPPORTED_SIZES = (256, 512)
SUPPORTED_MODES = (0, 1)


class ToolArguments(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    prompt: str = Field("", description="Positive prompt")
    negative_prompt: str = Field("", description="Negative prompt")
    width: int = Field(256, description="Image width in pixels")
    height: int = Field(256, description="Image height in pixels")
    steps: int = Field(15, description="Number of sampling steps")
    seed: int = Field(0, description="Random seed; 0 picks one from the current time")
    mode: int = Field(0, description="Pipeline mode; 1 trades speed for lower memory use")
    assets_location: Optional[str] = Field(None, description="Model assets directory or checkpoint")
    output: str = Field("base64", description="How to return the image")
    out_path: Optional[str] = Field(
        None, description="When output includes file: write png to this path (optional)"
    )

    @field_validator("prompt", "negative_prompt", "output", mode="before")
    @classmethod
    def _string_or_default(cls, v: Any, info: ValidationInfo) -> Any:
        if isinstance(v, str):
            return v
        return cls.model_fields[info.field_name].default

    @field_validator("assets_location", mode="before")
    @classmethod
    def _optional_string(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("out_path", mode="before")
    @classmethod
    def _optional_path(cls, v: Any) -> Optional[str]:
        # empty means "generate one"
        return v if isinstance(v, str) and v else None

    @field_validator("width", "height", "steps", "seed", "mode", mode="before")
    @classmethod
    def _int_or_default(cls, v: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        if isinstance(v, bool):
            return default
        if isinstance(v, int):
            return v
        if isinstance(v, float) and math.isfinite(v):
            return int(v)
        return default

    @property
    def want_file(self) -> bool:
        return self.output in ("file", "both")

    @property
    def want_base64(self) -> bool:
        return self.output in ("base64", "both")

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            assets_location=self.assets_location or "",
            height=self.height,
            width=self.width,
            mode=self.mode,
        )


def parse_tool_arguments(arguments: Dict[str, Any], default_assets_location: str) -> ToolArguments:
    """
    Default and validate a tools/call `arguments` object.

    Raises InvalidParams naming the offending field.
    """
    data = dict(arguments)
    if not isinstance(data.get("assets_location"), str) and isinstance(data.get("assets_dir"), str):
        data["assets_location"] = data["assets_dir"]

    args = ToolArguments.model_validate(data)

    if not args.prompt:
        raise InvalidParams("prompt is required")

    if args.output not in OUTPUT_MODES:
        raise InvalidParams("output must be one of: " + ", ".join(OUTPUT_MODES))

    if args.height not in SUPPORTED_SIZES or args.width not in SUPPORTED_SIZES:
        raise InvalidParams("height/width only support 256 or 512 currently")

    if args.assets_location is None:
        args = args.model_copy(update={"assets_location": default_assets_location})
    return args


def tool_descriptor(default_assets_location: str) -> Dict[str, Any]:
    """The single entry returned by tools/list."""
    schema = {
        "type": "object",
        "properties": {
            "prompt": {"type": "string", "description": "Positive prompt"},
            "negative_prompt": {"type": "string", "description": "Negative prompt", "default": ""},
            "width": {"type": "integer", "enum": list(SUPPORTED_SIZES), "default": 256},
            "height": {"type": "integer", "enum": list(SUPPORTED_SIZES), "default": 256},
            "steps": {"type": "integer", "minimum": 1, "maximum": 50, "default": 15},
            "seed": {
                "type": "integer",
                "default": 0,
                "description": "0 picks a seed from the current time",
            },
            "mode": {"type": "integer", "enum": list(SUPPORTED_MODES), "default": 0},
            "assets_location": {"type": "string", "default": default_assets_location},
            "output": {"type": "string", "enum": list(OUTPUT_MODES), "default": "base64"},
            "out_path": {
                "type": "string",
                "description": "When output includes file: write png to this path (optional)",
            },
        },
        "required": ["prompt"],
    }
    return {
        "name": TOOL_NAME,
        "description": "Stable Diffusion text-to-image. Returns image/png as base64 and/or a saved file path.",
        "inputSchema": schema,
    }
