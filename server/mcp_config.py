"""
Server configuration.

Resolved in layers, later wins:
- built-in defaults
- conf/mcp.yml (or the file given with --config)
- environment (SD_ASSETS_DIR, SD_OUTPUT_DIR, SD_DEVICE, SD_DTYPE,
  SD_GUIDANCE_SCALE, SD_NUM_THREADS / NCNN_NUM_THREADS)
- command-line flags (applied by server/run.py)
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "conf/mcp.yml"

VALID_DTYPES = ("fp32", "fp16", "bf16")


@dataclass(frozen=True)
class ServerConfig:
    assets_location: str = "assets"
    output_dir: str = "mcp_outputs"
    protocol_version: str = "2024-11-05"
    server_name: str = "sd-mcp-stdio"
    server_version: str = "0.1.0"
    device: str = "auto"
    dtype: str = "fp32"
    guidance_scale: float = 7.5
    num_threads: Optional[int] = None
    verbose: bool = False


def _parse_threads(value: Optional[str]) -> Optional[int]:
    """Positive integer or None; anything else is ignored."""
    if value is None or not value.strip():
        return None
    try:
        n = int(value.strip())
    except ValueError:
        return None
    return n if n >= 1 else None


def _validate(cfg: ServerConfig) -> ServerConfig:
    if cfg.dtype not in VALID_DTYPES:
        raise ValueError(f"dtype must be one of {list(VALID_DTYPES)}, got '{cfg.dtype}'")
    if cfg.guidance_scale < 0:
        raise ValueError(f"guidance_scale must be >= 0, got {cfg.guidance_scale}")
    if cfg.num_threads is not None and cfg.num_threads < 1:
        raise ValueError(f"num_threads must be >= 1, got {cfg.num_threads}")
    return cfg


def _check_types(path: Path, data: Dict[str, Any]) -> Dict[str, Any]:
    """Reject YAML values of the wrong type; ints are accepted for floats."""
    checked = dict(data)
    for key, value in data.items():
        if key == "guidance_scale":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{path}: guidance_scale must be a number, got {value!r}")
            checked[key] = float(value)
        elif key == "num_threads":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValueError(f"{path}: num_threads must be an integer, got {value!r}")
        elif key == "verbose":
            if not isinstance(value, bool):
                raise ValueError(f"{path}: verbose must be true or false, got {value!r}")
        elif not isinstance(value, str):
            raise ValueError(f"{path}: {key} must be a string, got {value!r}")
    return checked


def load_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")

    known = {f.name for f in fields(ServerConfig)}
    unknown = sorted(str(k) for k in set(data) - known)
    if unknown:
        raise ValueError(f"{path}: unknown keys {unknown}. Known keys: {sorted(known)}")
    return _check_types(path, data)


def apply_env(cfg: ServerConfig, env: Mapping[str, str]) -> ServerConfig:
    patch: Dict[str, Any] = {}

    if env.get("SD_ASSETS_DIR"):
        patch["assets_location"] = env["SD_ASSETS_DIR"]
    if env.get("SD_OUTPUT_DIR"):
        patch["output_dir"] = env["SD_OUTPUT_DIR"]
    if env.get("SD_DEVICE"):
        patch["device"] = env["SD_DEVICE"].strip()
    if env.get("SD_DTYPE"):
        patch["dtype"] = env["SD_DTYPE"].strip().lower()
    if env.get("SD_GUIDANCE_SCALE"):
        try:
            patch["guidance_scale"] = float(env["SD_GUIDANCE_SCALE"])
        except ValueError:
            raise ValueError(f"SD_GUIDANCE_SCALE is not a number: {env['SD_GUIDANCE_SCALE']!r}")

    threads = _parse_threads(env.get("SD_NUM_THREADS"))
    if threads is None:
        threads = _parse_threads(env.get("NCNN_NUM_THREADS"))
    if threads is not None:
        patch["num_threads"] = threads

    return replace(cfg, **patch) if patch else cfg


def load_server_config(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Build a ServerConfig from defaults, YAML and environment.

    An explicit `config_path` that does not exist is an error; the
    default path is optional.
    """
    env = os.environ if env is None else env
    cfg = ServerConfig()

    path = Path(config_path or DEFAULT_CONFIG_PATH)
    if path.exists():
        logger.info(f"[ServerConfig] Loading configuration from {path}")
        cfg = replace(cfg, **load_yaml(path))
    elif config_path is not None:
        raise FileNotFoundError(f"config file not found at {path}")

    cfg = apply_env(cfg, env)
    return _validate(cfg)
