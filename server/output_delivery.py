"""Turn a generated PNG into tools/call content (inline base64 and/or a file)."""

import logging
import os
import time
from typing import Any, Dict, Optional, Union

from backends.base import FAILURE_IO, ExecutionFailure, GenerationResult
from backends.utils import encode_base64
from server.tool_args import ToolArguments

logger = logging.getLogger(__name__)


def default_out_path(seed: int, width: int, height: int, output_dir: str = "mcp_outputs") -> str:
    ts = int(time.time())
    return os.path.join(output_dir, f"result_{seed}_{width}x{height}_{ts}.png")


def write_png(path: str, data: bytes) -> Optional[ExecutionFailure]:
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"[output] failed to write {path}: {e}")
        return ExecutionFailure(kind=FAILURE_IO, message=f"failed to write png: {e}")
    logger.info(f"[output] wrote {len(data)} bytes to {path}")
    return None


def deliver(
    gen: GenerationResult,
    args: ToolArguments,
    output_dir: str,
) -> Union[Dict[str, Any], ExecutionFailure]:
    """
    Build the tools/call result.

    File first, then inline image. A failed write fails the whole call.
    """
    content = []
    saved_path = None

    if args.want_file:
        saved_path = args.out_path or default_out_path(gen.seed, args.width, args.height, output_dir)
        failure = write_png(saved_path, gen.png_bytes)
        if failure is not None:
            return failure
        content.append({"type": "text", "text": saved_path})

    if args.want_base64:
        content.append({
            "type": "image",
            "mimeType": "image/png",
            "data": encode_base64(gen.png_bytes),
        })

    result: Dict[str, Any] = {"content": content}
    if saved_path:
        result["outputPath"] = saved_path
    return result
