"""
mcp_server.py — line-delimited JSON-RPC 2.0 (MCP) server over stdio.

One JSON object per line in, one JSON object per line out. Requests are
handled strictly one at a time; a long generation blocks everything
queued behind it.
"""

import json
import logging
import sys
import threading
from dataclasses import dataclass
from typing import IO, Any, Callable, Dict, Optional, TextIO, Union

from backends.base import ExecutionFailure
from backends.pipeline_cache import PipelineCache
from backends.txt2img import generate_png
from backends.utils import resolve_seed
from server.mcp_config import ServerConfig
from server.output_delivery import deliver
from server.rpc import (
    EXECUTION_ERROR,
    METHOD_NOT_FOUND,
    InvalidParams,
    MethodNotFound,
    RpcError,
    make_error,
    make_result,
)
from server.tool_args import TOOL_NAME, parse_tool_arguments, tool_descriptor

logger = logging.getLogger(__name__)


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")


@dataclass
class ServerContext:
    """Everything a handler may read or mutate."""
    config: ServerConfig
    cache: PipelineCache
    protocol_version: str = ""

    def __post_init__(self):
        if not self.protocol_version:
            self.protocol_version = self.config.protocol_version


Handler = Callable[[ServerContext, Any], Any]

# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

HANDLERS: Dict[str, Handler] = {}  # populated below


def _handler(method: str):
    def decorator(fn):
        HANDLERS[method] = fn
        return fn
    return decorator


# ---------------------------------------------------------------------------
# initialize / tools/list / shutdown
# ---------------------------------------------------------------------------

@_handler("initialize")
def handle_initialize(ctx: ServerContext, params: Any) -> dict:
    if isinstance(params, dict) and isinstance(params.get("protocolVersion"), str):
        ctx.protocol_version = params["protocolVersion"]

    return {
        "protocolVersion": ctx.protocol_version,
        "capabilities": {"tools": {}},
        "serverInfo": {
            "name": ctx.config.server_name,
            "version": ctx.config.server_version,
        },
    }


@_handler("tools/list")
def handle_tools_list(ctx: ServerContext, params: Any) -> dict:
    return {"tools": [tool_descriptor(ctx.config.assets_location)]}


@_handler("shutdown")
def handle_shutdown(ctx: ServerContext, params: Any) -> None:
    # Only the `exit` notification stops the loop.
    return None


# ---------------------------------------------------------------------------
# tools/call
# ---------------------------------------------------------------------------

@_handler("tools/call")
def handle_tools_call(ctx: ServerContext, params: Any) -> dict:
    if not isinstance(params, dict):
        raise InvalidParams("params must be an object")

    name = params.get("name")
    name = name if isinstance(name, str) else ""
    if name != TOOL_NAME:
        raise MethodNotFound(f"unknown tool: {name}")

    arguments = params.get("arguments", {})
    if not isinstance(arguments, dict):
        raise InvalidParams("arguments must be an object")

    args = parse_tool_arguments(arguments, ctx.config.assets_location)
    seed = resolve_seed(args.seed)

    gen = generate_png(
        ctx.cache,
        args.pipeline_config(),
        args.prompt,
        args.negative_prompt,
        args.steps,
        seed,
    )
    if isinstance(gen, ExecutionFailure):
        raise RpcError(gen.code, gen.message)

    result = deliver(gen, args, ctx.config.output_dir)
    if isinstance(result, ExecutionFailure):
        raise RpcError(result.code, result.message)
    return result


# ---------------------------------------------------------------------------
# Server loop
# ---------------------------------------------------------------------------

class McpServer:
    def __init__(self, ctx: ServerContext, stdin: IO = None, stdout: TextIO = None):
        self.ctx = ctx
        stdin = stdin if stdin is not None else sys.stdin
        # read raw bytes so undecodable lines are skipped instead of raising
        self._in = getattr(stdin, "buffer", stdin)
        self._out = stdout if stdout is not None else sys.stdout
        self._write_lock = threading.Lock()

    def _write(self, obj: dict) -> None:
        try:
            line = json.dumps(obj, allow_nan=False)
        except ValueError as e:
            logger.error(f"[mcp] response is not valid JSON: {e}")
            line = json.dumps(make_error(None, EXECUTION_ERROR, f"response is not valid JSON: {e}"))
        with self._write_lock:
            self._out.write(line + "\n")
            self._out.flush()

    def handle_request(self, request_id: Any, method: str, params: Any) -> dict:
        """Run one request to completion. Always returns exactly one response."""
        handler = HANDLERS.get(method)
        if handler is None:
            return make_error(request_id, METHOD_NOT_FOUND, f"method not found: {method}")

        try:
            return make_result(request_id, handler(self.ctx, params))
        except RpcError as e:
            logger.info(f"[mcp] {method} -> error {e.code}: {e.message}")
            return make_error(request_id, e.code, e.message)
        except Exception as e:
            logger.error(f"[mcp] {method} failed: {e}", exc_info=True)
            return make_error(request_id, EXECUTION_ERROR, str(e))

    def serve(self) -> None:
        """Read until EOF or an `exit` notification."""
        logger.info(f"[mcp] serving on stdio (assets_location={self.ctx.config.assets_location})")

        for raw in self._in:
            line = raw.rstrip(b"\r\n") if isinstance(raw, bytes) else raw.rstrip("\r\n")
            if not line:
                continue

            msg = self._parse(line)
            if msg is None:
                continue

            method = msg.get("method")
            method = method if isinstance(method, str) else ""

            if "id" not in msg:
                if method == "exit":
                    logger.info("[mcp] exit notification, stopping")
                    break
                logger.debug(f"[mcp] ignoring notification {method!r}")
                continue

            params = msg.get("params", {})
            self._write(self.handle_request(msg["id"], method, params))

    @staticmethod
    def _parse(line: Union[str, bytes]) -> Optional[dict]:
        try:
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            msg = json.loads(line, parse_constant=_reject_constant)
        except (ValueError, RecursionError):
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors
            msg = None
        if not isinstance(msg, dict):
            logger.info(f"[mcp] failed to parse message: {line[:200]!r}")
            return None
        return msg
