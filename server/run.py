# server/run.py
import argparse
import logging
from dataclasses import replace
from functools import partial
from typing import List, Optional

from server.logging_config import configure_logging
from server.mcp_config import ServerConfig, load_server_config

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sd-mcp-stdio",
        description="Stable Diffusion text-to-image as an MCP tool over stdio.",
    )
    parser.add_argument("--verbose", action="store_true", help="log diagnostics to stderr")
    parser.add_argument(
        "--assets", "--assets-dir",
        dest="assets",
        default=None,
        help="default model assets directory or checkpoint",
    )
    parser.add_argument("--output-dir", default=None, help="directory for generated files")
    parser.add_argument("--config", default=None, help="YAML config file (default: conf/mcp.yml if present)")
    return parser


def resolve_config(argv: Optional[List[str]] = None) -> ServerConfig:
    args = build_arg_parser().parse_args(argv)
    cfg = load_server_config(args.config)

    patch = {"verbose": args.verbose or cfg.verbose}
    if args.assets:
        patch["assets_location"] = args.assets
    if args.output_dir:
        patch["output_dir"] = args.output_dir
    return replace(cfg, **patch)


def main(argv: Optional[List[str]] = None) -> int:
    cfg = resolve_config(argv)
    configure_logging(cfg.verbose)

    # torch/diffusers are heavy; import only when actually serving
    from backends.diffusers_engine import EngineSettings, build_pipeline, release_memory
    from backends.pipeline_cache import PipelineCache
    from server.mcp_server import McpServer, ServerContext

    settings = EngineSettings(
        device=cfg.device,
        dtype=cfg.dtype,
        guidance_scale=cfg.guidance_scale,
        num_threads=cfg.num_threads,
    )
    cache = PipelineCache(partial(build_pipeline, settings=settings), on_release=release_memory)

    McpServer(ServerContext(config=cfg, cache=cache)).serve()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
