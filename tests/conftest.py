"""
Shared pytest fixtures for the MCP stdio server tests.

The inference engine is replaced by a numpy fake, so no model files,
torch or GPU are needed.
"""

import io
import json
import os
import sys

import numpy as np
import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from backends.pipeline_cache import PipelineCache
from server.mcp_config import ServerConfig
from server.mcp_server import McpServer, ServerContext

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


class FakeEncoder:
    def __init__(self, calls):
        self.calls = calls

    def encode(self, text):
        self.calls.append(("encode", text))
        return np.full((1, 4), float(len(text)), dtype=np.float32)


class FakeSampler:
    def __init__(self, calls, fail=False):
        self.calls = calls
        self.fail = fail

    def sample(self, seed, steps, conditioning, unconditioning):
        self.calls.append(("sample", seed, steps))
        if self.fail:
            raise RuntimeError("sampler exploded")
        return np.random.RandomState(seed % (2 ** 32)).rand(1, 4, 8, 8)


class FakeDecoder:
    def __init__(self, calls, height, width, short=False):
        self.calls = calls
        self.height = height
        self.width = width
        self.short = short

    def decode(self, latent):
        self.calls.append(("decode",))
        seed = int(latent.sum() * 1000) % (2 ** 32)
        pixels = np.random.RandomState(seed).randint(
            0, 256, (self.height, self.width, 3), dtype=np.uint8
        )
        data = pixels.tobytes()
        return data[:-3] if self.short else data


class FakeEngine:
    """
    Pipeline factory that records every build and every collaborator call.
    """

    def __init__(self):
        self.builds = []
        self.calls = []
        self.fail_build = None
        self.fail_sample = False
        self.short_decode = False

    def __call__(self, config):
        self.builds.append(config)
        if self.fail_build is not None:
            raise self.fail_build
        return (
            FakeEncoder(self.calls),
            FakeSampler(self.calls, fail=self.fail_sample),
            FakeDecoder(self.calls, config.height, config.width, short=self.short_decode),
        )


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def cache(fake_engine):
    return PipelineCache(fake_engine)


@pytest.fixture
def server_config(tmp_path):
    return ServerConfig(
        assets_location="assets",
        output_dir=str(tmp_path / "mcp_outputs"),
    )


@pytest.fixture
def server_ctx(server_config, cache):
    return ServerContext(config=server_config, cache=cache)


@pytest.fixture
def run_server(server_ctx):
    """
    Feed raw lines (dicts are JSON-encoded) through a server and return the
    decoded response lines.
    """

    def run(*lines):
        raw = [ln if isinstance(ln, str) else json.dumps(ln) for ln in lines]
        stdin = io.StringIO("".join(r + "\n" for r in raw))
        stdout = io.StringIO()
        McpServer(server_ctx, stdin=stdin, stdout=stdout).serve()
        return [json.loads(out) for out in stdout.getvalue().splitlines()]

    return run


@pytest.fixture
def txt2img_request():
    def make(request_id=1, **arguments):
        args = {"prompt": "a cat", "width": 256, "height": 256, "steps": 1, "seed": 42}
        args.update(arguments)
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "tools/call",
            "params": {"name": "sd_txt2img", "arguments": args},
        }

    return make


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: mark test as slow")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)

        if "slow" in item.name.lower():
            item.add_marker(pytest.mark.slow)
