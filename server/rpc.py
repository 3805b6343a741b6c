"""JSON-RPC 2.0 envelopes and protocol-level errors."""

from typing import Any

INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
EXECUTION_ERROR = -32000


class RpcError(Exception):
    """Raised by handlers; becomes a JSON-RPC error response."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class InvalidParams(RpcError):
    def __init__(self, message: str):
        super().__init__(INVALID_PARAMS, message)


class MethodNotFound(RpcError):
    def __init__(self, message: str):
        super().__init__(METHOD_NOT_FOUND, message)


def make_result(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def make_error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
