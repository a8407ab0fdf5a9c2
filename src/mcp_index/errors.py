"""JSON-RPC flavoured errors raised by tool handlers.

Handlers return plain result dicts for domain outcomes (``{"notFound": true}``)
and raise ``SemanticError`` for protocol-level failures. The string form of a
``SemanticError`` is the JSON error object, which is what the MCP SDK places in
the text of an ``isError`` tool result.
"""

import json
from typing import Any

INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class SemanticError(Exception):
    """An error carrying a JSON-RPC code and optional structured data."""

    def __init__(self, code: int, message: str, data: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    def __str__(self) -> str:
        return json.dumps({"error": self.to_dict()})


def invalid_params(message: str, data: dict[str, Any] | None = None) -> SemanticError:
    return SemanticError(INVALID_PARAMS, message, data)


def method_not_found(message: str, data: dict[str, Any] | None = None) -> SemanticError:
    return SemanticError(METHOD_NOT_FOUND, message, data)


def internal_error(message: str, data: dict[str, Any] | None = None) -> SemanticError:
    return SemanticError(INTERNAL_ERROR, message, data)
