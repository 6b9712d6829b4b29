"""
Error types for the JSON-RPC layer
"""

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)


class JsonRpcError(Exception):
    """Base error carrying a JSON-RPC error code"""

    code = INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ParseError(JsonRpcError):
    """Input line is not valid JSON or has the wrong shape"""

    code = PARSE_ERROR


class InvalidRequest(JsonRpcError):
    """Missing or wrong protocol version, or missing method"""

    code = INVALID_REQUEST


class MethodNotFound(JsonRpcError):
    """Unknown top-level method or unknown tool name"""

    code = METHOD_NOT_FOUND


class InvalidParams(JsonRpcError):
    """Missing required arguments or a looked-up entity does not exist"""

    code = INVALID_PARAMS


class InternalError(JsonRpcError):
    """Any other failure, database errors included"""

    code = INTERNAL_ERROR


class ConfigError(Exception):
    """Startup configuration could not be loaded"""
