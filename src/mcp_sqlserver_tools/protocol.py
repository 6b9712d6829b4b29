"""
Wire codec - JSON-RPC request/response models and the tool-result envelope

One request per input line, one response per output line. Tool calls wrap
their payload a second time: the payload is serialized to JSON text and
carried in a single ``text`` content block, so callers that only understand
plain-text tool output can consume every tool the same way.
"""

import base64
import datetime
import json
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from mcp.types import ErrorData, TextContent
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from .errors import JsonRpcError, ParseError

PROTOCOL_VERSION = "2.0"

RequestId = Union[StrictInt, StrictFloat, StrictStr]

# only these fields are written, whatever else the SDK models carry
_RESPONSE_FIELDS = {"id": True, "result": True, "error": {"code", "message", "data"}}
_CONTENT_FIELDS = {"type", "text"}


class Request(BaseModel):
    """Inbound JSON-RPC request"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    protocol_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("protocolVersion", "jsonrpc"),
        serialization_alias="protocolVersion",
    )
    id: Optional[RequestId] = None
    method: Optional[str] = None
    params: Optional[Dict[str, Any]] = None


class Response(BaseModel):
    """Outbound JSON-RPC response"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[RequestId] = None
    result: Optional[Any] = None
    error: Optional[ErrorData] = None


def decode_request(line: str) -> Request:
    """Parse one input line into a Request, raising ParseError on bad input"""
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParseError(str(e)) from e

    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        return Request.model_validate(data)
    except ValidationError as e:
        raise ParseError(_describe_validation_error(e)) from e


def decode_response(line: str) -> Response:
    """Parse one output line back into a Response"""
    try:
        return Response.model_validate_json(line)
    except ValidationError as e:
        raise ParseError(_describe_validation_error(e)) from e


def encode_response(response: Response) -> str:
    """Serialize a Response to a single line (no trailing newline)"""
    body = response.model_dump(mode="json", by_alias=True, exclude_none=True, include=_RESPONSE_FIELDS)
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"), default=json_default)


def encode_payload(payload: Any) -> str:
    """Serialize a tool payload to the text carried inside a tool result"""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=json_default)


def tool_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    """Build the tool-result envelope around one text block"""
    block = TextContent(type="text", text=text)
    return {
        "content": [block.model_dump(mode="json", include=_CONTENT_FIELDS)],
        "isError": is_error,
    }


def success_response(request_id: Optional[RequestId], payload: Any, wrap_as_tool: bool = False) -> Response:
    """Build a success response, wrapping the payload as tool output when asked"""
    if wrap_as_tool:
        return Response(id=request_id, result=tool_result(encode_payload(payload)))
    return Response(id=request_id, result=payload)


def error_response(
    request_id: Optional[RequestId], code: int, message: str, wrap_as_tool: bool = False
) -> Response:
    """Build an error response.

    Tool-call errors also carry a tool result with ``isError`` set, next to
    the ``error`` field, so both protocol-level and tool-level consumers
    see the failure.
    """
    error = ErrorData(code=code, message=message)
    if wrap_as_tool:
        return Response(id=request_id, error=error, result=tool_result(message, is_error=True))
    return Response(id=request_id, error=error)


def exception_response(
    request_id: Optional[RequestId], exc: JsonRpcError, wrap_as_tool: bool = False
) -> Response:
    """Build an error response from a raised JsonRpcError"""
    return error_response(request_id, exc.code, exc.message, wrap_as_tool)


def json_default(value: Any) -> Any:
    """JSON fallback for scalar types returned by the database driver"""
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        number = float(value)
        if Decimal(repr(number)) == value:
            return number
        # a float would round it, so keep the exact digits as text
        return str(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _describe_validation_error(error: ValidationError) -> str:
    details = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "request"
        details.append(f"{location}: {item['msg']}")
    return "Invalid request shape - " + "; ".join(details)
