"""
Tool Registry - tool descriptors and the dispatch table, built together

A tool is registered with one decorator that records both its descriptor
(returned by ``tools/list``) and its handler (used by ``tools/call``).
The descriptor's ``required`` list is also what argument validation uses.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidParams

ToolHandler = Callable[[Any, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class ToolDescriptor(BaseModel):
    """Static description of a tool, as shown to callers"""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: Dict[str, str] = Field(default_factory=dict)
    required: Tuple[str, ...] = ()
    missing_message: str = Field(default="Required arguments are missing", exclude=True)


@dataclass(frozen=True)
class RegisteredTool:
    descriptor: ToolDescriptor
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.descriptor.name

    def bind_arguments(self, arguments: Any) -> Dict[str, Any]:
        """Check required arguments before anything touches the database"""
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParams(self.descriptor.missing_message)

        missing = [name for name in self.descriptor.required if arguments.get(name) is None]
        if missing:
            raise InvalidParams(self.descriptor.missing_message)
        return arguments


class ToolRegistry:
    """Ordered catalog of tools keyed by name"""

    def __init__(self):
        self._tools: Dict[str, RegisteredTool] = {}

    def tool(
        self,
        name: str,
        description: str,
        parameters: Optional[Dict[str, str]] = None,
        required: Sequence[str] = (),
        missing_message: Optional[str] = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Register the decorated coroutine as the handler for ``name``"""

        def decorator(handler: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Tool already registered: {name}")

            fields = {
                "name": name,
                "description": description,
                "parameters": dict(parameters or {}),
                "required": tuple(required),
            }
            if missing_message:
                fields["missing_message"] = missing_message

            self._tools[name] = RegisteredTool(ToolDescriptor(**fields), handler)
            return handler

        return decorator

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def list_tools(self) -> List[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools.values()]

    def describe(self) -> List[Dict[str, Any]]:
        """Descriptors as plain JSON data for ``tools/list``"""
        return [descriptor.model_dump(mode="json") for descriptor in self.list_tools()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def require_str(arguments: Dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if value is None:
        raise InvalidParams(f"Missing required argument: {name}")
    return _as_text(name, value)


def optional_str(arguments: Dict[str, Any], name: str, default: str) -> str:
    value = arguments.get(name)
    if value is None:
        return default
    return _as_text(name, value)


def optional_mapping(arguments: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = arguments.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidParams(f"Argument '{name}' must be an object")
    return value


def _as_text(name: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        raise InvalidParams(f"Argument '{name}' must be a string")
    # numbers and booleans keep their JSON spelling
    return json.dumps(value)
