"""
MCP Server for SQL Server - request routing and the stdio loop
"""

import argparse
import asyncio
import io
import logging
import sys
from typing import Any, Dict, List, Optional, TextIO

from mcp.types import INTERNAL_ERROR

from . import __version__
from .config import load_settings
from .database import SqlServerDatabase
from .emitter import ResponseEmitter, TrafficLog
from .errors import InvalidParams, InvalidRequest, JsonRpcError, MethodNotFound, ParseError
from .protocol import (
    PROTOCOL_VERSION,
    Request,
    Response,
    decode_request,
    error_response,
    exception_response,
    success_response,
)
from .registry import ToolRegistry
from .tools import registry as default_registry

log = logging.getLogger(__name__)

SERVER_NAME = "SQL Server MCP"


class SqlServerMcpServer:
    def __init__(
        self,
        database: SqlServerDatabase,
        emitter: Optional[ResponseEmitter] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        self.database = database
        self.emitter = emitter or ResponseEmitter()
        self.registry = registry if registry is not None else default_registry
        self._methods = {
            "initialize": self._handle_initialize,
            "notifications/initialized": self._handle_initialized,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
        }

    async def serve(self, stdin: Optional[TextIO] = None) -> None:
        """Read requests line by line until end of input, answering each in order"""
        stdin = stdin or sys.stdin
        _replace_undecodable(stdin)
        log.info("ready to process requests")

        while True:
            try:
                line = await asyncio.to_thread(stdin.readline)
            except UnicodeDecodeError as e:
                log.warning("undecodable input line: %s", e)
                self.emitter.emit(exception_response(None, ParseError(str(e))))
                continue
            if not line:
                break

            try:
                await self.process_line(line.rstrip("\r\n"))
            except Exception as e:
                log.exception("error processing request")
                if self.emitter.traffic_log is not None:
                    self.emitter.traffic_log.record_error(repr(e))

        log.info("end of input")

    async def process_line(self, line: str) -> str:
        """Handle one input line and write its response line"""
        if self.emitter.traffic_log is not None:
            self.emitter.traffic_log.record_inbound(line)
        response = await self.handle_line(line)
        return self.emitter.emit(response)

    async def handle_line(self, line: str) -> Response:
        """Turn one input line into exactly one response"""
        try:
            request = decode_request(line)
        except ParseError as e:
            log.warning("malformed request: %s", e.message)
            return exception_response(None, e)

        try:
            self._validate_envelope(request)
            handler = self._methods.get(request.method)
            if handler is None:
                raise MethodNotFound(f"Unknown method: {request.method}")

            log.debug("request: method=%s id=%s", request.method, request.id)
            return await handler(request)
        except JsonRpcError as e:
            return exception_response(request.id, e)
        except Exception as e:
            self._log_failure(request, e)
            return error_response(request.id, INTERNAL_ERROR, _error_message(e))

    def _validate_envelope(self, request: Request) -> None:
        if request.protocol_version != PROTOCOL_VERSION:
            raise InvalidRequest("Invalid JSON-RPC 2.0 request")
        if not request.method:
            raise InvalidRequest("Request method is required")

    async def _handle_initialize(self, request: Request) -> Response:
        capabilities = {
            "name": SERVER_NAME,
            "version": __version__,
            "capabilities": {
                "databases": True,
                "tables": True,
                "columns": True,
                "procedures": True,
                "queryExecution": True,
            },
        }
        return success_response(request.id, capabilities)

    async def _handle_initialized(self, request: Request) -> Response:
        # acknowledged with an empty result even though it is a notification
        return success_response(request.id, {})

    async def _handle_tools_list(self, request: Request) -> Response:
        return success_response(request.id, {"tools": self.list_tools()})

    async def _handle_tools_call(self, request: Request) -> Response:
        params = request.params or {}
        name = params.get("name")
        if name is None:
            raise InvalidParams("Tool name is required")
        if not isinstance(name, str):
            raise InvalidParams("Tool name must be a string")

        tool = self.registry.get(name)
        if tool is None:
            raise MethodNotFound(f"Unknown tool: {name}")

        # from here on a tool is identified, so errors are tool-wrapped too
        try:
            arguments = tool.bind_arguments(params.get("arguments"))
            payload = await tool.handler(self.database, arguments)
        except JsonRpcError as e:
            return exception_response(request.id, e, wrap_as_tool=True)
        except Exception as e:
            self._log_failure(request, e, tool=name)
            return error_response(request.id, INTERNAL_ERROR, _error_message(e), wrap_as_tool=True)

        return success_response(request.id, payload, wrap_as_tool=True)

    def list_tools(self) -> List[Dict[str, Any]]:
        return self.registry.describe()

    def _log_failure(self, request: Request, error: Exception, tool: Optional[str] = None) -> None:
        target = f"tool {tool}" if tool else request.method
        log.exception("error handling %s (id=%s)", target, request.id)
        if self.emitter.traffic_log is not None:
            self.emitter.traffic_log.record_error(f"{target}: {type(error).__name__}: {error}")


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__


def _use_utf8_console() -> None:
    for stream, errors in ((sys.stdin, "replace"), (sys.stdout, "strict")):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is not None:
            reconfigure(encoding="utf-8", errors=errors)


def _replace_undecodable(stream: TextIO) -> None:
    """Decode bad bytes as U+FFFD so a broken line fails alone as a parse error"""
    reconfigure = getattr(stream, "reconfigure", None)
    if reconfigure is None:
        return
    try:
        reconfigure(errors="replace")
    except io.UnsupportedOperation:
        log.debug("input stream already read from, keeping its error handler")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="MCP server exposing SQL Server over stdio")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to appsettings.json (default: ./appsettings.json)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )

    traffic_log = None
    try:
        _use_utf8_console()
        settings = load_settings(args.config)
        log.info("debug mode: %s, log path: %s", settings.debug_mode, settings.log_path)

        if settings.debug_mode:
            traffic_log = TrafficLog.open(settings.log_path)

        server = SqlServerMcpServer(
            SqlServerDatabase(settings.connection_string),
            ResponseEmitter(traffic_log=traffic_log),
        )
        asyncio.run(server.serve())
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        if traffic_log is not None:
            traffic_log.record_error(f"Fatal error: {e}")
        return 1
    finally:
        if traffic_log is not None:
            traffic_log.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
