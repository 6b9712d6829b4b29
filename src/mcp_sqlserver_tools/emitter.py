"""
Response emitter and debug traffic log
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, TextIO

from .protocol import RequestId, Response, encode_response, error_response, success_response

log = logging.getLogger(__name__)


def timestamp() -> str:
    """UTC timestamp in the ``YYYY-MM-DD HH:MM:SS.fff`` form used by the log files"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


class TrafficLog:
    """Append-only copies of inbound (read.log) and outbound (write.log) lines.

    Both files are opened once at startup and flushed after every write.
    Whoever opens the log closes it; ``close`` is safe to call twice.
    """

    def __init__(self, read_stream: TextIO, write_stream: TextIO):
        self._read_stream = read_stream
        self._write_stream = write_stream
        self._closed = False

    @classmethod
    def open(cls, directory: Path) -> "TrafficLog":
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        read_stream = open(directory / "read.log", "a", encoding="utf-8")
        try:
            write_stream = open(directory / "write.log", "a", encoding="utf-8")
        except OSError:
            read_stream.close()
            raise
        log.info("traffic log opened in %s", directory)
        return cls(read_stream, write_stream)

    def record_inbound(self, line: str) -> None:
        self._append(self._read_stream, line)

    def record_outbound(self, line: str) -> None:
        self._append(self._write_stream, line)

    def record_error(self, message: str) -> None:
        self._append(self._write_stream, f"Error: {message}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._read_stream.close()
        self._write_stream.close()

    def __enter__(self) -> "TrafficLog":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _append(self, stream: TextIO, line: str) -> None:
        if self._closed:
            return
        stream.write(f"[{timestamp()}] {line}\n")
        stream.flush()


class ResponseEmitter:
    """Writes exactly one line per response to the output stream, then flushes"""

    def __init__(self, stream: Optional[TextIO] = None, traffic_log: Optional[TrafficLog] = None):
        self._stream = stream
        self.traffic_log = traffic_log

    @property
    def stream(self) -> TextIO:
        # resolved lazily so a replaced sys.stdout is honoured
        return self._stream if self._stream is not None else sys.stdout

    def emit(self, response: Response) -> str:
        line = encode_response(response)
        self.stream.write(line + "\n")
        self.stream.flush()
        if self.traffic_log is not None:
            self.traffic_log.record_outbound(line)
        return line

    def emit_success(self, request_id: Optional[RequestId], payload: Any, wrap_as_tool: bool = False) -> str:
        return self.emit(success_response(request_id, payload, wrap_as_tool))

    def emit_error(
        self, request_id: Optional[RequestId], code: int, message: str, wrap_as_tool: bool = False
    ) -> str:
        return self.emit(error_response(request_id, code, message, wrap_as_tool))
