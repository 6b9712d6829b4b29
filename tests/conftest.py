"""
Shared fixtures - a scripted stand-in for a DB-API connection
"""

import io
import json

import pytest

from mcp_sqlserver_tools.database import SqlServerDatabase
from mcp_sqlserver_tools.emitter import ResponseEmitter
from mcp_sqlserver_tools.server import SqlServerMcpServer


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.description = None
        self.closed = False
        self._rows = []
        self._pending = []

    def execute(self, sql, *params):
        driver = self.connection.driver
        driver.executed.append((sql, params))
        if sql.startswith("USE "):
            self._pending = []
            self._advance()
            return self
        if driver.error is not None:
            raise driver.error

        self._pending = list(driver.script.pop(0)) if driver.script else []
        self._advance()
        return self

    def nextset(self):
        return self._advance()

    def close(self):
        self.closed = True

    def __iter__(self):
        while self._rows:
            yield self._rows.pop(0)

    def _advance(self):
        if not self._pending:
            self.description = None
            self._rows = []
            return False

        result_set = self._pending.pop(0)
        if result_set is None:
            # row-count-only result
            self.description = None
            self._rows = []
        else:
            columns, rows = result_set
            self.description = [(name, None, None, None, None, None, True) for name in columns]
            self._rows = [tuple(row) for row in rows]
        return True


class FakeConnection:
    def __init__(self, driver):
        self.driver = driver
        self.closed = False
        self.cursors = []

    def cursor(self):
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def close(self):
        self.closed = True


class FakeDriver:
    """Hands out fake connections and replays scripted result sets in order"""

    def __init__(self):
        self.script = []
        self.executed = []
        self.connections = []
        self.error = None

    def connect(self):
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection

    def add_result(self, columns, rows):
        self.script.append([(columns, rows)])

    def add_result_sets(self, *result_sets):
        self.script.append(list(result_sets))

    @property
    def statements(self):
        return [sql for sql, _ in self.executed]


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def database(driver):
    return SqlServerDatabase("Driver=fake;Server=test", connect=driver.connect)


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def server(database, output):
    return SqlServerMcpServer(database, ResponseEmitter(stream=output))


def tool_call(name, arguments=None, request_id=1):
    params = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    return json.dumps({"protocolVersion": "2.0", "id": request_id, "method": "tools/call", "params": params})


def tool_payload(response):
    """Decode the JSON text carried inside a tool result"""
    content = response.result["content"]
    assert len(content) == 1
    assert content[0]["type"] == "text"
    return json.loads(content[0]["text"])
