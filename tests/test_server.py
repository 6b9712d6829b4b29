"""
Tests for request routing and the stdio loop
"""

import io
import json

import pytest

from conftest import tool_call, tool_payload

from mcp_sqlserver_tools import server as server_module
from mcp_sqlserver_tools.emitter import ResponseEmitter, TrafficLog
from mcp_sqlserver_tools.server import SqlServerMcpServer


def request_line(method, request_id=1, params=None, version="2.0"):
    body = {"protocolVersion": version, "id": request_id, "method": method}
    if params is not None:
        body["params"] = params
    return json.dumps(body)


@pytest.mark.asyncio
async def test_tools_list(server):
    """Scenario: tools/list returns the eight descriptors, get_databases first"""
    response = await server.handle_line('{"protocolVersion":"2.0","id":1,"method":"tools/list"}')

    assert response.error is None
    assert response.id == 1
    tools = response.result["tools"]
    assert len(tools) == 8
    assert tools[0]["name"] == "get_databases"


@pytest.mark.asyncio
async def test_initialize(server):
    response = await server.handle_line(request_line("initialize"))

    assert response.result["name"] == "SQL Server MCP"
    assert response.result["version"] == "1.0.0"
    assert response.result["capabilities"]["queryExecution"] is True


@pytest.mark.asyncio
async def test_notifications_initialized_is_acknowledged(server, output):
    line = await server.process_line('{"protocolVersion":"2.0","method":"notifications/initialized"}')

    assert json.loads(line) == {"result": {}}
    assert output.getvalue() == line + "\n"


@pytest.mark.asyncio
@pytest.mark.parametrize("version", ["1.0", "", None])
async def test_wrong_protocol_version_is_invalid_request(server, driver, version):
    line = request_line("tools/call", params={"name": "get_databases"}, version=version)

    response = await server.handle_line(line)

    assert response.error.code == -32600
    assert response.result is None
    assert driver.executed == []


@pytest.mark.asyncio
async def test_missing_protocol_version_is_invalid_request(server, driver):
    response = await server.handle_line('{"id":5,"method":"tools/call","params":{"name":"get_databases"}}')

    assert response.error.code == -32600
    assert response.id == 5
    assert driver.executed == []


@pytest.mark.asyncio
async def test_missing_method_is_invalid_request(server):
    response = await server.handle_line('{"protocolVersion":"2.0","id":5}')

    assert response.error.code == -32600


@pytest.mark.asyncio
async def test_malformed_line_is_parse_error(server):
    response = await server.handle_line("{not json")

    assert response.id is None
    assert response.error.code == -32700
    assert response.result is None


@pytest.mark.asyncio
async def test_unknown_method(server):
    response = await server.handle_line(request_line("resources/list", request_id=8))

    assert response.id == 8
    assert response.error.code == -32601
    assert response.error.message == "Unknown method: resources/list"


@pytest.mark.asyncio
async def test_unknown_tool_is_not_tool_wrapped(server):
    """Scenario: unknown tool name gives a plain MethodNotFound error"""
    line = await server.process_line(tool_call("frobnicate", {}))

    body = json.loads(line)
    assert body["error"] == {"code": -32601, "message": "Unknown tool: frobnicate"}
    assert "result" not in body


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [None, {}, {"arguments": {"database": "Foo"}}])
async def test_tool_call_without_name_is_invalid_params(server, driver, params):
    response = await server.handle_line(request_line("tools/call", params=params))

    assert response.error.code == -32602
    assert response.error.message == "Tool name is required"
    assert response.result is None
    assert driver.executed == []


@pytest.mark.asyncio
async def test_get_tables_on_empty_database(server, driver):
    """Scenario: no tables gives a wrapped {"tables": []}"""
    line = '{"protocolVersion":"2.0","id":2,"method":"tools/call","params":{"name":"get_tables","arguments":{"database":"Foo"}}}'

    response = await server.handle_line(line)

    assert response.id == 2
    assert response.error is None
    assert response.result["isError"] is False
    assert tool_payload(response) == {"tables": []}
    assert driver.statements[0] == "USE [Foo]"


@pytest.mark.asyncio
async def test_get_columns_for_missing_table(server, driver):
    """Scenario: an unknown table is not an error, just no columns"""
    line = '{"protocolVersion":"2.0","id":3,"method":"tools/call","params":{"name":"get_columns","arguments":{"database":"Foo","table":"Bar"}}}'

    response = await server.handle_line(line)

    assert response.error is None
    assert tool_payload(response) == {"columns": []}


@pytest.mark.asyncio
async def test_execute_procedure_passes_json_text(server, driver):
    """Scenario: parameter 42 reaches the procedure as the text "42" """
    driver.add_result(["value"], [("42",)])

    response = await server.handle_line(
        tool_call("execute_procedure", {"database": "Foo", "procedure": "Echo", "parameters": {"p1": 42}})
    )

    assert tool_payload(response) == {"results": [{"value": "42"}]}
    assert driver.executed[-1] == ("EXEC [dbo].[Echo] @p1 = ?", ("42",))


@pytest.mark.asyncio
async def test_arguments_must_be_nested(server, driver):
    """Required fields directly under params do not count"""
    line = request_line("tools/call", params={"name": "get_tables", "database": "Foo"})

    response = await server.handle_line(line)

    assert response.error.code == -32602
    assert response.error.message == "Database name is required"
    assert response.result["isError"] is True
    assert response.result["content"][0]["text"] == "Database name is required"
    assert driver.executed == []


@pytest.mark.asyncio
async def test_procedure_not_found_is_wrapped_invalid_params(server, driver):
    driver.add_result(["Definition"], [])

    response = await server.handle_line(
        tool_call("get_procedure_definition", {"database": "Foo", "schema": "dbo", "name": "Nope"}, request_id=11)
    )

    assert response.id == 11
    assert response.error.code == -32602
    assert response.error.message == "Procedure not found"
    assert response.result["isError"] is True


@pytest.mark.asyncio
async def test_database_failure_is_wrapped_internal_error(server, driver):
    driver.error = RuntimeError("Login failed for user 'sa'")

    response = await server.handle_line(tool_call("get_databases", request_id=12))

    assert response.id == 12
    assert response.error.code == -32603
    assert response.error.message == "Login failed for user 'sa'"
    assert response.result == {
        "content": [{"type": "text", "text": "Login failed for user 'sa'"}],
        "isError": True,
    }


@pytest.mark.asyncio
async def test_failure_does_not_stop_later_lines(server, driver):
    driver.error = RuntimeError("Invalid column name 'x'")
    first = await server.handle_line(tool_call("execute_system_query", {"query": "SELECT x"}))

    driver.error = None
    driver.add_result(["one"], [(1,)])
    second = await server.handle_line(tool_call("execute_system_query", {"query": "SELECT 1 AS one"}))

    assert first.error.code == -32603
    assert tool_payload(second) == {"results": [{"one": 1}]}


@pytest.mark.asyncio
async def test_unexpected_router_failure_is_internal_error(server, monkeypatch):
    def broken():
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(server, "list_tools", broken)

    response = await server.handle_line(request_line("tools/list", request_id=4))

    assert response.id == 4
    assert response.error.code == -32603
    assert response.error.message == "registry unavailable"
    assert response.result is None


@pytest.mark.asyncio
async def test_serve_answers_every_line_in_order(database):
    stdin = io.StringIO(
        request_line("initialize", request_id=1)
        + "\n"
        + "garbage\n"
        + "\n"
        + request_line("tools/list", request_id=2)
        + "\n"
    )
    stdout = io.StringIO()

    await SqlServerMcpServer(database, ResponseEmitter(stream=stdout)).serve(stdin)

    lines = stdout.getvalue().splitlines()
    assert len(lines) == 4
    assert [json.loads(line).get("id") for line in lines] == [1, None, None, 2]
    assert json.loads(lines[1])["error"]["code"] == -32700
    assert json.loads(lines[2])["error"]["code"] == -32700


@pytest.mark.asyncio
async def test_traffic_log_mirrors_lines(database, tmp_path):
    stdout = io.StringIO()
    with TrafficLog.open(tmp_path) as traffic_log:
        server = SqlServerMcpServer(database, ResponseEmitter(stream=stdout, traffic_log=traffic_log))
        written = await server.process_line(request_line("initialize"))

    read_log = (tmp_path / "read.log").read_text(encoding="utf-8")
    write_log = (tmp_path / "write.log").read_text(encoding="utf-8")
    assert read_log.rstrip("\n").endswith("] " + request_line("initialize"))
    assert write_log.rstrip("\n").endswith("] " + written)
    assert write_log.startswith("[")


def test_main_fails_without_config(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("MCP_SQLSERVER_CONNECTION_STRING", raising=False)

    exit_code = server_module.main(["--config", str(tmp_path / "missing.json")])

    assert exit_code == 1
    assert "Fatal error" in capsys.readouterr().err


def test_main_processes_stdin_until_eof(tmp_path, monkeypatch):
    config = tmp_path / "appsettings.json"
    config.write_text(
        json.dumps(
            {
                "ConnectionStrings": {"DefaultConnection": "Driver=fake"},
                "DebugMode": "true",
                "LogPath": str(tmp_path / "logs"),
            }
        ),
        encoding="utf-8",
    )
    stdout = io.StringIO()
    monkeypatch.setattr("sys.stdin", io.StringIO(request_line("tools/list") + "\n"))
    monkeypatch.setattr("sys.stdout", stdout)

    exit_code = server_module.main(["--config", str(config)])

    assert exit_code == 0
    assert len(json.loads(stdout.getvalue())["result"]["tools"]) == 8
    assert (tmp_path / "logs" / "read.log").exists()
    assert (tmp_path / "logs" / "write.log").exists()


@pytest.mark.asyncio
async def test_invalid_utf8_line_does_not_stop_serving(database):
    """A line that is not UTF-8 gets a parse error and the next line is still served"""
    good = request_line("tools/list", request_id=2).encode("utf-8")
    stdin = io.TextIOWrapper(io.BytesIO(b"\xff\xfe\n" + good + b"\n"), encoding="utf-8")
    stdout = io.StringIO()

    await SqlServerMcpServer(database, ResponseEmitter(stream=stdout)).serve(stdin)

    lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert len(lines) == 2
    assert lines[0]["error"]["code"] == -32700
    assert "id" not in lines[0]
    assert lines[1]["id"] == 2
    assert len(lines[1]["result"]["tools"]) == 8


@pytest.mark.asyncio
async def test_bad_line_then_good_line_keeps_serving(database, driver):
    driver.error = RuntimeError("Cannot open database")
    stdin = io.StringIO(
        "{broken\n"
        + tool_call("get_tables", {"database": "Gone"}, request_id=1)
        + "\n"
        + request_line("initialize", request_id=2)
        + "\n"
    )
    stdout = io.StringIO()

    await SqlServerMcpServer(database, ResponseEmitter(stream=stdout)).serve(stdin)

    lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert [line.get("id") for line in lines] == [None, 1, 2]
    assert lines[0]["error"]["code"] == -32700
    assert lines[1]["error"]["code"] == -32603
    assert lines[2]["result"]["name"] == "SQL Server MCP"


@pytest.mark.asyncio
async def test_non_integer_numeric_id_is_answered(server):
    response = await server.handle_line('{"protocolVersion":"2.0","id":1.5,"method":"tools/list"}')

    assert response.error is None
    assert response.id == 1.5
