from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
from mcp.types import CallToolResult, TextContent

import toolmux.mcp.transport as transport
from toolmux.mcp import (
    MCPClient,
    MCPConfigurationError,
    MCPConnectionError,
    MCPTool,
    MCPToolExecutionError,
    MCPToolListingError,
    MCPUnsupportedEnvironmentError,
    StdioServerConfig,
    ToolExecutionOptions,
    create_mcp_client,
)


def run_async(coro):
    return asyncio.run(coro)


@asynccontextmanager
async def _fake_streams():
    yield (object(), object())


class _FakeSession:
    instances: list["_FakeSession"] = []

    def __init__(self, read_stream, write_stream) -> None:
        _ = (read_stream, write_stream)
        self.initialized = False
        self.exited = False
        self.cursors: list[str | None] = []
        self.fail_listing = False
        self.fail_calls = False
        _FakeSession.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        return False

    async def initialize(self):
        self.initialized = True

    async def list_tools(self, cursor=None):
        self.cursors.append(cursor)
        if self.fail_listing:
            raise RuntimeError("method not found")
        if cursor is None:
            return SimpleNamespace(
                tools=[
                    SimpleNamespace(
                        name="add",
                        description="Add two integers",
                        inputSchema={
                            "type": "object",
                            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
                        },
                    )
                ],
                nextCursor="page-2",
            )
        return SimpleNamespace(
            tools=[SimpleNamespace(name="ping", description=None, inputSchema=None)],
            nextCursor=None,
        )

    async def call_tool(self, name, arguments=None):
        if self.fail_calls:
            raise RuntimeError("server crashed")
        total = arguments["a"] + arguments["b"]
        return CallToolResult(content=[TextContent(type="text", text=str(total))], isError=False)


@pytest.fixture
def fake_session(monkeypatch):
    _FakeSession.instances = []
    monkeypatch.setattr(transport, "ClientSession", _FakeSession)
    return _FakeSession


def _client() -> MCPClient:
    return MCPClient("calc", StdioServerConfig(command="calc-server"), _fake_streams)


def test_client_lists_paginated_tools_and_executes_calls(fake_session):
    async def scenario():
        client = _client()
        await client.connect()
        try:
            tools = await client.tools()
            result = await tools["add"].execute(
                {"a": 1, "b": 2}, ToolExecutionOptions(tool_call_id="c1")
            )
        finally:
            await client.close()
        return client, tools, result

    client, tools, result = run_async(scenario())
    session = fake_session.instances[0]

    assert session.initialized and session.exited
    assert session.cursors == [None, "page-2"]
    assert list(tools) == ["add", "ping"]
    assert tools["add"].description == "Add two integers"
    assert tools["ping"].parameters == {"type": "object"}
    assert result["content"] == [{"type": "text", "text": "3"}]
    assert result["isError"] is False
    assert not client.connected


def test_listing_and_call_failures_raise_typed_errors(fake_session):
    async def scenario():
        client = _client()
        await client.connect()
        session = fake_session.instances[0]
        try:
            tools = await client.tools()
            session.fail_calls = True
            with pytest.raises(MCPToolExecutionError, match="calc:add: server crashed"):
                await tools["add"].execute({"a": 1, "b": 2}, ToolExecutionOptions("c1"))

            session.fail_listing = True
            with pytest.raises(MCPToolListingError, match="method not found"):
                await client.tools()
        finally:
            await client.close()

    run_async(scenario())


def test_calls_after_close_report_disconnected(fake_session):
    async def scenario():
        client = _client()
        await client.connect()
        tools = await client.tools()
        await client.close()
        await client.close()
        with pytest.raises(MCPConnectionError, match="not connected"):
            await tools["add"].execute({"a": 1, "b": 2}, ToolExecutionOptions("c1"))

    run_async(scenario())


def test_connect_failure_is_wrapped():
    @asynccontextmanager
    async def refused():
        raise OSError("connection refused")
        yield

    async def scenario():
        client = MCPClient("calc", StdioServerConfig(command="calc-server"), refused)
        with pytest.raises(MCPConnectionError, match="connection refused"):
            await client.connect()
        await client.close()

    run_async(scenario())


def test_close_without_connect_is_a_noop():
    run_async(_client().close())


def test_create_client_refuses_stdio_when_processes_are_unavailable(monkeypatch, caplog):
    def fail_streams(config):
        raise AssertionError("must not open a transport")

    monkeypatch.setattr(transport, "_streams_for", fail_streams)

    with pytest.raises(MCPUnsupportedEnvironmentError, match="STDIO transport not supported"):
        run_async(create_mcp_client("local", {"command": "echo"}, allow_stdio=False))
    assert "STDIO transport is not supported in this environment" in caplog.text


def test_create_client_validates_before_connecting():
    with pytest.raises(MCPConfigurationError, match='missing "type" field'):
        run_async(create_mcp_client("remote", {"url": "https://tools.example/mcp"}))


def test_create_client_connects_url_transports(monkeypatch, fake_session):
    seen: list[tuple[str, dict | None]] = []

    def fake_sse_client(url, headers=None):
        seen.append((url, headers))
        return _fake_streams()

    monkeypatch.setattr(transport, "sse_client", fake_sse_client)

    async def scenario():
        client = await create_mcp_client(
            "remote",
            {"type": "sse", "url": "https://tools.example/sse", "headers": {"X-Key": "k"}},
        )
        await client.close()
        return client

    client = run_async(scenario())

    assert seen == [("https://tools.example/sse", {"X-Key": "k"})]
    assert client.server_name == "remote"
    assert fake_session.instances[0].initialized


def test_stripped_tool_drops_only_the_binding():
    async def execute(args, options):
        return args

    tool = MCPTool(name="echo", description="Echo", parameters={"type": "object"}, execute=execute)
    stripped = tool.stripped()

    assert stripped.execute is None
    assert tool.execute is execute
    assert stripped.to_dict() == {
        "name": "echo",
        "description": "Echo",
        "parameters": {"type": "object"},
    }


def test_installed_sdk_provides_the_transports_in_use():
    from importlib.metadata import version

    from mcp.client import streamable_http

    assert int(version("mcp").split(".")[0]) == 1
    assert transport.streamablehttp_client is streamable_http.streamablehttp_client
