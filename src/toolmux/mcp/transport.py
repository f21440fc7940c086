"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Transport client factory for external MCP servers.

Each ``MCPClient`` wraps one ``mcp.ClientSession``. The SDK transports are
async context managers bound to the task that entered them, so every client
runs its session inside a dedicated owner task and ``close()`` only signals
that task and waits for it to unwind.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from .config import (
    MCPServerConfig,
    SSEServerConfig,
    StdioServerConfig,
    StreamableHTTPServerConfig,
    validate_server_config,
)
from .types import (
    MCPConnectionError,
    MCPToolExecutionError,
    MCPToolListingError,
    MCPUnsupportedEnvironmentError,
)

logger = logging.getLogger("toolmux.mcp")

StreamsFactory = Callable[[], AbstractAsyncContextManager[tuple[Any, ...]]]


@dataclass(frozen=True, slots=True)
class ToolExecutionOptions:
    """
    Context handed to a tool's execute function.

    Attributes:
        tool_call_id: Identifier of the invocation being executed.
        messages: Full conversation history at the time of the call.
    """

    tool_call_id: str
    messages: list[Any] = field(default_factory=list)


ToolExecute = Callable[[dict[str, Any], ToolExecutionOptions], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class MCPTool:
    """
    A tool advertised by an MCP server.

    Attributes:
        name: Tool name as advertised by the server.
        description: Optional human-readable description.
        parameters: JSON schema of the tool arguments.
        execute: Bound remote call, ``None`` for stripped metadata.
    """

    name: str
    description: str | None = None
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object"})
    execute: ToolExecute | None = None

    def stripped(self) -> "MCPTool":
        """Return a copy without the live execute binding."""
        return replace(self, execute=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class MCPClientHandle(Protocol):
    """Connection contract the orchestration service relies on."""

    server_name: str

    async def tools(self) -> dict[str, MCPTool]:
        """List the tools of the connected server."""
        ...

    async def close(self) -> None:
        """Release the connection. Must not raise."""
        ...


class ClientFactory(Protocol):
    """Creates connected client handles for one raw server record."""

    async def __call__(
        self,
        server_name: str,
        config: Mapping[str, Any],
        *,
        allow_stdio: bool,
    ) -> MCPClientHandle:
        ...


def _describe(error: BaseException) -> str:
    # anyio task groups wrap transport failures in exception groups.
    if isinstance(error, BaseExceptionGroup) and len(error.exceptions) == 1:
        return _describe(error.exceptions[0])
    text = str(error)
    return text or type(error).__name__


class MCPClient:
    """Connected MCP client for one external server."""

    def __init__(
        self,
        server_name: str,
        config: MCPServerConfig,
        open_streams: StreamsFactory,
    ) -> None:
        self.server_name = server_name
        self.config = config
        self._open_streams = open_streams
        self._session: ClientSession | None = None
        self._runner: asyncio.Task[None] | None = None
        self._closing = asyncio.Event()
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._session is not None and not self._closed

    async def connect(self) -> None:
        """Open the transport and complete the MCP ``initialize`` handshake."""
        if self._runner is not None:
            return
        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(
            self._run(ready), name=f"mcp-client:{self.server_name}"
        )
        try:
            await ready
        except Exception as e:
            raise MCPConnectionError(_describe(e)) from e

    async def _run(self, ready: asyncio.Future[None]) -> None:
        try:
            async with self._open_streams() as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    self._session = session
                    ready.set_result(None)
                    await self._closing.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.error(
                    "MCP session for server '%s' ended with error: %s",
                    self.server_name,
                    _describe(e),
                )
        finally:
            self._session = None
            if not ready.done():
                ready.cancel()

    def _require_session(self) -> ClientSession:
        if self._session is None or self._closed:
            raise MCPConnectionError(
                f"MCP client for server '{self.server_name}' is not connected"
            )
        return self._session

    async def tools(self) -> dict[str, MCPTool]:
        session = self._require_session()
        listed: list[Any] = []
        cursor: str | None = None
        try:
            while True:
                if cursor is None:
                    page = await session.list_tools()
                else:
                    page = await session.list_tools(cursor=cursor)
                listed.extend(page.tools)
                cursor = page.nextCursor
                if not cursor:
                    break
        except Exception as e:
            raise MCPToolListingError(
                f"Failed to list tools from MCP server '{self.server_name}': {_describe(e)}"
            ) from e

        return {
            tool.name: MCPTool(
                name=tool.name,
                description=tool.description,
                parameters=dict(tool.inputSchema or {"type": "object"}),
                execute=self._make_execute(tool.name),
            )
            for tool in listed
        }

    def _make_execute(self, tool_name: str) -> ToolExecute:
        async def _execute(args: dict[str, Any], options: ToolExecutionOptions) -> Any:
            _ = options
            session = self._require_session()
            try:
                result = await session.call_tool(tool_name, arguments=dict(args or {}))
            except Exception as e:
                raise MCPToolExecutionError(
                    f"{self.server_name}:{tool_name}: {_describe(e)}"
                ) from e
            return result.model_dump(mode="json", by_alias=True, exclude_none=True)

        return _execute

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closing.set()
        runner = self._runner
        if runner is None:
            return
        try:
            await runner
        except Exception:
            logger.exception("Error closing MCP client for server '%s'", self.server_name)


def _streams_for(config: MCPServerConfig) -> StreamsFactory:
    if isinstance(config, StdioServerConfig):
        params = StdioServerParameters(
            command=config.command,
            args=list(config.args or []),
            env=dict(config.env) if config.env is not None else None,
            cwd=config.cwd,
        )
        return lambda: stdio_client(params)
    if isinstance(config, SSEServerConfig):
        return lambda: sse_client(config.url, headers=config.headers)
    if isinstance(config, StreamableHTTPServerConfig):
        return lambda: streamablehttp_client(config.url, headers=config.headers)
    raise MCPConnectionError(f"Unsupported MCP transport: {type(config).__name__}")


async def create_mcp_client(
    server_name: str,
    config: Mapping[str, Any],
    *,
    allow_stdio: bool = True,
) -> MCPClient:
    """
    Validate a raw server record and return a connected client.

    Raises:
        MCPConfigurationError: when the record is invalid.
        MCPUnsupportedEnvironmentError: for stdio servers when the runtime
            cannot spawn processes.
        MCPConnectionError: when the transport or handshake fails.
    """
    validated = validate_server_config(server_name, config)

    if isinstance(validated, StdioServerConfig):
        if not allow_stdio:
            logger.warning(
                "STDIO transport is not supported in this environment for server: %s",
                server_name,
            )
            raise MCPUnsupportedEnvironmentError(
                "STDIO transport not supported in this environment"
            )
        logger.debug(
            "Creating STDIO client for '%s' with command: '%s' %s",
            server_name,
            validated.command,
            " ".join(validated.args or []),
        )
    else:
        logger.debug(
            "Creating %s client for %s with URL: %s",
            validated.type,
            server_name,
            validated.url,
        )

    client = MCPClient(server_name, validated, _streams_for(validated))
    await client.connect()
    return client
