"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Orchestration of externally configured MCP servers.

Two lifecycles meet here:

* ``MCPService.update_global_config`` connects to every configured server,
  publishes the resulting metadata into the process-wide ``MetadataCache``
  and closes the connections again.
* ``MCPService.create_request_instance`` builds a request-scoped service from
  that metadata without opening any connection. A connection is opened only
  when an approved tool invocation needs to run, and every connection opened
  during the request is closed by ``cleanup()``.

Usage::

    await MCPService.update_global_config(parse_mcp_config(document))

    async with MCPService.create_request_instance() as service:
        messages = await service.process_tool_invocations(messages, data_stream)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..settings import ToolmuxSettings
from .cache import MetadataCache, get_metadata_cache
from .config import MCPConfig
from .invocations import process_tool_invocations
from .messages import Message, ToolCall
from .registry import ToolNamespace
from .stream import DataStreamWriter
from .transport import ClientFactory, MCPClientHandle, MCPTool, create_mcp_client
from .types import (
    CONNECTION_FAILED_REASON,
    TOOL_LISTING_FAILED_REASON,
    MCPServerAvailable,
    MCPServerTools,
    MCPServerUnavailable,
)

logger = logging.getLogger("toolmux.mcp.service")


@dataclass(slots=True)
class _ServerAttempt:
    name: str
    config: dict[str, Any]
    client: MCPClientHandle | None = None
    tools: dict[str, MCPTool] | None = None
    error: str | None = None


def serialize_server_tools(servers: Mapping[str, Any]) -> dict[str, Any]:
    """JSON view of server statuses for display; never includes clients."""
    out: dict[str, Any] = {}
    for name, server in servers.items():
        if isinstance(server, MCPServerAvailable):
            out[name] = {
                "status": server.status,
                "tools": {
                    tool_name: tool.stripped().to_dict()
                    for tool_name, tool in server.tools.items()
                },
                "config": server.config,
            }
        else:
            out[name] = {
                "status": server.status,
                "error": server.error,
                "config": server.config,
            }
    return out


class MCPService:
    """
    Connects to configured MCP servers and mediates tool execution.

    Args:
        config: Servers to manage. When omitted, the service adopts the
            configuration and metadata from the process-wide cache.
        cache: Metadata cache, defaults to the process-wide one.
        client_factory: Creates connected clients, defaults to
            ``create_mcp_client``.
        allow_stdio: Whether stdio servers may be spawned, defaults to
            ``ToolmuxSettings.from_env().allow_stdio``.
    """

    def __init__(
        self,
        config: MCPConfig | None = None,
        *,
        cache: MetadataCache | None = None,
        client_factory: ClientFactory | None = None,
        allow_stdio: bool | None = None,
    ) -> None:
        self._cache = cache if cache is not None else get_metadata_cache()
        self._client_factory: ClientFactory = client_factory or create_mcp_client
        self._allow_stdio = (
            ToolmuxSettings.from_env().allow_stdio if allow_stdio is None else allow_stdio
        )
        self._namespace = ToolNamespace()
        self._servers: MCPServerTools = {}
        self._clients: list[MCPClientHandle] = []
        self._lazy_clients: dict[str, asyncio.Future[MCPClientHandle | None]] = {}
        self._config = MCPConfig()
        self._config_generation: int | None = None

        if config is not None:
            self._config = config
            return

        snapshot = self._cache.snapshot()
        if snapshot is not None:
            self._config = snapshot.config
            self._config_generation = snapshot.generation
            self._namespace = snapshot.namespace()
            self._servers = snapshot.server_statuses()

    # ''''''''''''''''''''''''
    # Construction / lifecycle
    # ''''''''''''''''''''''''

    @classmethod
    async def update_global_config(
        cls,
        config: MCPConfig,
        *,
        cache: MetadataCache | None = None,
        client_factory: ClientFactory | None = None,
        allow_stdio: bool | None = None,
    ) -> MCPServerTools:
        """
        Probe every configured server and publish the metadata process-wide.

        Connections are only used to list tools and are closed before
        returning. Returned statuses carry no clients and no execute bindings.
        """
        service = cls(
            config,
            cache=cache,
            client_factory=client_factory,
            allow_stdio=allow_stdio,
        )
        try:
            await service._create_clients()
            snapshot = service._cache.publish(config, service._namespace, service._servers)
        finally:
            await service._close_clients()

        logger.debug(
            "Published MCP metadata generation %d (%d servers, %d tools)",
            snapshot.generation,
            len(snapshot.servers),
            len(snapshot.tools_without_execute),
        )
        return snapshot.server_statuses()

    @classmethod
    def create_request_instance(
        cls,
        *,
        cache: MetadataCache | None = None,
        client_factory: ClientFactory | None = None,
        allow_stdio: bool | None = None,
    ) -> "MCPService":
        """Build a request-scoped service from the cached metadata."""
        return cls(cache=cache, client_factory=client_factory, allow_stdio=allow_stdio)

    async def __aenter__(self) -> "MCPService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    async def cleanup(self) -> None:
        """Close every connection this instance opened. Safe to call repeatedly."""
        logger.debug("Cleaning up request-scoped MCP clients")
        await self._close_clients()

    # ''''''''''''''''''''''''
    # Configuration / availability
    # ''''''''''''''''''''''''

    async def update_config(self, config: MCPConfig) -> MCPServerTools:
        """Replace this instance's configuration and connect to every server."""
        logger.debug("updating config %s", config.to_document())
        self._config = config
        self._config_generation = None
        await self._create_clients()
        return self._servers

    async def check_servers_availabilities(self) -> MCPServerTools:
        """
        Return per-server statuses.

        A service whose configuration is the one currently cached answers from
        the cache without opening connections. Otherwise every configured
        server is probed again, reusing clients this instance already holds.
        """
        if self._cache.is_current(self._config_generation):
            return self._servers

        self._namespace.clear()
        previous = self._servers
        self._servers = {}

        attempts = await asyncio.gather(
            *(
                self._attempt_server(
                    name,
                    raw,
                    client=self._client_of(previous.get(name)),
                    connect_error=CONNECTION_FAILED_REASON,
                )
                for name, raw in self._config.mcp_servers.items()
            ),
            return_exceptions=True,
        )
        self._apply_attempts(self._config.mcp_servers, attempts)
        return self._servers

    async def _create_clients(self) -> None:
        await self._close_clients()

        attempts = await asyncio.gather(
            *(
                self._attempt_server(name, raw)
                for name, raw in self._config.mcp_servers.items()
            ),
            return_exceptions=True,
        )
        self._apply_attempts(self._config.mcp_servers, attempts)

    @staticmethod
    def _client_of(server: Any) -> MCPClientHandle | None:
        return getattr(server, "client", None)

    async def _attempt_server(
        self,
        name: str,
        raw: Mapping[str, Any],
        *,
        client: MCPClientHandle | None = None,
        connect_error: str | None = None,
    ) -> _ServerAttempt:
        attempt = _ServerAttempt(name=name, config=dict(raw), client=client)

        if attempt.client is None:
            logger.debug('Checking MCP server "%s" availability: start', name)
            try:
                attempt.client = await self._client_factory(
                    name, raw, allow_stdio=self._allow_stdio
                )
            except Exception as e:
                logger.error("Failed to initialize MCP client for server %s: %s", name, e)
                attempt.error = connect_error or str(e) or type(e).__name__
                return attempt
            self._clients.append(attempt.client)

        try:
            attempt.tools = await attempt.client.tools()
        except Exception as e:
            logger.error("Failed to get tools from server %s: %s", name, e)
            attempt.error = TOOL_LISTING_FAILED_REASON
        return attempt

    def _apply_attempts(
        self,
        servers: Mapping[str, Mapping[str, Any]],
        attempts: Sequence[_ServerAttempt | BaseException],
    ) -> None:
        # Registration follows configuration order so collisions resolve the
        # same way regardless of which server answered first.
        for (name, raw), attempt in zip(servers.items(), attempts):
            if isinstance(attempt, BaseException):
                logger.error(
                    "MCP server attempt for %s failed unexpectedly: %r", name, attempt
                )
                self._servers[name] = MCPServerUnavailable(
                    error=str(attempt) or type(attempt).__name__,
                    client=None,
                    config=dict(raw),
                )
                continue
            if attempt.tools is not None:
                self._namespace.register(attempt.name, attempt.tools)
                self._servers[attempt.name] = MCPServerAvailable(
                    tools=attempt.tools,
                    client=attempt.client,
                    config=attempt.config,
                )
            else:
                self._servers[attempt.name] = MCPServerUnavailable(
                    error=attempt.error or CONNECTION_FAILED_REASON,
                    client=attempt.client,
                    config=attempt.config,
                )

    async def _close_client(self, client: MCPClientHandle) -> None:
        try:
            await client.close()
        except Exception:
            logger.exception("Error closing client for server %s", client.server_name)

    async def _close_clients(self) -> None:
        pending = [task for task in self._lazy_clients.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        clients, self._clients = self._clients, []
        await asyncio.gather(
            *(self._close_client(client) for client in clients),
            return_exceptions=True,
        )
        self._lazy_clients.clear()
        self._namespace.clear()
        self._servers = {}

    # ''''''''''''''''''''''''
    # Lazy materialization
    # ''''''''''''''''''''''''

    async def _get_or_create_lazy_client(self, server_name: str) -> MCPClientHandle | None:
        task = self._lazy_clients.get(server_name)
        if task is None:
            raw = self._config.mcp_servers.get(server_name)
            if raw is None:
                return None
            task = asyncio.ensure_future(self._create_lazy_client(server_name, raw))
            self._lazy_clients[server_name] = task
        return await asyncio.shield(task)

    async def _create_lazy_client(
        self, server_name: str, raw: Mapping[str, Any]
    ) -> MCPClientHandle | None:
        logger.debug('Creating lazy client for server "%s"', server_name)
        try:
            client = await self._client_factory(
                server_name, raw, allow_stdio=self._allow_stdio
            )
        except Exception as e:
            logger.error("Failed to create lazy client for server %s: %s", server_name, e)
            self._lazy_clients.pop(server_name, None)
            return None
        self._clients.append(client)

        try:
            tools = await client.tools()
        except Exception as e:
            logger.error("Failed to get tools from lazy client %s: %s", server_name, e)
            return client

        installed = self._namespace.splice(server_name, tools)
        logger.debug("Lazy client for %s provided tools: %s", server_name, installed)
        return client

    async def resolve_executable(self, tool_name: str) -> MCPTool | None:
        """Return the executable tool, connecting to its server on first use."""
        tool = self._namespace.get(tool_name)
        if tool is not None and tool.execute is not None:
            return tool

        server_name = self._namespace.owner_of(tool_name)
        logger.debug(
            "Tool %s approved, serverName: %s, has tool: %s",
            tool_name,
            server_name,
            tool is not None,
        )
        if server_name is None:
            return tool

        await self._get_or_create_lazy_client(server_name)
        return self._namespace.get(tool_name)

    # ''''''''''''''''''''''''
    # Tool calls
    # ''''''''''''''''''''''''

    def is_valid_tool_name(self, tool_name: str) -> bool:
        return self._namespace.is_known(tool_name)

    def process_tool_call(self, tool_call: ToolCall, data_stream: DataStreamWriter) -> None:
        """Annotate a newly proposed tool call with its server and description."""
        if not self.is_valid_tool_name(tool_call.tool_name):
            return

        metadata = self._namespace.get_metadata(tool_call.tool_name)
        description = "No description available"
        if metadata is not None and metadata.description is not None:
            description = metadata.description

        server_name = self._namespace.owner_of(tool_call.tool_name)
        if server_name:
            data_stream.write_message_annotation(
                {
                    "type": "toolCall",
                    "toolCallId": tool_call.tool_call_id,
                    "serverName": server_name,
                    "toolName": tool_call.tool_name,
                    "toolDescription": description,
                }
            )

    async def process_tool_invocations(
        self,
        messages: Sequence[Message],
        data_stream: DataStreamWriter,
    ) -> list[Message]:
        """Execute or deny the approved/rejected invocations of the last message."""
        return await process_tool_invocations(self, messages, data_stream)

    # ''''''''''''''''''''''''
    # Views
    # ''''''''''''''''''''''''

    @property
    def config(self) -> MCPConfig:
        return self._config

    @property
    def config_generation(self) -> int | None:
        return self._config_generation

    @property
    def servers(self) -> MCPServerTools:
        return self._servers

    @property
    def tools(self) -> dict[str, MCPTool]:
        return self._namespace.tools

    @property
    def tools_without_execute(self) -> dict[str, MCPTool]:
        return self._namespace.tools_without_execute

    @property
    def tool_owners(self) -> dict[str, str]:
        return self._namespace.owners
