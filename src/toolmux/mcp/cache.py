"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Process-wide cache of MCP tool metadata.

Only metadata outlives a request: stripped tools, the tool -> server index and
per-server statuses without client handles. Every publish replaces the whole
snapshot and bumps a generation number; request-scoped services compare
generations to decide whether their view is current.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .config import MCPConfig
from .registry import ToolNamespace
from .transport import MCPTool
from .types import MCPServer, MCPServerAvailable, MCPServerTools, MCPServerUnavailable


def strip_server(server: MCPServer) -> MCPServer:
    """Copy a server status without its client handle or tool bindings."""
    if isinstance(server, MCPServerAvailable):
        return MCPServerAvailable(
            tools={name: tool.stripped() for name, tool in server.tools.items()},
            client=None,
            config=dict(server.config),
        )
    return MCPServerUnavailable(error=server.error, client=None, config=dict(server.config))


@dataclass(frozen=True, slots=True)
class MetadataSnapshot:
    """
    Immutable metadata produced by one configuration update.

    Attributes:
        generation: Monotonic number of the publish that produced it.
        config: Configuration the metadata was computed from.
        tools_without_execute: Stripped tools keyed by name.
        tool_owners: Tool name -> owning server name.
        servers: Per-server statuses with no client handles.
    """

    generation: int
    config: MCPConfig
    tools_without_execute: Mapping[str, MCPTool] = field(default_factory=dict)
    tool_owners: Mapping[str, str] = field(default_factory=dict)
    servers: Mapping[str, MCPServer] = field(default_factory=dict)

    def namespace(self) -> ToolNamespace:
        """Build a fresh, request-owned namespace from this snapshot."""
        return ToolNamespace.from_metadata(self.tools_without_execute, self.tool_owners)

    def server_statuses(self) -> MCPServerTools:
        """Return request-owned copies of the cached statuses."""
        return {name: strip_server(server) for name, server in self.servers.items()}


class MetadataCache:
    """Lock-guarded holder of the current ``MetadataSnapshot``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._snapshot: MetadataSnapshot | None = None
        self._generation = 0

    def publish(
        self,
        config: MCPConfig,
        namespace: ToolNamespace,
        servers: Mapping[str, MCPServer],
    ) -> MetadataSnapshot:
        """Replace the current snapshot with metadata copied from ``namespace``."""
        tools = MappingProxyType(
            {name: tool.stripped() for name, tool in namespace.tools_without_execute.items()}
        )
        owners = MappingProxyType(dict(namespace.owners))
        statuses = MappingProxyType(
            {name: strip_server(server) for name, server in servers.items()}
        )
        with self._lock:
            self._generation += 1
            snapshot = MetadataSnapshot(
                generation=self._generation,
                config=config,
                tools_without_execute=tools,
                tool_owners=owners,
                servers=statuses,
            )
            self._snapshot = snapshot
        return snapshot

    def snapshot(self) -> MetadataSnapshot | None:
        with self._lock:
            return self._snapshot

    def current_config(self) -> MCPConfig | None:
        snapshot = self.snapshot()
        return snapshot.config if snapshot is not None else None

    def is_current(self, generation: int | None) -> bool:
        if generation is None:
            return False
        snapshot = self.snapshot()
        return snapshot is not None and snapshot.generation == generation

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None


_METADATA_CACHE: MetadataCache | None = None
_METADATA_CACHE_LOCK = threading.Lock()


def get_metadata_cache() -> MetadataCache:
    """Return the process-wide metadata cache."""
    global _METADATA_CACHE
    if _METADATA_CACHE is not None:
        return _METADATA_CACHE
    with _METADATA_CACHE_LOCK:
        if _METADATA_CACHE is None:
            _METADATA_CACHE = MetadataCache()
    return _METADATA_CACHE


def reset_metadata_cache() -> None:
    """Reset the process-wide metadata cache (for tests)."""
    global _METADATA_CACHE
    with _METADATA_CACHE_LOCK:
        _METADATA_CACHE = None
