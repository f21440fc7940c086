"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Merged tool namespace across all connected MCP servers.
"""

from __future__ import annotations

import logging
from typing import Mapping

from .transport import MCPTool

logger = logging.getLogger("toolmux.mcp")


class ToolNamespace:
    """
    Name-keyed view over the tools of every configured server.

    Three maps are kept in lockstep: executable tools, stripped tools (safe to
    cache and display) and the tool name -> owning server index. When two
    servers expose the same tool name the most recent registration wins and a
    warning is logged.
    """

    def __init__(self) -> None:
        self._tools: dict[str, MCPTool] = {}
        self._tools_without_execute: dict[str, MCPTool] = {}
        self._owners: dict[str, str] = {}

    @classmethod
    def from_metadata(
        cls,
        tools_without_execute: Mapping[str, MCPTool],
        owners: Mapping[str, str],
    ) -> "ToolNamespace":
        """Rebuild a namespace from cached metadata, with no executable tools."""
        namespace = cls()
        namespace._tools_without_execute = {
            name: tool.stripped() for name, tool in tools_without_execute.items()
        }
        namespace._owners = dict(owners)
        return namespace

    def register(self, server_name: str, tools: Mapping[str, MCPTool]) -> None:
        for tool_name, tool in tools.items():
            existing_server = self._owners.get(tool_name)
            if existing_server is not None and existing_server != server_name:
                logger.warning(
                    'Tool conflict: "%s" from "%s" overrides tool from "%s"',
                    tool_name,
                    server_name,
                    existing_server,
                )

            self._tools[tool_name] = tool
            self._tools_without_execute[tool_name] = tool.stripped()
            self._owners[tool_name] = server_name

    def splice(self, server_name: str, tools: Mapping[str, MCPTool]) -> list[str]:
        """
        Install executable bindings for tools the index assigns to ``server_name``.

        Tools that were overridden by another server are ignored. Returns the
        names that were installed.
        """
        installed: list[str] = []
        for tool_name, tool in tools.items():
            if self._owners.get(tool_name) == server_name:
                self._tools[tool_name] = tool
                installed.append(tool_name)
        return installed

    def get(self, tool_name: str) -> MCPTool | None:
        return self._tools.get(tool_name)

    def get_metadata(self, tool_name: str) -> MCPTool | None:
        return self._tools_without_execute.get(tool_name)

    def owner_of(self, tool_name: str) -> str | None:
        return self._owners.get(tool_name)

    def is_known(self, tool_name: str) -> bool:
        return tool_name in self._tools_without_execute or tool_name in self._owners

    def names(self) -> list[str]:
        return list(self._tools_without_execute.keys())

    @property
    def tools(self) -> dict[str, MCPTool]:
        return self._tools

    @property
    def tools_without_execute(self) -> dict[str, MCPTool]:
        return self._tools_without_execute

    @property
    def owners(self) -> dict[str, str]:
        return self._owners

    def clear(self) -> None:
        self._tools.clear()
        self._tools_without_execute.clear()
        self._owners.clear()
