"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Shared types, result markers and the error hierarchy for MCP orchestration.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

if TYPE_CHECKING:
    from .transport import MCPClient, MCPTool


JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

TransportType = Literal["stdio", "sse", "streamable-http"]
TRANSPORT_TYPES: tuple[str, ...] = ("stdio", "sse", "streamable-http")
URL_TRANSPORT_TYPES: tuple[str, ...] = ("sse", "streamable-http")


class ToolApproval(str, Enum):
    """Approval outcomes recorded on a tool invocation by the chat UI."""

    APPROVE = "Yes, approved."
    REJECT = "No, rejected."


TOOL_NO_EXECUTE_FUNCTION = "Error: No execute function found on tool"
TOOL_EXECUTION_DENIED = "Error: User denied access to tool execution"
TOOL_EXECUTION_ERROR = "Error: An error occured while calling tool"

TOOL_LISTING_FAILED_REASON = "could not retrieve tools from server"
CONNECTION_FAILED_REASON = "could not connect to server"


@dataclass(slots=True)
class MCPServerAvailable:
    """
    Server that connected and listed its tools.

    Attributes:
        tools: Tools advertised by the server, keyed by name.
        client: Live client handle, or ``None`` in cached metadata.
        config: Raw configuration record the server was created from.
    """

    tools: dict[str, MCPTool]
    client: MCPClient | None
    config: dict[str, Any]
    status: Literal["available"] = "available"


@dataclass(slots=True)
class MCPServerUnavailable:
    """
    Server that could not be set up.

    Attributes:
        error: Human-readable reason shown next to the server.
        client: Client handle kept for cleanup when the connection succeeded.
        config: Raw configuration record the server was created from.
    """

    error: str
    client: MCPClient | None
    config: dict[str, Any]
    status: Literal["unavailable"] = "unavailable"


MCPServer: TypeAlias = MCPServerAvailable | MCPServerUnavailable
MCPServerTools: TypeAlias = dict[str, MCPServer]


class MCPServiceError(RuntimeError):
    """Base MCP orchestration error."""


class MCPConfigDocumentError(MCPServiceError):
    """Raised when a whole configuration document is structurally invalid."""


class MCPConfigurationError(MCPServiceError):
    """Raised when a single server entry is malformed or ambiguous."""


class MCPConnectionError(MCPServiceError):
    """Raised when a transport connection cannot be established."""


class MCPUnsupportedEnvironmentError(MCPConnectionError):
    """Raised when a transport cannot run in the current runtime."""


class MCPToolListingError(MCPServiceError):
    """Raised when a connected server fails to enumerate its tools."""


class MCPToolExecutionError(MCPServiceError):
    """Raised when a remote tool call fails."""
