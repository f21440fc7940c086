"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

MCP (Model Context Protocol) orchestration for toolmux.

Connects to externally configured tool servers over stdio, SSE or streamable
HTTP, merges their tools into one namespace and runs human-approved tool
invocations from chat messages.

Quick start::

    from toolmux.mcp import MCPService, parse_mcp_config

    await MCPService.update_global_config(
        parse_mcp_config({"mcpServers": {"docs": {"type": "sse", "url": "https://docs.example/sse"}}})
    )

    async with MCPService.create_request_instance() as service:
        messages = await service.process_tool_invocations(messages, data_stream)

HTTP routes live in ``toolmux.mcp.api``.
"""

from .cache import MetadataCache, MetadataSnapshot, get_metadata_cache, reset_metadata_cache
from .config import (
    MCPConfig,
    MCPServerConfig,
    SSEServerConfig,
    StdioServerConfig,
    StreamableHTTPServerConfig,
    parse_mcp_config,
    validate_server_config,
)
from .invocations import process_tool_invocations
from .messages import Message, TextPart, ToolCall, ToolInvocation, ToolInvocationPart
from .registry import ToolNamespace
from .service import MCPService, serialize_server_tools
from .settings_store import (
    MCP_SETTINGS_KEY,
    FileSettingsStore,
    InMemorySettingsStore,
    MCPInitResult,
    MCPSettings,
    SettingsStore,
    initialize_mcp,
    update_mcp_settings,
)
from .stream import DataStreamBuffer, DataStreamWriter, format_data_stream_part
from .transport import (
    ClientFactory,
    MCPClient,
    MCPClientHandle,
    MCPTool,
    ToolExecutionOptions,
    create_mcp_client,
)
from .types import (
    TOOL_EXECUTION_DENIED,
    TOOL_EXECUTION_ERROR,
    TOOL_NO_EXECUTE_FUNCTION,
    MCPConfigDocumentError,
    MCPConfigurationError,
    MCPConnectionError,
    MCPServerAvailable,
    MCPServerTools,
    MCPServerUnavailable,
    MCPServiceError,
    MCPToolExecutionError,
    MCPToolListingError,
    MCPUnsupportedEnvironmentError,
    ToolApproval,
)

__all__ = [
    "MCPService",
    "serialize_server_tools",
    "MCPConfig",
    "MCPServerConfig",
    "StdioServerConfig",
    "SSEServerConfig",
    "StreamableHTTPServerConfig",
    "parse_mcp_config",
    "validate_server_config",
    "MetadataCache",
    "MetadataSnapshot",
    "get_metadata_cache",
    "reset_metadata_cache",
    "ToolNamespace",
    "MCPClient",
    "MCPClientHandle",
    "ClientFactory",
    "MCPTool",
    "ToolExecutionOptions",
    "create_mcp_client",
    "Message",
    "TextPart",
    "ToolCall",
    "ToolInvocation",
    "ToolInvocationPart",
    "process_tool_invocations",
    "DataStreamBuffer",
    "DataStreamWriter",
    "format_data_stream_part",
    "MCPSettings",
    "SettingsStore",
    "FileSettingsStore",
    "InMemorySettingsStore",
    "MCPInitResult",
    "MCP_SETTINGS_KEY",
    "initialize_mcp",
    "update_mcp_settings",
    "MCPServerAvailable",
    "MCPServerUnavailable",
    "MCPServerTools",
    "ToolApproval",
    "TOOL_EXECUTION_DENIED",
    "TOOL_EXECUTION_ERROR",
    "TOOL_NO_EXECUTE_FUNCTION",
    "MCPServiceError",
    "MCPConfigDocumentError",
    "MCPConfigurationError",
    "MCPConnectionError",
    "MCPUnsupportedEnvironmentError",
    "MCPToolListingError",
    "MCPToolExecutionError",
]
