"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

MCP server configuration models and per-server validation.

A configuration document looks like::

    {
        "mcpServers": {
            "files": {"command": "npx", "args": ["-y", "@mcp/files"]},
            "search": {"type": "sse", "url": "https://search.example/sse"},
            "docs": {"type": "streamable-http", "url": "https://docs.example/mcp"}
        }
    }

Entries are kept raw inside ``MCPConfig`` and validated one server at a time
with ``validate_server_config`` so that a malformed entry disables only itself.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from .types import (
    TRANSPORT_TYPES,
    URL_TRANSPORT_TYPES,
    MCPConfigDocumentError,
    MCPConfigurationError,
)

_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)


def _check_url(value: str) -> str:
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError("URL must be a valid URL format") from e
    return value


class StdioServerConfig(BaseModel):
    """Local tool server spawned as a child process speaking over stdio."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stdio"] = "stdio"
    command: str
    args: list[str] | None = None
    cwd: str | None = None
    env: dict[str, str] | None = None

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("Command cannot be empty")
        return value


class _URLServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    headers: dict[str, str] | None = None

    @field_validator("url")
    @classmethod
    def _url_is_valid(cls, value: str) -> str:
        return _check_url(value)


class SSEServerConfig(_URLServerConfig):
    """Remote tool server reached over a server-sent event stream."""

    type: Literal["sse"] = "sse"


class StreamableHTTPServerConfig(_URLServerConfig):
    """Remote tool server reached over the streamable HTTP transport."""

    type: Literal["streamable-http"] = "streamable-http"


MCPServerConfig = Annotated[
    Union[StdioServerConfig, SSEServerConfig, StreamableHTTPServerConfig],
    Field(discriminator="type"),
]

_SERVER_CONFIG_ADAPTER: TypeAdapter[MCPServerConfig] = TypeAdapter(MCPServerConfig)


class MCPConfig(BaseModel):
    """
    Full set of configured servers.

    Attributes:
        mcp_servers: Raw configuration record per server name.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    mcp_servers: dict[str, dict[str, Any]] = Field(
        default_factory=dict, alias="mcpServers"
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _format_validation_error(error: ValidationError) -> str:
    parts: list[str] = []
    for row in error.errors():
        # Drop the union tag pydantic prepends to discriminated locations.
        loc = [str(item) for item in row.get("loc", ())][1:]
        parts.append(f"{'.'.join(loc)}: {row.get('msg', '')}")
    return "; ".join(parts)


def validate_server_config(server_name: str, config: Mapping[str, Any]) -> MCPServerConfig:
    """
    Validate one raw server record into a typed transport configuration.

    Raises:
        MCPConfigurationError: when the record is ambiguous or malformed.
    """
    if not isinstance(config, Mapping):
        raise MCPConfigurationError(
            f'Invalid configuration for server "{server_name}": expected an object'
        )

    raw = dict(config)
    has_command = "command" in raw
    has_url = "url" in raw

    if has_command and has_url:
        raise MCPConfigurationError(
            'cannot have "command" and "url" defined for the same server.'
        )

    if not raw.get("type") and has_command:
        raw["type"] = "stdio"

    if has_url and not raw.get("type"):
        raise MCPConfigurationError(
            'missing "type" field, only "sse" and "streamable-http" are valid options.'
        )

    if raw.get("type") not in TRANSPORT_TYPES:
        raise MCPConfigurationError(
            'provided "type" is invalid, only "stdio", "sse" or "streamable-http" '
            "are valid options."
        )

    if raw["type"] == "stdio" and not has_command:
        raise MCPConfigurationError('missing "command" field.')

    if raw["type"] in URL_TRANSPORT_TYPES and not has_url:
        raise MCPConfigurationError('missing "url" field.')

    try:
        return _SERVER_CONFIG_ADAPTER.validate_python(raw)
    except ValidationError as e:
        raise MCPConfigurationError(
            f'Invalid configuration for server "{server_name}": '
            f"{_format_validation_error(e)}"
        ) from e


def parse_mcp_config(document: str | bytes | Mapping[str, Any]) -> MCPConfig:
    """Parse a configuration document from JSON text or a decoded mapping."""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as e:
            raise MCPConfigDocumentError(f"MCP config is not valid JSON: {e}") from e

    if not isinstance(document, Mapping):
        raise MCPConfigDocumentError("MCP config must be a JSON object")

    servers = document.get("mcpServers", document.get("mcp_servers"))
    if not isinstance(servers, Mapping):
        raise MCPConfigDocumentError("MCP config requires an 'mcpServers' object")

    records: dict[str, dict[str, Any]] = {}
    for name, record in servers.items():
        if not isinstance(record, Mapping):
            raise MCPConfigDocumentError(
                f"MCP server '{name}' configuration must be an object"
            )
        records[str(name)] = dict(record)
    return MCPConfig(mcp_servers=records)
