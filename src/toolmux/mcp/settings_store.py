"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Persisted MCP user settings and the bootstrap that loads them.

Settings are stored as one JSON document under the ``mcp_settings`` key of a
``SettingsStore``. ``initialize_mcp`` reads them once at startup and pushes
the server configuration into the process-wide metadata cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..settings import ToolmuxSettings
from .config import MCPConfig, parse_mcp_config
from .service import MCPService, serialize_server_tools
from .types import MCPConfigDocumentError, MCPServerTools

logger = logging.getLogger("toolmux.mcp")

MCP_SETTINGS_KEY = "mcp_settings"


class MCPSettings(BaseModel):
    """
    User-facing MCP settings document.

    Attributes:
        mcp_config: Configured servers.
        max_llm_steps: Maximum model steps per chat turn when tools are used.
    """

    model_config = ConfigDict(populate_by_name=True)

    mcp_config: MCPConfig = Field(default_factory=MCPConfig, alias="mcpConfig")
    max_llm_steps: int = Field(default=5, ge=1, alias="maxLLMSteps")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: str | dict[str, Any]) -> "MCPSettings":
        """Parse a settings document, validating the embedded server config."""
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except ValueError as e:
                raise MCPConfigDocumentError(f"Settings are not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise MCPConfigDocumentError("Settings must be a JSON object")

        raw_config = document.get("mcpConfig")
        mcp_config = parse_mcp_config(raw_config) if raw_config is not None else MCPConfig()
        try:
            return cls(
                mcp_config=mcp_config,
                max_llm_steps=document.get("maxLLMSteps", 5),
            )
        except ValidationError as e:
            raise MCPConfigDocumentError(f"Invalid settings: {e}") from e


class SettingsStore(Protocol):
    """Persistent string key-value storage."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class InMemorySettingsStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class FileSettingsStore:
    """
    Settings store backed by a single JSON object file.

    Reads and writes are blocking and serialized by a lock. The async helpers
    in this module call them through ``asyncio.to_thread``.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: ToolmuxSettings | None = None) -> "FileSettingsStore":
        """Open the store at ``settings_path`` (environment settings by default)."""
        resolved = settings or ToolmuxSettings.from_env()
        return cls(resolved.settings_path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except ValueError as e:
            raise MCPConfigDocumentError(f"Settings file {self._path} is not valid JSON") from e
        if not isinstance(data, dict):
            raise MCPConfigDocumentError(f"Settings file {self._path} must hold a JSON object")
        return {str(key): str(value) for key, value in data.items()}

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self._path)


@dataclass(slots=True)
class MCPInitResult:
    """Outcome of loading persisted settings at startup."""

    settings: MCPSettings
    server_tools: MCPServerTools = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "settings": self.settings.to_document(),
            "serverTools": serialize_server_tools(self.server_tools),
            "error": self.error,
        }


async def initialize_mcp(store: SettingsStore, **service_kwargs: Any) -> MCPInitResult:
    """
    Load persisted settings and publish their server metadata.

    Missing settings are initialized with defaults. Unreadable settings fall
    back to defaults and report the parse error. Server failures are reported
    without discarding the loaded settings.
    """
    saved = await asyncio.to_thread(store.get, MCP_SETTINGS_KEY)
    if saved is None:
        defaults = MCPSettings()
        await asyncio.to_thread(
            store.set, MCP_SETTINGS_KEY, json.dumps(defaults.to_document())
        )
        return MCPInitResult(settings=defaults)

    try:
        settings = MCPSettings.from_document(saved)
    except MCPConfigDocumentError as e:
        logger.error("Error parsing saved mcp config: %s", e)
        return MCPInitResult(
            settings=MCPSettings(),
            error=f"Error parsing saved mcp config: {e}",
        )

    if not settings.mcp_config.mcp_servers:
        return MCPInitResult(settings=settings)

    try:
        server_tools = await MCPService.update_global_config(
            settings.mcp_config, **service_kwargs
        )
    except Exception as e:
        logger.exception("Error updating server config during initialization")
        return MCPInitResult(
            settings=settings,
            error=f"Failed to initialize servers: {e}",
        )
    return MCPInitResult(settings=settings, server_tools=server_tools)


async def update_mcp_settings(
    store: SettingsStore,
    settings: MCPSettings,
    **service_kwargs: Any,
) -> MCPServerTools:
    """Apply new settings process-wide, then persist them."""
    server_tools = await MCPService.update_global_config(
        settings.mcp_config, **service_kwargs
    )
    await asyncio.to_thread(
        store.set, MCP_SETTINGS_KEY, json.dumps(settings.to_document())
    )
    return server_tools
