"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Runtime settings and explicit config loading.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

# Interpreters that run inside a sandbox with no way to spawn child processes.
_PROCESSLESS_PLATFORMS = frozenset({"emscripten", "wasi"})


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def can_spawn_processes() -> bool:
    """Whether this interpreter can launch stdio tool servers."""
    return sys.platform not in _PROCESSLESS_PLATFORMS


@dataclass(frozen=True, slots=True)
class ToolmuxSettings:
    """
    Explicit settings used by the MCP orchestration layer.

    Attributes:
        allow_stdio: Whether stdio servers may be spawned.
        settings_path: JSON file holding the persisted user settings.
        log_level: Level applied by ``configure_logging``.
    """

    allow_stdio: bool = True
    settings_path: str = "toolmux-settings.json"
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "ToolmuxSettings":
        """Load settings from environment variables."""
        return ToolmuxSettings(
            allow_stdio=_env_flag("TOOLMUX_ALLOW_STDIO", can_spawn_processes()),
            settings_path=os.getenv("TOOLMUX_SETTINGS_PATH", "toolmux-settings.json"),
            log_level=os.getenv("TOOLMUX_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(settings: ToolmuxSettings | None = None) -> None:
    """Attach a stream handler to the ``toolmux`` logger hierarchy."""
    resolved = settings or ToolmuxSettings.from_env()
    root = logging.getLogger("toolmux")
    root.setLevel(resolved.log_level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(handler)
