"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

toolmux: multiplexes externally configured MCP tool servers behind one tool
namespace with human-approved execution.
"""

from .settings import ToolmuxSettings, configure_logging

__version__ = "0.1.0"

__all__ = ["ToolmuxSettings", "configure_logging", "__version__"]
