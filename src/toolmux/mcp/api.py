"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

FastAPI routes exposing MCP server availability and configuration updates.

Endpoints:
    ``GET /api/mcp-check``: per-server statuses from a request-scoped service
    ``POST /api/mcp-update-config``: replace the process-wide configuration
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .cache import MetadataCache
from .config import parse_mcp_config
from .service import MCPService, serialize_server_tools
from .transport import ClientFactory
from .types import MCPConfigDocumentError

logger = logging.getLogger("toolmux.mcp.api")


def create_mcp_router(
    *,
    cache: MetadataCache | None = None,
    client_factory: ClientFactory | None = None,
    allow_stdio: bool | None = None,
) -> APIRouter:
    """Build an ``APIRouter`` with the MCP check and update routes."""
    service_kwargs: dict[str, Any] = {
        "cache": cache,
        "client_factory": client_factory,
        "allow_stdio": allow_stdio,
    }
    router = APIRouter()

    @router.get("/api/mcp-check")
    async def mcp_check():
        try:
            async with MCPService.create_request_instance(**service_kwargs) as service:
                server_tools = await service.check_servers_availabilities()
                body = serialize_server_tools(server_tools)
        except Exception:
            logger.exception("Error checking MCP servers")
            return JSONResponse({"error": "Failed to check MCP servers"}, status_code=500)
        return JSONResponse(body)

    @router.post("/api/mcp-update-config")
    async def mcp_update_config(request: Request):
        try:
            document = await request.json()
        except ValueError:
            return JSONResponse({"error": "Request body must be JSON"}, status_code=400)

        try:
            config = parse_mcp_config(document)
        except MCPConfigDocumentError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            server_tools = await MCPService.update_global_config(config, **service_kwargs)
        except Exception:
            logger.exception("Error updating MCP config")
            return JSONResponse({"error": "Failed to update MCP config"}, status_code=500)
        return JSONResponse(serialize_server_tools(server_tools))

    return router


def create_app(**router_kwargs: Any) -> FastAPI:
    """FastAPI application with only the MCP routes mounted."""
    app = FastAPI(title="toolmux", description="MCP tool server orchestration")
    app.include_router(create_mcp_router(**router_kwargs))
    return app
