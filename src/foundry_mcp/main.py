"""
ServiceNow Foundry MCP Server entry point.
"""
import logging
import os
from typing import Any, Dict, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    UNAUTHORIZED,
    jsonrpc_error,
    jsonrpc_initialize_result,
    jsonrpc_ok,
    jsonrpc_tools_list,
)
from foundry_mcp.mcp_core.protocol import MCPRequest, MCPResponse
from foundry_mcp.mcp_core.server import ServiceNowMCPServer
from foundry_mcp.middleware.logging import RequestLoggingMiddleware
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.utils.logging import setup_logging

load_dotenv()

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _resolve_host(default: str = "127.0.0.1") -> str:
    return os.getenv("UVICORN_HOST") or os.getenv("HOST") or default


def _resolve_port(default: int = 8000) -> int:
    for key in ("UVICORN_PORT", "PORT"):
        value = os.getenv(key)
        if value:
            try:
                return int(value)
            except ValueError as exc:
                raise ValueError(f"Invalid integer for {key}={value!r}") from exc
    return default


def _parse_cors_origins(env_value: Optional[str]) -> list:
    if not env_value or env_value.strip() == "*":
        return ["*"]
    parts = [p.strip() for p in env_value.split(",") if p.strip()]
    return parts or ["*"]


def _bearer(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and value.lower().startswith("bearer "):
        return value.split(" ", 1)[1]
    return value


def create_app(
    settings: Optional[Settings] = None,
    connections: Optional[ConnectionManager] = None,
) -> FastAPI:
    """Build the FastAPI app around one MCP server instance."""
    settings = settings or Settings()
    mcp_server = ServiceNowMCPServer(settings, connections)

    app = FastAPI(title="ServiceNow Foundry MCP Server")
    app.state.mcp_server = mcp_server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_cors_origins(os.getenv("CORS_ALLOW_ORIGINS", "*")),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.post("/mcp")
    async def handle_mcp_request(request: MCPRequest) -> MCPResponse:
        """Handle incoming MCP requests"""
        try:
            return await mcp_server.handle_request(request)
        except Exception as e:
            logger.exception("Error handling MCP request")
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/rpc")
    async def handle_jsonrpc(payload: Dict[str, Any], request: Request) -> Dict[str, Any]:
        """JSON-RPC 2.0 endpoint exposing MCP-style methods.

        Methods:
        - initialize
        - tools/list
        - tools/call
        """
        id_value = payload.get("id")
        if payload.get("jsonrpc") != "2.0":
            return jsonrpc_error(id_value, INVALID_REQUEST, "Invalid Request: missing jsonrpc 2.0")

        method = payload.get("method")
        params = payload.get("params") or {}
        token = os.getenv("RPC_AUTH_TOKEN")
        try:
            if method == "initialize":
                return jsonrpc_ok(id_value, jsonrpc_initialize_result(bool(token)))
            if method in ("tools/list", "tools.list"):
                return jsonrpc_ok(id_value, {"tools": jsonrpc_tools_list(mcp_server)})
            if method in ("tools/call", "tools.call"):
                if token and _bearer(request.headers.get("Authorization")) != token:
                    return jsonrpc_error(id_value, UNAUTHORIZED, "Unauthorized")

                name = params.get("name")
                args = params.get("arguments") or {}
                if not isinstance(name, str):
                    return jsonrpc_error(id_value, INVALID_PARAMS, "Invalid params: name required")
                if mcp_server.get_handler(name) is None:
                    return jsonrpc_error(id_value, METHOD_NOT_FOUND, f"Unknown tool: {name}")
                try:
                    result = await mcp_server.call_tool(name, args)
                except ValidationError as e:
                    return jsonrpc_error(
                        id_value,
                        INVALID_PARAMS,
                        "Invalid params",
                        {"errors": e.errors(include_url=False, include_context=False)},
                    )
                return jsonrpc_ok(id_value, result.to_payload())
            return jsonrpc_error(id_value, METHOD_NOT_FOUND, f"Method not found: {method}")
        except Exception as e:
            logger.exception("Error handling JSON-RPC request")
            return jsonrpc_error(id_value, INTERNAL_ERROR, "Internal error", {"error": str(e)})

    @app.get("/tools")
    async def list_tools() -> Dict[str, Any]:
        """List available tools"""
        return await mcp_server.list_tools()

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Server health and current connection status"""
        return mcp_server.health()

    return app


def main() -> None:
    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE") or None,
        log_json=_env_flag("LOG_JSON"),
    )
    uvicorn.run(
        create_app(),
        host=_resolve_host(),
        port=_resolve_port(),
    )


if __name__ == "__main__":
    main()
