"""
Lightweight JSON-RPC 2.0 helpers exposing MCP-style methods.

Provides:
- initialize: basic serverInfo + capabilities
- tools/list: enumerate tools with JSON Schema for parameters
- tools/call: invoke a tool by name through ServiceNowMCPServer
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel

from foundry_mcp import __version__
from foundry_mcp.mcp_core.server import params_model_for

JSONRPC_VERSION = "2.0"

# JSON-RPC error codes
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_ERROR = -32000
UNAUTHORIZED = -32001


def _tool_schema_from_model(model_cls: Optional[Type[BaseModel]]) -> Dict[str, Any]:
    if not model_cls:
        return {"type": "object"}
    return model_cls.model_json_schema(by_alias=True)


def jsonrpc_initialize_result(auth_required: bool = False) -> Dict[str, Any]:
    return {
        "serverInfo": {"name": "ServiceNow Foundry MCP Server", "version": __version__},
        "capabilities": {
            "tools": {"list": True, "call": True},
            "authentication": {"scheme": "bearer", "required": bool(auth_required)},
        },
    }


def jsonrpc_tools_list(mcp_server) -> List[Dict[str, Any]]:
    """Build JSON-RPC style tool descriptors with input schema."""
    tools = []
    for tool_name, meta in mcp_server.tool_metadata.items():
        handler = mcp_server.get_handler(tool_name)
        if handler is None:
            continue
        tools.append({
            "name": tool_name,
            "description": meta.get("description", f"{tool_name} operation"),
            "inputSchema": _tool_schema_from_model(params_model_for(handler)),
        })
    return tools


def jsonrpc_ok(id_value: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": id_value, "result": result}


def jsonrpc_error(id_value: Any, code: int, message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": id_value, "error": err}
