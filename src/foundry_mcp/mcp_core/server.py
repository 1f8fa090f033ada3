"""
ServiceNow MCP Server implementation for handling requests and tools.
"""
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel, ValidationError

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.protocol import MCPRequest, MCPResponse, ToolResult
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.tools import connection, instance, logs, query, script

logger = logging.getLogger(__name__)


def params_model_for(func: Callable) -> Optional[Type[BaseModel]]:
    """The pydantic model annotated on a handler's third parameter, if any."""
    params = list(inspect.signature(func).parameters.values())
    if len(params) < 3:
        return None
    annotation = params[2].annotation
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    return None


class ServiceNowMCPServer:
    """
    ServiceNow MCP Server implementation.

    Registers the tool modules, binds call arguments to each handler's
    parameter model, and owns the connection manager shared by all tools.
    """

    def __init__(self, config: Settings, connections: Optional[ConnectionManager] = None):
        """
        Initialize the ServiceNow MCP server.

        Args:
            config: Application settings.
            connections: Connection manager; built from settings when omitted.
        """
        self.config = config
        self.connections = connections or ConnectionManager.from_settings(config)

        self.tools = {
            "connection": connection,
            "query": query,
            "logs": logs,
            "script": script,
            "instance": instance,
        }

        self.tool_metadata = self._load_tool_metadata()
        logger.info(f"Loaded {len(self.tool_metadata)} tools")

    def _load_tool_metadata(self) -> Dict[str, Dict]:
        """
        Load metadata for all available tools.

        Returns:
            Dictionary mapping tool names to their metadata.
        """
        metadata = {}
        for module_name, module in self.tools.items():
            for op_name, op_meta in getattr(module, "OPERATIONS", {}).items():
                if not hasattr(module, op_name):
                    logger.warning(f"Operation {op_name} declared but not defined in {module_name}")
                    continue
                metadata[op_name] = {
                    "module": module_name,
                    "operation": op_name,
                    **op_meta,
                }
        return metadata

    def get_handler(self, tool_name: str) -> Optional[Callable]:
        meta = self.tool_metadata.get(tool_name)
        if not meta:
            return None
        return getattr(self.tools[meta["module"]], meta["operation"])

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> ToolResult:
        """
        Validate arguments and run a tool.

        Raises:
            KeyError: Unknown tool
            ValidationError: Arguments do not fit the tool's parameter model
        """
        handler = self.get_handler(tool_name)
        if handler is None:
            raise KeyError(tool_name)

        model_cls = params_model_for(handler)
        params = model_cls.model_validate(arguments) if model_cls else arguments
        logger.debug(f"Calling tool {tool_name}")
        return await handler(self.config, self.connections, params)

    async def handle_request(self, request: MCPRequest) -> MCPResponse:
        """
        Handle an incoming MCP request.

        Args:
            request: The MCP request to handle.

        Returns:
            The MCP response.
        """
        metadata = self.tool_metadata.get(request.tool)
        if not metadata:
            return MCPResponse(
                version=request.version,
                type="error",
                id=request.id,
                error=f"Unknown tool: {request.tool}",
            )

        for param in metadata.get("required_params", []):
            if param not in request.parameters:
                return MCPResponse(
                    version=request.version,
                    type="error",
                    id=request.id,
                    error=f"Missing required parameter: {param}",
                )

        try:
            result = await self.call_tool(request.tool, request.parameters)
        except ValidationError as e:
            return MCPResponse(
                version=request.version,
                type="error",
                id=request.id,
                error=f"Invalid parameters: {e}",
            )
        except Exception as e:
            logger.exception(f"Error handling request: {e}")
            return MCPResponse(
                version=request.version,
                type="error",
                id=request.id,
                error=f"Internal server error: {e}",
            )

        return MCPResponse(
            version=request.version,
            type="response",
            id=request.id,
            result=result.to_payload(),
        )

    async def list_tools(self) -> Dict[str, Any]:
        """
        Get a list of all available tools and their metadata.

        Returns:
            Dictionary containing tool information.
        """
        return {
            "tools": self.tool_metadata,
            "modules": list(self.tools.keys()),
        }

    def health(self) -> Dict[str, Any]:
        """Server health plus the (read-only) connection status."""
        status = self.connections.get_status()
        return {
            "status": True,
            "connected": status.connected,
            "active_instance": status.active_instance,
            "session_count": status.session_count,
        }
