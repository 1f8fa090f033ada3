"""
Connection tools: connect, disconnect, and status.
"""
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.protocol import ToolResult
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.utils.response_formatter import roles_preview

logger = logging.getLogger(__name__)

NO_SESSION_TEXT = "Not connected to any ServiceNow instance."


class ConnectParams(BaseModel):
    """Parameters for connecting to an instance."""

    model_config = ConfigDict(populate_by_name=True)

    instance: Optional[str] = Field(
        None, description='ServiceNow instance URL (e.g., "dev12345.service-now.com")'
    )
    auth_type: Optional[Literal["basic", "token", "oauth", "profile"]] = Field(
        None, alias="authType", description="Authentication method (default: basic)"
    )
    profile: Optional[str] = Field(
        None, description="Named profile from ~/.servicenow/credentials.json"
    )
    username: Optional[str] = Field(None, description="Username for basic auth")
    password: Optional[str] = Field(None, description="Password for basic auth")
    token: Optional[str] = Field(None, description="API token for token auth")
    client_id: Optional[str] = Field(None, alias="clientId", description="OAuth client ID")
    client_secret: Optional[str] = Field(
        None, alias="clientSecret", description="OAuth client secret"
    )


class DisconnectParams(BaseModel):
    instance: Optional[str] = Field(
        None,
        description="Specific instance to disconnect from. If not provided, disconnects from active instance.",
    )


class StatusParams(BaseModel):
    pass


async def servicenow_connect(
    config: Settings, connections: ConnectionManager, params: ConnectParams
) -> ToolResult:
    result = await connections.connect(
        instance=params.instance,
        auth_type=params.auth_type,
        username=params.username,
        password=params.password,
        token=params.token,
        client_id=params.client_id,
        client_secret=params.client_secret,
        profile=params.profile,
    )

    if result.success and result.session:
        session = result.session
        return ToolResult.ok(
            "Connected to ServiceNow instance\n\n"
            f"Instance: {session.instance_url}\n"
            f"Version: {session.instance_version}\n"
            f"User: {session.user}\n"
            f"Roles: {roles_preview(session.roles)}\n\n"
            "You can now use other ServiceNow tools to query logs, run scripts, and debug issues."
        )

    text = f"Connection failed: {result.message}"
    if result.error and result.error.details:
        text += f"\n\nSuggestion: {result.error.details}"
    return ToolResult.error(text)


async def servicenow_disconnect(
    config: Settings, connections: ConnectionManager, params: DisconnectParams
) -> ToolResult:
    if not connections.is_connected() and not params.instance:
        return ToolResult.ok(NO_SESSION_TEXT)
    if not connections.get_all_sessions():
        return ToolResult.ok(NO_SESSION_TEXT)

    target = params.instance or connections.get_status().active_instance
    if connections.disconnect(params.instance):
        return ToolResult.ok(f"Disconnected from {target}")
    return ToolResult.error("No matching session found to disconnect.")


async def servicenow_status(
    config: Settings, connections: ConnectionManager, params: StatusParams
) -> ToolResult:
    status = connections.get_status()
    if not status.connected:
        return ToolResult.ok(
            f"{NO_SESSION_TEXT}\n\n"
            "To connect, use servicenow_connect with:\n"
            '- instance: Your ServiceNow instance URL (e.g., "dev12345.service-now.com")\n'
            '- authType: "basic", "token", or "oauth"\n'
            "- Credentials: username/password for basic, token for token auth, etc.\n\n"
            "Example: Connect with basic auth to your PDI"
        )

    session = connections.get_active_session()
    text = (
        "ServiceNow Connection Status\n\n"
        f"Active Instance: {status.active_instance}\n"
        f"Version: {status.version}\n"
        f"User: {status.user}\n"
        f"Connected Since: {session.created_at.isoformat()}\n"
        f"Last Activity: {session.last_used_at.isoformat()}"
    )
    others = [s for s in connections.get_all_sessions() if s.instance_url != status.active_instance]
    if others:
        text += f"\n\nOther Sessions: {len(others)}"
        for other in others:
            text += f"\n  - {other.instance_url} ({other.user_name})"
    return ToolResult.ok(text)


OPERATIONS = {
    "servicenow_connect": {
        "description": (
            "Connect to a ServiceNow instance for troubleshooting and debugging. "
            "Supports basic, token, and oauth authentication, or a named profile "
            "from ~/.servicenow/credentials.json"
        ),
        "required_params": [],
        "optional_params": [
            "instance", "authType", "profile", "username", "password",
            "token", "clientId", "clientSecret",
        ],
    },
    "servicenow_disconnect": {
        "description": "Disconnect from the current ServiceNow instance.",
        "required_params": [],
        "optional_params": ["instance"],
    },
    "servicenow_status": {
        "description": "Get the current ServiceNow connection status.",
        "required_params": [],
    },
}
