"""
Helpers shared by the tool modules.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from foundry_mcp.mcp_core.protocol import ToolResult
from foundry_mcp.servicenow.client import ServiceNowClient
from foundry_mcp.servicenow.connection_manager import ConnectionManager

NOT_CONNECTED_TEXT = """Not connected to ServiceNow. Use servicenow_connect first.

Example:
  servicenow_connect with instance="dev12345.service-now.com", username="admin", password="..."\
"""

TIME_RANGES = {
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "12h": timedelta(hours=12),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


def not_connected() -> ToolResult:
    return ToolResult.error(NOT_CONNECTED_TEXT)


def active_client(connections: ConnectionManager) -> Optional[ServiceNowClient]:
    """Active client, marking the session as used; None when not connected."""
    client = connections.get_active_client()
    if client is not None:
        connections.touch_session()
    return client


def clamp(value: Optional[int], default: int, upper: int, lower: int = 1) -> int:
    return min(max(value or default, lower), upper)


def time_range_query(time_range: str, now: Optional[datetime] = None) -> str:
    """Encoded-query clause for records created within ``time_range`` (UTC)."""
    now = now or datetime.now(timezone.utc)
    start = now - TIME_RANGES.get(time_range, TIME_RANGES["1h"])
    return f"sys_created_on>={start.strftime('%Y-%m-%d %H:%M:%S')}"
