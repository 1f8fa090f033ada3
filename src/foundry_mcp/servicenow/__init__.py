"""ServiceNow access layer: client, sessions, script safety and execution."""
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType

__all__ = ["ServiceNowError", "ServiceNowErrorType"]
