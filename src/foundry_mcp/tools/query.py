"""
Table query tool. Read-only access to arbitrary tables, with restricted
tables refused and credential fields redacted.
"""
import logging
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.protocol import ToolResult
from foundry_mcp.servicenow.client import is_valid_table_name
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.tools.common import active_client, clamp, not_connected
from foundry_mcp.utils.response_formatter import DIVIDER, error_text, format_record, limit_marker

logger = logging.getLogger(__name__)

# Tables holding credential or permission data
RESTRICTED_TABLES = {
    "sys_user_has_role",
    "sys_user_grmember",
    "oauth_credential",
    "discovery_credentials",
    "sys_certificate",
    "password_reset_request",
    "sys_cs_token",
    "sys_api_key",
}

DEFAULT_FIELDS = {
    "incident": ["number", "short_description", "state", "priority", "assigned_to", "sys_created_on"],
    "sys_user": ["user_name", "first_name", "last_name", "email", "active"],
    "task": ["number", "short_description", "state", "assigned_to", "sys_created_on"],
    "cmdb_ci": ["name", "sys_class_name", "operational_status", "sys_updated_on"],
    "change_request": ["number", "short_description", "state", "type", "sys_created_on"],
    "problem": ["number", "short_description", "state", "priority", "sys_created_on"],
    "kb_knowledge": ["number", "short_description", "workflow_state", "sys_created_on"],
    "sys_script_include": ["name", "api_name", "active", "sys_updated_on"],
    "sys_ui_action": ["name", "table", "active", "sys_updated_on"],
}
GENERIC_FIELDS = ["sys_id", "sys_created_on", "sys_updated_on"]

MAX_LIMIT = 500


class QueryParams(BaseModel):
    """Parameters for querying a table."""

    model_config = ConfigDict(populate_by_name=True)

    table: str = Field(..., description='Table name to query (e.g., "incident", "sys_user", "cmdb_ci")')
    query: Optional[str] = Field(None, description='Encoded query string (e.g., "active=true^priority=1")')
    fields: Optional[List[str]] = Field(None, description="Fields to return (default: common fields for the table)")
    limit: Optional[int] = Field(None, description="Maximum records to return (default: 50, max: 500)")
    order_by: Optional[str] = Field(None, alias="orderBy", description='Field to order by (e.g., "sys_created_on")')
    order_direction: Literal["asc", "desc"] = Field(
        "desc", alias="orderDirection", description='Order direction (default: "desc")'
    )


def is_restricted_table(table: str) -> bool:
    return table.strip().lower() in RESTRICTED_TABLES


def build_query(query: Optional[str], order_by: Optional[str], order_direction: str = "desc") -> str:
    """Append ordering to an encoded query; newest first unless it already orders."""
    full_query = query or ""
    if order_by:
        clause = f"ORDERBY{order_by}" if order_direction == "asc" else f"ORDERBYDESC{order_by}"
    elif "ORDERBY" not in full_query:
        clause = "ORDERBYDESCsys_created_on"
    else:
        return full_query
    return f"{full_query}^{clause}" if full_query else clause


def resolve_fields(table: str, fields: Optional[List[str]]) -> List[str]:
    if fields:
        resolved = list(fields)
    else:
        resolved = list(DEFAULT_FIELDS.get(table.lower(), GENERIC_FIELDS))
    if "sys_id" not in resolved:
        resolved.insert(0, "sys_id")
    return resolved


async def servicenow_query(
    config: Settings, connections: ConnectionManager, params: QueryParams
) -> ToolResult:
    client = active_client(connections)
    if client is None:
        return not_connected()

    table = params.table.strip()
    if not table:
        return ToolResult.error("Error: table is required")

    if not is_valid_table_name(table):
        logger.warning(f"Refused query with invalid table name {table!r}")
        return ToolResult.error(
            f'Invalid table name "{table}".\n\n'
            "Table names contain only letters, digits and underscores (e.g., \"incident\")."
        )

    if is_restricted_table(table):
        logger.warning(f"Refused query against restricted table {table}")
        return ToolResult.error(
            f'Access to table "{table}" is restricted for security reasons.\n\n'
            "This table may contain sensitive credential or permission data.\n"
            "If you need access, consult your ServiceNow administrator."
        )

    limit = clamp(params.limit, 50, MAX_LIMIT)
    full_query = build_query(params.query, params.order_by, params.order_direction)
    fields = resolve_fields(table, params.fields)

    try:
        response = await client.query_table(table, full_query, fields, limit)
    except ServiceNowError as e:
        extra = None
        if e.type == ServiceNowErrorType.TABLE_NOT_ACCESSIBLE:
            extra = (
                "Possible causes:\n"
                "- Table name may be incorrect\n"
                "- Your user may lack read access to this table\n"
                "- The table may not exist in this instance"
            )
        return ToolResult.error(error_text(f'Failed to query table "{table}"', e, extra))

    records = response.get("result") or []
    if not records:
        matching = f" matching query: {params.query}" if params.query else ""
        return ToolResult.ok(
            f'No records found in "{table}"{matching}.\n\n'
            "Try adjusting your query or checking the table name."
        )

    formatted = [format_record(i, record) for i, record in enumerate(records, start=1)]
    header = (
        f"Query Results from {client.instance_url}\n"
        f"Table: {table}\n"
        f"Query: {params.query or '(all records)'}\n"
        f"Fields: {', '.join(fields)}\n"
        f"Found: {len(records)} record(s){limit_marker(len(records), limit)}\n\n"
        f"{DIVIDER}"
    )
    return ToolResult.ok(header + "\n\n" + "\n\n".join(formatted))


OPERATIONS = {
    "servicenow_query": {
        "description": (
            "Query any ServiceNow table using encoded query syntax (read-only). "
            "Credential and permission tables are refused and sensitive fields are redacted."
        ),
        "required_params": ["table"],
        "optional_params": ["query", "fields", "limit", "orderBy", "orderDirection"],
    },
}
