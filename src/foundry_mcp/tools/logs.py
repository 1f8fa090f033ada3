"""
Log tools: system logs and AI Agent execution traces.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.protocol import ToolResult
from foundry_mcp.servicenow.client import ServiceNowClient, reference_value
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.servicenow.errors import ServiceNowError
from foundry_mcp.servicenow.fallback import first_success
from foundry_mcp.tools.common import active_client, clamp, not_connected, time_range_query
from foundry_mcp.utils.response_formatter import DIVIDER, error_text, limit_marker, truncate

logger = logging.getLogger(__name__)

TimeRange = Literal["1h", "4h", "12h", "24h", "7d"]

SYSLOG_LEVELS = {"debug": 0, "info": 1, "warning": 2, "error": 3}
SYSLOG_LEVEL_NAMES = {0: "DEBUG", 1: "INFO", 2: "WARNING", 3: "ERROR"}
SYSLOG_FIELDS = ["sys_id", "level", "source", "message", "sys_created_on", "sys_created_by"]

# Raw status values grouped by the status filter they belong to
AIA_STATUS_MAP = {
    "success": "success",
    "completed": "success",
    "failure": "failure",
    "failed": "failure",
    "error": "failure",
    "running": "running",
    "in_progress": "running",
    "pending": "running",
}
AIA_STATUS_LABELS = {"success": "[OK]", "failure": "[FAIL]", "running": "[...]"}

# The execution tables moved between releases and plugins
AIA_EXECUTION_TABLES = [
    "sys_aia_execution",
    "sn_agent_execution",
    "x_snc_aia_execution",
    "sn_ai_agent_execution",
]
AIA_TOOL_TABLES = [
    "sys_aia_tool_execution",
    "sn_agent_tool_execution",
    "x_snc_aia_tool_execution",
]
AIA_EXECUTION_FIELDS = [
    "sys_id", "agent", "status", "sys_created_on", "sys_updated_on",
    "trigger_type", "trigger_context", "error_message", "input", "output",
    "duration", "user", "conversation_id",
]
AIA_TOOL_FIELDS = [
    "sys_id", "execution", "tool_name", "input", "output",
    "status", "error_message", "duration", "step_number",
]


class SyslogsParams(BaseModel):
    """Parameters for querying system logs."""

    model_config = ConfigDict(populate_by_name=True)

    level: Literal["error", "warning", "info", "debug", "all"] = Field(
        "error", description='Log level to filter (default: "error")'
    )
    source: Optional[str] = Field(None, description='Log source filter (e.g., "GenAI Controller")')
    message: Optional[str] = Field(None, description="Text search in log message")
    time_range: TimeRange = Field("1h", alias="timeRange", description='Time range to search (default: "1h")')
    limit: Optional[int] = Field(None, description="Maximum number of logs to return (default: 50, max: 500)")
    scope: Optional[str] = Field(None, description='Application scope filter (e.g., "x_snc_now_assist")')


class AiaLogsParams(BaseModel):
    """Parameters for querying AI Agent executions."""

    model_config = ConfigDict(populate_by_name=True)

    execution_id: Optional[str] = Field(None, alias="executionId", description="Specific execution sys_id")
    agent_name: Optional[str] = Field(None, alias="agentName", description="Filter by agent name (partial match)")
    status: Literal["success", "failure", "running", "all"] = Field(
        "all", description='Filter by execution status (default: "all")'
    )
    time_range: TimeRange = Field("4h", alias="timeRange", description='Time range to search (default: "4h")')
    limit: Optional[int] = Field(None, description="Maximum executions to return (default: 20, max: 100)")
    include_tool_calls: bool = Field(
        True, alias="includeToolCalls", description="Include detailed tool execution logs"
    )


def build_syslog_query(params: SyslogsParams) -> str:
    parts = [time_range_query(params.time_range)]
    if params.level != "all":
        parts.append(f"level={SYSLOG_LEVELS[params.level]}")
    if params.source:
        parts.append(f"sourceLIKE{params.source}")
    if params.message:
        parts.append(f"messageLIKE{params.message}")
    parts.append("ORDERBYDESCsys_created_on")
    query = "^".join(parts)
    if params.scope:
        query = f"sys_scope.scope={params.scope}^{query}"
    return query


def _level_name(raw: Any) -> str:
    try:
        level = int(raw)
    except (TypeError, ValueError):
        return str(raw or "UNKNOWN").upper()
    return SYSLOG_LEVEL_NAMES.get(level, f"LEVEL_{level}")


async def servicenow_syslogs(
    config: Settings, connections: ConnectionManager, params: SyslogsParams
) -> ToolResult:
    client = active_client(connections)
    if client is None:
        return not_connected()

    limit = clamp(params.limit, 50, 500)
    table = "syslog_app_scope" if params.scope else "syslog"
    query = build_syslog_query(params)

    try:
        response = await client.query_table(table, query, SYSLOG_FIELDS, limit)
    except ServiceNowError as e:
        return ToolResult.error(error_text("Failed to query syslogs", e))

    logs = response.get("result") or []
    if not logs:
        criteria = [f"- Level: {params.level}", f"- Time range: {params.time_range}"]
        if params.source:
            criteria.append(f"- Source: {params.source}")
        if params.message:
            criteria.append(f'- Message contains: "{params.message}"')
        if params.scope:
            criteria.append(f"- Scope: {params.scope}")
        return ToolResult.ok(
            "No logs found matching criteria:\n"
            + "\n".join(criteria)
            + "\n\nTry expanding the time range or adjusting filters."
        )

    entries = []
    for index, log in enumerate(logs, start=1):
        message = truncate(str(log.get("message") or ""), 500, "... (truncated)")
        entries.append(
            f"[{index}] {log.get('sys_created_on')} | {_level_name(log.get('level'))} | "
            f"{log.get('source') or 'unknown'}\n"
            f"    User: {log.get('sys_created_by') or 'system'}\n"
            f"    {message}"
        )

    filters = f"level={params.level}, timeRange={params.time_range}"
    if params.source:
        filters += f', source="{params.source}"'
    if params.message:
        filters += f', message contains "{params.message}"'
    header = (
        f"System Logs from {client.instance_url}\n"
        f"Query: {filters}\n"
        f"Found: {len(logs)} log entries{limit_marker(len(logs), limit)}\n\n"
        f"{DIVIDER}"
    )
    return ToolResult.ok(header + "\n\n" + "\n\n".join(entries))


def build_aia_query(params: AiaLogsParams) -> str:
    if params.execution_id:
        return f"sys_id={params.execution_id}"
    parts = [time_range_query(params.time_range)]
    if params.agent_name:
        parts.append(f"agentLIKE{params.agent_name}")
    if params.status != "all":
        raw_values = [raw for raw, group in AIA_STATUS_MAP.items() if group == params.status]
        parts.append(f"statusIN{','.join(raw_values)}")
    parts.append("ORDERBYDESCsys_created_on")
    return "^".join(parts)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


async def _fetch_tool_calls(
    client: ServiceNowClient, execution_ids: List[str]
) -> Dict[str, List[Dict[str, Any]]]:
    query = f"executionIN{','.join(execution_ids)}^ORDERBYstep_number"

    async def fetch(table: str) -> Optional[List[Dict[str, Any]]]:
        response = await client.query_table(table, query, AIA_TOOL_FIELDS, 500)
        return response.get("result")

    outcome = await first_success(AIA_TOOL_TABLES, fetch)
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for call in outcome.value or []:
        execution = reference_value(call.get("execution"))
        if isinstance(call.get("execution"), dict):
            execution = call["execution"].get("value") or execution
        if execution:
            grouped[str(execution)].append(call)
    return grouped


def _format_execution(execution: Dict[str, Any], tool_calls: List[Dict[str, Any]]) -> str:
    status = str(execution.get("status") or "unknown")
    label = AIA_STATUS_LABELS.get(AIA_STATUS_MAP.get(status.lower(), ""), f"[{status.upper()}]")
    duration = _as_int(execution.get("duration"))
    agent = reference_value(execution.get("agent")) or "Unknown Agent"

    lines = [
        f"{label} Execution: {execution.get('sys_id')}",
        DIVIDER,
        f"Agent: {agent}",
        f"Status: {status}",
        f"Started: {execution.get('sys_created_on') or ''}",
        f"Duration: {f'{duration}ms' if duration else 'N/A'}",
    ]
    if execution.get("trigger_type"):
        trigger = f"Trigger: {execution['trigger_type']}"
        if execution.get("trigger_context"):
            trigger += f" - {str(execution['trigger_context'])[:100]}"
        lines.append(trigger)
    if execution.get("error_message"):
        lines.append(f"ERROR: {execution['error_message']}")

    if tool_calls:
        lines.append("")
        lines.append(f"Tool Calls ({len(tool_calls)}):")
        for call in tool_calls:
            call_status = str(call.get("status") or "unknown")
            succeeded = call_status in ("success", "completed")
            lines.append(
                f"  {_as_int(call.get('step_number'))}. {'[OK]' if succeeded else '[FAIL]'} "
                f"{call.get('tool_name') or 'unknown'} ({_as_int(call.get('duration'))}ms)"
            )
            if not succeeded:
                if call.get("input"):
                    lines.append(f"     Input: {truncate(str(call['input']), 200)}")
                if call.get("error_message"):
                    lines.append(f"     Error: {call['error_message']}")
    return "\n".join(lines)


async def servicenow_aia_logs(
    config: Settings, connections: ConnectionManager, params: AiaLogsParams
) -> ToolResult:
    client = active_client(connections)
    if client is None:
        return not_connected()

    limit = clamp(params.limit, 20, 100)
    query = build_aia_query(params)

    async def fetch(table: str) -> Optional[List[Dict[str, Any]]]:
        response = await client.query_table(table, query, AIA_EXECUTION_FIELDS, limit)
        return response.get("result")

    try:
        outcome = await first_success(AIA_EXECUTION_TABLES, fetch)
        if not outcome.found:
            return ToolResult.error(
                f"Could not find AIA execution table. Tried: {', '.join(outcome.tried)}\n\n"
                "This may mean:\n"
                "- AI Agent framework is not installed on this instance\n"
                "- Your user lacks access to AIA tables\n"
                "- The table has a different name in your ServiceNow version\n\n"
                "Check that Now Assist or AI Agent is enabled on this instance."
            )

        executions = outcome.value
        if not executions:
            criteria = []
            if params.execution_id:
                criteria.append(f"- Execution ID: {params.execution_id}")
            if params.agent_name:
                criteria.append(f"- Agent name: {params.agent_name}")
            criteria.append(f"- Status: {params.status}")
            criteria.append(f"- Time range: {params.time_range}")
            return ToolResult.ok(
                "No AI Agent executions found matching criteria:\n"
                + "\n".join(criteria)
                + "\n\nTry expanding the time range or adjusting filters."
            )

        tool_calls: Dict[str, List[Dict[str, Any]]] = {}
        if params.include_tool_calls:
            tool_calls = await _fetch_tool_calls(
                client, [str(e.get("sys_id")) for e in executions if e.get("sys_id")]
            )
    except ServiceNowError as e:
        return ToolResult.error(error_text("Failed to query AIA logs", e))

    filters = f"status={params.status}, timeRange={params.time_range}"
    if params.agent_name:
        filters += f', agent="{params.agent_name}"'
    if params.execution_id:
        filters += f', executionId="{params.execution_id}"'
    output = (
        f"AI Agent Execution Logs from {client.instance_url}\n"
        f"Query: {filters}\n"
        f"Found: {len(executions)} execution(s) (table: {outcome.candidate})\n"
        f"{'═' * 70}"
    )
    for execution in executions:
        output += "\n\n" + _format_execution(
            execution, tool_calls.get(str(execution.get("sys_id")), [])
        )
    return ToolResult.ok(output)


OPERATIONS = {
    "servicenow_syslogs": {
        "description": (
            "Query ServiceNow system logs for debugging. Filter by level, source, "
            "message text, time range, and application scope."
        ),
        "required_params": [],
        "optional_params": ["level", "source", "message", "timeRange", "limit", "scope"],
    },
    "servicenow_aia_logs": {
        "description": (
            "Query AI Agent (AIA) execution logs: agent, status, duration, "
            "step-by-step tool calls, and error details."
        ),
        "required_params": [],
        "optional_params": [
            "executionId", "agentName", "status", "timeRange", "limit", "includeToolCalls",
        ],
    },
}
