"""
Script tool: analyze, optionally wrap in readonly mode, and execute a
server-side script.
"""
import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.protocol import ToolResult
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.servicenow.executor import ScriptExecutionResult, ScriptExecutor
from foundry_mcp.servicenow.readonly import wrap_readonly
from foundry_mcp.servicenow.script_safety import ScriptAnalysisResult, analyze
from foundry_mcp.tools.common import active_client, clamp, not_connected
from foundry_mcp.utils.response_formatter import DIVIDER, error_text

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Script executed via Foundry MCP"


class ScriptParams(BaseModel):
    """Parameters for executing a script."""

    script: str = Field(..., description="GlideScript to execute")
    mode: Literal["readonly", "execute"] = Field(
        "readonly",
        description="Execution mode: readonly (mutations suppressed) or execute (full). Default: readonly",
    )
    timeout: Optional[int] = Field(None, description="Script timeout in seconds (default: 30, max: 120)")
    description: Optional[str] = Field(None, description="Description of what this script does (for audit log)")


def _blocked_text(analysis: ScriptAnalysisResult) -> str:
    reasons = "\n".join(f"- {reason}" for reason in analysis.blocked_reasons)
    return (
        "Script blocked for safety reasons:\n\n"
        f"{reasons}\n\n"
        "These operations are not allowed through this tool.\n"
        "If you need to perform these operations, use the ServiceNow UI with appropriate permissions."
    )


def _script_error_text(error: ServiceNowError, mode: str) -> str:
    extra = None
    if error.type == ServiceNowErrorType.ACL_DENIED:
        extra = (
            "Your user may lack permissions to execute background scripts.\n"
            "Required roles typically include: admin, or script execution roles."
        )
    return error_text("Script execution failed", error, extra) + f"\n\nMode: {mode}"


def format_execution(
    instance_url: str,
    mode: str,
    timeout: int,
    analysis: ScriptAnalysisResult,
    result: ScriptExecutionResult,
) -> str:
    sections = []
    if mode == "readonly" and analysis.has_mutation_risk:
        operations = "\n".join(f"- Script contains {op} operation" for op in analysis.mutation_operations)
        sections.append(
            "Script contains data mutation operations that are SUPPRESSED in readonly mode:\n\n"
            f"{operations}\n\n"
            "The script ran but mutations were not committed.\n"
            'To execute mutations, use mode="execute".'
        )
    elif mode == "execute" and analysis.has_mutation_risk:
        warnings = "\n".join(f"- {w}" for w in analysis.warnings)
        sections.append(f"[EXECUTE MODE] This script may modify data:\n{warnings}")

    sections.append(
        f"Script Execution on {instance_url}\n"
        f"Mode: {mode}\n"
        f"Timeout: {timeout}s\n"
        f"Path: {result.path}"
    )
    sections.append(f"{DIVIDER}\nRESULT\n{DIVIDER}\n\n{result.output or '(no output)'}")
    sections.append(f"Duration: {result.duration_ms}ms")

    if mode == "readonly" and result.suppressed_mutations:
        suppressed = "\n".join(f"- {entry}" for entry in result.suppressed_mutations)
        sections.append(f"Suppressed mutations ({len(result.suppressed_mutations)}):\n{suppressed}")
    if analysis.warnings:
        warnings = "\n".join(f"- {w}" for w in analysis.warnings)
        sections.append(f"Warnings:\n{warnings}")
    return "\n\n".join(sections)


async def servicenow_script(
    config: Settings, connections: ConnectionManager, params: ScriptParams
) -> ToolResult:
    client = active_client(connections)
    if client is None:
        return not_connected()

    if not params.script.strip():
        return ToolResult.error("Error: script is required and cannot be empty")

    mode = params.mode
    timeout = clamp(params.timeout, 30, 120)
    description = params.description or DEFAULT_DESCRIPTION

    analysis = analyze(params.script)
    if not analysis.safe:
        logger.warning(f"Blocked script: {', '.join(analysis.blocked_reasons)}")
        return ToolResult.error(_blocked_text(analysis))

    if analysis.syntax_error:
        error = ServiceNowError(
            ServiceNowErrorType.SCRIPT_ERROR,
            f"Script has a syntax error: {analysis.syntax_error}",
            {"syntax_error": analysis.syntax_error},
            "Fix the script syntax and try again",
        )
        return ToolResult.error(_script_error_text(error, mode))

    # Readonly always interposes, even when no mutation was detected statically
    script = wrap_readonly(params.script) if mode == "readonly" else params.script

    executor = ScriptExecutor(
        client,
        settle_delay=config.script_settle_delay,
        poll_interval=config.script_poll_interval,
        poll_window=config.script_poll_window,
    )
    try:
        result = await executor.execute(script, timeout, description)
    except ServiceNowError as e:
        return ToolResult.error(_script_error_text(e, mode))

    if mode == "readonly" and analysis.has_mutation_risk and not result.suppressed_mutations:
        result.suppressed_mutations = [
            f"{op} (detected statically)" for op in analysis.mutation_operations
        ]

    return ToolResult.ok(format_execution(client.instance_url, mode, timeout, analysis, result))


OPERATIONS = {
    "servicenow_script": {
        "description": (
            "Execute a background script on ServiceNow for testing and debugging. "
            "Scripts are analyzed first and dangerous operations are always blocked. "
            "readonly mode (default) suppresses insert/update/delete; execute mode runs unmodified."
        ),
        "required_params": ["script"],
        "optional_params": ["mode", "timeout", "description"],
    },
}
