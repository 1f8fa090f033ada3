"""
Remote script executor.

Runs a script on the instance through a temporary fix-script record:

    CREATE_ARTIFACT -> TRIGGER -> CAPTURE_OUTPUT -> CLEANUP

and falls back to direct script endpoints (DIRECT_ENDPOINT) when the record
cannot be created.

Output capture is tagged: the script is wrapped so that everything it sends
to ``gs.info`` is collected and finally logged as
``__SCRIPT_OUTPUT__[<tag>]: <json array>``, with a fresh tag per execution.
The executor then polls syslog for that exact tag, so concurrent runs never
pick up each other's output.

Requests that create or start a script are sent once, never retried: a
resent request could run the script again or leave an orphaned record.
"""
import asyncio
import json
import logging
import re
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from foundry_mcp.servicenow.client import ServiceNowClient
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.servicenow.fallback import first_success
from foundry_mcp.servicenow.readonly import split_readonly_output

logger = logging.getLogger(__name__)

OUTPUT_MARKER = "__SCRIPT_OUTPUT__"
ARTIFACT_TABLE = "sys_script_fix"
DIRECT_ENDPOINTS = [
    "/api/now/sp/widget/script",
    "/api/sn_sc/servicecatalog/items/script",
]
# Extra seconds granted on top of the caller's timeout
TIMEOUT_GRACE = 5.0

_CAPTURE_WRAPPER = """\
var __output = [];
var __originalInfo = gs.info;
gs.info = function(msg) {{
  __output.push(String(msg));
  __originalInfo.call(gs, msg);
}};

try {{
{script}
}} catch (e) {{
  __output.push('ERROR: ' + e.message);
}}

gs.info = __originalInfo;
gs.info('{marker}[{tag}]: ' + JSON.stringify(__output));
"""


class ExecutionState(str, Enum):
    CREATE_ARTIFACT = "create_artifact"
    TRIGGER = "trigger"
    CAPTURE_OUTPUT = "capture_output"
    CLEANUP = "cleanup"
    DIRECT_ENDPOINT = "direct_endpoint"


class ScriptExecutionResult(BaseModel):
    output: str
    duration_ms: int
    path: str  # "artifact" or "direct"
    states: List[ExecutionState] = Field(default_factory=list)
    suppressed_mutations: List[str] = Field(default_factory=list)


def wrap_capture(script: str, tag: str) -> str:
    return _CAPTURE_WRAPPER.format(script=script, marker=OUTPUT_MARKER, tag=tag)


def parse_capture(message: str, tag: str) -> Optional[List[str]]:
    """Extract captured lines from a syslog message, or None if it is not ours."""
    match = re.search(
        re.escape(f"{OUTPUT_MARKER}[{tag}]:") + r"\s*(\[.*\])", message, re.DOTALL
    )
    if not match:
        return None
    try:
        lines = json.loads(match.group(1))
    except ValueError:
        return [message]
    return [str(line) for line in lines]


class ScriptExecutor:
    """Executes scripts on one instance."""

    def __init__(
        self,
        client: ServiceNowClient,
        settle_delay: float = 2.0,
        poll_interval: float = 2.0,
        poll_window: float = 30.0,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.client = client
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.poll_window = poll_window

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def execute(
        self,
        script: str,
        timeout: int = 30,
        description: str = "Script executed via Foundry MCP",
    ) -> ScriptExecutionResult:
        """
        Run ``script`` and return its captured output.

        Raises:
            ServiceNowError: SCRIPT_TIMEOUT when the tagged output never shows up,
                SCRIPT_ERROR when no execution path is available
        """
        start = time.monotonic()
        states: List[ExecutionState] = []
        tag = uuid.uuid4().hex

        states.append(ExecutionState.CREATE_ARTIFACT)
        try:
            sys_id = await self._create_artifact(wrap_capture(script, tag), description, tag)
        except ServiceNowError as e:
            logger.warning(f"Could not create script record ({e.message}); trying direct endpoints")
            lines = await self._execute_direct(script, timeout, states, artifact_error=e)
            return self._result(lines, "direct", states, start)

        try:
            states.append(ExecutionState.TRIGGER)
            await self._trigger(sys_id, timeout)
            states.append(ExecutionState.CAPTURE_OUTPUT)
            lines = await self._capture(tag, timeout)
        finally:
            states.append(ExecutionState.CLEANUP)
            await self._cleanup(sys_id)

        return self._result(lines, "artifact", states, start)

    @staticmethod
    def _result(
        lines: List[str], path: str, states: List[ExecutionState], start: float
    ) -> ScriptExecutionResult:
        output_lines, suppressed = split_readonly_output(lines)
        return ScriptExecutionResult(
            output="\n".join(output_lines),
            duration_ms=int((time.monotonic() - start) * 1000),
            path=path,
            states=states,
            suppressed_mutations=suppressed,
        )

    async def _create_artifact(self, script: str, description: str, tag: str) -> str:
        response = await self.client.request(
            f"/api/now/table/{ARTIFACT_TABLE}",
            "POST",
            json={
                "name": f"Foundry_Temp_{tag[:12]}",
                "script": script,
                "description": description,
                "active": True,
            },
            timeout=10.0,
        )
        sys_id = (response.get("result") or {}).get("sys_id")
        if not sys_id:
            raise ServiceNowError(
                ServiceNowErrorType.SCRIPT_ERROR,
                "Failed to create script record",
                {"response": response},
            )
        logger.debug(f"Created temporary script record {sys_id}")
        return sys_id

    async def _trigger(self, sys_id: str, timeout: int) -> None:
        try:
            await self.client.request(
                f"/api/now/table/{ARTIFACT_TABLE}/{sys_id}",
                "PATCH",
                json={"state": "ready"},
                timeout=float(timeout),
            )
        except ServiceNowError as e:
            # The script may still have run; capture decides
            logger.warning(f"Trigger of script record {sys_id} failed: {e.message}")

    def _capture_window(self, timeout: int) -> float:
        # The script gets its full timeout; poll_window is the floor
        return max(self.poll_window, timeout + TIMEOUT_GRACE)

    async def _capture(self, tag: str, timeout: int) -> List[str]:
        window = self._capture_window(timeout)
        query = f"messageLIKE{OUTPUT_MARKER}[{tag}]^ORDERBYDESCsys_created_on"

        await self._sleep(self.settle_delay)
        waited = self.settle_delay
        while True:
            response = await self.client.query_table("syslog", query, ["message"], 1)
            for row in response.get("result") or []:
                lines = parse_capture(row.get("message") or "", tag)
                if lines is not None:
                    return lines
            if waited >= window:
                break
            await self._sleep(self.poll_interval)
            waited += self.poll_interval

        raise ServiceNowError(
            ServiceNowErrorType.SCRIPT_TIMEOUT,
            f"No script output captured within {window:g}s",
            {"tag": tag, "window": window},
            "The script may still be running, or the instance may not execute fix scripts on update. Check syslog.",
        )

    async def _cleanup(self, sys_id: str) -> None:
        try:
            await self.client.request(
                f"/api/now/table/{ARTIFACT_TABLE}/{sys_id}", "DELETE", timeout=5.0
            )
        except ServiceNowError as e:
            logger.warning(f"Could not delete temporary script record {sys_id}: {e.message}")

    async def _execute_direct(
        self,
        script: str,
        timeout: int,
        states: List[ExecutionState],
        artifact_error: ServiceNowError,
    ) -> List[str]:
        async def run(endpoint: str) -> Optional[Any]:
            states.append(ExecutionState.DIRECT_ENDPOINT)
            response = await self.client.request(
                endpoint,
                "POST",
                json={"script": script, "timeout": timeout * 1000},
                timeout=timeout + TIMEOUT_GRACE,
            )
            return response.get("result") or None

        outcome = await first_success(DIRECT_ENDPOINTS, run)
        if outcome.found:
            logger.info(f"Script executed via {outcome.candidate}")
            return str(outcome.value).splitlines()

        tried = [f"/api/now/table/{ARTIFACT_TABLE}", *outcome.tried]
        details: Dict[str, Any] = {
            "tried_endpoints": tried,
            "artifact_error": artifact_error.message,
        }
        raise ServiceNowError(
            ServiceNowErrorType.SCRIPT_ERROR,
            f"No script execution endpoint available on this instance (tried: {', '.join(tried)})",
            details,
            "Script execution may require a custom Scripted REST API or additional permissions",
        )
