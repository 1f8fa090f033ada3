"""
Instance tool: version, feature availability, plugins, and health.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from foundry_mcp.config import Settings
from foundry_mcp.mcp_core.protocol import ToolResult
from foundry_mcp.servicenow.client import ServiceNowClient, parse_version
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.servicenow.errors import ServiceNowError
from foundry_mcp.servicenow.fallback import first_success
from foundry_mcp.tools.common import active_client, not_connected
from foundry_mcp.utils.response_formatter import DIVIDER, HEAVY_DIVIDER, error_text, roles_preview

logger = logging.getLogger(__name__)

FEATURE_PLUGINS: Dict[str, Dict[str, Any]] = {
    "now_assist": {
        "plugins": ["com.snc.now_assist", "sn_now_assist", "com.glide.now_assist"],
        "tables": ["sys_now_assist_config", "sn_now_assist_skill"],
        "description": "Now Assist AI capabilities",
    },
    "virtual_agent": {
        "plugins": ["com.glide.cs.chatbot", "com.snc.virtual_agent"],
        "tables": ["sys_cs_topic", "sys_cb_topic"],
        "description": "Virtual Agent chatbot",
    },
    "aia": {
        "plugins": ["com.snc.aia", "sn_aia", "com.glide.aia"],
        "tables": ["sys_aia_execution", "sn_agent_execution"],
        "description": "AI Agents (Agentic AI)",
    },
    "predictive_intelligence": {
        "plugins": ["com.glide.platform_ml"],
        "tables": ["ml_capability_definition"],
        "description": "Predictive Intelligence / ML",
    },
    "flow_designer": {
        "plugins": ["com.glide.hub.flow_designer"],
        "tables": ["sys_hub_flow"],
        "description": "Flow Designer automation",
    },
    "integration_hub": {
        "plugins": ["com.glide.hub.integration"],
        "tables": ["sys_hub_spoke"],
        "description": "Integration Hub spokes",
    },
}
DEFAULT_FEATURES = ["now_assist", "virtual_agent", "aia"]
MAX_PLUGINS_SHOWN = 50


class InstanceParams(BaseModel):
    """Parameters for instance information."""

    model_config = ConfigDict(populate_by_name=True)

    include_plugins: bool = Field(False, alias="includePlugins", description="Include list of installed plugins")
    include_health: bool = Field(False, alias="includeHealth", description="Include instance health metrics")
    check_features: Optional[List[str]] = Field(
        None,
        alias="checkFeatures",
        description='Specific features to check (e.g., ["now_assist", "virtual_agent", "aia"])',
    )


class FeatureStatus(BaseModel):
    name: str
    enabled: bool
    description: str
    details: Optional[str] = None


class PluginInfo(BaseModel):
    id: str
    name: str
    version: str = ""
    active: bool = False


async def get_instance_info(client: ServiceNowClient) -> Dict[str, Optional[str]]:
    properties: Dict[str, str] = {}
    for name in ("glide.buildtag", "glide.buildname", "glide.builddate"):
        try:
            response = await client.query_table("sys_properties", f"name={name}", ["value"], 1)
        except ServiceNowError as e:
            logger.debug(f"Property {name} unavailable: {e.message}")
            continue
        rows = response.get("result") or []
        if rows and rows[0].get("value"):
            properties[name] = rows[0]["value"]

    build_tag = properties.get("glide.buildtag")
    if build_tag and "glide-" in build_tag.lower():
        version = parse_version(build_tag)
    else:
        version = properties.get("glide.buildname") or "Unknown"
    return {
        "version": version,
        "build_tag": build_tag,
        "build_date": properties.get("glide.builddate"),
    }


async def check_feature(client: ServiceNowClient, name: str) -> FeatureStatus:
    """
    Report whether a feature is enabled.

    Looks for an active plugin first. Only when the plugin table itself cannot
    be read does it fall back to reading the feature's tables.
    """
    feature = FEATURE_PLUGINS.get(name.lower())
    if feature is None:
        return FeatureStatus(
            name=name, enabled=False, description="Unknown feature", details="Feature not recognized"
        )

    plugin_table_readable = False
    for plugin_id in feature["plugins"]:
        try:
            response = await client.query_table("v_plugin", f"id={plugin_id}^active=true", ["id", "name"], 1)
        except ServiceNowError as e:
            logger.debug(f"Plugin lookup for {plugin_id} failed: {e.message}")
            continue
        plugin_table_readable = True
        rows = response.get("result") or []
        if rows:
            return FeatureStatus(
                name=name,
                enabled=True,
                description=feature["description"],
                details=f"Plugin: {rows[0].get('name') or plugin_id}",
            )

    if not plugin_table_readable:
        async def readable(table: str) -> Optional[bool]:
            response = await client.query_table(table, None, ["sys_id"], 1)
            return True if "result" in response else None

        outcome = await first_success(feature["tables"], readable)
        if outcome.found:
            return FeatureStatus(
                name=name,
                enabled=True,
                description=feature["description"],
                details=f"Table {outcome.candidate} accessible",
            )

    return FeatureStatus(
        name=name,
        enabled=False,
        description=feature["description"],
        details="Plugin not found or not active",
    )


async def get_installed_plugins(client: ServiceNowClient) -> List[PluginInfo]:
    try:
        response = await client.query_table("v_plugin", "ORDERBYname", ["id", "name", "version", "active"], 200)
    except ServiceNowError as e:
        logger.info(f"Plugin list unavailable: {e.message}")
        return []
    plugins = [
        PluginInfo(
            id=str(row.get("id") or ""),
            name=str(row.get("name") or row.get("id") or ""),
            version=str(row.get("version") or ""),
            active=row.get("active") in ("true", True),
        )
        for row in response.get("result") or []
    ]
    # Active ones first, name order kept within each group
    return sorted(plugins, key=lambda p: not p.active)


async def get_health_metrics(client: ServiceNowClient) -> Dict[str, Any]:
    metrics: Dict[str, Any] = {}
    try:
        response = await client.query_table("sys_semaphore", None, ["name", "max_count", "count"], 10)
        total_max = total_available = 0
        for semaphore in response.get("result") or []:
            total_max += _as_int(semaphore.get("max_count"))
            total_available += _as_int(semaphore.get("count"))
        if total_max > 0:
            metrics["semaphores"] = {"available": total_available, "max": total_max}
    except ServiceNowError as e:
        logger.info(f"Semaphore metrics unavailable: {e.message}")

    try:
        running = await client.query_table("sys_trigger", "state=executing", ["sys_id"], 100)
        queued = await client.query_table("sys_trigger", "state=queued", ["sys_id"], 100)
        metrics["scheduled_jobs"] = {
            "running": len(running.get("result") or []),
            "queued": len(queued.get("result") or []),
        }
    except ServiceNowError as e:
        logger.info(f"Scheduled job metrics unavailable: {e.message}")
    return metrics


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _section(title: str) -> str:
    return f"{DIVIDER}\n{title}\n{DIVIDER}"


def _format_plugins(plugins: List[PluginInfo]) -> str:
    active = [p for p in plugins if p.active]
    inactive = [p for p in plugins if not p.active]
    text = _section(f"INSTALLED PLUGINS ({len(plugins)})")
    if active:
        text += f"\n\nActive ({len(active)}):"
        for plugin in active[:MAX_PLUGINS_SHOWN]:
            text += f"\n  - {plugin.name} ({plugin.id})"
        if len(active) > MAX_PLUGINS_SHOWN:
            text += f"\n  ... and {len(active) - MAX_PLUGINS_SHOWN} more"
    if 0 < len(inactive) <= 10:
        text += f"\n\nInactive ({len(inactive)}):"
        for plugin in inactive:
            text += f"\n  - {plugin.name}"
    elif len(inactive) > 10:
        text += f"\n\nInactive: {len(inactive)} plugins"
    return text


def _format_health(health: Dict[str, Any]) -> str:
    text = _section("HEALTH METRICS")
    semaphores = health.get("semaphores")
    if semaphores:
        usage = round((1 - semaphores["available"] / semaphores["max"]) * 100)
        text += f"\nSemaphores: {semaphores['available']}/{semaphores['max']} available ({usage}% used)"
    jobs = health.get("scheduled_jobs")
    if jobs:
        text += f"\nScheduled Jobs: {jobs['running']} running, {jobs['queued']} queued"
    if not semaphores and not jobs:
        text += "\nNo health metrics accessible"
    return text


async def servicenow_instance(
    config: Settings, connections: ConnectionManager, params: InstanceParams
) -> ToolResult:
    client = active_client(connections)
    if client is None:
        return not_connected()
    session = connections.get_active_session()

    try:
        info = await get_instance_info(client)
        features = [
            await check_feature(client, name)
            for name in (params.check_features or DEFAULT_FEATURES)
        ]
        plugins = await get_installed_plugins(client) if params.include_plugins else []
        health = await get_health_metrics(client) if params.include_health else None
    except ServiceNowError as e:
        return ToolResult.error(error_text("Failed to get instance info", e))

    output = (
        "ServiceNow Instance Information\n"
        f"{HEAVY_DIVIDER}\n\n"
        f"Instance: {session.instance_url}\n"
        f"Version: {info['version']}\n"
        f"Build: {info['build_tag'] or 'N/A'}"
    )
    if info["build_date"]:
        output += f"\nBuild Date: {info['build_date']}"

    output += "\n\n" + _section("FEATURES")
    for feature in features:
        output += f"\n{'[ON]' if feature.enabled else '[OFF]'} {feature.name}: {feature.description}"
        if feature.details:
            output += f"\n    {feature.details}"

    if params.include_plugins and plugins:
        output += "\n\n" + _format_plugins(plugins)
    if params.include_health and health is not None:
        output += "\n\n" + _format_health(health)

    output += (
        "\n\n" + _section("CONNECTION") + "\n"
        f"User: {session.user_name}\n"
        f"Roles: {roles_preview(session.user_roles)}\n"
        f"Connected: {session.created_at.isoformat()}"
    )
    return ToolResult.ok(output)


OPERATIONS = {
    "servicenow_instance": {
        "description": (
            "Get ServiceNow instance information: version and build, feature status "
            "(Now Assist, Virtual Agent, AI Agents), installed plugins, and health metrics."
        ),
        "required_params": [],
        "optional_params": ["includePlugins", "includeHealth", "checkFeatures"],
    },
}
