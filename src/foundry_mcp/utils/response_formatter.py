"""Response formatting utilities."""
import json
from typing import Any, Dict, List, Optional

from foundry_mcp.servicenow.errors import ServiceNowError

DIVIDER = "─" * 60
HEAVY_DIVIDER = "═" * 60
REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = {
    "password",
    "password_hash",
    "user_password",
    "secret",
    "api_key",
    "private_key",
    "client_secret",
    "token",
    "access_token",
    "refresh_token",
    "key",
}
SENSITIVE_SUFFIXES = ("_password", "_secret", "_token", "_key")


def is_sensitive_field(name: str) -> bool:
    """True for credential-like field names, including dotted paths ending in one."""
    leaf = name.lower().rsplit(".", 1)[-1]
    return leaf in SENSITIVE_FIELDS or leaf.endswith(SENSITIVE_SUFFIXES)


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


def display_value(value: Any) -> str:
    """
    Render a field value for text output.

    Reference fields come back as ``{"value": ..., "display_value": ...}``;
    the display value wins.
    """
    if value is None:
        return "(empty)"
    if isinstance(value, dict):
        return str(value.get("display_value") or value.get("value") or json.dumps(value))
    return str(value)


def sanitize_item(item: Dict[str, Any], max_length: int = 200) -> Dict[str, str]:
    """
    Sanitize an item's field values.

    Args:
        item: Record as returned by the Table API
        max_length: Maximum rendered length per value

    Returns:
        Field name -> display string, with credentials redacted
    """
    sanitized = {}
    for field, value in item.items():
        if is_sensitive_field(field):
            sanitized[field] = REDACTED
        else:
            sanitized[field] = truncate(display_value(value), max_length)
    return sanitized


def format_record(index: int, record: Dict[str, Any], max_length: int = 200) -> str:
    lines = [f"[{index}] sys_id: {display_value(record.get('sys_id'))}"]
    for field, value in sanitize_item(record, max_length).items():
        if field == "sys_id":
            continue
        lines.append(f"  {field}: {value}")
    return "\n".join(lines)


def roles_preview(roles: List[str], shown: int = 5) -> str:
    preview = ", ".join(roles[:shown])
    if len(roles) > shown:
        preview += f" (+{len(roles) - shown} more)"
    return preview


def limit_marker(count: int, limit: int) -> str:
    return " (limit reached)" if count == limit else ""


def error_text(prefix: str, error: Exception, extra: Optional[str] = None) -> str:
    """``<prefix>: <message>`` plus optional extra text and the suggestion, if any."""
    message = error.message if isinstance(error, ServiceNowError) else str(error)
    text = f"{prefix}: {message}"
    if extra:
        text += f"\n\n{extra}"
    suggestion = getattr(error, "suggestion", None)
    if suggestion:
        text += f"\n\nSuggestion: {suggestion}"
    return text
