"""Data models shared across the ServiceNow access layer."""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from foundry_mcp.config import AuthConfig, AuthType
from foundry_mcp.servicenow.errors import ServiceNowErrorType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceInfo(BaseModel):
    version: str
    build_tag: Optional[str] = None
    build_date: Optional[str] = None


class UserInfo(BaseModel):
    sys_id: str
    user_name: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    roles: List[str] = Field(default_factory=list)
    active: bool = False


class ConnectionSession(BaseModel):
    """Authenticated in-memory binding to one instance."""

    instance_url: str
    auth_type: AuthType
    auth_config: AuthConfig
    access_token: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_roles: List[str] = Field(default_factory=list)
    instance_version: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime = Field(default_factory=utcnow)


class SessionSummary(BaseModel):
    instance_url: str
    instance_version: str
    user: str
    roles: List[str] = Field(default_factory=list)


class ConnectionErrorInfo(BaseModel):
    type: ServiceNowErrorType
    details: Optional[str] = None


class ConnectionResult(BaseModel):
    success: bool
    message: str
    session: Optional[SessionSummary] = None
    error: Optional[ConnectionErrorInfo] = None


class ConnectionStatus(BaseModel):
    connected: bool
    active_instance: Optional[str] = None
    user: Optional[str] = None
    version: Optional[str] = None
    session_count: int = 0
