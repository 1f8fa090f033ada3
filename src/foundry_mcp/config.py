"""Configuration module for the ServiceNow Foundry MCP server."""
import os
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from foundry_mcp.servicenow.errors import ServiceNowErrorType

# Load environment variables from .env file
load_dotenv()

DEFAULT_CREDENTIALS_PATH = os.path.join(
    os.path.expanduser("~"), ".servicenow", "credentials.json"
)


class AuthType(str, Enum):
    """Authentication types supported against a ServiceNow instance."""

    BASIC = "basic"
    TOKEN = "token"
    OAUTH = "oauth"


class BasicAuthConfig(BaseModel):
    """Configuration for basic authentication."""

    username: str
    password: str


class TokenAuthConfig(BaseModel):
    """Configuration for API token (bearer) authentication."""

    token: str


class OAuthConfig(BaseModel):
    """Configuration for OAuth authentication."""

    client_id: str
    client_secret: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None


class AuthConfig(BaseModel):
    """Authentication configuration.

    Exactly one of ``basic``, ``token`` or ``oauth`` is populated, and it is the
    one named by ``type``.
    """

    type: AuthType
    basic: Optional[BasicAuthConfig] = None
    token: Optional[TokenAuthConfig] = None
    oauth: Optional[OAuthConfig] = None

    @model_validator(mode="after")
    def _one_variant(self) -> "AuthConfig":
        populated = [
            name for name in ("basic", "token", "oauth") if getattr(self, name) is not None
        ]
        if populated != [self.type.value]:
            raise ValueError(
                f"auth type {self.type.value!r} requires exactly the "
                f"{self.type.value!r} section, got {populated or 'none'}"
            )
        return self


class RetryPolicy(BaseModel):
    """Retry policy applied uniformly by the HTTP client."""

    max_retries: int = Field(3, ge=0)
    retryable_error_types: FrozenSet[ServiceNowErrorType] = frozenset(
        {
            ServiceNowErrorType.INSTANCE_UNAVAILABLE,
            ServiceNowErrorType.TOKEN_EXPIRED,
            ServiceNowErrorType.RATE_LIMITED,
        }
    )
    initial_delay: float = Field(1.0, ge=0, description="Seconds before the first retry")
    max_delay: float = Field(30.0, ge=0, description="Upper bound for any single delay")
    backoff_multiplier: float = Field(2.0, ge=1)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SERVICENOW_MCP_",
        env_file=".env",
        extra="ignore",
    )

    credentials_path: str = DEFAULT_CREDENTIALS_PATH
    request_timeout: float = 30.0

    max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0

    # Remote script output capture
    script_settle_delay: float = 2.0
    script_poll_interval: float = Field(2.0, gt=0)
    script_poll_window: float = 30.0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
        )
