"""
Credential profiles and auth config resolution.

Profiles live in a small file (``~/.servicenow/credentials.json`` by default)::

    {
      "default": "dev",
      "profiles": {
        "dev": {"instance": "dev12345.service-now.com", "type": "basic",
                "username": "admin", "password": "..."}
      }
    }

YAML files (``.yaml``/``.yml``) with the same shape are accepted too.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from foundry_mcp.config import (
    AuthConfig,
    AuthType,
    BasicAuthConfig,
    OAuthConfig,
    TokenAuthConfig,
)
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType

logger = logging.getLogger(__name__)


class CredentialProfile(BaseModel):
    """A named set of connection defaults."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    instance: Optional[str] = None
    type: Optional[AuthType] = None
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    client_id: Optional[str] = Field(None, alias="clientId")
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class CredentialsFile(BaseModel):
    profiles: Dict[str, CredentialProfile] = Field(default_factory=dict)
    default: Optional[str] = None


class CredentialStore:
    """Read-only lookup of profile name -> credentials."""

    def __init__(self, path: str):
        self.path = Path(path).expanduser()

    def load(self) -> Optional[CredentialsFile]:
        """Load the credentials file, or None when absent or unreadable."""
        if not self.path.is_file():
            logger.debug(f"No credentials file at {self.path}")
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
            if self.path.suffix.lower() in (".yaml", ".yml"):
                raw = yaml.safe_load(text) or {}
            else:
                raw = json.loads(text)
            return CredentialsFile.model_validate(raw)
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return None

    def get_profile(self, name: Optional[str] = None) -> Optional[CredentialProfile]:
        """Look up a profile by name, or the file's default profile."""
        credentials = self.load()
        if credentials is None:
            return None
        name = name or credentials.default
        if not name:
            return None
        return credentials.profiles.get(name)


def _infer_type(material: Dict[str, Any]) -> AuthType:
    if material.get("token"):
        return AuthType.TOKEN
    if material.get("client_id") or material.get("client_secret"):
        return AuthType.OAUTH
    return AuthType.BASIC


def build_auth_config(
    auth_type: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    token: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    profile: Optional[CredentialProfile] = None,
    profile_name: Optional[str] = None,
) -> AuthConfig:
    """
    Resolve an AuthConfig from explicit arguments and an optional profile.

    Profile fields act as defaults; explicit arguments override them.

    Raises:
        ServiceNowError: AUTHENTICATION_FAILED when no usable auth material resolves
    """
    explicit = {
        "username": username,
        "password": password,
        "token": token,
        "client_id": client_id,
        "client_secret": client_secret,
    }
    material: Dict[str, Any] = {}
    if profile is not None:
        material.update(profile.model_dump(exclude={"instance", "type"}))
    material.update({k: v for k, v in explicit.items() if v})

    if auth_type in (None, "", "profile"):
        if profile is not None and profile.type is not None:
            resolved = profile.type
        else:
            resolved = _infer_type(material)
    else:
        try:
            resolved = AuthType(str(auth_type).strip().lower())
        except ValueError:
            raise ServiceNowError(
                ServiceNowErrorType.AUTHENTICATION_FAILED,
                f"Unknown auth type: {auth_type}",
                suggestion="Use basic, token, or oauth",
            ) from None

    source = {"profile": profile_name} if profile_name else {}

    if resolved == AuthType.BASIC:
        if not material.get("username") or not material.get("password"):
            raise ServiceNowError(
                ServiceNowErrorType.AUTHENTICATION_FAILED,
                "Basic auth requires username and password",
                source,
                "Provide username and password parameters",
            )
        return AuthConfig(
            type=AuthType.BASIC,
            basic=BasicAuthConfig(username=material["username"], password=material["password"]),
        )

    if resolved == AuthType.TOKEN:
        if not material.get("token"):
            raise ServiceNowError(
                ServiceNowErrorType.AUTHENTICATION_FAILED,
                "Token auth requires a token",
                source,
                "Provide the token parameter",
            )
        return AuthConfig(type=AuthType.TOKEN, token=TokenAuthConfig(token=material["token"]))

    if not material.get("client_id") or not material.get("client_secret"):
        raise ServiceNowError(
            ServiceNowErrorType.AUTHENTICATION_FAILED,
            "OAuth requires clientId and clientSecret",
            source,
            "Provide OAuth application credentials",
        )
    return AuthConfig(
        type=AuthType.OAUTH,
        oauth=OAuthConfig(
            client_id=material["client_id"],
            client_secret=material["client_secret"],
            refresh_token=material.get("refresh_token"),
        ),
    )
