"""
Authentication manager for ServiceNow instances.
Builds Authorization headers and owns the OAuth token lifecycle.
"""
import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, Field

from foundry_mcp.config import AuthConfig, AuthType
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType

logger = logging.getLogger(__name__)

# Refresh this long before the provider-reported expiry
_EXPIRY_MARGIN = timedelta(minutes=1)


class TokenInfo(BaseModel):
    """OAuth token information."""

    access_token: str = Field(..., description="OAuth access token")
    refresh_token: Optional[str] = Field(None, description="OAuth refresh token")
    token_type: str = Field("Bearer", description="Token type (usually Bearer)")
    expires_in: int = Field(1800, description="Token expiration in seconds")
    scope: Optional[str] = Field(None, description="Token scope")


class AuthManager:
    """
    Manages authentication for requests against one ServiceNow instance.
    Handles header generation for basic/token auth and the OAuth token
    exchange, expiry and refresh.
    """

    def __init__(self, auth: AuthConfig, instance_url: str, timeout: float = 30.0):
        """
        Initialize the auth manager.

        Args:
            auth: Resolved authentication configuration
            instance_url: Normalized instance base URL
            timeout: Timeout in seconds for token endpoint calls
        """
        self.auth = auth
        self.instance_url = instance_url
        self.timeout = timeout
        self.token_url = f"{instance_url}/oauth_token.do"

        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None
        if auth.type == AuthType.OAUTH and auth.oauth:
            self._access_token = auth.oauth.access_token
            self._refresh_token = auth.oauth.refresh_token
            self._token_expiry = auth.oauth.token_expiry

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def set_access_token(self, token: str, expires_in: Optional[int] = None) -> None:
        self._access_token = token
        self._token_expiry = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
            if expires_in is not None
            else None
        )

    def _token_expired(self) -> bool:
        if self._token_expiry is None:
            return False
        expiry = self._token_expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) >= expiry - _EXPIRY_MARGIN

    async def get_auth_header(self) -> Dict[str, str]:
        """
        Get the Authorization header for the configured auth type.

        Raises:
            ServiceNowError: AUTHENTICATION_FAILED when OAuth has no token yet,
                TOKEN_EXPIRED when the OAuth token expired and cannot be refreshed
        """
        if self.auth.type == AuthType.BASIC:
            raw = f"{self.auth.basic.username}:{self.auth.basic.password}"
            encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
            return {"Authorization": f"Basic {encoded}"}

        if self.auth.type == AuthType.TOKEN:
            return {"Authorization": f"Bearer {self.auth.token.token}"}

        if not self._access_token:
            raise ServiceNowError(
                ServiceNowErrorType.AUTHENTICATION_FAILED,
                "No access token available. Call authenticate() first.",
                suggestion="Use OAuth token exchange to get an access token",
            )
        if self._token_expired() and not await self.refresh():
            raise ServiceNowError(
                ServiceNowErrorType.TOKEN_EXPIRED,
                "OAuth access token has expired and could not be refreshed",
                {"expired_at": self._token_expiry.isoformat() if self._token_expiry else None},
                "Reconnect to obtain a new access token",
            )
        return {"Authorization": f"Bearer {self._access_token}"}

    async def aget_headers(self) -> Dict[str, str]:
        """Complete request headers including authorization."""
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        headers.update(await self.get_auth_header())
        return headers

    async def authenticate(self) -> bool:
        """
        Make sure usable credentials are available.

        Basic and token auth need no exchange. OAuth reuses a still-valid
        token, otherwise performs a refresh-token or client-credentials grant.

        Returns:
            True if a usable token is available, False otherwise
        """
        if self.auth.type != AuthType.OAUTH:
            return True
        if self._access_token and not self._token_expired():
            return True
        if self._refresh_token and await self.refresh():
            return True
        return await self._request_token({"grant_type": "client_credentials"})

    async def refresh(self) -> bool:
        """
        Refresh the access token using the refresh token if available,
        falling back to a fresh client-credentials grant.

        Returns:
            True if token refresh successful, False otherwise
        """
        if self.auth.type != AuthType.OAUTH:
            return False
        if self._refresh_token:
            ok = await self._request_token(
                {"grant_type": "refresh_token", "refresh_token": self._refresh_token}
            )
            if ok:
                return True
            logger.warning("Refresh token grant failed; trying client credentials")
        return await self._request_token({"grant_type": "client_credentials"})

    async def _request_token(self, grant: Dict[str, str]) -> bool:
        data = {
            **grant,
            "client_id": self.auth.oauth.client_id,
            "client_secret": self.auth.oauth.client_secret,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.token_url,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
                response.raise_for_status()
                token_info = TokenInfo(**response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"OAuth {grant['grant_type']} grant failed: {e}")
            return False

        self.set_access_token(token_info.access_token, token_info.expires_in)
        if token_info.refresh_token:
            self._refresh_token = token_info.refresh_token
        logger.info(f"OAuth {grant['grant_type']} grant successful")
        return True
