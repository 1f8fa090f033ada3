"""
ServiceNow HTTP client.

Async client used by every tool. It:
- Normalizes the instance URL (the canonical form is the session key)
- Attaches auth + default headers via AuthManager
- Translates timeouts, transport failures and non-2xx responses into
  ServiceNowError
- Retries transient error types with exponential backoff (tenacity)
"""
import asyncio
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from foundry_mcp.auth.auth_manager import AuthManager
from foundry_mcp.config import AuthConfig, RetryPolicy
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.servicenow.models import InstanceInfo, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_BUILD_TAG_VERSION = re.compile(r"glide-(\w+)-", re.IGNORECASE)
_TABLE_NAME = re.compile(r"[A-Za-z0-9_]+")


def is_valid_table_name(table: str) -> bool:
    """Table names are plain identifiers; anything else would change the request path."""
    return bool(_TABLE_NAME.fullmatch(table or ""))


def normalize_instance_url(url: str) -> str:
    """
    Canonical instance URL: trimmed, lowercased, no trailing slash, https.

    Idempotent: normalizing an already normalized URL returns it unchanged.
    """
    normalized = url.strip().lower().rstrip("/")
    if normalized.startswith("http://"):
        normalized = "https://" + normalized[len("http://"):]
    elif not normalized.startswith("https://"):
        normalized = f"https://{normalized}"
    return normalized


def parse_version(build_tag: str) -> str:
    """Extract the release family from a build tag like ``glide-vancouver-12-15-2025``."""
    match = _BUILD_TAG_VERSION.search(build_tag or "")
    version = match.group(1) if match else build_tag
    return version[:1].upper() + version[1:]


def reference_value(value: Any) -> Any:
    """Flatten a reference field (``{"value": ..., "display_value": ...}``) to a plain value."""
    if isinstance(value, dict):
        return value.get("display_value") or value.get("value")
    return value


def _error_for_status(status: int, message: str, body: Dict[str, Any]) -> ServiceNowError:
    details = {"status": status, "body": body}
    if status == 401:
        return ServiceNowError(
            ServiceNowErrorType.AUTHENTICATION_FAILED,
            "Authentication failed. Check your credentials.",
            details,
            "Verify username/password or refresh your OAuth token",
        )
    if status == 403:
        return ServiceNowError(
            ServiceNowErrorType.ACL_DENIED,
            f"Access denied: {message}",
            details,
            "Check that your user has the required roles and ACL permissions",
        )
    if status == 404:
        return ServiceNowError(
            ServiceNowErrorType.TABLE_NOT_ACCESSIBLE,
            f"Resource not found: {message}",
            details,
            "Verify the table name or endpoint exists",
        )
    if status == 429:
        return ServiceNowError(
            ServiceNowErrorType.RATE_LIMITED,
            "Rate limit exceeded. Too many requests.",
            details,
            "Wait a moment before retrying",
        )
    if status >= 500:
        return ServiceNowError(
            ServiceNowErrorType.INSTANCE_UNAVAILABLE,
            f"ServiceNow instance error: {message}",
            details,
            "The instance may be under maintenance. Try again later.",
        )
    return ServiceNowError(
        ServiceNowErrorType.UNKNOWN_ERROR,
        f"Request failed with status {status}: {message}",
        details,
    )


class ServiceNowClient:
    """Client for one ServiceNow instance."""

    def __init__(
        self,
        instance_url: str,
        auth_config: AuthConfig,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.instance_url = normalize_instance_url(instance_url)
        self.auth_config = auth_config
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.auth_manager = AuthManager(auth_config, self.instance_url, timeout=timeout)

    def set_access_token(self, token: str, expires_in: Optional[int] = None) -> None:
        self.auth_manager.set_access_token(token, expires_in)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            verify=True,
            http2=False,
            event_hooks={
                "request": [self._log_request],
                "response": [self._log_response],
            },
        )

    @staticmethod
    async def _log_request(request: httpx.Request) -> None:
        logger.debug(f"Starting request: {request.method} {request.url}")

    @staticmethod
    async def _log_response(response: httpx.Response) -> None:
        logger.debug(f"Received response: {response.status_code} for {response.request.url}")

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Make a single HTTP request to the instance.

        Args:
            endpoint: Path below the instance URL, e.g. ``/api/now/table/incident``
            method: HTTP method
            params: Query parameters
            json: JSON request body
            headers: Extra headers
            timeout: Request timeout in seconds (default: client timeout)

        Returns:
            Decoded JSON body ({} for an empty body)

        Raises:
            ServiceNowError: For every failure, classified by type
        """
        url = f"{self.instance_url}{endpoint}"
        timeout = timeout or self.timeout
        all_headers = await self.auth_manager.aget_headers()
        if headers:
            all_headers.update(headers)

        start_time = time.monotonic()
        try:
            async with self._client(timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json,
                    headers=all_headers,
                )
        except httpx.TimeoutException as e:
            raise ServiceNowError(
                ServiceNowErrorType.INSTANCE_UNAVAILABLE,
                f"Request timed out after {timeout:g}s",
                {"endpoint": endpoint, "timeout": timeout},
                "Check instance availability or increase timeout",
            ) from e
        except httpx.TransportError as e:
            raise ServiceNowError(
                ServiceNowErrorType.INSTANCE_UNAVAILABLE,
                f"Cannot connect to {self.instance_url}",
                {"original_error": str(e)},
                "Verify the instance URL is correct and the instance is accessible",
            ) from e
        except Exception as e:
            raise ServiceNowError(
                ServiceNowErrorType.UNKNOWN_ERROR,
                f"Request failed: {e}",
                {"endpoint": endpoint},
            ) from e

        duration = time.monotonic() - start_time
        logger.info(f"{method} {endpoint} completed in {duration:.2f}s with status {response.status_code}")

        if not response.is_success:
            raise self._classify(response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ServiceNowError(
                ServiceNowErrorType.UNKNOWN_ERROR,
                f"Invalid JSON response from {endpoint}",
                {"endpoint": endpoint, "status": response.status_code},
            ) from e

    @staticmethod
    def _classify(response: httpx.Response) -> ServiceNowError:
        body: Dict[str, Any] = {}
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            pass  # not JSON, fall back to the reason phrase
        error = body.get("error")
        message = (
            (error.get("message") if isinstance(error, dict) else None)
            or response.reason_phrase
            or "Unknown error"
        )
        return _error_for_status(response.status_code, message, body)

    async def _backoff(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _is_retryable(self, exc: BaseException) -> bool:
        return (
            isinstance(exc, ServiceNowError)
            and exc.type in self.retry_policy.retryable_error_types
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        reason = getattr(getattr(exc, "type", None), "value", exc)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(f"Attempt {retry_state.attempt_number} failed with {reason}; retrying in {delay:.2f}s")

    async def request_with_retry(self, endpoint: str, method: str = "GET", **kwargs: Any) -> Dict[str, Any]:
        """
        ``request`` with retries for transient error types.

        Retryable errors are retried up to ``max_retries`` times (so at most
        ``max_retries + 1`` attempts), waiting ``initial_delay`` and multiplying
        by ``backoff_multiplier`` each time, capped at ``max_delay``. Other
        errors propagate immediately. Exhaustion re-raises the last error.
        """
        policy = self.retry_policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=wait_exponential(
                multiplier=policy.initial_delay,
                exp_base=policy.backoff_multiplier,
                max=policy.max_delay,
            ),
            retry=retry_if_exception(self._is_retryable),
            sleep=self._backoff,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self.request(endpoint, method, **kwargs)
        return result

    async def query_table(
        self,
        table: str,
        query: Optional[str] = None,
        fields: Optional[List[str]] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """Query a table with an encoded query."""
        if not is_valid_table_name(table):
            raise ServiceNowError(
                ServiceNowErrorType.QUERY_ERROR,
                f"Invalid table name: {table!r}",
                {"table": table},
                "Table names contain only letters, digits and underscores",
            )
        params: Dict[str, Any] = {}
        if query:
            params["sysparm_query"] = query
        if fields:
            params["sysparm_fields"] = ",".join(fields)
        params["sysparm_limit"] = str(limit)
        return await self.request_with_retry(f"/api/now/table/{table}", params=params)

    async def test_connection(self) -> InstanceInfo:
        """Verify connectivity and read the instance version from the build tag."""
        response = await self.query_table(
            "sys_properties", "name=glide.buildtag", ["value"], 1
        )
        rows = response.get("result") or []
        build_tag = (rows[0].get("value") if rows else None) or "unknown"
        return InstanceInfo(version=parse_version(build_tag), build_tag=build_tag)

    async def get_current_user(self) -> UserInfo:
        """Resolve the authenticated user, its record and its role names."""
        session_response = await self.request_with_retry("/api/now/ui/user/current_user")
        user_sys_id = (session_response.get("result") or {}).get("user_sys_id")
        if not user_sys_id:
            raise ServiceNowError(
                ServiceNowErrorType.AUTHENTICATION_FAILED,
                "Could not determine current user",
                {"response": session_response},
            )

        user_response = await self.request_with_retry(
            f"/api/now/table/sys_user/{user_sys_id}",
            params={"sysparm_fields": "sys_id,user_name,first_name,last_name,email,active"},
        )
        user = user_response.get("result") or {}

        roles_response = await self.query_table(
            "sys_user_has_role", f"user={user_sys_id}", ["role.name"]
        )
        roles: List[str] = []
        for row in roles_response.get("result") or []:
            name = reference_value(row.get("role.name") or row.get("role"))
            if name:
                roles.append(str(name))

        return UserInfo(
            sys_id=user.get("sys_id") or user_sys_id,
            user_name=user.get("user_name") or "",
            first_name=user.get("first_name") or "",
            last_name=user.get("last_name") or "",
            email=user.get("email") or "",
            roles=roles,
            active=user.get("active") in ("true", True),
        )
