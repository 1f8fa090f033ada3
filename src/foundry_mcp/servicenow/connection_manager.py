"""
Connection/session manager.

Each manager owns its own SessionStore, so two managers never share
sessions. Sessions are keyed by normalized instance URL and live only in
memory.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from foundry_mcp.auth.credentials import CredentialProfile, CredentialStore, build_auth_config
from foundry_mcp.config import AuthType, RetryPolicy, Settings
from foundry_mcp.servicenow.client import ServiceNowClient, normalize_instance_url
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.servicenow.models import (
    ConnectionErrorInfo,
    ConnectionResult,
    ConnectionSession,
    ConnectionStatus,
    SessionSummary,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionStore:
    """Registry of instance URL -> (session, client) plus the active key."""

    sessions: Dict[str, Tuple[ConnectionSession, ServiceNowClient]] = field(default_factory=dict)
    active_key: Optional[str] = None

    def put(self, session: ConnectionSession, client: ServiceNowClient) -> None:
        self.sessions[session.instance_url] = (session, client)
        self.active_key = session.instance_url

    def remove(self, key: str) -> bool:
        if key not in self.sessions:
            return False
        del self.sessions[key]
        if self.active_key == key:
            self.active_key = None
        return True

    def active(self) -> Optional[Tuple[ConnectionSession, ServiceNowClient]]:
        if self.active_key is None:
            return None
        return self.sessions.get(self.active_key)


class ConnectionManager:
    """Connects to instances and tracks the active session."""

    def __init__(
        self,
        credential_store: Optional[CredentialStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
    ):
        self.credential_store = credential_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.store = SessionStore()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConnectionManager":
        return cls(
            credential_store=CredentialStore(settings.credentials_path),
            retry_policy=settings.retry_policy(),
            timeout=settings.request_timeout,
        )

    def _resolve_profile(
        self, profile_name: Optional[str], has_explicit_material: bool
    ) -> Tuple[Optional[CredentialProfile], Optional[str]]:
        if self.credential_store is None:
            if profile_name:
                raise ServiceNowError(
                    ServiceNowErrorType.AUTHENTICATION_FAILED,
                    f"Profile '{profile_name}' not found",
                    {"profile": profile_name},
                    "Configure credentials in ~/.servicenow/credentials.json",
                )
            return None, None

        if profile_name:
            profile = self.credential_store.get_profile(profile_name)
            if profile is None:
                raise ServiceNowError(
                    ServiceNowErrorType.AUTHENTICATION_FAILED,
                    f"Profile '{profile_name}' not found",
                    {"profile": profile_name, "path": str(self.credential_store.path)},
                    f"Add a '{profile_name}' profile to {self.credential_store.path}",
                )
            return profile, profile_name

        # The file's default profile applies only when nothing explicit was given
        if has_explicit_material:
            return None, None
        credentials = self.credential_store.load()
        if credentials is None or not credentials.default:
            return None, None
        return credentials.profiles.get(credentials.default), credentials.default

    def create_client(self, instance_url: str, auth_config) -> ServiceNowClient:
        return ServiceNowClient(
            instance_url,
            auth_config,
            retry_policy=self.retry_policy,
            timeout=self.timeout,
        )

    async def connect(
        self,
        instance: Optional[str] = None,
        auth_type: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> ConnectionResult:
        """
        Connect to an instance and make it the active session.

        Never raises: failures come back as ``success=False`` with the typed
        error attached.
        """
        try:
            has_material = any((username, password, token, client_id, client_secret))
            credential_profile, profile_name = self._resolve_profile(profile, has_material)

            instance = instance or (credential_profile.instance if credential_profile else None)
            if not instance or not instance.strip():
                raise ServiceNowError(
                    ServiceNowErrorType.INVALID_INSTANCE,
                    "No instance URL provided",
                    suggestion="Provide the instance parameter (e.g. dev12345.service-now.com) or a profile with an instance",
                )

            auth_config = build_auth_config(
                auth_type=auth_type,
                username=username,
                password=password,
                token=token,
                client_id=client_id,
                client_secret=client_secret,
                profile=credential_profile,
                profile_name=profile_name,
            )

            instance_url = normalize_instance_url(instance)
            client = self.create_client(instance_url, auth_config)

            if auth_config.type == AuthType.OAUTH and not client.auth_manager.access_token:
                if not await client.auth_manager.authenticate():
                    raise ServiceNowError(
                        ServiceNowErrorType.AUTHENTICATION_FAILED,
                        "OAuth token exchange failed",
                        {"token_url": client.auth_manager.token_url},
                        "Verify the OAuth client id/secret and that the OAuth application is active",
                    )

            instance_info = await client.test_connection()
            user_info = await client.get_current_user()

            session = ConnectionSession(
                instance_url=instance_url,
                auth_type=auth_config.type,
                auth_config=auth_config,
                access_token=client.auth_manager.access_token,
                user_id=user_info.sys_id,
                user_name=user_info.user_name,
                user_roles=user_info.roles,
                instance_version=instance_info.version,
            )
            self.register(session, client)
            logger.info(f"Connected to {instance_url} as {user_info.user_name} (version {instance_info.version})")

            return ConnectionResult(
                success=True,
                message=f"Connected to {instance_url}",
                session=SessionSummary(
                    instance_url=instance_url,
                    instance_version=instance_info.version,
                    user=user_info.user_name,
                    roles=user_info.roles,
                ),
            )
        except ServiceNowError as e:
            logger.warning(f"Connection failed: {e.message}")
            return ConnectionResult(
                success=False,
                message=e.message,
                error=ConnectionErrorInfo(type=e.type, details=e.suggestion),
            )
        except Exception as e:
            logger.exception("Unexpected error while connecting")
            return ConnectionResult(
                success=False,
                message=f"Connection failed: {e}",
                error=ConnectionErrorInfo(type=ServiceNowErrorType.CONNECTION_FAILED),
            )

    def register(self, session: ConnectionSession, client: ServiceNowClient) -> None:
        """Store a session (replacing any for the same URL) and make it active."""
        self.store.put(session, client)

    def disconnect(self, instance_url: Optional[str] = None) -> bool:
        """Remove the named session, or the active one. False if nothing matched."""
        key = normalize_instance_url(instance_url) if instance_url else self.store.active_key
        if key is None:
            return False
        removed = self.store.remove(key)
        if removed:
            logger.info(f"Disconnected from {key}")
        return removed

    def get_active_client(self) -> Optional[ServiceNowClient]:
        active = self.store.active()
        return active[1] if active else None

    def get_client(self, instance_url: str) -> Optional[ServiceNowClient]:
        entry = self.store.sessions.get(normalize_instance_url(instance_url))
        return entry[1] if entry else None

    def get_active_session(self) -> Optional[ConnectionSession]:
        active = self.store.active()
        return active[0] if active else None

    def is_connected(self) -> bool:
        return self.store.active() is not None

    def get_all_sessions(self) -> List[ConnectionSession]:
        return [session for session, _ in self.store.sessions.values()]

    def get_status(self) -> ConnectionStatus:
        session = self.get_active_session()
        if session is None:
            return ConnectionStatus(connected=False, session_count=len(self.store.sessions))
        return ConnectionStatus(
            connected=True,
            active_instance=session.instance_url,
            user=session.user_name,
            version=session.instance_version,
            session_count=len(self.store.sessions),
        )

    def touch_session(self) -> None:
        session = self.get_active_session()
        if session is not None:
            session.last_used_at = utcnow()
