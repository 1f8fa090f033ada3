"""
Test configuration and fixtures.
"""
import os
import sys

import pytest

# Add src and tests directories to Python path
src_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
tests_dir = os.path.abspath(os.path.dirname(__file__))
sys.path.insert(0, src_dir)
sys.path.insert(0, tests_dir)

from foundry_mcp.config import AuthConfig, AuthType, BasicAuthConfig, RetryPolicy, Settings
from foundry_mcp.servicenow.client import ServiceNowClient
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.servicenow.models import ConnectionSession

BASE_URL = "https://dev12345.service-now.com"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with no credentials file and no settle delay."""
    return Settings(
        credentials_path=str(tmp_path / "credentials.json"),
        script_settle_delay=0.0,
        script_poll_interval=1.0,
        script_poll_window=0.0,
    )


@pytest.fixture
def basic_auth() -> AuthConfig:
    return AuthConfig(
        type=AuthType.BASIC,
        basic=BasicAuthConfig(username="admin", password="secret"),
    )


@pytest.fixture
def snow_client(basic_auth) -> ServiceNowClient:
    """Real client with an instant retry policy."""
    return ServiceNowClient(
        BASE_URL,
        basic_auth,
        retry_policy=RetryPolicy(initial_delay=0.0, max_delay=0.0),
        timeout=5.0,
    )


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def make_session(basic_auth):
    def _make(instance_url: str = BASE_URL, user_name: str = "admin", roles=None) -> ConnectionSession:
        return ConnectionSession(
            instance_url=instance_url,
            auth_type=AuthType.BASIC,
            auth_config=basic_auth,
            user_id="user001",
            user_name=user_name,
            user_roles=roles if roles is not None else ["admin", "itil"],
            instance_version="Vancouver",
        )
    return _make


@pytest.fixture
def mock_client():
    """Mock client for the active session; tests set query_table behavior."""
    from test_utils import make_mock_snow_client
    return make_mock_snow_client()


@pytest.fixture
def connected(connections, make_session, mock_client) -> ConnectionManager:
    """Connection manager with one active session backed by ``mock_client``."""
    connections.register(make_session(), mock_client)
    return connections


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "api: mark test as an API test")
