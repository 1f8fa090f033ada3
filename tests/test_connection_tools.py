"""
Tests for the connect, disconnect and status tools.
"""
import httpx
import pytest
import respx

from foundry_mcp.config import RetryPolicy
from foundry_mcp.servicenow.connection_manager import ConnectionManager
from foundry_mcp.tools.connection import (
    NO_SESSION_TEXT,
    ConnectParams,
    DisconnectParams,
    StatusParams,
    servicenow_connect,
    servicenow_disconnect,
    servicenow_status,
)
from test_utils import (
    BASE_URL,
    MOCK_AUTH_ERROR,
    MOCK_BUILD_TAG,
    MOCK_CURRENT_USER,
    MOCK_USER_RECORD,
    MOCK_USER_ROLES,
)


@pytest.fixture
def manager():
    return ConnectionManager(retry_policy=RetryPolicy(initial_delay=0.0, max_delay=0.0))


@pytest.mark.asyncio
@respx.mock
async def test_connect_reports_session(settings, manager):
    respx.get(f"{BASE_URL}/api/now/table/sys_properties").mock(
        return_value=httpx.Response(200, json=MOCK_BUILD_TAG)
    )
    respx.get(f"{BASE_URL}/api/now/ui/user/current_user").mock(
        return_value=httpx.Response(200, json=MOCK_CURRENT_USER)
    )
    respx.get(f"{BASE_URL}/api/now/table/sys_user/user001").mock(
        return_value=httpx.Response(200, json=MOCK_USER_RECORD)
    )
    respx.get(f"{BASE_URL}/api/now/table/sys_user_has_role").mock(
        return_value=httpx.Response(200, json=MOCK_USER_ROLES)
    )

    result = await servicenow_connect(
        settings,
        manager,
        ConnectParams.model_validate(
            {"instance": "dev12345.service-now.com", "authType": "basic", "username": "admin", "password": "secret"}
        ),
    )

    assert not result.is_error
    text = result.text
    assert text.startswith("Connected to ServiceNow instance")
    assert f"Instance: {BASE_URL}" in text
    assert "Version: Vancouver" in text
    assert "User: admin" in text
    assert "Roles: admin, itil, security_admin" in text
    assert "secret" not in text


@pytest.mark.asyncio
@respx.mock
async def test_connect_failure(settings, manager):
    respx.get(f"{BASE_URL}/api/now/table/sys_properties").mock(
        return_value=httpx.Response(401, json=MOCK_AUTH_ERROR)
    )

    result = await servicenow_connect(
        settings,
        manager,
        ConnectParams(instance=BASE_URL, username="admin", password="wrong"),
    )

    assert result.is_error
    assert result.text.startswith("Connection failed: Authentication failed. Check your credentials.")
    assert "Suggestion: Verify username/password" in result.text
    assert not manager.is_connected()


@pytest.mark.asyncio
async def test_status_not_connected(settings, connections):
    result = await servicenow_status(settings, connections, StatusParams())
    assert not result.is_error
    assert result.text.startswith(NO_SESSION_TEXT)
    assert "servicenow_connect" in result.text


@pytest.mark.asyncio
async def test_status_connected(settings, connections, make_session, mock_client):
    connections.register(make_session("https://other.service-now.com", user_name="ops"), mock_client)
    connections.register(make_session(), mock_client)

    result = await servicenow_status(settings, connections, StatusParams())

    text = result.text
    assert f"Active Instance: {BASE_URL}" in text
    assert "Version: Vancouver" in text
    assert "User: admin" in text
    assert "Other Sessions: 1" in text
    assert "  - https://other.service-now.com (ops)" in text


@pytest.mark.asyncio
async def test_disconnect_active(settings, connected):
    result = await servicenow_disconnect(settings, connected, DisconnectParams())

    assert result.text == f"Disconnected from {BASE_URL}"
    assert not connected.is_connected()

    status = await servicenow_status(settings, connected, StatusParams())
    assert status.text.startswith(NO_SESSION_TEXT)


@pytest.mark.asyncio
async def test_disconnect_when_not_connected(settings, connections):
    result = await servicenow_disconnect(settings, connections, DisconnectParams())
    assert not result.is_error
    assert result.text == NO_SESSION_TEXT


@pytest.mark.asyncio
async def test_disconnect_unknown_instance(settings, connected):
    result = await servicenow_disconnect(
        settings, connected, DisconnectParams(instance="nowhere.service-now.com")
    )
    assert result.is_error
    assert result.text == "No matching session found to disconnect."
    assert connected.is_connected()
