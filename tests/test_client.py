"""
Tests for the ServiceNow HTTP client: URL normalization, error
classification, retry/backoff and the convenience queries.
"""
import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from foundry_mcp.config import AuthConfig, AuthType, OAuthConfig, RetryPolicy, TokenAuthConfig
from foundry_mcp.servicenow.client import (
    ServiceNowClient,
    is_valid_table_name,
    normalize_instance_url,
    parse_version,
)
from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from test_utils import (
    BASE_URL,
    MOCK_AUTH_ERROR,
    MOCK_BUILD_TAG,
    MOCK_CURRENT_USER,
    MOCK_NOT_FOUND,
    MOCK_USER_RECORD,
    MOCK_USER_ROLES,
)

INCIDENT_URL = f"{BASE_URL}/api/now/table/incident"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("dev12345.service-now.com", "https://dev12345.service-now.com"),
        ("  DEV12345.Service-Now.com/ ", "https://dev12345.service-now.com"),
        ("http://dev12345.service-now.com", "https://dev12345.service-now.com"),
        ("https://dev12345.service-now.com///", "https://dev12345.service-now.com"),
    ],
)
def test_normalize_instance_url(raw, expected):
    normalized = normalize_instance_url(raw)
    assert normalized == expected
    assert normalize_instance_url(normalized) == normalized


def test_parse_version():
    assert parse_version("glide-vancouver-07-06-2023__patch2") == "Vancouver"
    assert parse_version("GLIDE-washingtondc-12-2023") == "Washingtondc"
    assert parse_version("custom-build") == "Custom-build"


@pytest.mark.asyncio
@respx.mock
async def test_basic_auth_header(snow_client):
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(200, json={"result": []}))

    await snow_client.request("/api/now/table/incident")

    expected = base64.b64encode(b"admin:secret").decode("ascii")
    request = route.calls[0].request
    assert request.headers["Authorization"] == f"Basic {expected}"
    assert request.headers["Accept"] == "application/json"


@pytest.mark.asyncio
@respx.mock
async def test_token_auth_header():
    client = ServiceNowClient(
        BASE_URL, AuthConfig(type=AuthType.TOKEN, token=TokenAuthConfig(token="tok123"))
    )
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(200, json={}))

    await client.request("/api/now/table/incident")

    assert route.calls[0].request.headers["Authorization"] == "Bearer tok123"


@pytest.mark.asyncio
async def test_oauth_without_token_fails_before_sending():
    client = ServiceNowClient(
        BASE_URL,
        AuthConfig(type=AuthType.OAUTH, oauth=OAuthConfig(client_id="id", client_secret="sec")),
    )
    with respx.mock(assert_all_called=False) as mock:
        route = mock.get(INCIDENT_URL)
        with pytest.raises(ServiceNowError) as exc_info:
            await client.request("/api/now/table/incident")
    assert exc_info.value.type == ServiceNowErrorType.AUTHENTICATION_FAILED
    assert not route.called


@pytest.mark.asyncio
@respx.mock
async def test_oauth_with_token_uses_bearer():
    client = ServiceNowClient(
        BASE_URL,
        AuthConfig(type=AuthType.OAUTH, oauth=OAuthConfig(client_id="id", client_secret="sec")),
    )
    client.set_access_token("oauth-token", expires_in=1800)
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(200, json={}))

    await client.request("/api/now/table/incident")

    assert route.calls[0].request.headers["Authorization"] == "Bearer oauth-token"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, expected",
    [
        (401, ServiceNowErrorType.AUTHENTICATION_FAILED),
        (403, ServiceNowErrorType.ACL_DENIED),
        (404, ServiceNowErrorType.TABLE_NOT_ACCESSIBLE),
        (429, ServiceNowErrorType.RATE_LIMITED),
        (500, ServiceNowErrorType.INSTANCE_UNAVAILABLE),
        (502, ServiceNowErrorType.INSTANCE_UNAVAILABLE),
        (503, ServiceNowErrorType.INSTANCE_UNAVAILABLE),
        (504, ServiceNowErrorType.INSTANCE_UNAVAILABLE),
        (400, ServiceNowErrorType.UNKNOWN_ERROR),
    ],
)
async def test_status_classification(snow_client, status, expected):
    with respx.mock:
        respx.get(INCIDENT_URL).mock(return_value=httpx.Response(status, json={}))
        with pytest.raises(ServiceNowError) as exc_info:
            await snow_client.request("/api/now/table/incident")
    assert exc_info.value.type == expected
    assert exc_info.value.details["status"] == status


@pytest.mark.asyncio
@respx.mock
async def test_error_message_from_body(snow_client):
    respx.get(f"{BASE_URL}/api/now/table/bogus_table").mock(
        return_value=httpx.Response(404, json=MOCK_NOT_FOUND)
    )
    with pytest.raises(ServiceNowError) as exc_info:
        await snow_client.request("/api/now/table/bogus_table")
    assert "Invalid table bogus_table" in exc_info.value.message


@pytest.mark.asyncio
@respx.mock
async def test_non_json_error_body_uses_reason_phrase(snow_client):
    respx.get(INCIDENT_URL).mock(return_value=httpx.Response(403, text="<html>nope</html>"))
    with pytest.raises(ServiceNowError) as exc_info:
        await snow_client.request("/api/now/table/incident")
    assert exc_info.value.type == ServiceNowErrorType.ACL_DENIED
    assert "Forbidden" in exc_info.value.message


@pytest.mark.asyncio
@respx.mock
async def test_timeout_maps_to_instance_unavailable(snow_client):
    respx.get(INCIDENT_URL).mock(side_effect=httpx.ConnectTimeout)
    with pytest.raises(ServiceNowError) as exc_info:
        await snow_client.request("/api/now/table/incident", timeout=7)
    assert exc_info.value.type == ServiceNowErrorType.INSTANCE_UNAVAILABLE
    assert "timed out after 7s" in exc_info.value.message


@pytest.mark.asyncio
@respx.mock
async def test_connect_error_maps_to_instance_unavailable(snow_client):
    respx.get(INCIDENT_URL).mock(side_effect=httpx.ConnectError)
    with pytest.raises(ServiceNowError) as exc_info:
        await snow_client.request("/api/now/table/incident")
    assert exc_info.value.type == ServiceNowErrorType.INSTANCE_UNAVAILABLE
    assert exc_info.value.suggestion


@pytest.mark.asyncio
@respx.mock
async def test_empty_body_returns_empty_dict(snow_client):
    respx.delete(f"{INCIDENT_URL}/inc001").mock(return_value=httpx.Response(204))
    assert await snow_client.request("/api/now/table/incident/inc001", "DELETE") == {}


@pytest.mark.asyncio
@respx.mock
async def test_retry_until_exhausted_with_capped_backoff(basic_auth):
    policy = RetryPolicy(max_retries=5, initial_delay=10.0, max_delay=30.0, backoff_multiplier=2.0)
    client = ServiceNowClient(BASE_URL, basic_auth, retry_policy=policy)
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(503, json={}))

    with patch.object(ServiceNowClient, "_backoff", new_callable=AsyncMock) as backoff:
        with pytest.raises(ServiceNowError) as exc_info:
            await client.request_with_retry("/api/now/table/incident")

    assert exc_info.value.type == ServiceNowErrorType.INSTANCE_UNAVAILABLE
    assert route.call_count == 6
    delays = [c.args[0] for c in backoff.await_args_list]
    assert delays == [10.0, 20.0, 30.0, 30.0, 30.0]
    assert delays == sorted(delays)


@pytest.mark.asyncio
@respx.mock
async def test_retry_default_policy_delays(basic_auth):
    client = ServiceNowClient(BASE_URL, basic_auth)
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(429, json={}))

    with patch.object(ServiceNowClient, "_backoff", new_callable=AsyncMock) as backoff:
        with pytest.raises(ServiceNowError) as exc_info:
            await client.request_with_retry("/api/now/table/incident")

    assert exc_info.value.type == ServiceNowErrorType.RATE_LIMITED
    assert route.call_count == 4
    assert [c.args[0] for c in backoff.await_args_list] == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
@respx.mock
async def test_retry_recovers_after_transient_failure(snow_client):
    route = respx.get(INCIDENT_URL)
    route.side_effect = [
        httpx.Response(503, json={}),
        httpx.Response(200, json={"result": [{"sys_id": "inc001"}]}),
    ]

    result = await snow_client.request_with_retry("/api/now/table/incident")

    assert result == {"result": [{"sys_id": "inc001"}]}
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_non_retryable_error_is_not_retried(snow_client):
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(401, json=MOCK_AUTH_ERROR))

    with patch.object(ServiceNowClient, "_backoff", new_callable=AsyncMock) as backoff:
        with pytest.raises(ServiceNowError) as exc_info:
            await snow_client.request_with_retry("/api/now/table/incident")

    assert exc_info.value.type == ServiceNowErrorType.AUTHENTICATION_FAILED
    assert route.call_count == 1
    backoff.assert_not_awaited()


@pytest.mark.asyncio
@respx.mock
async def test_query_table_params(snow_client):
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(200, json={"result": []}))

    await snow_client.query_table("incident", "active=true", ["number", "state"], 5)

    params = route.calls[0].request.url.params
    assert params["sysparm_query"] == "active=true"
    assert params["sysparm_fields"] == "number,state"
    assert params["sysparm_limit"] == "5"


@pytest.mark.asyncio
@respx.mock
async def test_query_table_omits_empty_query(snow_client):
    route = respx.get(INCIDENT_URL).mock(return_value=httpx.Response(200, json={"result": []}))

    await snow_client.query_table("incident")

    params = route.calls[0].request.url.params
    assert "sysparm_query" not in params
    assert "sysparm_fields" not in params
    assert params["sysparm_limit"] == "100"


@pytest.mark.parametrize(
    "table, valid",
    [
        ("incident", True),
        ("x_snc_aia_execution", True),
        ("sys_user_has_role/", False),
        ("sys_user_has_role?x=1", False),
        ("sys_user_has_role/abc123", False),
        ("sys_user_has_role\n", False),
        ("../ui/user/current_user", False),
        ("", False),
    ],
)
def test_is_valid_table_name(table, valid):
    assert is_valid_table_name(table) is valid


@pytest.mark.asyncio
@respx.mock
@pytest.mark.parametrize("table", ["sys_user_has_role/", "sys_user_has_role?x=1", "sys_user_has_role/abc123"])
async def test_query_table_rejects_path_suffixes(snow_client, table):
    with pytest.raises(ServiceNowError) as exc_info:
        await snow_client.query_table(table)

    assert exc_info.value.type == ServiceNowErrorType.QUERY_ERROR
    assert respx.calls.call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_test_connection(snow_client):
    respx.get(f"{BASE_URL}/api/now/table/sys_properties").mock(
        return_value=httpx.Response(200, json=MOCK_BUILD_TAG)
    )
    info = await snow_client.test_connection()
    assert info.version == "Vancouver"
    assert info.build_tag.startswith("glide-vancouver")


@pytest.mark.asyncio
@respx.mock
async def test_test_connection_without_build_tag(snow_client):
    respx.get(f"{BASE_URL}/api/now/table/sys_properties").mock(
        return_value=httpx.Response(200, json={"result": []})
    )
    info = await snow_client.test_connection()
    assert info.version == "Unknown"


@pytest.mark.asyncio
@respx.mock
async def test_get_current_user(snow_client):
    respx.get(f"{BASE_URL}/api/now/ui/user/current_user").mock(
        return_value=httpx.Response(200, json=MOCK_CURRENT_USER)
    )
    respx.get(f"{BASE_URL}/api/now/table/sys_user/user001").mock(
        return_value=httpx.Response(200, json=MOCK_USER_RECORD)
    )
    roles_route = respx.get(f"{BASE_URL}/api/now/table/sys_user_has_role").mock(
        return_value=httpx.Response(200, json=MOCK_USER_ROLES)
    )

    user = await snow_client.get_current_user()

    assert user.sys_id == "user001"
    assert user.user_name == "admin"
    assert user.email == "admin@example.com"
    assert user.active is True
    assert user.roles == ["admin", "itil", "security_admin"]
    assert roles_route.calls[0].request.url.params["sysparm_query"] == "user=user001"


@pytest.mark.asyncio
@respx.mock
async def test_get_current_user_without_session_user(snow_client):
    respx.get(f"{BASE_URL}/api/now/ui/user/current_user").mock(
        return_value=httpx.Response(200, json={"result": {}})
    )
    with pytest.raises(ServiceNowError) as exc_info:
        await snow_client.get_current_user()
    assert exc_info.value.type == ServiceNowErrorType.AUTHENTICATION_FAILED
    assert exc_info.value.message == "Could not determine current user"
