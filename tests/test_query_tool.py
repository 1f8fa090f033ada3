"""
Tests for the table query tool.
"""
import pytest

from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.tools.common import NOT_CONNECTED_TEXT
from foundry_mcp.tools.query import (
    QueryParams,
    build_query,
    is_restricted_table,
    resolve_fields,
    servicenow_query,
)
from test_utils import BASE_URL, MOCK_INCIDENTS


def test_build_query_defaults_to_newest_first():
    assert build_query(None, None) == "ORDERBYDESCsys_created_on"
    assert build_query("active=true", None) == "active=true^ORDERBYDESCsys_created_on"


def test_build_query_explicit_order():
    assert build_query("active=true", "number", "asc") == "active=true^ORDERBYnumber"
    assert build_query(None, "number", "desc") == "ORDERBYDESCnumber"


def test_build_query_keeps_existing_order():
    assert build_query("active=true^ORDERBYnumber", None) == "active=true^ORDERBYnumber"


def test_resolve_fields():
    assert resolve_fields("incident", None)[0] == "sys_id"
    assert "short_description" in resolve_fields("INCIDENT", None)
    assert resolve_fields("u_custom", None) == ["sys_id", "sys_created_on", "sys_updated_on"]
    assert resolve_fields("incident", ["number"]) == ["sys_id", "number"]


def test_restricted_tables():
    assert is_restricted_table("sys_user_has_role")
    assert is_restricted_table(" OAUTH_CREDENTIAL ")
    assert not is_restricted_table("incident")


@pytest.mark.asyncio
async def test_not_connected(settings, connections):
    result = await servicenow_query(settings, connections, QueryParams(table="incident"))
    assert result.is_error
    assert result.text == NOT_CONNECTED_TEXT


@pytest.mark.asyncio
@pytest.mark.parametrize("table", ["sys_user_has_role", "discovery_credentials", "sys_certificate"])
async def test_restricted_table_refused_without_request(settings, connected, mock_client, table):
    result = await servicenow_query(settings, connected, QueryParams(table=table))

    assert result.is_error
    assert f'Access to table "{table}" is restricted' in result.text
    mock_client.query_table.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "table",
    ["sys_user_has_role/", "sys_user_has_role?x=1", "sys_user_has_role/abc123", "incident/../sys_user_has_role"],
)
async def test_table_with_path_characters_refused(settings, connected, mock_client, table):
    result = await servicenow_query(settings, connected, QueryParams(table=table))

    assert result.is_error
    assert result.text.startswith(f'Invalid table name "{table}"')
    mock_client.query_table.assert_not_awaited()
    mock_client.request_with_retry.assert_not_awaited()


@pytest.mark.asyncio
async def test_query_formats_records(settings, connected, mock_client):
    mock_client.query_table.return_value = MOCK_INCIDENTS

    result = await servicenow_query(
        settings, connected, QueryParams(table="incident", query="active=true", limit=2)
    )

    assert not result.is_error
    text = result.text
    assert f"Query Results from {BASE_URL}" in text
    assert "Found: 2 record(s) (limit reached)" in text
    assert "[1] sys_id: inc001" in text
    assert "assigned_to: Beth Anglin" in text
    assert "assigned_to: (empty)" in text
    assert "x" * 200 + "..." in text
    assert "x" * 201 not in text

    table, query, fields, limit = mock_client.query_table.await_args.args
    assert table == "incident"
    assert query == "active=true^ORDERBYDESCsys_created_on"
    assert fields[0] == "sys_id"
    assert limit == 2


@pytest.mark.asyncio
async def test_sensitive_fields_redacted(settings, connected, mock_client):
    mock_client.query_table.return_value = {
        "result": [
            {
                "sys_id": "u1",
                "user_name": "svc",
                "user_password": "hunter2",
                "api_key": "k",
                "oauth.client_secret": "s",
            }
        ]
    }

    result = await servicenow_query(
        settings,
        connected,
        QueryParams(table="sys_user", fields=["user_name", "user_password", "api_key", "oauth.client_secret"]),
    )

    text = result.text
    assert "user_name: svc" in text
    assert "user_password: [REDACTED]" in text
    assert "api_key: [REDACTED]" in text
    assert "oauth.client_secret: [REDACTED]" in text
    assert "hunter2" not in text


@pytest.mark.asyncio
@pytest.mark.parametrize("requested, sent", [(None, 50), (0, 50), (-5, 1), (10000, 500)])
async def test_limit_clamped(settings, connected, mock_client, requested, sent):
    await servicenow_query(settings, connected, QueryParams(table="incident", limit=requested))
    assert mock_client.query_table.await_args.args[3] == sent


@pytest.mark.asyncio
async def test_no_records(settings, connected, mock_client):
    result = await servicenow_query(
        settings, connected, QueryParams(table="incident", query="priority=9")
    )
    assert not result.is_error
    assert 'No records found in "incident" matching query: priority=9.' in result.text


@pytest.mark.asyncio
async def test_table_not_accessible(settings, connected, mock_client):
    mock_client.query_table.side_effect = ServiceNowError(
        ServiceNowErrorType.TABLE_NOT_ACCESSIBLE,
        "Resource not found: Invalid table bogus",
        suggestion="Verify the table name or endpoint exists",
    )

    result = await servicenow_query(settings, connected, QueryParams(table="bogus"))

    assert result.is_error
    assert result.text.startswith('Failed to query table "bogus": Resource not found')
    assert "Possible causes:" in result.text
    assert "Suggestion: Verify the table name or endpoint exists" in result.text


@pytest.mark.asyncio
async def test_query_touches_session(settings, connected, mock_client):
    session = connected.get_active_session()
    before = session.last_used_at
    await servicenow_query(settings, connected, QueryParams(table="incident"))
    assert session.last_used_at >= before


def test_params_accept_camel_case():
    params = QueryParams.model_validate({"table": "incident", "orderBy": "number", "orderDirection": "asc"})
    assert params.order_by == "number"
    assert params.order_direction == "asc"
