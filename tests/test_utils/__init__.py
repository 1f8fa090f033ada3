"""Test utilities for the ServiceNow Foundry MCP server."""

from .snow_client import BASE_URL, make_mock_snow_client, table_router
from .mock_data import (
    MOCK_AIA_EXECUTIONS,
    MOCK_AIA_TOOL_CALLS,
    MOCK_AUTH_ERROR,
    MOCK_BUILD_TAG,
    MOCK_CURRENT_USER,
    MOCK_INCIDENTS,
    MOCK_NOT_FOUND,
    MOCK_SYSLOGS,
    MOCK_USER_RECORD,
    MOCK_USER_ROLES,
)

__all__ = [
    'BASE_URL',
    'make_mock_snow_client',
    'table_router',
    'MOCK_AIA_EXECUTIONS',
    'MOCK_AIA_TOOL_CALLS',
    'MOCK_AUTH_ERROR',
    'MOCK_BUILD_TAG',
    'MOCK_CURRENT_USER',
    'MOCK_INCIDENTS',
    'MOCK_NOT_FOUND',
    'MOCK_SYSLOGS',
    'MOCK_USER_RECORD',
    'MOCK_USER_ROLES',
]
