"""
Tests for ordered candidate fallback.
"""
import pytest

from foundry_mcp.servicenow.errors import ServiceNowError, ServiceNowErrorType
from foundry_mcp.servicenow.fallback import first_success


@pytest.mark.asyncio
async def test_first_success_wins():
    calls = []

    async def resolver(candidate):
        calls.append(candidate)
        if candidate == "a":
            raise ServiceNowError(ServiceNowErrorType.TABLE_NOT_ACCESSIBLE, "missing")
        if candidate == "b":
            return None
        return candidate.upper()

    outcome = await first_success(["a", "b", "c", "d"], resolver)

    assert outcome.found
    assert outcome.candidate == "c"
    assert outcome.value == "C"
    assert outcome.tried == ["a", "b", "c"]
    assert calls == ["a", "b", "c"]
    assert outcome.errors["a"].type == ServiceNowErrorType.TABLE_NOT_ACCESSIBLE


@pytest.mark.asyncio
async def test_nothing_found():
    async def resolver(candidate):
        return None

    outcome = await first_success(["x", "y"], resolver)

    assert not outcome.found
    assert outcome.value is None
    assert outcome.tried == ["x", "y"]


@pytest.mark.asyncio
async def test_unexpected_errors_propagate():
    async def resolver(candidate):
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        await first_success(["x"], resolver)
