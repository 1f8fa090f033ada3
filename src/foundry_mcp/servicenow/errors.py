"""Typed error taxonomy for ServiceNow access.

Every failure that leaves the HTTP client is a ``ServiceNowError`` carrying one
of the ``ServiceNowErrorType`` values below. Callers never see raw httpx
exceptions or HTTP status codes.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ServiceNowErrorType(str, Enum):
    """Flat classification of everything that can go wrong."""

    # Connection
    CONNECTION_FAILED = "connection_failed"
    AUTHENTICATION_FAILED = "authentication_failed"
    TOKEN_EXPIRED = "token_expired"
    INSTANCE_UNAVAILABLE = "instance_unavailable"
    INVALID_INSTANCE = "invalid_instance"

    # Permissions
    ACL_DENIED = "acl_denied"
    ROLE_REQUIRED = "role_required"
    TABLE_NOT_ACCESSIBLE = "table_not_accessible"

    # Execution
    SCRIPT_TIMEOUT = "script_timeout"
    SCRIPT_ERROR = "script_error"
    SCRIPT_BLOCKED = "script_blocked"
    QUERY_ERROR = "query_error"

    # Rate limiting
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"

    # Safety
    DANGEROUS_OPERATION = "dangerous_operation"
    SENSITIVE_DATA = "sensitive_data"

    UNKNOWN_ERROR = "unknown_error"


class ServiceNowError(Exception):
    """Error raised for any failed ServiceNow interaction."""

    def __init__(
        self,
        error_type: ServiceNowErrorType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message)
        self.type = error_type
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

    def __repr__(self) -> str:
        return f"ServiceNowError({self.type.value!r}, {self.message!r})"
