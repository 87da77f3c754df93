"""
Core module - configuration, database, request context, and response formatting.
"""
from .config import Settings, get_settings
from .db import Base, create_engine_from_settings, create_session_factory, create_tables
from .request_context import (
    GUEST_SESSION_HEADER,
    RequestContext,
    resolve_request_context,
    require_role,
    require_roles,
    get_request_context,
    get_optional_request_context,
    verify_access_token,
    AuthenticationError,
    AuthorizationError,
)
from .responses import (
    ErrorDetail,
    ErrorCodes,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "create_engine_from_settings",
    "create_session_factory",
    "create_tables",
    # Request Context
    "GUEST_SESSION_HEADER",
    "RequestContext",
    "resolve_request_context",
    "require_role",
    "require_roles",
    "get_request_context",
    "get_optional_request_context",
    "verify_access_token",
    "AuthenticationError",
    "AuthorizationError",
    # Responses
    "ErrorDetail",
    "ErrorCodes",
    "success_response",
    "error_response",
]
