"""
Request Context Resolution Module

This module is the SINGLE SOURCE OF TRUTH for identity resolution.
All API routes use it to learn who is calling.

ARCHITECTURE:
    1. resolve_request_context() extracts identity from the request
    2. A Bearer token is verified as a JWT issued by the hosted auth service
    3. Anonymous callers become guests identified by the X-Guest-Session header
    4. Authorization checks (require_role) work on the resolved context

AUTH METHOD:
    - JWT Bearer token, HS256, verified with the shared JWT secret
    - An invalid token is an error, never a silent downgrade to guest
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status

from ..records import UserRole
from .config import Settings, get_settings

logger = logging.getLogger(__name__)

GUEST_SESSION_HEADER = "X-Guest-Session"


@dataclass
class RequestContext:
    """
    Resolved request context containing identity and access information.

    Members carry user_id; guests carry an empty user_id. guest_session_id is
    the X-Guest-Session header for both, so a member who just signed in can
    still reach the guest cart being merged.
    """
    user_id: str
    is_authenticated: bool = True

    email: Optional[str] = None
    role: str = UserRole.CUSTOMER.value
    brand: Optional[str] = None  # merchant's brand, from app_metadata

    guest_session_id: Optional[str] = None

    # Request metadata, written to admin audit logs
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def client_label(self) -> str:
        return f"{self.ip_address or 'unknown'} ({self.user_agent or 'no user agent'})"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when authorization fails."""
    def __init__(self, message: str, role: Optional[str] = None):
        self.message = message
        self.role = role
        super().__init__(message)


def verify_access_token(token: str, settings: Settings) -> dict:
    """
    Verify an access token and return its claims.

    Raises:
        AuthenticationError: bad signature, wrong audience, expired, or malformed
    """
    if not settings.supabase_jwt_secret:
        raise AuthenticationError("Token verification is not configured", status_code=503)
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.supabase_jwt_audience,
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired. Please sign in again.") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e


def context_from_claims(claims: dict) -> RequestContext:
    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    app_metadata = claims.get("app_metadata") or {}
    return RequestContext(
        user_id=user_id,
        is_authenticated=True,
        email=claims.get("email"),
        role=app_metadata.get("role") or UserRole.CUSTOMER.value,
        brand=app_metadata.get("brand"),
    )


def resolve_request_context(
    request: Request,
    settings: Settings,
    require_auth: bool = True,
) -> RequestContext:
    """
    Resolve the identity and context from a request.

    Args:
        request: The FastAPI request object
        settings: Settings holding the JWT secret and audience
        require_auth: If True, a missing token is an AuthenticationError

    Returns:
        RequestContext for a member, or a guest context when require_auth is False

    Raises:
        AuthenticationError: invalid token, or no token while require_auth is True
    """
    auth_header = request.headers.get("Authorization", "")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("User-Agent")
    guest_session_id = request.headers.get(GUEST_SESSION_HEADER) or None

    if auth_header.startswith("Bearer "):
        claims = verify_access_token(auth_header[7:], settings)
        ctx = context_from_claims(claims)
        ctx.ip_address = ip_address
        ctx.user_agent = user_agent
        ctx.guest_session_id = guest_session_id
        logger.debug(f"Auth via JWT: {ctx.user_id} (role={ctx.role})")
        return ctx

    if require_auth:
        raise AuthenticationError("Authentication required. Please sign in.")

    return RequestContext(
        user_id="",
        is_authenticated=False,
        guest_session_id=guest_session_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def require_role(ctx: RequestContext, allowed_roles: Iterable[UserRole | str]) -> str:
    """
    Check that the caller holds one of allowed_roles.

    Returns:
        The caller's role

    Raises:
        AuthorizationError: guest caller or role not allowed
    """
    allowed_values = [r.value if isinstance(r, UserRole) else r for r in allowed_roles]
    if not ctx.is_authenticated:
        raise AuthorizationError("Login required")
    if ctx.role not in allowed_values:
        logger.warning(
            f"Authorization failed: User {ctx.user_id} has role {ctx.role}, "
            f"needs one of {allowed_values}"
        )
        raise AuthorizationError(
            f"Access denied. Required role: {', '.join(allowed_values)}. Your role: {ctx.role}.",
            role=ctx.role,
        )
    return ctx.role


def _http_401(e: AuthenticationError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail=e.message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_request_context(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> RequestContext:
    """
    FastAPI dependency for routes that need a signed-in member.

        @router.get("/something")
        async def handler(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    try:
        return resolve_request_context(request, settings, require_auth=True)
    except AuthenticationError as e:
        logger.warning(f"Authentication failed: {e.message}")
        raise _http_401(e)


async def get_optional_request_context(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> RequestContext:
    """
    FastAPI dependency for routes open to guests.

    Returns a guest context when no token is sent (is_authenticated False).
    """
    try:
        return resolve_request_context(request, settings, require_auth=False)
    except AuthenticationError as e:
        logger.warning(f"Authentication failed: {e.message}")
        raise _http_401(e)


def require_roles(*allowed_roles: UserRole):
    """Dependency factory: a member context holding one of allowed_roles, else 403."""

    async def dependency(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        try:
            require_role(ctx, allowed_roles)
        except AuthorizationError as e:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
        return ctx

    return dependency
