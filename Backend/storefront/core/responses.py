"""
Response envelopes.

Admin endpoints wrap their payload in a success envelope; storefront and admin
failures put an error envelope in HTTPException.detail, so a client reads
`detail.error.code` to tell a missing guest session from a failed write.

    Success:  {"data": ..., "status": "success"}
    Error:    {"error": {"code": "WRITE_FAILED", "message": "...", "details": {...}}, "status": "error"}

`details` is present only when there is extra context (validation messages,
the cart size after a failed merge).
"""

from typing import Any, Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorCodes:
    """Codes the frontend switches on."""

    # 403
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    # 401 on member-only store actions taken as a guest
    LOGIN_REQUIRED = "LOGIN_REQUIRED"

    # 404
    NOT_FOUND = "NOT_FOUND"

    # 400 / 422
    VALIDATION_ERROR = "VALIDATION_ERROR"
    GUEST_SESSION_REQUIRED = "GUEST_SESSION_REQUIRED"

    # 409: the order is already in the requested state
    ORDER_STATE_CONFLICT = "ORDER_STATE_CONFLICT"

    # 502: the hosted backend rejected or dropped a write
    WRITE_FAILED = "WRITE_FAILED"


def success_response(data: Any) -> dict:
    return {"data": data, "status": "success"}


def error_response(code: str, message: str, details: Optional[dict] = None) -> dict:
    error = ErrorDetail(code=code, message=message, details=details or None)
    return {"error": error.model_dump(exclude_none=True), "status": "error"}
