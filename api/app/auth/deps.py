"""
Authentication dependencies for FastAPI.

Supports two auth modes:
1. Cookie-based session (primary for web): httpOnly cookie contains access token
2. Bearer token (API and mobile clients): Authorization header with Bearer token

Account state (role, tier, suspension) is always read from the accounts row,
never trusted from the token.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Cookie, Depends, Header, HTTPException
from pydantic import BaseModel

from app import repo
from app.auth.security import decode_access_token
from app.config import DEV_MODE

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "mi_session"


class AuthErrorDetail(BaseModel):
    message: str = "unauthorized"
    reason: str
    trace_id: str


class AuthError(Exception):
    """Raised when authentication fails with detailed reason."""

    def __init__(self, reason: str, detail: str = "unauthorized"):
        self.reason = reason
        self.detail = detail
        self.trace_id = str(uuid.uuid4())
        super().__init__(detail)


def _log_auth_failure(
    reason: str,
    trace_id: str,
    token_prefix: str | None = None,
    auth_source: str | None = None,
    payload: dict[str, Any] | None = None,
    user_id: str | None = None,
) -> None:
    log_data = {
        "trace_id": trace_id,
        "reason": reason,
        "auth_source": auth_source,
        "token_prefix": token_prefix,
        "token_user_id": payload.get("sub") if payload else None,
        "resolved_user_id": user_id,
    }
    logger.warning(f"[AUTH_FAILURE] {log_data}")


def _error_detail(message: str, reason: str, trace_id: str) -> dict[str, Any]:
    if DEV_MODE:
        return AuthErrorDetail(message=message, reason=reason, trace_id=trace_id).model_dump()
    return {"message": message, "trace_id": trace_id}


def _extract_bearer(authorization: str | None) -> str:
    if not authorization:
        raise AuthError(reason="missing_token", detail="Missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError(reason="malformed_token", detail="Invalid Authorization header")
    return parts[1].strip()


def _validate_token_and_get_user(token: str, trace_id: str, auth_source: str) -> dict[str, Any]:
    token_prefix = token[:8] + "..." if len(token) > 8 else token

    try:
        payload = decode_access_token(token)
    except HTTPException as e:
        reason = "token_expired" if "expired" in str(e.detail).lower() else "signature_invalid"
        _log_auth_failure(reason, trace_id, token_prefix, auth_source)
        raise HTTPException(status_code=401, detail=_error_detail("unauthorized", reason, trace_id))

    user_id = str(payload.get("sub", ""))
    if not user_id:
        _log_auth_failure("token_missing_subject", trace_id, token_prefix, auth_source, payload)
        raise HTTPException(status_code=401, detail=_error_detail("unauthorized", "token_missing_subject", trace_id))

    account = repo.get_account_by_id(user_id)
    if not account:
        _log_auth_failure("token_user_not_found", trace_id, token_prefix, auth_source, payload, user_id)
        raise HTTPException(status_code=401, detail=_error_detail("unauthorized", "token_user_not_found", trace_id))

    if account.get("account_status") == "banned":
        _log_auth_failure("account_banned", trace_id, token_prefix, auth_source, payload, user_id)
        raise HTTPException(status_code=403, detail=_error_detail("Account banned", "account_banned", trace_id))

    logger.debug(f"[auth] SUCCESS user_id={user_id} source={auth_source}")

    return {
        "id": str(account["id"]),
        "email": account["email"],
        "display_name": account.get("display_name"),
        "role": str(account.get("role") or "user"),
        "tier": str(account.get("tier") or "basic"),
        "account_status": str(account.get("account_status") or "active"),
        "suspended_until": account.get("suspended_until"),
    }


def get_current_user(
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    """
    Get current user from cookie session or bearer token.

    Priority:
    1. Cookie session token (httpOnly cookie set by login/register)
    2. Bearer token in Authorization header
    """
    trace_id = str(uuid.uuid4())

    if session_token:
        return _validate_token_and_get_user(session_token, trace_id, "cookie")

    if authorization:
        try:
            token = _extract_bearer(authorization)
            return _validate_token_and_get_user(token, trace_id, "bearer")
        except AuthError as e:
            _log_auth_failure(e.reason, e.trace_id, auth_source="bearer")
            raise HTTPException(status_code=401, detail=_error_detail(e.detail, e.reason, e.trace_id))

    _log_auth_failure("missing_token", trace_id, auth_source="none")
    raise HTTPException(status_code=401, detail=_error_detail("Authentication required", "missing_token", trace_id))


def is_suspended(user: dict[str, Any], now: datetime | None = None) -> bool:
    if user.get("account_status") != "suspended":
        return False
    until = user.get("suspended_until")
    if until is None:
        return True
    now = now or datetime.now(timezone.utc)
    return until > now


def require_active_user(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    """Reject suspended accounts for write actions; bans are rejected upstream."""
    if is_suspended(current_user):
        raise HTTPException(status_code=403, detail="Account suspended")
    return current_user
