import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from .. import repo as auth_repo
from ..auth.deps import SESSION_COOKIE_NAME, get_current_user
from ..auth.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    hash_refresh_token,
    verify_password,
)
from ..config import (
    ACCESS_TOKEN_TTL_MINUTES,
    REFRESH_TOKEN_TTL_DAYS,
    RL_AUTH_LOGIN_LIMIT,
    RL_AUTH_REFRESH_LIMIT,
    RL_AUTH_REGISTER_LIMIT,
    RL_WINDOW_SECONDS,
)
from ..database import SessionLocal
from ..http_helpers import normalize_email, validate_display_name, validate_registration_input
from ..services.events import log_product_event
from ..services.rate_limit import rate_limit_dependency

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

RL_AUTH_REGISTER = rate_limit_dependency("auth_register", RL_AUTH_REGISTER_LIMIT, RL_WINDOW_SECONDS)
RL_AUTH_LOGIN = rate_limit_dependency("auth_login", RL_AUTH_LOGIN_LIMIT, RL_WINDOW_SECONDS)
RL_AUTH_REFRESH = rate_limit_dependency("auth_refresh", RL_AUTH_REFRESH_LIMIT, RL_WINDOW_SECONDS)


def _issue_tokens(user: dict[str, Any]) -> dict[str, Any]:
    """Issue access and refresh tokens for an account."""
    user_id = str(user["id"])
    access_token = create_access_token(
        user_id=user_id,
        email=str(user["email"]),
        role=str(user.get("role") or "user"),
        ttl_minutes=ACCESS_TOKEN_TTL_MINUTES,
    )
    refresh_token = create_refresh_token()
    expires_at = datetime.now(timezone.utc) + timedelta(days=REFRESH_TOKEN_TTL_DAYS)
    auth_repo.create_refresh_token_row(user_id, hash_refresh_token(refresh_token), expires_at)
    logger.info(f"[auth] issued tokens user_id={user_id}")
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_TTL_MINUTES * 60,
    }


def _is_bearer_mode(request: Request) -> bool:
    """Mobile and API clients ask for tokens in the body with X-Auth-Mode: bearer."""
    auth_mode = str(request.headers.get("X-Auth-Mode") or "").strip().lower()
    return auth_mode == "bearer"


def _set_session_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=access_token,
        httponly=True,
        secure=False,  # Set to True in production with HTTPS
        samesite="lax",
        path="/",
        max_age=ACCESS_TOKEN_TTL_MINUTES * 60,
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def _account_body(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(user["id"]),
        "email": str(user["email"]),
        "display_name": user.get("display_name"),
        "role": str(user.get("role") or "user"),
        "tier": str(user.get("tier") or "basic"),
        "account_status": str(user.get("account_status") or "active"),
    }


@scaffold_router.get("/health")
def auth_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "auth"}


@router.post("/register", status_code=201)
def auth_register(payload: dict[str, Any], request: Request, response: Response, _: None = RL_AUTH_REGISTER) -> dict[str, Any]:
    email, password = validate_registration_input(str(payload.get("email", "")), str(payload.get("password", "")))
    display_name = validate_display_name(payload.get("display_name"))

    if auth_repo.get_account_by_email(email):
        raise HTTPException(status_code=409, detail="Email already registered")

    created = auth_repo.create_account(email=email, password_hash=hash_password(password), display_name=display_name)
    if not created:
        raise HTTPException(status_code=409, detail="Email already registered")

    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="register_completed",
            user_id=str(created["id"]),
            properties={"method": "password", "platform": "api"},
        )
        db.commit()

    tokens = _issue_tokens(created)
    _set_session_cookie(response, tokens["access_token"])
    if _is_bearer_mode(request):
        return tokens
    return _account_body(created)


@router.post("/login")
def auth_login(payload: dict[str, Any], request: Request, response: Response, _: None = RL_AUTH_LOGIN) -> dict[str, Any]:
    email = normalize_email(str(payload.get("email") or ""))
    password = str(payload.get("password", ""))
    if not email:
        raise HTTPException(status_code=400, detail="Email required")

    user = auth_repo.get_account_by_email(email)
    if not user or not verify_password(password, str(user.get("password_hash") or "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("account_status") == "banned":
        raise HTTPException(status_code=403, detail="Account banned")

    auth_repo.update_last_login(str(user["id"]))
    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="login_success",
            user_id=str(user["id"]),
            properties={"platform": "api"},
        )
        db.commit()

    tokens = _issue_tokens(user)
    _set_session_cookie(response, tokens["access_token"])
    if _is_bearer_mode(request):
        return tokens
    return _account_body(user)


@router.post("/refresh")
def auth_refresh(payload: dict[str, Any], response: Response, _: None = RL_AUTH_REFRESH) -> dict[str, Any]:
    token = str(payload.get("refresh_token", "")).strip()
    if not token:
        raise HTTPException(status_code=400, detail="refresh_token required")

    token_hash = hash_refresh_token(token)
    row = auth_repo.get_refresh_token_row(token_hash)
    if not row or row.get("revoked_at") is not None:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if row.get("expires_at") is None or row["expires_at"] < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Refresh token expired")

    user = auth_repo.get_account_by_id(str(row["user_id"]))
    if not user or user.get("account_status") == "banned":
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    new_refresh = create_refresh_token()
    new_exp = datetime.now(timezone.utc) + timedelta(days=REFRESH_TOKEN_TTL_DAYS)
    auth_repo.rotate_refresh_token(token_hash, str(user["id"]), hash_refresh_token(new_refresh), new_exp)

    access_token = create_access_token(
        user_id=str(user["id"]),
        email=str(user["email"]),
        role=str(user.get("role") or "user"),
        ttl_minutes=ACCESS_TOKEN_TTL_MINUTES,
    )
    _set_session_cookie(response, access_token)
    return {
        "access_token": access_token,
        "refresh_token": new_refresh,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_TTL_MINUTES * 60,
    }


@router.post("/logout")
def auth_logout(response: Response, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    auth_repo.revoke_refresh_tokens_for_user(str(current_user["id"]))
    _clear_session_cookie(response)
    return {"message": "Logged out"}


@router.get("/me")
def auth_me(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return _account_body(current_user)
