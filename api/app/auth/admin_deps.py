from __future__ import annotations

from typing import Any

from fastapi import Depends, Header, HTTPException

from app import repo
from app import config
from app.auth.deps import get_current_user


ROLE_ORDER = {"moderator": 1, "admin": 2, "superadmin": 3}

ALL_PERMISSIONS = (
    "view_users",
    "edit_users",
    "view_reports",
    "resolve_reports",
    "moderate_photos",
    "warn_users",
    "suspend_users",
    "view_meetings",
    "manage_meetings",
    "view_wallet",
    "manage_wallet",
    "view_analytics",
    "manage_pricing",
    "manage_calendar",
    "manage_hosts",
    "manage_reactivation",
    "view_logs",
    "manage_activity_limits",
    "manage_subadmins",
)


def get_current_admin(
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> dict[str, Any]:
    if authorization:
        user = get_current_user(session_token=None, authorization=authorization)
        role = str(user.get("role") or "user").lower()
        if role not in ROLE_ORDER:
            raise HTTPException(status_code=403, detail="Admin access required")
        return {
            "id": str(user["id"]),
            "email": str(user.get("email") or ""),
            "role": role,
            "auth_mode": "session",
        }

    # Dev fallback only.
    runtime_admin_token = str(getattr(config, "ADMIN_TOKEN", "") or "")
    if runtime_admin_token and x_admin_token and x_admin_token == runtime_admin_token:
        return {
            "id": None,
            "email": "dev-admin-token",
            "role": "admin",
            "auth_mode": "token",
        }

    raise HTTPException(status_code=401, detail="Admin authentication required")


def require_admin_role(min_role: str):
    required = ROLE_ORDER.get(min_role)
    if required is None:
        raise ValueError(f"Unknown role: {min_role}")

    def _dep(admin_user: dict[str, Any] = Depends(get_current_admin)) -> dict[str, Any]:
        role = str(admin_user.get("role") or "").lower()
        current = ROLE_ORDER.get(role, 0)
        if current < required:
            raise HTTPException(status_code=403, detail="Insufficient admin role")
        return admin_user

    return _dep


def require_permission(permission: str):
    if permission not in ALL_PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")

    def _dep(admin_user: dict[str, Any] = Depends(get_current_admin)) -> dict[str, Any]:
        role = str(admin_user.get("role") or "").lower()
        if role == "superadmin":
            return admin_user
        if not repo.role_has_permission(role, permission):
            raise HTTPException(status_code=403, detail=f"Missing permission: {permission}")
        return admin_user

    return _dep
