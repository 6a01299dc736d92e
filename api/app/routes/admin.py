import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from .. import wallet_repo
from ..auth.admin_deps import ALL_PERMISSIONS, require_admin_role, require_permission
from ..deps import get_client_ip, parse_uuid
from ..services import integrations
from ..services.activity_limits import validate_limits_payload
from ..services.email import account_notice_email, send_email
from ..services.moderation import REPORT_STATUSES
from ..services.tiers import TIERS, normalize_tier

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

USER_ACTIONS = ("suspend", "unsuspend", "active", "ban", "update_tier", "update_role", "adjust_credits")
ACCOUNT_ROLES = ("user", "moderator", "admin", "superadmin")
CONFIGURABLE_ROLES = ("moderator", "admin")
REACTIVATION_DECISIONS = ("approved", "rejected")


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


def _notify_account(user: dict[str, Any], title: str, message: str, *, email: bool = False) -> None:
    auth_repo.notify_user(str(user["id"]), "account_update", title, message, {})
    if email and user.get("email"):
        subject, html_body = account_notice_email(str(user.get("display_name") or "there"), title, message)
        result = send_email(str(user["email"]), subject, html_body)
        if not result.get("success") and not result.get("skipped"):
            logger.warning(f"[admin] account notice email failed user_id={user['id']}: {result.get('error')}")


@scaffold_router.get("/health")
def admin_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "admin"}


# User moderation


@router.post("/admin/user-actions")
def admin_user_actions(
    payload: dict[str, Any],
    request: Request,
    admin_user: dict[str, Any] = Depends(require_admin_role("moderator")),
) -> dict[str, Any]:
    action = str(payload.get("action") or "").strip().lower()
    if action not in USER_ACTIONS:
        raise HTTPException(status_code=400, detail=f"action must be one of: {', '.join(USER_ACTIONS)}")
    user_id = parse_uuid(payload.get("user_id"), "user_id")
    target = auth_repo.get_account_by_id(user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    reason = str(payload.get("reason") or "").strip()[:500] or None
    meta: dict[str, Any] = {"reason": reason}

    if action == "suspend":
        try:
            days = int(payload.get("days") or 7)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="days must be an integer")
        if days <= 0:
            raise HTTPException(status_code=400, detail="days must be positive")
        until = datetime.now(timezone.utc) + timedelta(days=days)
        updated = auth_repo.set_account_status(user_id, "suspended", suspended_until=until, reason=reason)
        meta.update({"days": days, "suspended_until": until.isoformat()})
        _notify_account(target, "Account Suspended", f"Your account has been suspended for {days} days.", email=True)
    elif action in ("unsuspend", "active"):
        updated = auth_repo.set_account_status(user_id, "active")
        _notify_account(target, "Account Reinstated", "Your account is active again.")
    elif action == "ban":
        updated = auth_repo.set_account_status(user_id, "banned", reason=reason)
        _notify_account(target, "Account Banned", "Your account has been banned for violating our community guidelines.", email=True)
    elif action == "update_tier":
        tier = normalize_tier(payload.get("tier"))
        if not tier:
            raise HTTPException(status_code=400, detail=f"tier must be one of: {', '.join(TIERS)}")
        updated = auth_repo.set_account_tier(user_id, tier)
        meta["tier"] = tier
        _notify_account(target, "Membership Updated", f"Your membership tier is now {tier}.")
    elif action == "update_role":
        if admin_user.get("role") != "superadmin":
            raise HTTPException(status_code=403, detail="Only superadmins can change roles")
        role = str(payload.get("role") or "").strip().lower()
        if role not in ACCOUNT_ROLES:
            raise HTTPException(status_code=400, detail=f"role must be one of: {', '.join(ACCOUNT_ROLES)}")
        updated = auth_repo.set_account_role(user_id, role)
        meta["role"] = role
        _notify_account(target, "Role Updated", f"Your account role is now {role}.")
    else:
        raw = payload.get("adjustment")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise HTTPException(status_code=400, detail="adjustment must be a number")
        total = wallet_repo.adjust_credits(user_id, int(raw))
        updated = {**target, "credits_total": total}
        meta.update({"adjustment": int(raw), "credits_total": total})
        _notify_account(target, "Credits Adjusted", f"An administrator adjusted your credits by {int(raw)}.")

    auth_repo.log_admin_action(
        admin_user.get("id"),
        action,
        target_user_id=user_id,
        meta=meta,
        ip_address=get_client_ip(request),
    )
    logger.info(f"[admin] action={action} user_id={user_id} admin_id={admin_user.get('id')}")
    return _json({"success": True, "action": action, "user": updated})


# Permissions


@router.get("/admin/permissions")
def admin_permissions_get(admin_user: dict[str, Any] = Depends(require_admin_role("admin"))) -> dict[str, Any]:
    _ = admin_user
    return {"permissions": list(ALL_PERMISSIONS), "roles": auth_repo.list_role_permissions()}


@router.post("/admin/permissions")
def admin_permissions_set(
    payload: dict[str, Any],
    request: Request,
    admin_user: dict[str, Any] = Depends(require_admin_role("superadmin")),
) -> dict[str, Any]:
    role = str(payload.get("role") or "").strip().lower()
    if role not in CONFIGURABLE_ROLES:
        raise HTTPException(status_code=400, detail="role must be 'moderator' or 'admin'")
    permissions = payload.get("permissions")
    if not isinstance(permissions, list):
        raise HTTPException(status_code=400, detail="permissions must be an array")
    unknown = sorted({str(p) for p in permissions} - set(ALL_PERMISSIONS))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown permissions: {', '.join(unknown)}")

    granted = auth_repo.replace_role_permissions(role, sorted({str(p) for p in permissions}), admin_user.get("id"))
    auth_repo.log_admin_action(
        admin_user.get("id"),
        "update_permissions",
        meta={"role": role, "permissions": granted},
        ip_address=get_client_ip(request),
    )
    return {"success": True, "role": role, "permissions": granted}


# Integrations


@router.get("/admin/test-integrations")
async def admin_test_integrations(admin_user: dict[str, Any] = Depends(require_admin_role("admin"))) -> dict[str, Any]:
    _ = admin_user
    return await integrations.run_all()


# Reports


@router.get("/admin/reports")
def admin_reports_list(
    status: str | None = None,
    priority: str | None = None,
    limit: int = 100,
    admin_user: dict[str, Any] = Depends(require_permission("view_reports")),
) -> dict[str, Any]:
    _ = admin_user
    if status is not None and status not in REPORT_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(REPORT_STATUSES)}")
    rows = auth_repo.list_reports(status=status, priority=priority, limit=max(1, min(500, int(limit))))
    return _json({"reports": rows, "count": len(rows)})


@router.post("/admin/reports/{report_id}/resolve")
def admin_reports_resolve(
    report_id: str,
    payload: dict[str, Any],
    request: Request,
    admin_user: dict[str, Any] = Depends(require_permission("resolve_reports")),
) -> dict[str, Any]:
    rid = parse_uuid(report_id, "report_id")
    status = str(payload.get("status") or "").strip().lower()
    if status not in ("reviewing", "resolved", "dismissed"):
        raise HTTPException(status_code=400, detail="status must be 'reviewing', 'resolved' or 'dismissed'")
    notes = str(payload.get("admin_notes") or "").strip()[:2000] or None
    row = auth_repo.resolve_report(rid, status, notes, admin_user.get("id"))
    if not row:
        raise HTTPException(status_code=404, detail="Report not found")
    auth_repo.log_admin_action(
        admin_user.get("id"),
        "resolve_report",
        target_user_id=str(row.get("reported_user_id") or "") or None,
        meta={"report_id": rid, "status": status},
        ip_address=get_client_ip(request),
    )
    return _json({"success": True, "report": row})


# Reactivation


@router.get("/admin/reactivation")
def admin_reactivation_list(
    status: str | None = None,
    admin_user: dict[str, Any] = Depends(require_permission("manage_reactivation")),
) -> dict[str, Any]:
    _ = admin_user
    return _json({"requests": auth_repo.list_reactivation_requests(status=status)})


@router.post("/admin/reactivation/{request_id}/decision")
def admin_reactivation_decide(
    request_id: str,
    payload: dict[str, Any],
    request: Request,
    admin_user: dict[str, Any] = Depends(require_permission("manage_reactivation")),
) -> dict[str, Any]:
    rid = parse_uuid(request_id, "request_id")
    decision = str(payload.get("decision") or "").strip().lower()
    if decision not in REACTIVATION_DECISIONS:
        raise HTTPException(status_code=400, detail="decision must be 'approved' or 'rejected'")
    existing = auth_repo.get_reactivation_request(rid)
    if not existing:
        raise HTTPException(status_code=404, detail="Reactivation request not found")
    if existing.get("status") in REACTIVATION_DECISIONS:
        raise HTTPException(status_code=409, detail=f"Request already {existing['status']}")

    notes = str(payload.get("admin_notes") or "").strip()[:2000] or None
    user_id = str(existing["user_id"])
    row = auth_repo.decide_reactivation_request(rid, decision, notes, reactivate_user_id=user_id)
    auth_repo.notify_user(
        user_id,
        "reactivation_decision",
        "Reactivation Approved" if decision == "approved" else "Reactivation Declined",
        "Your profile is visible again." if decision == "approved" else "Your reactivation request was declined.",
        {"request_id": rid},
    )
    auth_repo.log_admin_action(
        admin_user.get("id"),
        f"reactivation_{decision}",
        target_user_id=user_id,
        meta={"request_id": rid, "notes": notes},
        ip_address=get_client_ip(request),
    )
    return _json({"success": True, "request": row})


# Activity limits


@router.get("/admin/activity-limits")
def admin_activity_limits_list(admin_user: dict[str, Any] = Depends(require_admin_role("moderator"))) -> dict[str, Any]:
    _ = admin_user
    return _json({"limits": auth_repo.list_activity_limits()})


@router.put("/admin/activity-limits/{tier}")
def admin_activity_limits_update(
    tier: str,
    payload: dict[str, Any],
    request: Request,
    admin_user: dict[str, Any] = Depends(require_permission("manage_activity_limits")),
) -> dict[str, Any]:
    normalized = normalize_tier(tier)
    if not normalized:
        raise HTTPException(status_code=400, detail=f"tier must be one of: {', '.join(TIERS)}")
    try:
        values = validate_limits_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    row = auth_repo.update_activity_limits(normalized, values)
    if not row:
        raise HTTPException(status_code=404, detail="Activity limits not found for tier")
    auth_repo.log_admin_action(
        admin_user.get("id"),
        "update_activity_limits",
        meta={"tier": normalized, **values},
        ip_address=get_client_ip(request),
    )
    return _json({"success": True, "limits": row})


# Logs and wallet


@router.get("/admin/logs")
def admin_logs(limit: int = 100, admin_user: dict[str, Any] = Depends(require_permission("view_logs"))) -> dict[str, Any]:
    _ = admin_user
    return _json({"logs": auth_repo.list_admin_logs(limit=max(1, min(500, int(limit))))})


@router.get("/admin/wallet/transactions")
def admin_wallet_transactions(
    user_id: str | None = None,
    limit: int = 200,
    admin_user: dict[str, Any] = Depends(require_permission("manage_wallet")),
) -> dict[str, Any]:
    _ = admin_user
    uid = parse_uuid(user_id, "user_id") if user_id else None
    rows = wallet_repo.list_transactions_admin(uid, limit=max(1, min(500, int(limit))))
    return _json({"transactions": rows, "count": len(rows)})
