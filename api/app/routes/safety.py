import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from ..auth.deps import get_current_user, require_active_user
from ..config import REPORT_DUPLICATE_WINDOW_HOURS, RL_REPORTS_LIMIT, RL_WINDOW_SECONDS
from ..database import SessionLocal
from ..deps import parse_uuid
from ..services.events import log_product_event
from ..services.moderation import REPORT_REASONS, report_priority
from ..services.rate_limit import rate_limit_dependency

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

RL_REPORTS = rate_limit_dependency("reports", RL_REPORTS_LIMIT, RL_WINDOW_SECONDS)


@scaffold_router.get("/health")
def safety_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "safety"}


# Blocks


@router.post("/profile/block")
def block_user(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    blocked_id = parse_uuid(payload.get("blocked_user_id"), "blocked_user_id")
    if blocked_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot block yourself")
    if not auth_repo.get_account_by_id(blocked_id):
        raise HTTPException(status_code=404, detail="User not found")

    created = auth_repo.create_block(user_id, blocked_id)
    if created:
        with SessionLocal() as db:
            log_product_event(db, event_name="user_blocked", user_id=user_id, properties={"blocked_user_id": blocked_id})
            db.commit()
    return {"success": True, "already_blocked": not created}


@router.delete("/profile/block")
def unblock_user(blocked_user_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    blocked_id = parse_uuid(blocked_user_id, "blocked_user_id")
    removed = auth_repo.remove_block(str(current_user["id"]), blocked_id)
    return {"success": True, "removed": bool(removed)}


@router.get("/profile/block")
def list_blocked(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return jsonable_encoder({"blocked": auth_repo.list_blocks(str(current_user["id"]))})


# Reports


@router.post("/reports", status_code=201)
def report_user(
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(require_active_user),
    _: None = RL_REPORTS,
) -> dict[str, Any]:
    reporter_id = str(current_user["id"])
    reported_id = parse_uuid(payload.get("reported_user_id"), "reported_user_id")
    reason = str(payload.get("reason") or "").strip().lower()
    description = str(payload.get("description") or "").strip()[:2000] or None

    if reason not in REPORT_REASONS:
        raise HTTPException(status_code=400, detail=f"reason must be one of: {', '.join(REPORT_REASONS)}")
    if reported_id == reporter_id:
        raise HTTPException(status_code=400, detail="Cannot report yourself")
    if not auth_repo.get_account_by_id(reported_id):
        raise HTTPException(status_code=404, detail="User not found")

    since = datetime.now(timezone.utc) - timedelta(hours=REPORT_DUPLICATE_WINDOW_HOURS)
    if auth_repo.find_recent_report(reporter_id, reported_id, reason, since):
        raise HTTPException(status_code=409, detail="You have already reported this user for this reason recently")

    priority = report_priority(reason, auth_repo.count_open_reports_against(reported_id) + 1)
    row = auth_repo.create_report(reporter_id, reported_id, reason, description, priority)

    for admin_id in auth_repo.list_admin_account_ids():
        auth_repo.notify_user(
            admin_id,
            "report_submitted",
            "New User Report",
            f"A {priority} priority report was submitted for {reason.replace('_', ' ')}.",
            {"report_id": str(row.get("id") or ""), "priority": priority},
        )
    if priority == "urgent":
        logger.warning(f"[reports] urgent report id={row.get('id')} reported_user_id={reported_id} reason={reason}")

    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="report_submitted",
            user_id=reporter_id,
            properties={"reason": reason, "priority": priority},
        )
        db.commit()
    return jsonable_encoder({"success": True, "report": row})


@router.get("/reports")
def report_status(target: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    target_id = parse_uuid(target, "target")
    return {"has_active_report": auth_repo.has_active_report(str(current_user["id"]), target_id)}
