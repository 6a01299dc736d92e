from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from ..auth.deps import get_current_user, require_active_user
from ..config import RL_ACTIVITIES_LIMIT, RL_WINDOW_SECONDS
from ..database import SessionLocal
from ..deps import parse_uuid
from ..services.activity_limits import (
    ACTIVITY_TYPES,
    LIMITED_ACTIVITY_TYPES,
    PERIOD_ERRORS,
    PERIODS,
    activity_notification,
    effective_limit,
    evaluate_limit,
    period_start,
)
from ..services.events import log_product_event
from ..services.rate_limit import rate_limit_dependency

router = APIRouter()
scaffold_router = APIRouter()

RL_ACTIVITIES = rate_limit_dependency("activities", RL_ACTIVITIES_LIMIT, RL_WINDOW_SECONDS)

MATCHING_ACTIVITY_TYPES = ("like", "interested")


def _check_limits(user_id: str, tier: str, activity_type: str, now: datetime) -> dict[str, Any]:
    """Raise 429 on the first exhausted period; otherwise return usage per period."""
    limits_row = auth_repo.get_activity_limits(tier)
    usage: dict[str, Any] = {}
    for period in PERIODS:
        limit = effective_limit(limits_row, activity_type, period)
        if limit is None:
            usage[period] = evaluate_limit(None, 0)
            continue
        used = auth_repo.count_activities_since(user_id, activity_type, period_start(period, now))
        verdict = evaluate_limit(limit, used)
        if not verdict["allowed"]:
            raise HTTPException(
                status_code=429,
                detail={"error": PERIOD_ERRORS[period], "limit": limit, "used": used, "period": period},
            )
        usage[period] = verdict
    return usage


@scaffold_router.get("/health")
def activities_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "activities"}


@router.post("/activities")
def activity_create(
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(require_active_user),
    _: None = RL_ACTIVITIES,
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    target_id = parse_uuid(payload.get("target_user_id"), "target_user_id")
    activity_type = str(payload.get("activity_type") or "").strip().lower()
    if activity_type not in ACTIVITY_TYPES:
        raise HTTPException(status_code=400, detail=f"activity_type must be one of: {', '.join(ACTIVITY_TYPES)}")
    if target_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot interact with your own profile")
    if not auth_repo.get_account_by_id(target_id):
        raise HTTPException(status_code=404, detail="User not found")
    if auth_repo.is_blocked_pair(user_id, target_id):
        raise HTTPException(status_code=403, detail="You cannot interact with this user")

    if auth_repo.find_activity(user_id, target_id, activity_type):
        if activity_type == "rejected":
            return {"success": True, "message": "Profile already rejected", "mutual_match": False}
        raise HTTPException(status_code=400, detail=f"You have already sent a {activity_type} to this profile")

    limits: dict[str, Any] = {}
    if activity_type in LIMITED_ACTIVITY_TYPES:
        limits = _check_limits(user_id, str(current_user.get("tier") or "basic"), activity_type, datetime.now(timezone.utc))

    activity = auth_repo.create_activity(user_id, target_id, activity_type)
    if not activity:
        if activity_type == "rejected":
            return {"success": True, "message": "Profile already rejected", "mutual_match": False}
        raise HTTPException(status_code=400, detail=f"You have already sent a {activity_type} to this profile")

    if activity_type in LIMITED_ACTIVITY_TYPES:
        title, message = activity_notification(activity_type)
        auth_repo.notify_user(target_id, activity_type, title, message, {"from_user_id": user_id})

    mutual_match = False
    if activity_type in MATCHING_ACTIVITY_TYPES and auth_repo.has_positive_activity(target_id, user_id):
        mutual_match = True
        match = auth_repo.create_match(user_id, target_id)
        if match:
            for recipient, other in ((user_id, target_id), (target_id, user_id)):
                auth_repo.notify_user(
                    recipient,
                    "match",
                    "It's a Match!",
                    "You have a new mutual match. Say hello!",
                    {"match_id": str(match["id"]), "matched_user_id": other},
                )

    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="activity_created",
            user_id=user_id,
            properties={"activity_type": activity_type, "mutual_match": mutual_match},
        )
        db.commit()
    return jsonable_encoder({"success": True, "activity": activity, "mutual_match": mutual_match, "limits": limits})


@router.get("/activities")
def activity_list(
    type: str = "sent",
    activity_type: str | None = None,
    current_user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    direction = str(type or "sent").strip().lower()
    if direction not in ("sent", "received"):
        raise HTTPException(status_code=400, detail="type must be 'sent' or 'received'")
    if activity_type is not None and activity_type not in ACTIVITY_TYPES:
        raise HTTPException(status_code=400, detail=f"activity_type must be one of: {', '.join(ACTIVITY_TYPES)}")
    rows = auth_repo.list_activities(str(current_user["id"]), direction, activity_type)
    return jsonable_encoder({"activities": rows})


@router.delete("/activities")
def activity_delete(activity_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    aid = parse_uuid(activity_id, "activity_id")
    if not auth_repo.delete_activity(str(current_user["id"]), aid):
        raise HTTPException(status_code=404, detail="Activity not found")
    return {"success": True}
