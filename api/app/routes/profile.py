import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from ..auth.deps import get_current_user, require_active_user
from ..config import DRAFT_TTL_DAYS, RL_DRAFTS_LIMIT, RL_WINDOW_SECONDS
from ..database import SessionLocal
from ..http_helpers import (
    clean_blocked_locations,
    sanitize_preferences_payload,
    sanitize_profile_payload,
    validate_draft_data,
    validate_form_key,
)
from ..services.completeness import calculate_completeness
from ..services.events import log_product_event
from ..services.matching import calculate_age
from ..services.rate_limit import rate_limit_dependency

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

RL_DRAFTS = rate_limit_dependency("profile_drafts", RL_DRAFTS_LIMIT, RL_WINDOW_SECONDS)


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


def _draft_cutoff(now: datetime | None = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=DRAFT_TTL_DAYS)


def _is_expired(saved_at: datetime | None, now: datetime | None = None) -> bool:
    if saved_at is None:
        return True
    if saved_at.tzinfo is None:
        saved_at = saved_at.replace(tzinfo=timezone.utc)
    return saved_at < _draft_cutoff(now)


@scaffold_router.get("/health")
def profile_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "profile"}


@router.get("/profile")
def profile_get(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    profile = auth_repo.get_profile(user_id) or {"user_id": user_id}
    return _json(
        {
            "account": current_user,
            "profile": profile,
            "age": calculate_age(profile.get("date_of_birth")),
            "completeness": calculate_completeness(profile),
        }
    )


@router.put("/profile")
def profile_update(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    updates = sanitize_profile_payload(payload)
    profile = auth_repo.update_profile(user_id, updates)
    completeness = calculate_completeness(profile)
    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="profile_updated",
            user_id=user_id,
            properties={"fields": sorted(updates.keys()), "completeness": completeness["percentage"]},
        )
        db.commit()
    return _json({"profile": profile, "completeness": completeness})


@router.get("/profile/completeness")
def profile_completeness(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return calculate_completeness(auth_repo.get_profile(str(current_user["id"])))


@router.post("/profile/heartbeat")
def profile_heartbeat(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    ts = auth_repo.touch_last_active(str(current_user["id"]))
    return _json({"success": True, "last_active_at": ts})


@router.put("/profile/visibility")
def profile_visibility(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    raw = payload.get("is_visible")
    if not isinstance(raw, bool):
        raise HTTPException(status_code=400, detail="is_visible must be a boolean")
    if not auth_repo.set_profile_visibility(str(current_user["id"]), raw):
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "is_visible": raw}


# Drafts


@router.get("/profile/drafts")
def drafts_list(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    purged = auth_repo.purge_expired_drafts(user_id, _draft_cutoff())
    if purged:
        logger.info(f"[drafts] purged {purged} expired drafts user_id={user_id}")
    return _json({"drafts": auth_repo.list_drafts(user_id)})


@router.get("/profile/drafts/{form_key}")
def drafts_get(form_key: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    key = validate_form_key(form_key)
    row = auth_repo.get_draft(user_id, key)
    if not row:
        raise HTTPException(status_code=404, detail="Draft not found")
    if _is_expired(row.get("saved_at")):
        auth_repo.delete_draft(user_id, key)
        raise HTTPException(status_code=404, detail="Draft not found")
    return _json({"form_key": key, "data": row.get("data") or {}, "saved_at": row.get("saved_at")})


@router.put("/profile/drafts/{form_key}")
def drafts_save(
    form_key: str,
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(get_current_user),
    _: None = RL_DRAFTS,
) -> dict[str, Any]:
    key = validate_form_key(form_key)
    data = validate_draft_data(payload.get("data"))
    row = auth_repo.upsert_draft(str(current_user["id"]), key, data)
    return _json({"success": True, "form_key": key, "saved_at": row.get("saved_at")})


@router.delete("/profile/drafts/{form_key}")
def drafts_delete(form_key: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    key = validate_form_key(form_key)
    deleted = auth_repo.delete_draft(str(current_user["id"]), key)
    return {"success": True, "deleted": bool(deleted)}


# Preferences


@router.get("/preferences")
def preferences_get(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    prefs = auth_repo.get_preferences(str(current_user["id"]))
    if not prefs:
        prefs = sanitize_preferences_payload({})
    return _json({"preferences": prefs})


@router.put("/preferences")
def preferences_update(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    prefs = sanitize_preferences_payload(payload)
    saved = auth_repo.upsert_preferences(str(current_user["id"]), prefs)
    return _json({"success": True, "preferences": saved})


# Blocked locations


@router.get("/profile/blocked-locations")
def blocked_locations_get(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return {"blocked_locations": auth_repo.get_blocked_locations(str(current_user["id"]))}


@router.put("/profile/blocked-locations")
def blocked_locations_replace(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    locations = clean_blocked_locations(payload.get("blocked_locations"))
    saved = auth_repo.set_blocked_locations(str(current_user["id"]), locations)
    return {"success": True, "blocked_locations": saved}


@router.patch("/profile/blocked-locations")
def blocked_locations_update(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    action = str(payload.get("action") or "").strip().lower()
    if action not in ("add", "remove"):
        raise HTTPException(status_code=400, detail="action must be 'add' or 'remove'")
    location = str(payload.get("location") or "").strip()
    if not location:
        raise HTTPException(status_code=400, detail="location required")

    user_id = str(current_user["id"])
    current = auth_repo.get_blocked_locations(user_id)
    if action == "add":
        updated = clean_blocked_locations(current + [location])
    else:
        updated = [loc for loc in current if loc.lower() != location.lower()]
    saved = auth_repo.set_blocked_locations(user_id, updated)
    return {"success": True, "blocked_locations": saved}
