from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from ..auth.deps import get_current_user
from ..deps import parse_uuid
from ..services.notifications import clean_notification_preferences, merge_notification_preferences

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def notifications_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "notifications"}


@router.get("/notifications")
def notifications_list(unread: bool = False, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    rows = auth_repo.list_notifications(str(current_user["id"]), unread_only=unread, limit=50)
    return jsonable_encoder({"notifications": rows, "unread_count": sum(1 for r in rows if r.get("read_at") is None)})


@router.post("/notifications/read")
def notifications_mark_read(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    raw_ids = payload.get("ids")
    if raw_ids is not None and not isinstance(raw_ids, list):
        raise HTTPException(status_code=400, detail="ids must be a list")
    ids = [parse_uuid(i, "ids") for i in raw_ids or []]
    updated = auth_repo.mark_notifications_read(str(current_user["id"]), ids or None)
    return {"success": True, "updated": updated}


@router.get("/profile/notification-preferences")
def notification_preferences_get(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    stored = auth_repo.get_notification_preferences(str(current_user["id"]))
    return {"preferences": merge_notification_preferences(stored)}


@router.patch("/profile/notification-preferences")
def notification_preferences_update(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    updates = clean_notification_preferences(payload)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid preference fields provided")
    saved = auth_repo.upsert_notification_preferences(str(current_user["id"]), updates)
    return {"success": True, "preferences": merge_notification_preferences(saved)}
