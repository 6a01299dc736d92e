import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import repo as auth_repo
from ..auth.deps import get_current_user, require_active_user
from ..deps import parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

MAX_MESSAGE_LENGTH = 2000


@scaffold_router.get("/health")
def messages_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "messages"}


def _load_match_for(match_id: str, user_id: str) -> tuple[dict[str, Any], str]:
    match = auth_repo.get_match_by_id(match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    a = str(match["user1_id"])
    b = str(match["user2_id"])
    if user_id not in {a, b}:
        raise HTTPException(status_code=403, detail="Forbidden")
    return match, b if user_id == a else a


def _message_out(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "match_id": str(row["match_id"]),
        "sender_id": str(row["sender_id"]),
        "content": row["content"],
        "message_type": row.get("message_type") or "text",
        "read_at": row.get("read_at"),
        "created_at": row.get("created_at"),
    }


@router.get("/messages")
def messages_get(
    match_id: str | None = None,
    limit: int = 50,
    before: str | None = None,
    current_user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    """One conversation when match_id is given, otherwise the inbox of all conversations."""
    user_id = str(current_user["id"])
    if not match_id:
        conversations = []
        for r in auth_repo.list_conversations(user_id):
            conversations.append(
                {
                    "match_id": str(r["match_id"]),
                    "messaging_enabled": bool(r.get("messaging_enabled", True)),
                    "partner": {
                        "id": str(r["partner_id"]),
                        "name": r.get("partner_first_name") or r.get("partner_display_name") or "Match",
                        "photo_url": r.get("partner_photo_url"),
                        "tier": r.get("partner_tier"),
                    },
                    "unread_count": int(r.get("unread_count") or 0),
                    "last_message_at": r.get("last_message_at"),
                    "last_message_preview": r.get("last_message_preview"),
                }
            )
        total_unread = sum(c["unread_count"] for c in conversations)
        return jsonable_encoder({"conversations": conversations, "total_unread": total_unread})

    mid = parse_uuid(match_id, "match_id")
    limit = max(1, min(int(limit), 100))
    cursor = None
    if before:
        try:
            cursor = datetime.fromisoformat(before)
        except ValueError:
            raise HTTPException(status_code=400, detail="before must be an ISO timestamp")
    _load_match_for(mid, user_id)

    # one extra row tells us whether an older page exists
    rows = auth_repo.list_messages(mid, limit=limit + 1, before=cursor)
    has_more = len(rows) > limit
    page = list(reversed(rows[:limit]))
    if any(str(r["sender_id"]) != user_id and r.get("read_at") is None for r in page):
        auth_repo.mark_messages_read(mid, user_id)
    return jsonable_encoder({"messages": [_message_out(r) for r in page], "match_id": mid, "has_more": has_more})


@router.post("/messages", status_code=201)
def messages_send(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    content = str(payload.get("content") or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise HTTPException(status_code=400, detail=f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")

    user_id = str(current_user["id"])
    mid = parse_uuid(payload.get("match_id"), "match_id")
    match, partner_id = _load_match_for(mid, user_id)
    if not match.get("messaging_enabled", True):
        raise HTTPException(status_code=403, detail="Messaging is disabled for this match")
    if auth_repo.is_blocked_pair(user_id, partner_id):
        raise HTTPException(status_code=403, detail="You cannot interact with this user")

    message = auth_repo.create_message(mid, user_id, content)
    logger.info(f"[messages] sent match_id={mid} sender={user_id}")

    sender = str(current_user.get("display_name") or "Your match")
    preview = content if len(content) <= 80 else f"{content[:80]}..."
    auth_repo.notify_user(
        partner_id,
        "new_message",
        "New Message",
        f"{sender}: {preview}",
        {"match_id": mid, "message_id": str(message["id"])},
    )
    return jsonable_encoder({"success": True, "message": _message_out(message)})


@router.patch("/messages")
def messages_mark_read(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    mid = parse_uuid(payload.get("match_id"), "match_id")
    _load_match_for(mid, user_id)
    return {"success": True, "updated": auth_repo.mark_messages_read(mid, user_id)}
