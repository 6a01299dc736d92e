import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from .. import repo as auth_repo
from ..auth.deps import get_current_user
from ..database import SessionLocal
from ..services.email import reactivation_requested_email, send_email
from ..services.events import log_product_event
from ..services.moderation import REACTIVATION_REASONS, validate_reactivation_reason

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()


def _first_name(user_id: str, fallback: str = "there") -> str:
    profile = auth_repo.get_profile(user_id) or {}
    account = auth_repo.get_account_by_id(user_id) or {}
    return str(profile.get("first_name") or account.get("display_name") or fallback)


@scaffold_router.get("/health")
def reactivation_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "reactivation"}


@router.get("/profile/reactivate/reasons")
def reactivation_reasons() -> dict[str, Any]:
    return {"reasons": REACTIVATION_REASONS}


@router.get("/profile/reactivate")
def reactivation_status(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    match = auth_repo.get_latest_match(user_id)
    request_row = auth_repo.get_latest_reactivation_request(user_id)
    return {
        "has_match": bool(match),
        "reactivation_requested": bool(match and match.get("profile_reactivation_requested")),
        "reactivation_status": request_row.get("status") if request_row else None,
        "reactivation_reason": request_row.get("reason_text") if request_row else None,
    }


@router.post("/profile/reactivate")
def reactivation_request(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    try:
        reason_code, reason_text = validate_reactivation_reason(payload.get("reason"), payload.get("custom_reason"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    match = auth_repo.get_latest_match(user_id)
    if not match:
        raise HTTPException(status_code=400, detail="No active match found")
    if match.get("profile_reactivation_requested"):
        raise HTTPException(status_code=400, detail="Reactivation already requested")

    partner_id = str(match["partner_id"])
    row = auth_repo.create_reactivation_request(
        user_id=user_id,
        matched_with_user_id=partner_id,
        match_id=str(match["id"]),
        reason_code=reason_code,
        reason_text=reason_text,
    )

    auth_repo.notify_user(
        partner_id,
        "reactivation_requested",
        "Profile Reactivation Request",
        "Your match has requested to reactivate their profile.",
        {"request_id": str(row.get("id") or "")},
    )
    partner = auth_repo.get_account_by_id(partner_id)
    if partner and partner.get("email"):
        subject, html_body = reactivation_requested_email(_first_name(partner_id))
        result = send_email(str(partner["email"]), subject, html_body)
        if not result.get("success") and not result.get("skipped"):
            logger.warning(f"[reactivation] partner email failed request_id={row.get('id')}: {result.get('error')}")

    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="reactivation_requested",
            user_id=user_id,
            properties={"reason_code": reason_code},
        )
        db.commit()
    return {"success": True, "request_id": str(row.get("id") or ""), "status": row.get("status", "partner_notified")}
