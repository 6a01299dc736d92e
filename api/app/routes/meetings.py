import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import meeting_repo
from .. import repo as auth_repo
from .. import wallet_repo
from ..auth.admin_deps import ROLE_ORDER
from ..auth.deps import get_current_user, require_active_user
from ..database import SessionLocal
from ..deps import parse_uuid
from ..services.email import meeting_accepted_email, meeting_investigation_email, meeting_request_email, send_email
from ..services.events import log_product_event
from ..services.ledger import credits_available
from ..services.notifications import build_reminder_schedule, format_meeting_time
from ..services.state_machine import (
    CHARGE_DECISIONS,
    MEETING_FAULTS,
    MEETING_OUTCOMES,
    MEETING_STATUSES,
    finalize_transition,
    transition_meeting,
)
from ..services.tiers import (
    check_tier_permission,
    credits_required,
    default_pricing,
    meeting_fee_cents,
    normalize_tier,
)

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

SLOT_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _parse_slot(payload: dict[str, Any]) -> tuple[date, str]:
    raw_date = str(payload.get("slot_date") or "").strip()
    raw_time = str(payload.get("slot_time") or "").strip()[:5]
    try:
        slot_date = date.fromisoformat(raw_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="slot_date must be YYYY-MM-DD")
    if not SLOT_TIME_RE.match(raw_time):
        raise HTTPException(status_code=400, detail="slot_time must be HH:MM")
    return slot_date, raw_time


def _slot_datetime(slot_date: date, slot_time: str) -> datetime:
    return datetime.combine(slot_date, time.fromisoformat(slot_time), tzinfo=timezone.utc)


def _display_name(participant: dict[str, Any]) -> str:
    return str(participant.get("first_name") or participant.get("display_name") or "there")


def _load_meeting_for(meeting_id: str, user_id: str) -> tuple[dict[str, Any], list[dict[str, Any]], dict[str, Any]]:
    meeting = meeting_repo.get_meeting(meeting_id)
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    participants = meeting_repo.list_participants(meeting_id)
    mine = next((p for p in participants if str(p["user_id"]) == user_id), None)
    if not mine:
        raise HTTPException(status_code=403, detail="You are not a participant in this meeting")
    return meeting, participants, mine


def _guest_id(participants: list[dict[str, Any]]) -> str | None:
    guest = next((p for p in participants if p.get("role") == "guest"), None)
    return str(guest["user_id"]) if guest else None


def _needs_confirmation(meeting: dict[str, Any]) -> bool:
    return meeting.get("status") == "confirmed" or int(meeting.get("cancellation_fee_cents") or 0) > 0


def _notify_others(participants: list[dict[str, Any]], user_id: str, type: str, title: str, message: str, data: dict[str, Any]) -> None:
    for p in participants:
        if str(p["user_id"]) != user_id:
            auth_repo.notify_user(str(p["user_id"]), type, title, message, data)


def _log_event(event_name: str, user_id: str, properties: dict[str, Any]) -> None:
    with SessionLocal() as db:
        log_product_event(db, event_name=event_name, user_id=user_id, properties=properties)
        db.commit()


def _meeting_fee(requester_tier: str, tier_config: dict[str, Any] | None) -> int:
    pricing = wallet_repo.get_pricing_row(requester_tier)
    if not pricing:
        pricing = next(p for p in default_pricing() if p["tier_id"] == requester_tier)
    return meeting_fee_cents(pricing.get("price_ngn"), (tier_config or {}).get("monthly_outgoing_credits"))


def schedule_meeting_notifications(meeting_id: str, scheduled_at: datetime, participant_ids: list[str]) -> int:
    return meeting_repo.upsert_meeting_notifications(build_reminder_schedule(meeting_id, scheduled_at, participant_ids))


@scaffold_router.get("/health")
def meetings_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "meetings"}


# Availability


@router.post("/meetings/availability", status_code=201)
def availability_add(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    slot_date, slot_time = _parse_slot(payload)
    if slot_date < datetime.now(timezone.utc).date():
        raise HTTPException(status_code=400, detail="slot_date cannot be in the past")
    row = meeting_repo.add_availability(str(current_user["id"]), slot_date, slot_time)
    if not row:
        raise HTTPException(status_code=409, detail="Slot already added")
    return jsonable_encoder({"success": True, "slot": row})


@router.get("/meetings/availability")
def availability_list(user_id: str | None = None, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    owner = parse_uuid(user_id, "user_id") if user_id else str(current_user["id"])
    slots = meeting_repo.list_availability(owner, from_date=datetime.now(timezone.utc).date())
    return jsonable_encoder({"slots": slots})


@router.delete("/meetings/availability")
def availability_delete(slot_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    sid = parse_uuid(slot_id, "slot_id")
    if not meeting_repo.delete_availability(str(current_user["id"]), sid):
        raise HTTPException(status_code=404, detail="Slot not found")
    return {"success": True}


# Meetings


@router.get("/meetings")
def meetings_list(
    status: str | None = None,
    upcoming: bool = False,
    current_user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    if status is not None and status not in MEETING_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(MEETING_STATUSES)}")
    rows = meeting_repo.list_meetings_for_user(str(current_user["id"]), status=status, upcoming=upcoming)
    return jsonable_encoder({"meetings": rows})


@router.post("/meetings", status_code=201)
def meeting_request(payload: dict[str, Any], current_user: dict[str, Any] = Depends(require_active_user)) -> dict[str, Any]:
    """Request a one-on-one in one of the target's availability slots.

    The requester becomes the guest and pays in credits up front; the target
    hosts and has to accept before the meeting is confirmed.
    """
    user_id = str(current_user["id"])
    target_id = parse_uuid(payload.get("target_user_id"), "target_user_id")
    if target_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot request a meeting with yourself")
    target = auth_repo.get_account_by_id(target_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if auth_repo.is_blocked_pair(user_id, target_id):
        raise HTTPException(status_code=403, detail="You cannot interact with this user")

    requester_tier = normalize_tier(current_user.get("tier")) or "basic"
    target_tier = normalize_tier(target.get("tier")) or "basic"
    tier_config = wallet_repo.get_tier_config(requester_tier)
    permission = check_tier_permission(tier_config, requester_tier, target_tier)
    if not permission["allowed"]:
        raise HTTPException(
            status_code=403,
            detail={
                "error": f"Your {requester_tier} tier cannot request meetings with {target_tier} members",
                "requires_upgrade": True,
                "target_tier": target_tier,
            },
        )

    slot_date, slot_time = _parse_slot(payload)
    if not meeting_repo.has_availability(target_id, slot_date, slot_time):
        raise HTTPException(status_code=400, detail="Selected time slot is not available")
    scheduled_at = _slot_datetime(slot_date, slot_time)
    if scheduled_at <= datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="Selected time slot is in the past")

    needed = credits_required(permission["extra_charge"])
    available = credits_available(wallet_repo.get_credits(user_id))
    if available < needed:
        raise HTTPException(
            status_code=402,
            detail={"error": "Insufficient credits", "credits_required": needed, "credits_available": available},
        )

    fee = _meeting_fee(requester_tier, tier_config)
    location_pref = str(payload.get("location_pref") or "").strip()[:200] or None
    try:
        meeting = meeting_repo.create_meeting(
            host_id=target_id,
            guest_id=user_id,
            scheduled_at=scheduled_at,
            location_pref=location_pref,
            fee_cents=fee,
            credits_required=needed,
        )
    except meeting_repo.InsufficientCreditsError:
        # Credits were spent concurrently between the check and the insert.
        raise HTTPException(
            status_code=402,
            detail={"error": "Insufficient credits", "credits_required": needed, "credits_available": 0},
        )

    requester_name = str(current_user.get("display_name") or "A member")
    auth_repo.notify_user(
        target_id,
        "meeting_request",
        "New Meeting Request",
        f"{requester_name} has requested a video meeting with you.",
        {"meeting_id": str(meeting["id"]), "scheduled_at": scheduled_at.isoformat()},
    )
    if target.get("email"):
        target_profile = auth_repo.get_profile(target_id) or {}
        subject, html_body = meeting_request_email(
            str(target_profile.get("first_name") or target.get("display_name") or "there"),
            requester_name,
            format_meeting_time(scheduled_at),
        )
        result = send_email(str(target["email"]), subject, html_body)
        if not result.get("success") and not result.get("skipped"):
            logger.warning(f"[meetings] request email failed meeting_id={meeting['id']}: {result.get('error')}")

    _log_event("meeting_requested", user_id, {"meeting_id": str(meeting["id"]), "credits": needed, "fee_cents": fee})
    return jsonable_encoder({"success": True, "meeting": meeting, "credits_charged": needed})


@router.patch("/meetings")
def meeting_respond(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    meeting_id = parse_uuid(payload.get("meeting_id"), "meeting_id")
    action = str(payload.get("action") or "").strip().lower()
    if action not in ("accept", "decline", "cancel"):
        raise HTTPException(status_code=400, detail="action must be 'accept', 'decline' or 'cancel'")
    meeting, participants, _mine = _load_meeting_for(meeting_id, user_id)
    current = str(meeting.get("status") or "pending")

    others_accepted = all(p.get("response") == "accepted" for p in participants if str(p["user_id"]) != user_id)
    try:
        new_status = transition_meeting(current, action, all_accepted=others_accepted)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if action == "accept":
        meeting_repo.respond_to_meeting(meeting_id, user_id, "accepted", new_status)
        scheduled = 0
        if new_status == "confirmed" and current != "confirmed":
            participant_ids = [str(p["user_id"]) for p in participants]
            scheduled = schedule_meeting_notifications(meeting_id, meeting["scheduled_at"], participant_ids)
            meeting_time = format_meeting_time(meeting["scheduled_at"])
            for p in participants:
                partner = next((o for o in participants if o["user_id"] != p["user_id"]), p)
                auth_repo.notify_user(
                    str(p["user_id"]),
                    "meeting_confirmed",
                    "Meeting Confirmed",
                    f"Your meeting with {_display_name(partner)} is confirmed for {meeting_time}.",
                    {"meeting_id": meeting_id},
                )
                if p.get("email"):
                    subject, html_body = meeting_accepted_email(_display_name(p), _display_name(partner), meeting_time)
                    result = send_email(str(p["email"]), subject, html_body)
                    if not result.get("success") and not result.get("skipped"):
                        logger.warning(f"[meetings] accepted email failed meeting_id={meeting_id}: {result.get('error')}")
        _log_event("meeting_accepted", user_id, {"meeting_id": meeting_id, "status": new_status})
        return {"success": True, "status": new_status, "notifications_scheduled": scheduled}

    if action == "decline":
        meeting_repo.cancel_meeting(
            meeting_id,
            canceled_by=user_id,
            reason="Declined",
            refund_user_id=_guest_id(participants),
            response="declined",
        )
        _notify_others(participants, user_id, "meeting_declined", "Meeting Declined", "Your meeting request was declined.", {"meeting_id": meeting_id})
        _log_event("meeting_declined", user_id, {"meeting_id": meeting_id})
        return {"success": True, "status": new_status, "credit_refunded": True}

    if _needs_confirmation(meeting):
        raise HTTPException(
            status_code=422,
            detail={
                "error": "cancellation_requires_confirmation",
                "cancellation_fee_cents": int(meeting.get("cancellation_fee_cents") or 0),
                "message": "Use the cancellation endpoint to confirm this cancellation",
            },
        )
    meeting_repo.cancel_meeting(
        meeting_id,
        canceled_by=user_id,
        reason=str(payload.get("reason") or "").strip()[:500] or None,
        refund_user_id=_guest_id(participants),
    )
    _notify_others(participants, user_id, "meeting_canceled", "Meeting Canceled", "A meeting you were part of was canceled.", {"meeting_id": meeting_id})
    _log_event("meeting_canceled", user_id, {"meeting_id": meeting_id, "fee_cents": 0})
    return {"success": True, "status": new_status, "credit_refunded": True}


@router.get("/meetings/cancel")
def meeting_cancel_preview(meeting_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    mid = parse_uuid(meeting_id, "meeting_id")
    meeting, _participants, _mine = _load_meeting_for(mid, str(current_user["id"]))
    status = str(meeting.get("status") or "pending")
    fee = int(meeting.get("cancellation_fee_cents") or 0)
    can_cancel = status in ("pending", "confirmed")
    warning = None
    if fee > 0:
        warning = f"Cancelling this meeting will charge a cancellation fee of {fee} to your wallet."
    elif status == "confirmed":
        warning = "This meeting is confirmed. Your partner will be notified of the cancellation."
    return {
        "meeting_id": mid,
        "status": status,
        "can_cancel": can_cancel,
        "cancellation_fee_cents": fee,
        "requires_confirmation": _needs_confirmation(meeting),
        "credit_refund": status == "pending",
        "warning": warning,
    }


@router.post("/meetings/cancel")
def meeting_cancel(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    meeting_id = parse_uuid(payload.get("meeting_id"), "meeting_id")
    meeting, participants, mine = _load_meeting_for(meeting_id, user_id)
    current = str(meeting.get("status") or "pending")
    try:
        transition_meeting(current, "cancel")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    fee = int(meeting.get("cancellation_fee_cents") or 0)
    if _needs_confirmation(meeting) and payload.get("confirmed") is not True:
        raise HTTPException(
            status_code=422,
            detail={"error": "cancellation_requires_confirmation", "cancellation_fee_cents": fee},
        )

    refund = current == "pending"
    reason = str(payload.get("reason") or "").strip()[:500] or None
    balance_after = meeting_repo.cancel_meeting(
        meeting_id,
        canceled_by=user_id,
        reason=reason,
        refund_user_id=_guest_id(participants) if refund else None,
        fee_cents=fee,
        canceller_role=str(mine.get("role") or "guest"),
    )
    if fee > 0:
        logger.info(f"[meetings] cancellation fee charged meeting_id={meeting_id} user_id={user_id} fee={fee}")

    _notify_others(
        participants,
        user_id,
        "meeting_canceled",
        "Meeting Canceled",
        f"Your meeting scheduled for {format_meeting_time(meeting['scheduled_at'])} was canceled.",
        {"meeting_id": meeting_id, "reason": reason},
    )
    _log_event("meeting_canceled", user_id, {"meeting_id": meeting_id, "fee_cents": fee})
    return {
        "success": True,
        "status": "canceled",
        "fee_charged_cents": fee,
        "credit_refunded": refund,
        "new_balance": balance_after,
    }


@router.get("/meetings/notifications")
def meeting_notifications(meeting_id: str, current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    mid = parse_uuid(meeting_id, "meeting_id")
    user_id = str(current_user["id"])
    _load_meeting_for(mid, user_id)
    return jsonable_encoder({"notifications": meeting_repo.list_meeting_notifications(mid, user_id)})


OUTCOME_SENTENCES = {
    "completed": "Your video dating meeting has been concluded.",
    "no_show": "Your video dating meeting has been concluded due to a no-show.",
    "early_leave": "Your video dating meeting has been concluded due to an early departure.",
    "network_disconnect": "Your video dating meeting has been concluded due to a network disconnection.",
}
DECISION_SENTENCES = {
    "capture": "The meeting charges have been finalized.",
    "refund": "Your credits have been refunded to your account.",
    "pending_review": "The charges are under review by MatchIndeed. This may take 1-2 business days. You will be notified of the outcome.",
}


def finalize_message(outcome: str, decision: str) -> str:
    return f"{OUTCOME_SENTENCES[outcome]} {DECISION_SENTENCES[decision]}"


def _choice(payload: dict[str, Any], field: str, allowed: tuple[str, ...] | list[str]) -> str:
    value = str(payload.get(field) or "").strip().lower()
    if value not in allowed:
        raise HTTPException(status_code=400, detail=f"{field} must be one of: {', '.join(allowed)}")
    return value


@router.post("/meetings/finalize")
def meeting_finalize(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    """Host (or a reviewer) settles a confirmed meeting: capture, refund the guest, or hold for review.

    A meeting held for review can be settled again by a reviewer; anything
    else that is already completed or canceled is rejected.
    """
    user_id = str(current_user["id"])
    meeting_id = parse_uuid(payload.get("meeting_id"), "meeting_id")
    outcome = _choice(payload, "outcome", MEETING_OUTCOMES)
    fault = _choice(payload, "fault", MEETING_FAULTS)
    decision = _choice(payload, "charge_decision", list(CHARGE_DECISIONS))
    notes = str(payload.get("notes") or "").strip()[:2000] or None

    meeting = meeting_repo.get_meeting(meeting_id)
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    participants = meeting_repo.list_participants(meeting_id)
    host = next((p for p in participants if p.get("role") == "host"), None)
    guest = next((p for p in participants if p.get("role") == "guest"), None)
    reviewer = current_user.get("role") in ROLE_ORDER
    is_host = user_id == str(meeting.get("host_id")) or (host is not None and str(host["user_id"]) == user_id)
    if not (is_host or reviewer):
        raise HTTPException(status_code=403, detail="Only the host or an administrator can finalize this meeting")
    if not host or not guest:
        raise HTTPException(status_code=400, detail="Meeting is missing a host or guest")

    current = str(meeting.get("status") or "pending")
    current_charge = meeting.get("charge_status")
    try:
        finalize_transition(current, current_charge, reviewer=reviewer)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    guest_id = str(guest["user_id"])
    refund = decision == "refund"
    applied = meeting_repo.finalize_meeting(
        meeting_id,
        expected_status=current,
        expected_charge_status=current_charge,
        finalized_by=user_id,
        outcome=outcome,
        fault=fault,
        charge_status=CHARGE_DECISIONS[decision],
        notes=notes,
        refund_user_id=guest_id if refund else None,
        refund_credits=int(meeting.get("credits_charged") or 1),
    )
    if not applied:
        raise HTTPException(status_code=409, detail="Meeting was updated by someone else; reload and try again")
    logger.info(f"[meetings] finalized meeting_id={meeting_id} by={user_id} outcome={outcome} fault={fault} decision={decision}")

    data = {"meeting_id": meeting_id, "outcome": outcome, "fault": fault, "charge_status": CHARGE_DECISIONS[decision]}
    auth_repo.notify_user(
        guest_id,
        "meeting_finalized",
        "Meeting Review Complete",
        f"Dear {_display_name(guest)}, {finalize_message(outcome, decision)}",
        data,
    )
    if decision == "pending_review":
        auth_repo.notify_user(
            str(host["user_id"]),
            "meeting_pending_review",
            "Meeting Under Review",
            "Thanks for finalizing your meeting. The charges are now under review by MatchIndeed.",
            data,
        )
        if fault != "no_fault":
            meeting_time = format_meeting_time(meeting["scheduled_at"])
            for p in (guest, host):
                auth_repo.notify_user(
                    str(p["user_id"]),
                    "meeting_investigation",
                    "Meeting Under Review",
                    f"Your meeting on {meeting_time} is being investigated. Charges are on hold until the review is complete.",
                    data,
                )
                if p.get("email"):
                    subject, html_body = meeting_investigation_email(_display_name(p), meeting_time)
                    result = send_email(str(p["email"]), subject, html_body)
                    if not result.get("success") and not result.get("skipped"):
                        logger.warning(f"[meetings] investigation email failed meeting_id={meeting_id}: {result.get('error')}")

    _log_event("meeting_finalized", user_id, {"meeting_id": meeting_id, "outcome": outcome, "decision": decision})
    return {
        "success": True,
        "message": "Meeting finalized successfully",
        "charge_status": CHARGE_DECISIONS[decision],
        "refund_issued": refund,
        "outcome": outcome,
        "fault": fault,
    }
