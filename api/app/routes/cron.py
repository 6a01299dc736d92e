import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from .. import config, meeting_repo
from .. import repo as auth_repo
from ..auth.security import verify_cron_secret
from ..services.email import (
    meeting_reminder_email,
    reactivation_approved_partner_email,
    reactivation_approved_user_email,
    send_email,
)
from ..services.notifications import dashboard_reminder_text, format_meeting_time, reminder_message, time_until

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

AUTO_APPROVE_NOTE = "Auto-approved after 7 days with no partner objection"


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    if not verify_cron_secret(authorization, config.CRON_SECRET):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _name_of(user_id: str) -> str:
    profile = auth_repo.get_profile(user_id) or {}
    account = auth_repo.get_account_by_id(user_id) or {}
    return str(profile.get("first_name") or account.get("display_name") or "there")


@scaffold_router.get("/health")
def cron_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "cron"}


@router.get("/cron/meeting-notifications")
def dispatch_meeting_notifications(_: None = Depends(require_cron_secret)) -> dict[str, Any]:
    """Deliver due meeting reminders to the dashboard and by email.

    Each channel is marked separately, so a run that dies halfway is picked
    up by the next one without sending anything twice.
    """
    now = datetime.now(timezone.utc)
    due = meeting_repo.list_due_meeting_notifications(now + timedelta(minutes=config.NOTIFICATION_LOOKAHEAD_MINUTES))
    if not due:
        return {"message": "No pending notifications", "count": 0}

    sent = 0
    errors: list[dict[str, Any]] = []
    for row in due:
        notification_id = str(row["id"])
        notification_type = str(row["notification_type"])
        try:
            if not row.get("dashboard_sent"):
                auth_repo.create_notification(
                    str(row["user_id"]),
                    "meeting_reminder",
                    "Meeting Reminder",
                    dashboard_reminder_text(notification_type, row["scheduled_at"]),
                    {"meeting_id": str(row["meeting_id"]), "notification_type": notification_type},
                )
                meeting_repo.mark_notification_dashboard_sent(notification_id)

            if not row.get("email_sent"):
                if row.get("email"):
                    subject, html_body = meeting_reminder_email(
                        str(row.get("first_name") or "there"),
                        str(row.get("partner_first_name") or "your match"),
                        format_meeting_time(row["scheduled_at"]),
                        time_until(notification_type),
                    )
                    if notification_type == "rules":
                        subject = reminder_message("rules")
                    result = send_email(str(row["email"]), subject, html_body)
                    if not result.get("success") and not result.get("skipped"):
                        logger.warning(f"[cron] reminder email failed notification_id={notification_id}: {result.get('error')}")
                meeting_repo.mark_notification_email_sent(notification_id, datetime.now(timezone.utc))
            sent += 1
        except Exception as exc:
            logger.exception(f"[cron] reminder dispatch failed notification_id={notification_id}: {exc}")
            errors.append({"id": notification_id, "error": str(exc)})

    logger.info(f"[cron] meeting notifications processed={len(due)} sent={sent} errors={len(errors)}")
    return {"success": True, "processed": len(due), "sent": sent, "errors": len(errors), "error_details": errors}


@router.get("/cron/reactivation-auto-approve")
def auto_approve_reactivations(_: None = Depends(require_cron_secret)) -> dict[str, Any]:
    cutoff = datetime.now(timezone.utc) - timedelta(days=config.REACTIVATION_AUTO_APPROVE_DAYS)
    due = auth_repo.list_due_reactivation_requests(cutoff)
    approved = 0
    failed = 0
    for req in due:
        request_id = str(req["id"])
        user_id = str(req["user_id"])
        partner_id = str(req["matched_with_user_id"])
        user = auth_repo.get_account_by_id(user_id)
        partner = auth_repo.get_account_by_id(partner_id)
        if not user or not partner:
            logger.warning(f"[cron] reactivation request {request_id} references a missing account")
            failed += 1
            continue
        try:
            auth_repo.decide_reactivation_request(request_id, "approved", AUTO_APPROVE_NOTE, reactivate_user_id=user_id)
        except SQLAlchemyError as exc:
            logger.error(f"[cron] failed to auto-approve reactivation request {request_id}: {exc}")
            failed += 1
            continue
        approved += 1

        for recipient, template in ((user, reactivation_approved_user_email), (partner, reactivation_approved_partner_email)):
            if not recipient.get("email"):
                continue
            subject, html_body = template(_name_of(str(recipient["id"])))
            result = send_email(str(recipient["email"]), subject, html_body)
            if not result.get("success") and not result.get("skipped"):
                logger.warning(f"[cron] reactivation email failed request_id={request_id}: {result.get('error')}")

    message = f"Processed {len(due)} reactivation requests"
    logger.info(f"[cron] reactivation auto-approve processed={len(due)} approved={approved} failed={failed}")
    return {"success": True, "message": message, "processed": len(due), "approved": approved, "failed": failed}
