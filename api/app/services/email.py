"""Transactional email through the Postmark HTTP API.

`send_email` never raises: callers treat email as a best-effort side effect
and only log the returned result.
"""

import html
import logging
from typing import Any

import httpx

from app import config

logger = logging.getLogger(__name__)

POSTMARK_URL = "https://api.postmarkapp.com/email"


def send_email(
    to: str,
    subject: str,
    html_body: str,
    *,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    token = config.POSTMARK_SERVER_TOKEN
    if not token:
        logger.info(f"[email] POSTMARK_SERVER_TOKEN not set, skipping email to={to} subject={subject!r}")
        return {"success": False, "skipped": True}
    if not to:
        return {"success": False, "error": "Missing recipient"}

    payload = {
        "From": config.EMAIL_FROM,
        "To": to,
        "Subject": subject,
        "HtmlBody": html_body,
        "MessageStream": config.POSTMARK_MESSAGE_STREAM,
    }
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "X-Postmark-Server-Token": token,
    }
    try:
        with httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS, transport=transport) as client:
            resp = client.post(POSTMARK_URL, json=payload, headers=headers)
        body = resp.json() if resp.content else {}
        if resp.status_code >= 400 or int(body.get("ErrorCode") or 0) != 0:
            message = str(body.get("Message") or f"HTTP {resp.status_code}")
            logger.warning(f"[email] Postmark rejected email to={to}: {message}")
            return {"success": False, "error": message}
        return {"success": True, "message_id": body.get("MessageID")}
    except (httpx.HTTPError, ValueError) as exc:
        logger.error(f"[email] failed to send email to={to}: {exc}")
        return {"success": False, "error": str(exc)}


def _layout(title: str, paragraphs: list[str], cta: tuple[str, str] | None = None) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    button = ""
    if cta:
        label, url = cta
        button = f'<p><a href="{html.escape(url)}" style="padding:10px 18px;background:#1f419a;color:#fff;border-radius:6px;text-decoration:none">{html.escape(label)}</a></p>'
    return (
        '<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto">'
        f"<h2>{html.escape(title)}</h2>{body}{button}"
        "<p style=\"color:#888;font-size:12px\">MatchIndeed</p></div>"
    )


def meeting_request_email(recipient_name: str, requester_name: str, meeting_time: str) -> tuple[str, str]:
    subject = "You have a new video dating request"
    body = _layout(
        "New meeting request",
        [
            f"Hi {html.escape(recipient_name)},",
            f"{html.escape(requester_name)} would like to meet you on a video date at {html.escape(meeting_time)}.",
        ],
        ("Review request", f"{config.APP_URL}/dashboard/meetings"),
    )
    return subject, body


def meeting_accepted_email(recipient_name: str, partner_name: str, meeting_time: str) -> tuple[str, str]:
    subject = "Your video date is confirmed"
    body = _layout(
        "Meeting confirmed",
        [
            f"Hi {html.escape(recipient_name)},",
            f"Your meeting with {html.escape(partner_name)} on {html.escape(meeting_time)} has been accepted.",
        ],
        ("View meeting", f"{config.APP_URL}/dashboard/meetings"),
    )
    return subject, body


def meeting_reminder_email(recipient_name: str, partner_name: str, meeting_time: str, time_until: str) -> tuple[str, str]:
    subject = f"Reminder: your video date is {time_until}"
    body = _layout(
        "Meeting reminder",
        [
            f"Hi {html.escape(recipient_name)},",
            f"Your video date with {html.escape(partner_name)} is {html.escape(time_until)} ({html.escape(meeting_time)}).",
            "Please join on time and review the meeting rules before you start.",
        ],
        ("Join meeting", f"{config.APP_URL}/dashboard/meetings"),
    )
    return subject, body


def meeting_investigation_email(recipient_name: str, meeting_time: str) -> tuple[str, str]:
    subject = "Your meeting is under review"
    body = _layout(
        "Meeting under review",
        [
            f"Hi {html.escape(recipient_name)},",
            f"Your video date on {html.escape(meeting_time)} was flagged by the host and is being reviewed by our team.",
            "Charges for this meeting are on hold until the review is complete. This usually takes 1-2 business days.",
        ],
        ("View meeting", f"{config.APP_URL}/dashboard/meetings"),
    )
    return subject, body


def reactivation_requested_email(partner_name: str) -> tuple[str, str]:
    subject = "Your match has requested profile reactivation"
    body = _layout(
        "Reactivation requested",
        [
            f"Hi {html.escape(partner_name)},",
            "Your match has asked to reactivate their profile. If you have no objection, "
            "the request is approved automatically after 7 days.",
        ],
        ("Open dashboard", f"{config.APP_URL}/dashboard"),
    )
    return subject, body


def reactivation_approved_user_email(user_name: str) -> tuple[str, str]:
    subject = "Your profile has been reactivated"
    body = _layout(
        "Welcome back",
        [f"Hi {html.escape(user_name)},", "Your reactivation request was approved and your profile is visible again."],
        ("Discover matches", f"{config.APP_URL}/dashboard/discover"),
    )
    return subject, body


def reactivation_approved_partner_email(partner_name: str) -> tuple[str, str]:
    subject = "Your match's profile has been reactivated"
    body = _layout(
        "Profile reactivated",
        [
            f"Hi {html.escape(partner_name)},",
            "Your former match's reactivation request was approved. You can reactivate your own profile at any time.",
        ],
        ("Open dashboard", f"{config.APP_URL}/dashboard"),
    )
    return subject, body


def account_notice_email(user_name: str, title: str, message: str) -> tuple[str, str]:
    body = _layout(title, [f"Hi {html.escape(user_name)},", html.escape(message)])
    return title, body
