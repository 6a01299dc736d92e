import json

import httpx

from app import config
from app.services import email


def test_send_email_is_skipped_without_token(monkeypatch):
    monkeypatch.setattr(config, "POSTMARK_SERVER_TOKEN", "")
    assert email.send_email("a@example.com", "Hi", "<p>x</p>") == {"success": False, "skipped": True}


def test_send_email_posts_to_postmark(monkeypatch):
    monkeypatch.setattr(config, "POSTMARK_SERVER_TOKEN", "pm-token")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["token"] = request.headers.get("X-Postmark-Server-Token")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ErrorCode": 0, "MessageID": "msg-1"})

    result = email.send_email("a@example.com", "Hi", "<p>x</p>", transport=httpx.MockTransport(handler))
    assert result == {"success": True, "message_id": "msg-1"}
    assert seen["url"] == email.POSTMARK_URL
    assert seen["token"] == "pm-token"
    assert seen["body"]["To"] == "a@example.com"
    assert seen["body"]["MessageStream"] == config.POSTMARK_MESSAGE_STREAM


def test_send_email_reports_postmark_errors(monkeypatch):
    monkeypatch.setattr(config, "POSTMARK_SERVER_TOKEN", "pm-token")
    transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"ErrorCode": 300, "Message": "Invalid email"}))
    assert email.send_email("bad", "Hi", "<p>x</p>", transport=transport) == {"success": False, "error": "Invalid email"}


def test_send_email_never_raises_on_transport_failure(monkeypatch):
    monkeypatch.setattr(config, "POSTMARK_SERVER_TOKEN", "pm-token")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    result = email.send_email("a@example.com", "Hi", "<p>x</p>", transport=httpx.MockTransport(handler))
    assert result["success"] is False
    assert "boom" in result["error"]


def test_templates_escape_names():
    subject, body = email.meeting_request_email("<Ada>", "Bola", "2026-03-01 12:00 UTC")
    assert subject == "You have a new video dating request"
    assert "&lt;Ada&gt;" in body
    assert "<Ada>" not in body
    subject, body = email.meeting_reminder_email("Ada", "Bola", "2026-03-01 12:00 UTC", "in 1 hour")
    assert subject == "Reminder: your video date is in 1 hour"
    assert "Bola" in body
    subject, body = email.meeting_investigation_email("<Ada>", "2026-03-01 12:00 UTC")
    assert subject == "Your meeting is under review"
    assert "&lt;Ada&gt;" in body
    assert "1-2 business days" in body
