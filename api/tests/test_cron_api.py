from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

import app.main as m
from app import config
from app.auth.deps import get_current_user
from app.routes import cron as cron_routes

USER_ID = "11111111-1111-1111-1111-111111111111"
PARTNER_ID = "22222222-2222-2222-2222-222222222222"


def _client(monkeypatch, secret="cron-secret"):
    monkeypatch.setattr(m, "wait_for_db", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "run_migrations", lambda *args, **kwargs: None)
    monkeypatch.setattr(config, "CRON_SECRET", secret)
    return TestClient(m.app)


def _auth():
    return {"Authorization": "Bearer cron-secret"}


def _due_row(**overrides):
    row = {
        "id": "n1",
        "meeting_id": "m1",
        "user_id": USER_ID,
        "notification_type": "1hr",
        "scheduled_at": datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        "dashboard_sent": False,
        "email_sent": False,
        "email": "ada@example.com",
        "first_name": "Ada",
        "partner_first_name": "Bola",
    }
    row.update(overrides)
    return row


def test_cron_requires_secret(monkeypatch):
    client = _client(monkeypatch)
    assert client.get("/api/cron/meeting-notifications").status_code == 401
    assert client.get("/api/cron/meeting-notifications", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_cron_is_open_without_configured_secret(monkeypatch):
    client = _client(monkeypatch, secret="")
    monkeypatch.setattr(m.meeting_repo, "list_due_meeting_notifications", lambda until, limit=500: [])
    assert client.get("/api/cron/meeting-notifications").json() == {"message": "No pending notifications", "count": 0}


def test_dispatch_marks_each_channel(monkeypatch):
    client = _client(monkeypatch)
    dashboard = []
    emails = []
    marks = []
    rows = [
        _due_row(),
        _due_row(id="n2", notification_type="rules", dashboard_sent=True),
        _due_row(id="n3", email=None),
    ]
    monkeypatch.setattr(m.meeting_repo, "list_due_meeting_notifications", lambda until, limit=500: rows)
    monkeypatch.setattr(
        m.auth_repo,
        "create_notification",
        lambda user_id, type, title, message, data=None: dashboard.append((user_id, message)),
    )
    monkeypatch.setattr(m.meeting_repo, "mark_notification_dashboard_sent", lambda nid: marks.append(("dashboard", nid)))
    monkeypatch.setattr(m.meeting_repo, "mark_notification_email_sent", lambda nid, sent_at: marks.append(("email", nid)))
    monkeypatch.setattr(cron_routes, "send_email", lambda to, subject, body: emails.append((to, subject)) or {"success": True})

    res = client.get("/api/cron/meeting-notifications", headers=_auth())
    assert res.status_code == 200
    assert res.json() == {"success": True, "processed": 3, "sent": 3, "errors": 0, "error_details": []}

    assert len(dashboard) == 2
    assert dashboard[0][1].endswith("Meeting scheduled for 2026-03-01 12:00 UTC")
    assert emails[0] == ("ada@example.com", "Reminder: your video date is in 1 hour")
    assert emails[1][1] == cron_routes.reminder_message("rules")
    assert len(emails) == 2
    assert marks == [
        ("dashboard", "n1"),
        ("email", "n1"),
        ("email", "n2"),
        ("dashboard", "n3"),
        ("email", "n3"),
    ]


def test_dispatch_collects_database_errors(monkeypatch):
    client = _client(monkeypatch)
    monkeypatch.setattr(
        m.meeting_repo,
        "list_due_meeting_notifications",
        lambda until, limit=500: [_due_row(email_sent=True), _due_row(id="n2", email_sent=True)],
    )

    def create_notification(user_id, type, title, message, data=None):
        if data["notification_type"] == "1hr" and not create_notification.failed:
            create_notification.failed = True
            raise OperationalError("INSERT", {}, Exception("connection lost"))

    create_notification.failed = False
    monkeypatch.setattr(m.auth_repo, "create_notification", create_notification)
    monkeypatch.setattr(m.meeting_repo, "mark_notification_dashboard_sent", lambda nid: None)

    body = client.get("/api/cron/meeting-notifications", headers=_auth()).json()
    assert body["processed"] == 2
    assert body["sent"] == 1
    assert body["errors"] == 1
    assert body["error_details"][0]["id"] == "n1"


def test_dispatch_skips_malformed_row_and_continues(monkeypatch):
    client = _client(monkeypatch)
    dashboard = []
    monkeypatch.setattr(
        m.meeting_repo,
        "list_due_meeting_notifications",
        lambda until, limit=500: [_due_row(scheduled_at=None, email_sent=True), _due_row(id="n2", email_sent=True)],
    )
    monkeypatch.setattr(
        m.auth_repo,
        "create_notification",
        lambda user_id, type, title, message, data=None: dashboard.append(data["notification_type"]),
    )
    monkeypatch.setattr(m.meeting_repo, "mark_notification_dashboard_sent", lambda nid: None)

    body = client.get("/api/cron/meeting-notifications", headers=_auth()).json()
    assert body["processed"] == 2
    assert body["sent"] == 1
    assert body["errors"] == 1
    assert body["error_details"][0]["id"] == "n1"
    assert dashboard == ["1hr"]


def test_reactivation_auto_approve(monkeypatch):
    client = _client(monkeypatch)
    cutoffs = []
    decisions = []
    emails = []
    accounts = {
        USER_ID: {"id": USER_ID, "email": "ada@example.com", "display_name": "Ada"},
        PARTNER_ID: {"id": PARTNER_ID, "email": "bola@example.com", "display_name": "Bola"},
    }
    requests = [
        {"id": "r1", "user_id": USER_ID, "matched_with_user_id": PARTNER_ID},
        {"id": "r2", "user_id": USER_ID, "matched_with_user_id": "99999999-9999-9999-9999-999999999999"},
    ]
    monkeypatch.setattr(m.auth_repo, "list_due_reactivation_requests", lambda cutoff: cutoffs.append(cutoff) or requests)
    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: accounts.get(user_id))
    monkeypatch.setattr(m.auth_repo, "get_profile", lambda user_id: None)
    monkeypatch.setattr(
        m.auth_repo,
        "decide_reactivation_request",
        lambda request_id, status, notes, reactivate_user_id=None: decisions.append((request_id, status, notes, reactivate_user_id)),
    )
    monkeypatch.setattr(cron_routes, "send_email", lambda to, subject, body: emails.append(to) or {"success": True})

    res = client.get("/api/cron/reactivation-auto-approve", headers=_auth())
    assert res.json() == {
        "success": True,
        "message": "Processed 2 reactivation requests",
        "processed": 2,
        "approved": 1,
        "failed": 1,
    }
    assert decisions == [("r1", "approved", cron_routes.AUTO_APPROVE_NOTE, USER_ID)]
    assert emails == ["ada@example.com", "bola@example.com"]
    assert cutoffs[0] < datetime.now(timezone.utc) - timedelta(days=config.REACTIVATION_AUTO_APPROVE_DAYS - 1)


def test_notifications_inbox(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: {"id": USER_ID, "email": "ada@example.com"}
    marked = []
    monkeypatch.setattr(
        m.auth_repo,
        "list_notifications",
        lambda user_id, unread_only=False, limit=50: [{"id": "a", "read_at": None}, {"id": "b", "read_at": "2026-01-01T00:00:00"}],
    )
    monkeypatch.setattr(m.auth_repo, "mark_notifications_read", lambda user_id, ids=None: marked.append(ids) or 1)

    inbox = client.get("/api/notifications").json()
    assert inbox["unread_count"] == 1

    assert client.post("/api/notifications/read", json={"ids": "a"}).status_code == 400
    assert client.post("/api/notifications/read", json={"ids": ["not-a-uuid"]}).status_code == 400
    assert client.post("/api/notifications/read", json={}).json() == {"success": True, "updated": 1}
    assert client.post("/api/notifications/read", json={"ids": [PARTNER_ID]}).status_code == 200
    assert marked == [None, [PARTNER_ID]]

    m.app.dependency_overrides = {}


def test_notification_preferences_defaults_and_update(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: {"id": USER_ID, "email": "ada@example.com"}
    saved = []
    monkeypatch.setattr(m.auth_repo, "get_notification_preferences", lambda user_id: {"likes_email": False})
    monkeypatch.setattr(
        m.auth_repo,
        "upsert_notification_preferences",
        lambda user_id, updates: saved.append(updates) or {"likes_email": False, **updates},
    )

    prefs = client.get("/api/profile/notification-preferences").json()["preferences"]
    assert prefs["likes_email"] is False
    assert prefs["likes_inapp"] is True
    assert prefs["views_push"] is False
    assert prefs["marketing_email"] is False

    bad = client.patch("/api/profile/notification-preferences", json={"likes_inapp": "no", "unknown": True})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "No valid preference fields provided"

    res = client.patch("/api/profile/notification-preferences", json={"messages_push": False, "unknown": True})
    assert res.json()["success"] is True
    assert res.json()["preferences"]["messages_push"] is False
    assert res.json()["preferences"]["likes_email"] is False
    assert saved == [{"messages_push": False}]

    m.app.dependency_overrides = {}
