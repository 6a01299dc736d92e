import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import app.main as m
from app.auth.deps import get_current_user
from app.routes import reactivation as reactivation_routes
from app.routes import safety as safety_routes
from app.services import rate_limit

USER_ID = "11111111-1111-1111-1111-111111111111"
TARGET_ID = "22222222-2222-2222-2222-222222222222"
ADMIN_ID = "33333333-3333-3333-3333-333333333333"


def _client(monkeypatch):
    class _DummyResult:
        def mappings(self):
            return self

        def first(self):
            return None

        def all(self):
            return []

    class _DummySession:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, *args, **kwargs):
            return _DummyResult()

        def commit(self):
            return None

    rate_limit.limiter.reset()
    monkeypatch.setattr(m, "wait_for_db", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "run_migrations", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "SessionLocal", lambda: _DummySession())
    monkeypatch.setattr(safety_routes, "SessionLocal", lambda: _DummySession())
    monkeypatch.setattr(reactivation_routes, "SessionLocal", lambda: _DummySession())
    m.app.dependency_overrides[get_current_user] = lambda: {
        "id": USER_ID,
        "email": "ada@example.com",
        "role": "user",
        "tier": "basic",
        "account_status": "active",
        "suspended_until": None,
    }
    return TestClient(m.app)


def test_block_and_unblock(monkeypatch):
    client = _client(monkeypatch)
    blocks = set()
    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: {"id": user_id})

    def create_block(blocker_id, blocked_id):
        if (blocker_id, blocked_id) in blocks:
            return False
        blocks.add((blocker_id, blocked_id))
        return True

    def remove_block(blocker_id, blocked_id):
        if (blocker_id, blocked_id) not in blocks:
            return 0
        blocks.remove((blocker_id, blocked_id))
        return 1

    monkeypatch.setattr(m.auth_repo, "create_block", create_block)
    monkeypatch.setattr(m.auth_repo, "remove_block", remove_block)

    assert client.post("/api/profile/block", json={"blocked_user_id": USER_ID}).status_code == 400

    first = client.post("/api/profile/block", json={"blocked_user_id": TARGET_ID})
    assert first.json() == {"success": True, "already_blocked": False}
    again = client.post("/api/profile/block", json={"blocked_user_id": TARGET_ID})
    assert again.json() == {"success": True, "already_blocked": True}

    removed = client.delete(f"/api/profile/block?blocked_user_id={TARGET_ID}")
    assert removed.json()["success"] is True
    assert blocks == set()

    m.app.dependency_overrides = {}


def test_report_priority_and_admin_notifications(monkeypatch):
    client = _client(monkeypatch)
    notifications = []
    reports = []
    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: {"id": user_id})
    monkeypatch.setattr(m.auth_repo, "find_recent_report", lambda reporter_id, reported_id, reason, since: None)
    monkeypatch.setattr(m.auth_repo, "count_open_reports_against", lambda reported_id: 2)
    monkeypatch.setattr(m.auth_repo, "list_admin_account_ids", lambda: [ADMIN_ID])

    def create_report(reporter_id, reported_id, reason, description, priority):
        reports.append((reason, priority, description))
        return {"id": "r1", "priority": priority, "status": "pending"}

    monkeypatch.setattr(m.auth_repo, "create_report", create_report)
    monkeypatch.setattr(
        m.auth_repo,
        "notify_user",
        lambda user_id, type, title, message, data=None: notifications.append((user_id, type, data)),
    )

    res = client.post("/api/reports", json={"reported_user_id": TARGET_ID, "reason": "fake_profile", "description": " odd photos "})
    assert res.status_code == 201
    # two open reports plus this one escalate a normal report to high
    assert reports == [("fake_profile", "high", "odd photos")]
    assert notifications == [(ADMIN_ID, "report_submitted", {"report_id": "r1", "priority": "high"})]

    m.app.dependency_overrides = {}


def test_report_rejections(monkeypatch):
    client = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: {"id": user_id})
    monkeypatch.setattr(m.auth_repo, "find_recent_report", lambda reporter_id, reported_id, reason, since: {"id": "r0"})

    assert client.post("/api/reports", json={"reported_user_id": TARGET_ID, "reason": "rude"}).status_code == 400
    assert client.post("/api/reports", json={"reported_user_id": USER_ID, "reason": "spam"}).status_code == 400
    assert client.post("/api/reports", json={"reported_user_id": TARGET_ID, "reason": "spam"}).status_code == 409

    m.app.dependency_overrides = {}


def test_report_status(monkeypatch):
    client = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "has_active_report", lambda reporter_id, reported_id: True)
    assert client.get(f"/api/reports?target={TARGET_ID}").json() == {"has_active_report": True}

    m.app.dependency_overrides = {}


def test_reactivation_reasons_are_public(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides = {}
    reasons = client.get("/api/profile/reactivate/reasons").json()["reasons"]
    assert len(reasons) == 26
    assert reasons[-1]["label"] == "Other"


def test_reactivation_request_notifies_partner(monkeypatch):
    client = _client(monkeypatch)
    notifications = []
    emails = []
    monkeypatch.setattr(
        m.auth_repo,
        "get_latest_match",
        lambda user_id: {"id": "match-1", "partner_id": TARGET_ID, "profile_reactivation_requested": False},
    )
    monkeypatch.setattr(
        m.auth_repo,
        "create_reactivation_request",
        lambda **kwargs: {"id": "req-1", "status": "partner_notified", **kwargs},
    )
    monkeypatch.setattr(
        m.auth_repo,
        "notify_user",
        lambda user_id, type, title, message, data=None: notifications.append((user_id, type)),
    )
    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: {"id": user_id, "email": "bola@example.com"})
    monkeypatch.setattr(m.auth_repo, "get_profile", lambda user_id: {"first_name": "Bola"})
    monkeypatch.setattr(reactivation_routes, "send_email", lambda to, subject, body: emails.append(to) or {"success": True})

    res = client.post("/api/profile/reactivate", json={"reason": "2"})
    assert res.status_code == 200
    assert res.json() == {"success": True, "request_id": "req-1", "status": "partner_notified"}
    assert notifications == [(TARGET_ID, "reactivation_requested")]
    assert emails == ["bola@example.com"]

    m.app.dependency_overrides = {}


def test_reactivation_custom_reason_needs_enough_words(monkeypatch):
    client = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "get_latest_match", lambda user_id: {"id": "match-1", "partner_id": TARGET_ID})

    short = client.post("/api/profile/reactivate", json={"reason": "other", "custom_reason": "too short"})
    assert short.status_code == 400
    assert "words" in short.json()["detail"]

    m.app.dependency_overrides = {}


def test_reactivation_requires_match_and_single_request(monkeypatch):
    client = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "get_latest_match", lambda user_id: None)
    assert client.post("/api/profile/reactivate", json={"reason": "1"}).json()["detail"] == "No active match found"

    monkeypatch.setattr(
        m.auth_repo,
        "get_latest_match",
        lambda user_id: {"id": "match-1", "partner_id": TARGET_ID, "profile_reactivation_requested": True},
    )
    assert client.post("/api/profile/reactivate", json={"reason": "1"}).json()["detail"] == "Reactivation already requested"

    m.app.dependency_overrides = {}
