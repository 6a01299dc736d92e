import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import app.main as m
from app.auth.deps import get_current_user
from app.routes import activities as activity_routes
from app.services import rate_limit

USER_ID = "11111111-1111-1111-1111-111111111111"
TARGET_ID = "22222222-2222-2222-2222-222222222222"


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
    monkeypatch.setattr(activity_routes, "SessionLocal", lambda: _DummySession())
    m.app.dependency_overrides[get_current_user] = lambda: {
        "id": USER_ID,
        "email": "ada@example.com",
        "role": "user",
        "tier": "basic",
        "account_status": "active",
        "suspended_until": None,
    }
    return TestClient(m.app)


def _patch_defaults(monkeypatch, notifications):
    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: {"id": user_id, "email": "x@example.com"})
    monkeypatch.setattr(m.auth_repo, "is_blocked_pair", lambda a, b: False)
    monkeypatch.setattr(m.auth_repo, "find_activity", lambda user_id, target_id, activity_type: None)
    monkeypatch.setattr(m.auth_repo, "get_activity_limits", lambda tier: {"winks_per_day": 2, "likes_per_day": None})
    monkeypatch.setattr(m.auth_repo, "count_activities_since", lambda user_id, activity_type, since: 0)
    monkeypatch.setattr(
        m.auth_repo,
        "create_activity",
        lambda user_id, target_id, activity_type: {"id": "a1", "user_id": user_id, "target_user_id": target_id, "activity_type": activity_type},
    )
    monkeypatch.setattr(
        m.auth_repo,
        "notify_user",
        lambda user_id, type, title, message, data=None: notifications.append((user_id, type, title, message)),
    )
    monkeypatch.setattr(m.auth_repo, "has_positive_activity", lambda user_id, target_id: False)


def test_activity_validation(monkeypatch):
    client = _client(monkeypatch)
    _patch_defaults(monkeypatch, [])

    assert client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "poke"}).status_code == 400
    assert client.post("/api/activities", json={"target_user_id": "nope", "activity_type": "wink"}).status_code == 400
    assert client.post("/api/activities", json={"target_user_id": USER_ID, "activity_type": "wink"}).status_code == 400

    monkeypatch.setattr(m.auth_repo, "get_account_by_id", lambda user_id: None)
    assert client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "wink"}).status_code == 404

    m.app.dependency_overrides = {}


def test_blocked_pair_is_rejected(monkeypatch):
    client = _client(monkeypatch)
    _patch_defaults(monkeypatch, [])
    monkeypatch.setattr(m.auth_repo, "is_blocked_pair", lambda a, b: True)

    res = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "like"})
    assert res.status_code == 403

    m.app.dependency_overrides = {}


def test_wink_notifies_target_and_reports_usage(monkeypatch):
    client = _client(monkeypatch)
    notifications = []
    _patch_defaults(monkeypatch, notifications)
    monkeypatch.setattr(m.auth_repo, "count_activities_since", lambda user_id, activity_type, since: 1)

    res = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "wink"})
    assert res.status_code == 200
    body = res.json()
    assert body["mutual_match"] is False
    assert body["limits"]["day"] == {"allowed": True, "limit": 2, "used": 1}
    assert body["limits"]["week"]["limit"] is None
    assert notifications == [(TARGET_ID, "wink", "New Activity", "Someone winked at you")]

    m.app.dependency_overrides = {}


def test_daily_limit_returns_429(monkeypatch):
    client = _client(monkeypatch)
    notifications = []
    _patch_defaults(monkeypatch, notifications)
    monkeypatch.setattr(m.auth_repo, "count_activities_since", lambda user_id, activity_type, since: 2)

    res = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "wink"})
    assert res.status_code == 429
    assert res.json()["detail"] == {"error": "Daily limit reached", "limit": 2, "used": 2, "period": "day"}
    assert notifications == []

    m.app.dependency_overrides = {}


def test_duplicate_activity_and_idempotent_reject(monkeypatch):
    client = _client(monkeypatch)
    _patch_defaults(monkeypatch, [])
    monkeypatch.setattr(m.auth_repo, "find_activity", lambda user_id, target_id, activity_type: {"id": "a0"})

    dup = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "like"})
    assert dup.status_code == 400

    rejected = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "rejected"})
    assert rejected.status_code == 200
    assert rejected.json()["message"] == "Profile already rejected"

    m.app.dependency_overrides = {}


def test_mutual_like_creates_match_and_notifies_both(monkeypatch):
    client = _client(monkeypatch)
    notifications = []
    _patch_defaults(monkeypatch, notifications)
    monkeypatch.setattr(m.auth_repo, "has_positive_activity", lambda user_id, target_id: user_id == TARGET_ID)
    monkeypatch.setattr(m.auth_repo, "create_match", lambda a, b: {"id": "match-1"})

    res = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "like"})
    assert res.status_code == 200
    assert res.json()["mutual_match"] is True
    match_notes = [n for n in notifications if n[1] == "match"]
    assert sorted(n[0] for n in match_notes) == sorted([USER_ID, TARGET_ID])
    assert match_notes[0][2] == "It's a Match!"

    m.app.dependency_overrides = {}


def test_wink_never_creates_match(monkeypatch):
    client = _client(monkeypatch)
    _patch_defaults(monkeypatch, [])
    monkeypatch.setattr(m.auth_repo, "has_positive_activity", lambda user_id, target_id: True)
    created = []
    monkeypatch.setattr(m.auth_repo, "create_match", lambda a, b: created.append((a, b)))

    res = client.post("/api/activities", json={"target_user_id": TARGET_ID, "activity_type": "wink"})
    assert res.json()["mutual_match"] is False
    assert created == []

    m.app.dependency_overrides = {}


def test_activity_list_and_delete(monkeypatch):
    client = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "list_activities", lambda user_id, direction, activity_type: [{"id": "a1", "direction": direction}])
    monkeypatch.setattr(m.auth_repo, "delete_activity", lambda user_id, activity_id: 0)

    assert client.get("/api/activities?type=sideways").status_code == 400
    res = client.get("/api/activities?type=received")
    assert res.json()["activities"] == [{"id": "a1", "direction": "received"}]

    assert client.delete(f"/api/activities?activity_id={TARGET_ID}").status_code == 404

    m.app.dependency_overrides = {}
