from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import app.main as m
from app.auth.deps import get_current_user
from app.routes import profile as profile_routes
from app.services import rate_limit

USER_ID = "11111111-1111-1111-1111-111111111111"


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
    monkeypatch.setattr(profile_routes, "SessionLocal", lambda: _DummySession())
    return TestClient(m.app)


def _user(**overrides):
    user = {
        "id": USER_ID,
        "email": "ada@example.com",
        "display_name": "Ada",
        "role": "user",
        "tier": "basic",
        "account_status": "active",
        "suspended_until": None,
    }
    user.update(overrides)
    return user


def test_profile_get_includes_age_and_completeness(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    monkeypatch.setattr(
        m.auth_repo,
        "get_profile",
        lambda user_id: {"user_id": user_id, "first_name": "Ada", "date_of_birth": "1990-01-01"},
    )

    res = client.get("/api/profile")
    assert res.status_code == 200
    body = res.json()
    assert body["profile"]["first_name"] == "Ada"
    assert body["age"] >= 36
    assert 0 < body["completeness"]["percentage"] < 100

    m.app.dependency_overrides = {}


def test_profile_update_validates_fields(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    saved = {}

    def update_profile(user_id, updates):
        saved.update(updates)
        return {"user_id": user_id, **updates}

    monkeypatch.setattr(m.auth_repo, "update_profile", update_profile)

    assert client.put("/api/profile", json={}).status_code == 400
    assert client.put("/api/profile", json={"height_cm": 300}).status_code == 400
    fractional = client.put("/api/profile", json={"height_cm": 170.9})
    assert fractional.status_code == 400
    assert fractional.json()["detail"] == "height_cm must be an integer"
    assert client.put("/api/profile", json={"height_cm": True}).status_code == 400
    assert client.put("/api/profile", json={"photos": ["http://insecure.example.com/a.jpg"]}).status_code == 400
    too_young = client.put("/api/profile", json={"date_of_birth": datetime.now(timezone.utc).date().isoformat()})
    assert too_young.status_code == 400

    ok = client.put("/api/profile", json={"first_name": "  Ada ", "height_cm": "170", "have_children": False})
    assert ok.status_code == 200
    assert saved == {"first_name": "Ada", "height_cm": 170, "have_children": False}
    assert "percentage" in ok.json()["completeness"]

    m.app.dependency_overrides = {}


def test_suspended_users_cannot_edit_profile(monkeypatch):
    client = _client(monkeypatch)
    until = datetime.now(timezone.utc) + timedelta(days=3)
    m.app.dependency_overrides[get_current_user] = lambda: _user(account_status="suspended", suspended_until=until)

    res = client.put("/api/profile", json={"first_name": "Ada"})
    assert res.status_code == 403
    assert res.json()["detail"] == "Account suspended"

    m.app.dependency_overrides = {}


def test_profile_visibility_requires_boolean(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    monkeypatch.setattr(m.auth_repo, "set_profile_visibility", lambda user_id, is_visible: True)

    assert client.put("/api/profile/visibility", json={"is_visible": "yes"}).status_code == 400
    res = client.put("/api/profile/visibility", json={"is_visible": False})
    assert res.json() == {"success": True, "is_visible": False}

    monkeypatch.setattr(m.auth_repo, "set_profile_visibility", lambda user_id, is_visible: False)
    assert client.put("/api/profile/visibility", json={"is_visible": True}).status_code == 404

    m.app.dependency_overrides = {}


def test_draft_save_and_load(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    store = {}
    now = datetime.now(timezone.utc)

    def upsert_draft(user_id, form_key, data):
        store[form_key] = {"form_key": form_key, "data": data, "saved_at": now}
        return store[form_key]

    monkeypatch.setattr(m.auth_repo, "upsert_draft", upsert_draft)
    monkeypatch.setattr(m.auth_repo, "get_draft", lambda user_id, form_key: store.get(form_key))

    assert client.put("/api/profile/drafts/Bad Key!", json={"data": {}}).status_code == 400
    assert client.put("/api/profile/drafts/about", json={"data": ["not", "an", "object"]}).status_code == 400
    assert client.put("/api/profile/drafts/about", json={"data": {"blob": "x" * 70000}}).status_code == 400

    saved = client.put("/api/profile/drafts/About", json={"data": {"about_yourself": "Hi"}})
    assert saved.status_code == 200
    assert saved.json()["form_key"] == "about"

    loaded = client.get("/api/profile/drafts/about")
    assert loaded.status_code == 200
    assert loaded.json()["data"] == {"about_yourself": "Hi"}

    assert client.get("/api/profile/drafts/missing").status_code == 404

    m.app.dependency_overrides = {}


def test_expired_draft_is_deleted_on_read(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    old = datetime.now(timezone.utc) - timedelta(days=profile_routes.DRAFT_TTL_DAYS + 1)
    deleted = []
    monkeypatch.setattr(m.auth_repo, "get_draft", lambda user_id, form_key: {"data": {"a": 1}, "saved_at": old})
    monkeypatch.setattr(m.auth_repo, "delete_draft", lambda user_id, form_key: deleted.append(form_key) or 1)

    res = client.get("/api/profile/drafts/about")
    assert res.status_code == 404
    assert deleted == ["about"]

    m.app.dependency_overrides = {}


def test_draft_list_purges_expired(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    cutoffs = []
    monkeypatch.setattr(m.auth_repo, "purge_expired_drafts", lambda user_id, cutoff: cutoffs.append(cutoff) or 2)
    monkeypatch.setattr(m.auth_repo, "list_drafts", lambda user_id: [{"form_key": "about"}])

    res = client.get("/api/profile/drafts")
    assert res.status_code == 200
    assert res.json()["drafts"] == [{"form_key": "about"}]
    assert len(cutoffs) == 1
    assert cutoffs[0] < datetime.now(timezone.utc) - timedelta(days=profile_routes.DRAFT_TTL_DAYS - 1)

    m.app.dependency_overrides = {}


def test_preferences_round_trip(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    monkeypatch.setattr(m.auth_repo, "get_preferences", lambda user_id: None)
    monkeypatch.setattr(m.auth_repo, "upsert_preferences", lambda user_id, prefs: prefs)

    empty = client.get("/api/preferences")
    assert empty.status_code == 200
    assert empty.json()["preferences"]["partner_religion"] == []

    bad = client.put("/api/preferences", json={"partner_age_range": "40 - 30"})
    assert bad.status_code == 400
    bad_height = client.put("/api/preferences", json={"partner_height_min_cm": 190, "partner_height_max_cm": 160})
    assert bad_height.status_code == 400
    fractional = client.put("/api/preferences", json={"partner_height_min_cm": 160.5, "partner_height_max_cm": 180})
    assert fractional.status_code == 400
    assert fractional.json()["detail"] == "partner_height_min_cm must be an integer"

    ok = client.put("/api/preferences", json={"partner_age_range": "28 - 38", "partner_religion": ["Christian", "Christian"]})
    assert ok.status_code == 200
    assert ok.json()["preferences"]["partner_religion"] == ["Christian"]
    assert ok.json()["preferences"]["partner_age_range"] == "28 - 38"

    m.app.dependency_overrides = {}


def test_blocked_locations_replace_and_patch(monkeypatch):
    client = _client(monkeypatch)
    m.app.dependency_overrides[get_current_user] = lambda: _user()
    stored = {"locations": ["Abuja"]}
    monkeypatch.setattr(m.auth_repo, "get_blocked_locations", lambda user_id: list(stored["locations"]))

    def set_blocked_locations(user_id, locations):
        stored["locations"] = list(locations)
        return list(locations)

    monkeypatch.setattr(m.auth_repo, "set_blocked_locations", set_blocked_locations)

    assert client.get("/api/profile/blocked-locations").json() == {"blocked_locations": ["Abuja"]}

    assert client.put("/api/profile/blocked-locations", json={"blocked_locations": "Lagos"}).status_code == 400
    too_many = client.put("/api/profile/blocked-locations", json={"blocked_locations": [f"City {i}" for i in range(51)]})
    assert too_many.status_code == 400
    replaced = client.put("/api/profile/blocked-locations", json={"blocked_locations": [" Lagos ", "lagos", "", "Kano"]})
    assert replaced.json() == {"success": True, "blocked_locations": ["Lagos", "Kano"]}

    added = client.patch("/api/profile/blocked-locations", json={"action": "add", "location": "KANO"})
    assert added.json()["blocked_locations"] == ["Lagos", "Kano"]
    added = client.patch("/api/profile/blocked-locations", json={"action": "add", "location": "Ibadan"})
    assert added.json()["blocked_locations"] == ["Lagos", "Kano", "Ibadan"]
    removed = client.patch("/api/profile/blocked-locations", json={"action": "remove", "location": "lagos"})
    assert removed.json()["blocked_locations"] == ["Kano", "Ibadan"]

    assert client.patch("/api/profile/blocked-locations", json={"action": "toggle", "location": "Kano"}).status_code == 400
    assert client.patch("/api/profile/blocked-locations", json={"action": "add"}).status_code == 400

    m.app.dependency_overrides = {}
