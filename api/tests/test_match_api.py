from datetime import date

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import app.main as m
from app.auth.deps import get_current_user
from app.routes import match as match_routes

USER_ID = "11111111-1111-1111-1111-111111111111"


def _years_ago(years):
    today = date.today()
    return today.replace(year=today.year - years, day=min(today.day, 28)).isoformat()


def _client(monkeypatch, candidates=None):
    calls = []

    class _DummyResult:
        def mappings(self):
            return self

        def first(self):
            return None

        def all(self):
            return list(candidates or [])

    class _DummySession:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, stmt, params=None):
            calls.append((str(stmt), params))
            return _DummyResult()

        def commit(self):
            return None

    monkeypatch.setattr(m, "wait_for_db", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "run_migrations", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "SessionLocal", lambda: _DummySession())
    monkeypatch.setattr(match_routes, "SessionLocal", lambda: _DummySession())
    m.app.dependency_overrides[get_current_user] = lambda: {"id": USER_ID, "email": "ada@example.com", "tier": "basic"}
    return TestClient(m.app), calls


def test_discover_hides_pool_from_restricted_ages(monkeypatch):
    client, calls = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "get_profile", lambda user_id: {"date_of_birth": _years_ago(20)})

    res = client.get("/api/discover")
    assert res.json() == {"profiles": [], "age_restricted": True}
    assert calls == []

    m.app.dependency_overrides = {}


def test_discover_ranks_and_filters_candidates(monkeypatch):
    candidates = [
        {"user_id": "c-young", "date_of_birth": _years_ago(21), "location": "Lagos"},
        {"user_id": "c-abuja", "date_of_birth": _years_ago(30), "location": "Abuja"},
        {"user_id": "c-lagos", "date_of_birth": _years_ago(30), "location": "Lagos, Nigeria"},
    ]
    client, calls = _client(monkeypatch, candidates)
    monkeypatch.setattr(m.auth_repo, "get_profile", lambda user_id: {"date_of_birth": _years_ago(32)})
    monkeypatch.setattr(m.auth_repo, "get_preferences", lambda user_id: {"partner_location": "Lagos"})

    res = client.get("/api/discover?limit=5")
    profiles = res.json()["profiles"]
    assert [p["user_id"] for p in profiles] == ["c-lagos", "c-abuja"]
    assert profiles[0]["match"]["percentage"] == 100
    assert profiles[0]["age"] == 30
    assert calls[0][1] == {"user_id": USER_ID, "limit": 15}

    m.app.dependency_overrides = {}


def test_matches_strip_partner_email(monkeypatch):
    client, _calls = _client(monkeypatch)
    monkeypatch.setattr(m.auth_repo, "get_preferences", lambda user_id: None)
    monkeypatch.setattr(
        m.auth_repo,
        "list_matches",
        lambda user_id: [{"id": "match-1", "partner_id": "p1", "created_at": "2026-01-01T00:00:00"}, {"id": "match-2", "partner_id": "gone"}],
    )
    monkeypatch.setattr(
        m.auth_repo,
        "get_public_profile",
        lambda user_id: {"user_id": "p1", "first_name": "Bola", "email": "bola@example.com"} if user_id == "p1" else None,
    )

    res = client.get("/api/matches")
    matches = res.json()["matches"]
    assert len(matches) == 1
    assert matches[0]["partner"] == {"user_id": "p1", "first_name": "Bola"}
    assert matches[0]["match"]["label"] == "New"

    m.app.dependency_overrides = {}


def test_discover_skips_blocked_locations(monkeypatch):
    candidates = [
        {"user_id": "c-abuja", "date_of_birth": _years_ago(30), "location": "Abuja"},
        {"user_id": "c-lagos", "date_of_birth": _years_ago(30), "location": "Lagos, Nigeria"},
    ]
    client, _calls = _client(monkeypatch, candidates)
    monkeypatch.setattr(m.auth_repo, "get_profile", lambda user_id: {"date_of_birth": _years_ago(32)})
    monkeypatch.setattr(m.auth_repo, "get_preferences", lambda user_id: {"blocked_locations": ["ABUJA"]})

    profiles = client.get("/api/discover").json()["profiles"]
    assert [p["user_id"] for p in profiles] == ["c-lagos"]

    m.app.dependency_overrides = {}
