from datetime import datetime, timedelta, timezone

from app.services.notifications import (
    build_reminder_schedule,
    clean_notification_preferences,
    dashboard_reminder_text,
    merge_notification_preferences,
    notification_category,
    reminder_message,
    should_send,
    time_until,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_schedule_has_every_reminder_for_a_distant_meeting():
    rows = build_reminder_schedule("m1", NOW + timedelta(hours=2), ["u1", "u2"], now=NOW)
    assert len(rows) == 14
    u1 = {r["notification_type"]: r["scheduled_for"] for r in rows if r["user_id"] == "u1"}
    assert set(u1) == {"1hr", "30min", "15min", "10min", "5min", "start", "rules"}
    assert u1["1hr"] == NOW + timedelta(hours=1)
    assert u1["start"] == NOW + timedelta(hours=2)
    assert u1["rules"] == NOW


def test_schedule_drops_reminders_already_due():
    rows = build_reminder_schedule("m1", NOW + timedelta(minutes=20), ["u1"], now=NOW)
    assert [r["notification_type"] for r in rows] == ["15min", "10min", "5min", "start", "rules"]


def test_rules_reminder_is_always_scheduled():
    rows = build_reminder_schedule("m1", NOW - timedelta(minutes=1), ["u1"], now=NOW)
    assert [r["notification_type"] for r in rows] == ["rules"]


def test_naive_datetimes_are_treated_as_utc():
    rows = build_reminder_schedule("m1", datetime(2026, 3, 1, 14, 0), ["u1"], now=NOW)
    assert rows[0]["scheduled_for"].tzinfo is not None


def test_messages():
    assert reminder_message("30min") == "Your video dating meeting is in 30 minutes"
    assert reminder_message("start") == "Your video dating meeting is starting now"
    assert reminder_message("rules") == "Please review the meeting rules and etiquette"
    assert time_until("1hr") == "in 1 hour"
    assert time_until("weird") == "soon"
    assert dashboard_reminder_text("5min", NOW) == (
        "Your video dating meeting is in 5 minutes. Meeting scheduled for 2026-03-01 12:00 UTC"
    )


def test_notification_preferences_merge_over_defaults():
    prefs = merge_notification_preferences({"likes_inapp": False, "views_email": "yes", "bogus": True})
    assert prefs["likes_inapp"] is False
    assert prefs["views_email"] is False
    assert "bogus" not in prefs
    assert prefs["meetings_email"] is True
    assert clean_notification_preferences({"matches_push": False, "matches_email": 0, "x": True}) == {"matches_push": False}


def test_should_send_follows_category_switches():
    stored = {"messages_inapp": False, "meetings_email": False}
    assert should_send(stored, "new_message") is False
    assert should_send(stored, "new_message", "email") is True
    assert should_send(stored, "meeting_finalized", "email") is False
    assert should_send(stored, "wink") is True
    assert notification_category("meeting_investigation") == "meetings"
    assert notification_category("account_update") == "system"
    assert should_send(None, "profile_view", "email") is False
