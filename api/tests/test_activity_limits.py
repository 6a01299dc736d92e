from datetime import datetime, timezone

import pytest

from app.services.activity_limits import (
    LIMIT_COLUMNS,
    activity_notification,
    effective_limit,
    evaluate_limit,
    period_start,
    validate_limits_payload,
)

# A Monday.
NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


def test_period_starts():
    assert period_start("day", NOW) == datetime(2026, 10, 19, tzinfo=timezone.utc)
    assert period_start("week", NOW) == datetime(2026, 10, 18, tzinfo=timezone.utc)
    assert period_start("month", NOW) == datetime(2026, 10, 1, tzinfo=timezone.utc)
    sunday = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
    assert period_start("week", sunday) == datetime(2026, 10, 18, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        period_start("year", NOW)


def test_effective_limit_treats_null_and_zero_as_unlimited():
    row = {"winks_per_day": 5, "likes_per_day": 0, "interesteds_per_week": None}
    assert effective_limit(row, "wink", "day") == 5
    assert effective_limit(row, "like", "day") is None
    assert effective_limit(row, "interested", "week") is None
    assert effective_limit(None, "wink", "day") is None


def test_evaluate_limit():
    assert evaluate_limit(5, 4)["allowed"] is True
    assert evaluate_limit(5, 5) == {"allowed": False, "limit": 5, "used": 5}
    assert evaluate_limit(None, 1000)["allowed"] is True


def test_activity_notification_text():
    assert activity_notification("wink") == ("New Activity", "Someone winked at you")
    assert activity_notification("interested")[1] == "Someone is interested in you"


def test_validate_limits_payload():
    assert validate_limits_payload({"winks_per_day": "3", "likes_per_week": None, "bogus": 1}) == {
        "winks_per_day": 3,
        "likes_per_week": None,
    }
    assert len(LIMIT_COLUMNS) == 9
    for bad in ({"winks_per_day": -1}, {"winks_per_day": 1.5}, {"winks_per_day": True}, {"winks_per_day": "x"}, {}):
        with pytest.raises(ValueError):
            validate_limits_payload(bad)
