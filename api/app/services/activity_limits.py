from datetime import datetime, timedelta, timezone
from typing import Any

ACTIVITY_TYPES = ("wink", "like", "interested", "rejected")
LIMITED_ACTIVITY_TYPES = ("wink", "like", "interested")
PERIODS = ("day", "week", "month")
PERIOD_ERRORS = {"day": "Daily limit reached", "week": "Weekly limit reached", "month": "Monthly limit reached"}

ACTIVITY_LABELS = {
    "wink": "winked at you",
    "like": "liked you",
    "interested": "is interested in you",
}

LIMIT_COLUMNS = tuple(f"{t}s_per_{p}" for t in LIMITED_ACTIVITY_TYPES for p in PERIODS)


def limit_column(activity_type: str, period: str) -> str:
    return f"{activity_type}s_per_{period}"


def period_start(period: str, now: datetime | None = None) -> datetime:
    """Start of the counting window in UTC; weeks start on Sunday."""
    now = now or datetime.now(timezone.utc)
    midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return midnight
    if period == "week":
        # Monday is 0 in weekday(); Sunday maps to 0 days back.
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    if period == "month":
        return midnight.replace(day=1)
    raise ValueError(f"Unknown period: {period}")


def effective_limit(limits_row: dict[str, Any] | None, activity_type: str, period: str) -> int | None:
    """None means unlimited; a stored null or zero counts as unlimited."""
    if not limits_row:
        return None
    value = limits_row.get(limit_column(activity_type, period))
    if value is None:
        return None
    value = int(value)
    return value if value > 0 else None


def evaluate_limit(limit: int | None, used: int) -> dict[str, Any]:
    return {"allowed": limit is None or used < limit, "limit": limit, "used": int(used)}


def activity_notification(activity_type: str) -> tuple[str, str]:
    label = ACTIVITY_LABELS.get(activity_type, "interacted with you")
    return "New Activity", f"Someone {label}"


def validate_limits_payload(payload: dict[str, Any]) -> dict[str, int | None]:
    """Integer limits >= 0 or null; only known columns present in the payload are returned."""
    out: dict[str, int | None] = {}
    for column in LIMIT_COLUMNS:
        if column not in payload:
            continue
        raw = payload.get(column)
        if raw is None or raw == "":
            out[column] = None
            continue
        if isinstance(raw, bool):
            raise ValueError(f"{column} must be an integer or null")
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValueError(f"{column} must be an integer or null")
        if value < 0 or value != float(raw):
            raise ValueError(f"{column} must be a non-negative integer or null")
        out[column] = value
    if not out:
        raise ValueError("No limit fields provided")
    return out
