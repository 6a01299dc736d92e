from datetime import datetime, timedelta, timezone
from typing import Any

REMINDER_OFFSETS: dict[str, timedelta] = {
    "1hr": timedelta(hours=1),
    "30min": timedelta(minutes=30),
    "15min": timedelta(minutes=15),
    "10min": timedelta(minutes=10),
    "5min": timedelta(minutes=5),
    "start": timedelta(0),
}

REMINDER_MESSAGES = {
    "1hr": "Your video dating meeting is in 1 hour",
    "30min": "Your video dating meeting is in 30 minutes",
    "15min": "Your video dating meeting is in 15 minutes",
    "10min": "Your video dating meeting is in 10 minutes",
    "5min": "Your video dating meeting is in 5 minutes",
    "start": "Your video dating meeting is starting now",
    "rules": "Please review the meeting rules and etiquette",
}

TIME_UNTIL = {
    "1hr": "in 1 hour",
    "30min": "in 30 minutes",
    "15min": "in 15 minutes",
    "10min": "in 10 minutes",
    "5min": "in 5 minutes",
    "start": "starting now",
}


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_reminder_schedule(
    meeting_id: str,
    scheduled_at: datetime,
    participant_ids: list[str],
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Reminder rows for every participant of a confirmed meeting.

    Timed reminders whose due time has already passed are dropped. The
    `rules` reminder is always due immediately.
    """
    now = _aware(now or datetime.now(timezone.utc))
    scheduled_at = _aware(scheduled_at)
    rows: list[dict[str, Any]] = []
    for user_id in participant_ids:
        for notification_type, offset in REMINDER_OFFSETS.items():
            due = scheduled_at - offset
            if due <= now:
                continue
            rows.append(
                {
                    "meeting_id": str(meeting_id),
                    "user_id": str(user_id),
                    "notification_type": notification_type,
                    "scheduled_for": due,
                }
            )
        rows.append(
            {
                "meeting_id": str(meeting_id),
                "user_id": str(user_id),
                "notification_type": "rules",
                "scheduled_for": now,
            }
        )
    return rows


def reminder_message(notification_type: str) -> str:
    return REMINDER_MESSAGES.get(notification_type, "Meeting reminder")


def time_until(notification_type: str) -> str:
    return TIME_UNTIL.get(notification_type, "soon")


def format_meeting_time(value: datetime) -> str:
    return _aware(value).strftime("%Y-%m-%d %H:%M UTC")


def dashboard_reminder_text(notification_type: str, scheduled_at: datetime) -> str:
    return f"{reminder_message(notification_type)}. Meeting scheduled for {format_meeting_time(scheduled_at)}"


# Notification preferences

NOTIFICATION_CATEGORIES = ("likes", "matches", "messages", "meetings", "views", "system")
NOTIFICATION_CHANNELS = ("inapp", "email", "push")

NOTIFICATION_DEFAULTS: dict[str, bool] = {
    f"{category}_{channel}": True for category in NOTIFICATION_CATEGORIES for channel in NOTIFICATION_CHANNELS
}
NOTIFICATION_DEFAULTS.update({"views_email": False, "views_push": False, "marketing_email": False})

TYPE_TO_CATEGORY = {
    "wink": "likes",
    "like": "likes",
    "interested": "likes",
    "match": "matches",
    "new_message": "messages",
    "profile_view": "views",
}


def notification_category(notification_type: str) -> str:
    if notification_type.startswith("meeting_"):
        return "meetings"
    return TYPE_TO_CATEGORY.get(notification_type, "system")


def merge_notification_preferences(stored: dict[str, Any] | None) -> dict[str, bool]:
    prefs = dict(NOTIFICATION_DEFAULTS)
    for key, value in (stored or {}).items():
        if key in prefs and isinstance(value, bool):
            prefs[key] = value
    return prefs


def clean_notification_preferences(payload: dict[str, Any]) -> dict[str, bool]:
    """Known keys with boolean values only; everything else is ignored."""
    return {k: v for k, v in payload.items() if k in NOTIFICATION_DEFAULTS and isinstance(v, bool)}


def should_send(stored: dict[str, Any] | None, notification_type: str, channel: str = "inapp") -> bool:
    category = notification_category(notification_type)
    return merge_notification_preferences(stored).get(f"{category}_{channel}", True)
