from typing import Any

from app.config import REACTIVATION_MIN_CUSTOM_WORDS

REPORT_REASONS = (
    "fake_profile",
    "harassment",
    "inappropriate_content",
    "scam",
    "spam",
    "underage",
    "impersonation",
    "threats",
    "other",
)
REPORT_STATUSES = ("pending", "reviewing", "resolved", "dismissed")
REPORT_PRIORITIES = ("low", "normal", "high", "urgent")

_URGENT_REASONS = {"threats", "underage"}
_HIGH_REASONS = {"harassment", "scam", "impersonation"}
_LOW_REASONS = {"spam"}


def base_report_priority(reason: str) -> str:
    if reason in _URGENT_REASONS:
        return "urgent"
    if reason in _HIGH_REASONS:
        return "high"
    if reason in _LOW_REASONS:
        return "low"
    return "normal"


def report_priority(reason: str, open_report_count: int) -> str:
    """Priority for a new report; `open_report_count` includes the new report."""
    priority = base_report_priority(reason)
    if open_report_count >= 3 and priority == "normal":
        priority = "high"
    if open_report_count >= 5:
        priority = "urgent"
    return priority


REACTIVATION_REASONS: list[dict[str, Any]] = [
    {"id": 1, "label": "Relationship ended", "description": "The relationship with my matched partner has ended"},
    {"id": 2, "label": "Taking a break", "description": "I need some time away but want to return later"},
    {"id": 3, "label": "Not ready", "description": "I wasn't ready for this commitment"},
    {"id": 4, "label": "Didn't feel the connection", "description": "The connection wasn't strong enough"},
    {"id": 5, "label": "Incompatible goals", "description": "Our future goals don't align"},
    {"id": 6, "label": "Communication issues", "description": "We had difficulty communicating"},
    {"id": 7, "label": "Different lifestyles", "description": "Our lifestyles are too different"},
    {"id": 8, "label": "Personal circumstances changed", "description": "Something in my personal life changed"},
    {"id": 9, "label": "Health reasons", "description": "I need to focus on my health"},
    {"id": 10, "label": "Work commitments", "description": "Work is taking too much of my time"},
    {"id": 11, "label": "Family obligations", "description": "Family matters need my attention"},
    {"id": 12, "label": "Realized I'm not suited for this", "description": "The dating app isn't for me"},
    {"id": 13, "label": "Want to explore other options", "description": "I'd like to try different things"},
    {"id": 14, "label": "Lost interest", "description": "I've lost interest in online dating"},
    {"id": 15, "label": "Too much pressure", "description": "The process feels too pressured"},
    {"id": 16, "label": "Privacy concerns", "description": "I have privacy or safety concerns"},
    {"id": 17, "label": "Met someone else", "description": "I met someone outside the app"},
    {"id": 18, "label": "Unsure about commitment", "description": "I'm unsure about committing to a relationship"},
    {"id": 19, "label": "Temporary deactivation", "description": "I just needed a temporary break"},
    {"id": 20, "label": "App not meeting expectations", "description": "The platform didn't meet my expectations"},
    {"id": 21, "label": "Technical issues", "description": "I experienced technical problems"},
    {"id": 22, "label": "Relocation", "description": "I've moved to a different location"},
    {"id": 23, "label": "Relationship progressed offline", "description": "Our relationship moved offline"},
    {"id": 24, "label": "Felt mismatched", "description": "We weren't compatible as partners"},
    {"id": 25, "label": "Unexpected circumstances", "description": "Something unexpected happened"},
    {"id": 26, "label": "Other", "description": "Something not listed above"},
]
_REASONS_BY_ID = {r["id"]: r for r in REACTIVATION_REASONS}


def word_count(text: str) -> int:
    return len([w for w in str(text or "").split() if w])


def validate_reactivation_reason(reason: Any, custom_reason: Any) -> tuple[str, str | None]:
    """Return (reason_code, reason_text) or raise ValueError with a user-facing message."""
    raw = str(reason or "").strip().lower()
    if not raw:
        raise ValueError("reason required")

    if raw == "other":
        code = "other"
    else:
        try:
            reason_id = int(raw)
        except ValueError:
            raise ValueError("reason must be a reason number or 'other'")
        if reason_id not in _REASONS_BY_ID:
            raise ValueError("Unknown reactivation reason")
        code = str(reason_id)

    custom = str(custom_reason or "").strip() or None
    if code in {"26", "other"}:
        if not custom or word_count(custom) < REACTIVATION_MIN_CUSTOM_WORDS:
            raise ValueError(f"Custom reason must be at least {REACTIVATION_MIN_CUSTOM_WORDS} words")
        return code, custom

    return code, custom or _REASONS_BY_ID[int(code)]["label"]
