import json
import re
from datetime import date
from typing import Any

from fastapi import HTTPException

from .config import DRAFT_MAX_BYTES, MIN_SIGNUP_AGE
from .services.matching import calculate_age, parse_age_range


PROFILE_TEXT_LIMITS: dict[str, int] = {
    "first_name": 80,
    "last_name": 80,
    "gender": 32,
    "location": 200,
    "about_yourself": 5000,
    "profile_photo_url": 500,
    "ethnicity": 80,
    "religion": 80,
    "education_level": 80,
    "employment": 80,
    "relationship_status": 40,
    "want_children": 40,
    "smoking_habits": 40,
    "drinking_habits": 40,
    "diet": 40,
    "willing_to_relocate": 40,
    "relationship_type": 40,
    "career_stability": 200,
    "long_term_goals": 1000,
    "emotional_connection": 1000,
    "personality_type": 40,
}
PROFILE_LIST_FIELDS = ("photos", "languages", "love_languages")
PROFILE_BOOL_FIELDS = ("have_children", "ready_for_marriage")
MAX_PHOTOS = 6

PREFERENCE_TEXT_LIMITS: dict[str, int] = {
    "partner_location": 200,
    "partner_employment": 80,
    "partner_have_children": 40,
    "partner_want_children": 40,
    "partner_smoking": 40,
    "partner_drinking": 40,
    "partner_diet": 40,
}
PREFERENCE_LIST_FIELDS = ("partner_ethnicity", "partner_religion", "partner_education")

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_FORM_KEY_RE = re.compile(r"[a-z0-9_-]{1,64}")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_registration_input(email: str, password: str) -> tuple[str, str]:
    e = normalize_email(email)
    if not e or not _EMAIL_RE.match(e):
        raise HTTPException(status_code=400, detail="Invalid email format")
    if len(e) > 254:
        raise HTTPException(status_code=400, detail="Email too long")
    if len(password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
    return e, password


def validate_display_name(raw: Any) -> str | None:
    if raw is None:
        return None
    name = str(raw).strip() or None
    if name and len(name) > 80:
        raise HTTPException(status_code=400, detail="display_name must be 80 characters or fewer")
    return name


def _clean_text(field: str, raw: Any, limit: int) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip() or None
    if value and len(value) > limit:
        raise HTTPException(status_code=400, detail=f"{field} must be {limit} characters or fewer")
    return value


def _clean_list(field: str, raw: Any, max_items: int = 20) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise HTTPException(status_code=400, detail=f"{field} must be an array")
    out: list[str] = []
    for value in raw:
        item = str(value or "").strip()
        if item and item not in out:
            out.append(item)
    if len(out) > max_items:
        raise HTTPException(status_code=400, detail=f"{field} may contain at most {max_items} items")
    return out


def _clean_bool(field: str, raw: Any) -> bool | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    raise HTTPException(status_code=400, detail=f"{field} must be a boolean")


def _clean_int(field: str, raw: Any, low: int, high: int) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise HTTPException(status_code=400, detail=f"{field} must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be an integer")
    if value < low or value > high:
        raise HTTPException(status_code=400, detail=f"{field} must be between {low} and {high}")
    return value


def sanitize_profile_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial profile update; only keys present in the payload are returned."""
    updates: dict[str, Any] = {}

    for field, limit in PROFILE_TEXT_LIMITS.items():
        if field in payload:
            updates[field] = _clean_text(field, payload.get(field), limit)

    for field in PROFILE_LIST_FIELDS:
        if field in payload:
            updates[field] = _clean_list(field, payload.get(field), MAX_PHOTOS if field == "photos" else 20)

    for url in updates.get("photos", []):
        if len(url) > 500:
            raise HTTPException(status_code=400, detail="Each photo URL must be 500 characters or fewer")
        if not url.startswith("https://"):
            raise HTTPException(status_code=400, detail="Photo URLs must start with https://")

    for field in PROFILE_BOOL_FIELDS:
        if field in payload:
            updates[field] = _clean_bool(field, payload.get(field))

    if "height_cm" in payload:
        updates["height_cm"] = _clean_int("height_cm", payload.get("height_cm"), 100, 250)

    if "date_of_birth" in payload:
        raw_dob = payload.get("date_of_birth")
        if raw_dob in (None, ""):
            updates["date_of_birth"] = None
        else:
            try:
                dob = date.fromisoformat(str(raw_dob)[:10])
            except ValueError:
                raise HTTPException(status_code=400, detail="date_of_birth must be YYYY-MM-DD")
            age = calculate_age(dob)
            if age is None or age < MIN_SIGNUP_AGE:
                raise HTTPException(status_code=400, detail=f"You must be at least {MIN_SIGNUP_AGE} years old")
            updates["date_of_birth"] = dob

    if not updates:
        raise HTTPException(status_code=400, detail="No profile fields provided")
    return updates


def sanitize_preferences_payload(payload: dict[str, Any]) -> dict[str, Any]:
    prefs: dict[str, Any] = {}
    for field, limit in PREFERENCE_TEXT_LIMITS.items():
        prefs[field] = _clean_text(field, payload.get(field), limit)
    for field in PREFERENCE_LIST_FIELDS:
        prefs[field] = _clean_list(field, payload.get(field))

    age_range = _clean_text("partner_age_range", payload.get("partner_age_range"), 20)
    if age_range:
        bounds = parse_age_range(age_range)
        if not bounds or bounds[0] < 18 or bounds[1] > 99 or bounds[0] > bounds[1]:
            raise HTTPException(status_code=400, detail="partner_age_range must look like '25 - 35' within 18-99")
    prefs["partner_age_range"] = age_range

    low = _clean_int("partner_height_min_cm", payload.get("partner_height_min_cm"), 100, 250)
    high = _clean_int("partner_height_max_cm", payload.get("partner_height_max_cm"), 100, 250)
    if low is not None and high is not None and low > high:
        raise HTTPException(status_code=400, detail="partner_height_min_cm must not exceed partner_height_max_cm")
    prefs["partner_height_min_cm"] = low
    prefs["partner_height_max_cm"] = high
    return prefs


def validate_form_key(form_key: str) -> str:
    key = str(form_key or "").strip().lower()
    if not _FORM_KEY_RE.fullmatch(key):
        raise HTTPException(status_code=400, detail="form_key must be 1-64 chars of a-z, 0-9, '_' or '-'")
    return key


def validate_draft_data(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="data must be a JSON object")
    if len(json.dumps(data, default=str).encode("utf-8")) > DRAFT_MAX_BYTES:
        raise HTTPException(status_code=400, detail="Draft is too large")
    return data


MAX_BLOCKED_LOCATIONS = 50


def clean_blocked_locations(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        raise HTTPException(status_code=400, detail="blocked_locations must be an array")
    out: list[str] = []
    seen: set[str] = set()
    for value in raw:
        item = _clean_text("location", value, 100)
        if item and item.lower() not in seen:
            seen.add(item.lower())
            out.append(item)
    if len(out) > MAX_BLOCKED_LOCATIONS:
        raise HTTPException(status_code=400, detail=f"You can block at most {MAX_BLOCKED_LOCATIONS} locations")
    return out
