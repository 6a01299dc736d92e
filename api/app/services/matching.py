from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import text

from app.config import MIN_MATCHING_AGE

MIN_RESTRICTED_AGE = 18
MAX_RESTRICTED_AGE = MIN_MATCHING_AGE - 1

WEIGHTS: dict[str, int] = {
    "location": 20,
    "age": 15,
    "height": 10,
    "ethnicity": 10,
    "religion": 10,
    "education": 8,
    "children_have": 7,
    "children_want": 7,
    "smoking": 5,
}

OPEN_PREFERENCES = {"doesnt_matter", "any", "no preference", "open"}

_AGE_RANGE_RE = re.compile(r"(\d+)\s*[-–]\s*(\d+)")


@dataclass
class MatchResult:
    percentage: int
    label: str
    dimensions: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"percentage": self.percentage, "label": self.label, "matches": list(self.dimensions)}


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((str(user_a), str(user_b))))


def _as_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def calculate_age(dob: Any, today: date | None = None) -> int | None:
    birth = _as_date(dob)
    if birth is None:
        return None
    today = today or date.today()
    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age if age >= 0 else None


def is_age_restricted_for_matching(dob: Any, today: date | None = None) -> bool:
    """Users aged 18 to 23 stay out of the matching pool; a missing birth date does not restrict."""
    age = calculate_age(dob, today)
    if age is None:
        return False
    return MIN_RESTRICTED_AGE <= age <= MAX_RESTRICTED_AGE


def parse_age_range(raw: Any) -> tuple[int, int] | None:
    if not raw:
        return None
    m = _AGE_RANGE_RE.search(str(raw))
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def _is_open(value: Any) -> bool:
    if value is None:
        return True
    v = str(value).strip().lower()
    return not v or v in OPEN_PREFERENCES


def _location_matches(preferred: str, candidate: str) -> bool:
    p = preferred.strip().lower()
    c = candidate.strip().lower()
    return p in c or c in p


def _any_contained(options: list[str], candidate: str) -> bool:
    c = candidate.lower()
    return any(str(o).lower() in c for o in options)


def match_label(percentage: int) -> str:
    if percentage >= 85:
        return "Excellent Match"
    if percentage >= 70:
        return "Great Match"
    if percentage >= 50:
        return "Good Match"
    if percentage >= 30:
        return "Fair Match"
    return "Low Match"


def calculate_match_percentage(
    prefs: dict[str, Any] | None,
    candidate: dict[str, Any],
    today: date | None = None,
) -> MatchResult:
    """Score a candidate profile against the caller's partner preferences.

    Only dimensions where both a preference and a candidate value exist are
    weighed, so sparse profiles are not punished for missing data.
    """
    if not prefs:
        return MatchResult(percentage=50, label="New")

    dims: list[dict[str, Any]] = []
    total = 0
    earned = 0

    def score(name: str, key: str, matched: bool) -> None:
        nonlocal total, earned
        total += WEIGHTS[key]
        if matched:
            earned += WEIGHTS[key]
        dims.append({"name": name, "matched": matched, "weight": WEIGHTS[key]})

    location = candidate.get("location")
    if prefs.get("partner_location") and location:
        score("Location", "location", _location_matches(str(prefs["partner_location"]), str(location)))

    age_range = parse_age_range(prefs.get("partner_age_range"))
    age = calculate_age(candidate.get("date_of_birth"), today)
    if age_range and age is not None:
        score("Age", "age", age_range[0] <= age <= age_range[1])

    h_min = prefs.get("partner_height_min_cm")
    h_max = prefs.get("partner_height_max_cm")
    height = candidate.get("height_cm")
    if h_min and h_max and height:
        score("Height", "height", int(h_min) <= int(height) <= int(h_max))

    ethnicity = candidate.get("ethnicity")
    meaningful = [e for e in (prefs.get("partner_ethnicity") or []) if str(e).lower() != "i'd rather not say"]
    if meaningful and ethnicity:
        score("Ethnicity", "ethnicity", _any_contained(meaningful, str(ethnicity)))

    religion = candidate.get("religion")
    if prefs.get("partner_religion") and religion:
        score("Religion", "religion", _any_contained(list(prefs["partner_religion"]), str(religion)))

    education = candidate.get("education_level")
    if prefs.get("partner_education") and education:
        score("Education", "education", _any_contained(list(prefs["partner_education"]), str(education)))

    have_children = candidate.get("have_children")
    if not _is_open(prefs.get("partner_have_children")) and have_children is not None:
        wanted = str(prefs["partner_have_children"]).strip().lower() == "yes"
        score("Has Children", "children_have", wanted == bool(have_children))

    want_children = candidate.get("want_children")
    if not _is_open(prefs.get("partner_want_children")) and want_children:
        score("Wants Children", "children_want", str(prefs["partner_want_children"]) == str(want_children))

    smoking = candidate.get("smoking_habits")
    if not _is_open(prefs.get("partner_smoking")) and smoking:
        prefers_non_smoker = str(prefs["partner_smoking"]).strip().lower() == "no"
        s = str(smoking).lower()
        non_smoker = "never" in s or "no" in s
        score("Smoking", "smoking", non_smoker if prefers_non_smoker else not non_smoker)

    if total == 0:
        return MatchResult(percentage=50, label="New", dimensions=dims)

    percentage = round(earned / total * 100)
    return MatchResult(percentage=percentage, label=match_label(percentage), dimensions=dims)


def is_location_blocked(location: Any, blocked_locations: list[str] | None) -> bool:
    """Case-insensitive containment, so blocking "Lagos" also hides "Lagos, Nigeria"."""
    place = str(location or "").strip().lower()
    if not place or not blocked_locations:
        return False
    return any(str(b).strip().lower() in place for b in blocked_locations if str(b).strip())


def rank_candidates(
    prefs: dict[str, Any] | None,
    candidates: list[dict[str, Any]],
    today: date | None = None,
) -> list[dict[str, Any]]:
    blocked = (prefs or {}).get("blocked_locations") or []
    ranked: list[dict[str, Any]] = []
    for c in candidates:
        if is_age_restricted_for_matching(c.get("date_of_birth"), today):
            continue
        if is_location_blocked(c.get("location"), blocked):
            continue
        result = calculate_match_percentage(prefs, c, today)
        ranked.append({**c, "age": calculate_age(c.get("date_of_birth"), today), "match": result.as_dict()})
    ranked.sort(key=lambda r: (-r["match"]["percentage"], str(r.get("user_id"))))
    return ranked


def fetch_discover_candidates(db, user_id: str, limit: int) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT
              up.user_id,
              up.first_name,
              up.date_of_birth,
              up.gender,
              up.location,
              up.about_yourself,
              up.photos,
              up.profile_photo_url,
              up.height_cm,
              up.ethnicity,
              up.religion,
              up.education_level,
              up.have_children,
              up.want_children,
              up.smoking_habits,
              a.tier,
              a.last_active_at
            FROM user_profiles up
            JOIN accounts a ON a.id = up.user_id
            WHERE up.user_id <> CAST(:user_id AS uuid)
              AND up.is_visible = TRUE
              AND a.account_status = 'active'
              AND NOT EXISTS (
                SELECT 1 FROM blocked_users b
                WHERE (b.blocker_id = CAST(:user_id AS uuid) AND b.blocked_id = up.user_id)
                   OR (b.blocker_id = up.user_id AND b.blocked_id = CAST(:user_id AS uuid))
              )
              AND NOT EXISTS (
                SELECT 1 FROM user_activities ua
                WHERE ua.user_id = CAST(:user_id AS uuid)
                  AND ua.target_user_id = up.user_id
                  AND ua.activity_type = 'rejected'
              )
            ORDER BY a.last_active_at DESC NULLS LAST
            LIMIT :limit
            """
        ),
        {"user_id": user_id, "limit": max(1, int(limit))},
    ).mappings().all()
    return [dict(r) for r in rows]
