from typing import Any

# (key, label, weight, category); weights sum to 100.
PROFILE_FIELDS: list[tuple[str, str, int, str]] = [
    ("first_name", "First Name", 5, "essential"),
    ("date_of_birth", "Birthday", 5, "essential"),
    ("gender", "Gender", 5, "essential"),
    ("location", "Location", 10, "essential"),
    ("about_yourself", "About Yourself", 10, "essential"),
    ("photos", "Photos", 5, "photos"),
    ("height_cm", "Height", 5, "appearance"),
    ("ethnicity", "Ethnicity", 5, "appearance"),
    ("religion", "Religion", 5, "appearance"),
    ("education_level", "Education", 5, "lifestyle"),
    ("languages", "Languages", 5, "lifestyle"),
    ("relationship_status", "Relationship Status", 3, "lifestyle"),
    ("have_children", "Has Children", 3, "lifestyle"),
    ("want_children", "Wants Children", 3, "lifestyle"),
    ("smoking_habits", "Smoking Habits", 3, "lifestyle"),
    ("willing_to_relocate", "Relocation Plan", 3, "lifestyle"),
    ("ready_for_marriage", "Marriage Ready", 2, "lifestyle"),
    ("relationship_type", "Relationship Type", 3, "lifestyle"),
    ("career_stability", "Career Stability", 3, "personality"),
    ("long_term_goals", "Long-term Goals", 3, "personality"),
    ("emotional_connection", "Emotional Connection", 3, "personality"),
    ("love_languages", "Love Languages", 3, "personality"),
    ("personality_type", "Personality Type", 3, "personality"),
]

TOTAL_WEIGHT = sum(f[2] for f in PROFILE_FIELDS)


def is_field_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (bool, int, float)):
        return True
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return bool(value)


def completeness_tier(percentage: int) -> str:
    if percentage >= 100:
        return "complete"
    if percentage >= 75:
        return "great"
    if percentage >= 50:
        return "good"
    if percentage >= 25:
        return "basic"
    return "incomplete"


def calculate_completeness(profile: dict[str, Any] | None) -> dict[str, Any]:
    profile = profile or {}
    earned = 0
    filled: list[dict[str, Any]] = []
    missing: list[dict[str, Any]] = []
    categories: dict[str, dict[str, int]] = {}

    for key, label, weight, category in PROFILE_FIELDS:
        bucket = categories.setdefault(category, {"filled": 0, "total": 0})
        bucket["total"] += weight
        entry = {"key": key, "label": label, "weight": weight, "category": category}
        if is_field_filled(profile.get(key)):
            earned += weight
            bucket["filled"] += weight
            filled.append(entry)
        else:
            missing.append(entry)

    for bucket in categories.values():
        bucket["percentage"] = round(bucket["filled"] / bucket["total"] * 100) if bucket["total"] else 0

    percentage = round(earned / TOTAL_WEIGHT * 100)
    return {
        "percentage": percentage,
        "filled_count": len(filled),
        "total_count": len(PROFILE_FIELDS),
        "filled_fields": filled,
        "missing_fields": missing,
        "top_missing": sorted(missing, key=lambda f: -f["weight"])[:3],
        "categories": categories,
        "tier": completeness_tier(percentage),
    }
