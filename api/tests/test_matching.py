from datetime import date

from app.services.matching import (
    calculate_age,
    calculate_match_percentage,
    canonical_pair,
    is_age_restricted_for_matching,
    is_location_blocked,
    match_label,
    parse_age_range,
    rank_candidates,
)

TODAY = date(2026, 10, 19)


def test_calculate_age_respects_birthday_not_yet_reached():
    assert calculate_age("1995-10-19", TODAY) == 31
    assert calculate_age("1995-10-20", TODAY) == 30
    assert calculate_age(None, TODAY) is None
    assert calculate_age("not-a-date", TODAY) is None


def test_age_restriction_window_is_18_to_23():
    assert is_age_restricted_for_matching("2006-01-01", TODAY) is True  # 20
    assert is_age_restricted_for_matching("2003-01-01", TODAY) is True  # 23
    assert is_age_restricted_for_matching("2002-01-01", TODAY) is False  # 24
    assert is_age_restricted_for_matching(None, TODAY) is False


def test_parse_age_range_accepts_dash_variants():
    assert parse_age_range("25-35") == (25, 35)
    assert parse_age_range("25 – 35 years") == (25, 35)
    assert parse_age_range("") is None
    assert parse_age_range("any") is None


def test_missing_preferences_score_as_new():
    result = calculate_match_percentage(None, {"location": "Lagos"}, TODAY)
    assert result.percentage == 50
    assert result.label == "New"


def test_no_comparable_dimensions_score_as_new():
    result = calculate_match_percentage({"partner_location": "Lagos"}, {"first_name": "Ada"}, TODAY)
    assert result.percentage == 50
    assert result.dimensions == []


def test_full_match_on_location_and_age():
    prefs = {"partner_location": "Lagos", "partner_age_range": "25-35"}
    candidate = {"location": "Lagos, Nigeria", "date_of_birth": "1995-06-01"}
    result = calculate_match_percentage(prefs, candidate, TODAY)
    assert result.percentage == 100
    assert result.label == "Excellent Match"
    assert {d["name"] for d in result.dimensions} == {"Location", "Age"}


def test_partial_match_weighs_only_comparable_dimensions():
    prefs = {"partner_location": "Abuja", "partner_age_range": "25-35"}
    candidate = {"location": "London", "date_of_birth": "1995-06-01"}
    result = calculate_match_percentage(prefs, candidate, TODAY)
    # age (15) earned out of location (20) + age (15)
    assert result.percentage == 43
    assert result.label == "Fair Match"


def test_open_children_preference_is_not_scored():
    prefs = {"partner_have_children": "doesnt_matter", "partner_smoking": "no"}
    candidate = {"have_children": True, "smoking_habits": "Never"}
    result = calculate_match_percentage(prefs, candidate, TODAY)
    assert [d["name"] for d in result.dimensions] == ["Smoking"]
    assert result.percentage == 100


def test_match_label_thresholds():
    assert match_label(85) == "Excellent Match"
    assert match_label(70) == "Great Match"
    assert match_label(50) == "Good Match"
    assert match_label(30) == "Fair Match"
    assert match_label(29) == "Low Match"


def test_rank_candidates_drops_restricted_ages_and_sorts_by_score():
    prefs = {"partner_location": "Lagos"}
    candidates = [
        {"user_id": "b", "location": "London", "date_of_birth": "1990-01-01"},
        {"user_id": "a", "location": "Lagos", "date_of_birth": "1990-01-01"},
        {"user_id": "c", "location": "Lagos", "date_of_birth": "2005-01-01"},
    ]
    ranked = rank_candidates(prefs, candidates, TODAY)
    assert [r["user_id"] for r in ranked] == ["a", "b"]
    assert ranked[0]["age"] == 36
    assert ranked[0]["match"]["percentage"] == 100
    assert ranked[1]["match"]["percentage"] == 0


def test_rank_candidates_hides_blocked_locations():
    prefs = {"partner_location": "Lagos", "blocked_locations": ["abuja", "  "]}
    candidates = [
        {"user_id": "a", "location": "Abuja, FCT", "date_of_birth": "1990-01-01"},
        {"user_id": "b", "location": "Lagos", "date_of_birth": "1990-01-01"},
        {"user_id": "c", "location": None, "date_of_birth": "1990-01-01"},
    ]
    assert [r["user_id"] for r in rank_candidates(prefs, candidates, TODAY)] == ["b", "c"]
    assert is_location_blocked("ABUJA", ["Abuja"]) is True
    assert is_location_blocked("Lagos", []) is False


def test_canonical_pair_is_order_independent():
    assert canonical_pair("b", "a") == ("a", "b")
    assert canonical_pair("a", "b") == ("a", "b")
