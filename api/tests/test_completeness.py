from app.services.completeness import PROFILE_FIELDS, TOTAL_WEIGHT, calculate_completeness, is_field_filled


def test_weights_sum_to_100():
    assert TOTAL_WEIGHT == 100


def test_empty_profile_is_incomplete():
    result = calculate_completeness(None)
    assert result["percentage"] == 0
    assert result["tier"] == "incomplete"
    assert result["filled_count"] == 0
    assert result["total_count"] == len(PROFILE_FIELDS)
    assert [f["weight"] for f in result["top_missing"]] == [10, 10, 5]


def test_full_profile_is_complete():
    profile = {key: "x" for key, _label, _weight, _cat in PROFILE_FIELDS}
    profile["photos"] = ["a.jpg"]
    profile["have_children"] = False
    result = calculate_completeness(profile)
    assert result["percentage"] == 100
    assert result["tier"] == "complete"
    assert result["missing_fields"] == []
    assert all(c["percentage"] == 100 for c in result["categories"].values())


def test_essentials_only_profile():
    profile = {
        "first_name": "Ada",
        "date_of_birth": "1995-01-01",
        "gender": "female",
        "location": "Lagos",
        "about_yourself": "Hello",
    }
    result = calculate_completeness(profile)
    assert result["percentage"] == 35
    assert result["tier"] == "basic"
    assert result["categories"]["essential"]["percentage"] == 100


def test_is_field_filled_rules():
    assert is_field_filled(False) is True
    assert is_field_filled(0) is True
    assert is_field_filled("  ") is False
    assert is_field_filled([]) is False
    assert is_field_filled(None) is False
