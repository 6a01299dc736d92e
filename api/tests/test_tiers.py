from decimal import Decimal

from app.services.tiers import (
    UNLIMITED_CREDITS,
    allocated_credit_total,
    check_tier_permission,
    credits_required,
    meeting_fee_cents,
    normalize_currency,
    normalize_tier,
    price_minor_units,
    pricing_payload,
)


def test_normalizers():
    assert normalize_tier(" Premium ") == "premium"
    assert normalize_tier("gold") is None
    assert normalize_currency(None) == "usd"
    assert normalize_currency("NGN") == "ngn"
    assert normalize_currency("eur") is None


def test_credit_allocation_adds_to_existing_total_except_vip():
    assert allocated_credit_total(3, "basic") == 8
    assert allocated_credit_total(0, "premium") == 30
    assert allocated_credit_total(12, "vip") == UNLIMITED_CREDITS


def test_pricing_payload_overrides_defaults_per_tier():
    rows = [{"tier_id": "standard", "price_ngn": Decimal("30000.00"), "price_usd": Decimal("19.99"), "price_gbp": 15}]
    payload = pricing_payload(rows)
    assert [p["tier_id"] for p in payload] == ["basic", "standard", "premium", "vip"]
    assert payload[0]["price_usd"] == 7.0
    assert payload[1] == {"tier_id": "standard", "price_ngn": 30000.0, "price_usd": 19.99, "price_gbp": 15.0}


def test_price_minor_units_uses_overrides_then_base():
    assert price_minor_units("basic", "usd") == 700
    rows = [{"tier_id": "basic", "price_ngn": 12000, "price_usd": 8.5, "price_gbp": 6}]
    assert price_minor_units("basic", "usd", rows) == 850


def test_vip_contacts_everyone_without_extra_charge():
    assert check_tier_permission(None, "vip", "vip") == {"allowed": True, "extra_charge": False}


def test_missing_config_allows_same_or_lower_tier_only():
    assert check_tier_permission(None, "standard", "basic")["allowed"] is True
    assert check_tier_permission(None, "standard", "premium")["allowed"] is False


def test_config_flags_control_permission_and_extra_charge():
    config = {
        "can_one_on_one_to_premium": True,
        "extra_charge_one_on_one_to_premium": True,
        "can_one_on_one_to_vip": False,
        "extra_charge_one_on_one_to_vip": True,
    }
    assert check_tier_permission(config, "standard", "premium") == {"allowed": True, "extra_charge": True}
    assert check_tier_permission(config, "standard", "vip") == {"allowed": False, "extra_charge": False}
    assert credits_required(True) == 2
    assert credits_required(False) == 1


def test_meeting_fee_is_price_per_outgoing_credit_in_minor_units():
    assert meeting_fee_cents(10000, 5) == 200000
    assert meeting_fee_cents(Decimal("31500.00"), 15) == 210000
    assert meeting_fee_cents(10000, 0) == 0
    assert meeting_fee_cents(None, 5) == 0
