from decimal import Decimal
from typing import Any

TIERS = ("basic", "standard", "premium", "vip")
TIER_LEVELS = {"basic": 1, "standard": 2, "premium": 3, "vip": 4}
CURRENCIES = ("ngn", "usd", "gbp")

CREDIT_ALLOCATIONS = {"basic": 5, "standard": 15, "premium": 30, "vip": 999999}
UNLIMITED_CREDITS = 999999

# Minor units (kobo, cents, pence).
BASE_PRICES: dict[str, dict[str, int]] = {
    "basic": {"ngn": 1000000, "usd": 700, "gbp": 550},
    "standard": {"ngn": 3150000, "usd": 2000, "gbp": 1600},
    "premium": {"ngn": 6300000, "usd": 4300, "gbp": 3400},
    "vip": {"ngn": 150000000, "usd": 100000, "gbp": 80000},
}


def normalize_tier(raw: Any) -> str | None:
    tier = str(raw or "").strip().lower()
    return tier if tier in TIERS else None


def normalize_currency(raw: Any, default: str = "usd") -> str | None:
    currency = str(raw or default).strip().lower()
    return currency if currency in CURRENCIES else None


def allocated_credit_total(current_total: int, tier: str) -> int:
    """New credits.total after a subscription to `tier` is applied."""
    if tier == "vip":
        return UNLIMITED_CREDITS
    return int(current_total or 0) + CREDIT_ALLOCATIONS.get(tier, 0)


def default_pricing() -> list[dict[str, Any]]:
    return [
        {
            "tier_id": tier,
            "price_ngn": BASE_PRICES[tier]["ngn"] / 100,
            "price_usd": BASE_PRICES[tier]["usd"] / 100,
            "price_gbp": BASE_PRICES[tier]["gbp"] / 100,
        }
        for tier in TIERS
    ]


def _to_number(value: Any) -> float:
    if isinstance(value, Decimal):
        return float(value)
    return float(value)


def pricing_payload(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Stored rows override defaults per tier; output is always ordered by tier level."""
    by_tier = {p["tier_id"]: p for p in default_pricing()}
    for row in rows:
        tier = normalize_tier(row.get("tier_id"))
        if not tier:
            continue
        by_tier[tier] = {
            "tier_id": tier,
            "price_ngn": _to_number(row["price_ngn"]),
            "price_usd": _to_number(row["price_usd"]),
            "price_gbp": _to_number(row["price_gbp"]),
        }
    return [by_tier[t] for t in TIERS]


def price_minor_units(tier: str, currency: str, pricing_rows: list[dict[str, Any]] | None = None) -> int:
    for row in pricing_payload(pricing_rows or []):
        if row["tier_id"] == tier:
            return int(round(row[f"price_{currency}"] * 100))
    return BASE_PRICES[tier][currency]


def check_tier_permission(config: dict[str, Any] | None, requester_tier: str, target_tier: str) -> dict[str, Any]:
    """Decide whether a requester tier may book a one-on-one with a target tier.

    vip can contact everyone without an extra charge. Other tiers follow the
    `account_tier_config` row; a missing row only allows same-or-lower tiers.
    """
    if requester_tier == "vip":
        return {"allowed": True, "extra_charge": False}
    if not config:
        allowed = TIER_LEVELS.get(target_tier, 99) <= TIER_LEVELS.get(requester_tier, 0)
        return {"allowed": allowed, "extra_charge": False}
    allowed = bool(config.get(f"can_one_on_one_to_{target_tier}"))
    extra = bool(config.get(f"extra_charge_one_on_one_to_{target_tier}"))
    return {"allowed": allowed, "extra_charge": allowed and extra}


def credits_required(extra_charge: bool) -> int:
    return 2 if extra_charge else 1


def meeting_fee_cents(price_ngn: Any, monthly_outgoing_credits: Any) -> int:
    credits = int(monthly_outgoing_credits or 0)
    if credits <= 0:
        return 0
    return int(round(_to_number(price_ngn or 0) / credits * 100))
