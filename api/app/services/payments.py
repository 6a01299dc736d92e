"""Stripe checkout sessions, recurring prices and webhook verification.

Routes only see plain dicts; the Stripe SDK objects stay inside this module.
"""

import logging
from typing import Any

import stripe

from app import config
from app.services.tiers import price_minor_units

logger = logging.getLogger(__name__)

CHECKOUT_TYPES = ("subscription", "wallet_topup", "credit_purchase")

PLAN_NAMES = {
    "basic": "Basic Plan",
    "standard": "Standard Plan",
    "premium": "Premium Plan",
    "vip": "VIP Plan",
}


class PaymentsNotConfigured(Exception):
    pass


def stripe_configured() -> bool:
    return bool(config.STRIPE_SECRET_KEY)


def _client() -> None:
    if not stripe_configured():
        raise PaymentsNotConfigured("STRIPE_SECRET_KEY is not set")
    stripe.api_key = config.STRIPE_SECRET_KEY


def _return_urls(checkout_type: str) -> tuple[str, str]:
    page = "subscription" if checkout_type == "subscription" else "wallet"
    base = f"{config.APP_URL}/dashboard/profile/{page}"
    return f"{base}?success=true&session_id={{CHECKOUT_SESSION_ID}}", f"{base}?canceled=true"


def lookup_key(tier: str, currency: str) -> str:
    return f"tier_{tier}_{currency}"


def get_or_create_subscription_price(tier: str, currency: str, pricing_rows: list[dict[str, Any]] | None = None) -> str:
    """Monthly recurring price for a tier, found by lookup key or created on first use."""
    _client()
    key = lookup_key(tier, currency)
    found = stripe.Price.list(lookup_keys=[key], active=True, limit=1)
    if found.data:
        return found.data[0].id
    price = stripe.Price.create(
        unit_amount=price_minor_units(tier, currency, pricing_rows),
        currency=currency,
        recurring={"interval": "month"},
        lookup_key=key,
        product_data={"name": PLAN_NAMES.get(tier, tier.title())},
    )
    logger.info(f"[payments] created recurring price {price.id} for {key}")
    return price.id


def build_checkout_params(
    *,
    user_id: str,
    email: str | None,
    checkout_type: str,
    currency: str,
    tier: str | None = None,
    amount_cents: int | None = None,
    credits: int | None = None,
    price_id: str | None = None,
) -> dict[str, Any]:
    success_url, cancel_url = _return_urls(checkout_type)
    metadata = {
        "userId": user_id,
        "type": checkout_type,
        "tier": tier or "",
        "amountCents": str(amount_cents or ""),
        "currency": currency,
        "credits": str(credits or ""),
    }
    params: dict[str, Any] = {
        "payment_method_types": ["card"],
        "locale": "en",
        "success_url": success_url,
        "cancel_url": cancel_url,
        "client_reference_id": user_id,
        "metadata": metadata,
    }
    if email:
        params["customer_email"] = email

    if checkout_type == "subscription":
        params["mode"] = "subscription"
        params["line_items"] = [{"price": price_id, "quantity": 1}]
        return params

    if checkout_type == "wallet_topup":
        name = "Wallet Top-up"
        description = f"Add {currency.upper()} {int(amount_cents or 0) / 100:.2f} to your wallet"
    else:
        name = "Credits Purchase"
        description = f"Purchase {credits} credit{'s' if credits != 1 else ''} for video dating"
    params["mode"] = "payment"
    params["line_items"] = [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": name, "description": description},
                "unit_amount": int(amount_cents or 0),
            },
            "quantity": 1,
        }
    ]
    return params


def create_checkout_session(params: dict[str, Any]) -> dict[str, Any]:
    _client()
    session = stripe.checkout.Session.create(**params)
    return {"sessionId": session.id, "url": session.url}


def _session_dict(session: Any) -> dict[str, Any]:
    metadata = session.get("metadata") or {}
    return {
        "id": session.get("id"),
        "payment_status": session.get("payment_status"),
        "status": session.get("status"),
        "amount_total": session.get("amount_total"),
        "currency": session.get("currency"),
        "subscription": session.get("subscription"),
        "customer": session.get("customer"),
        "metadata": {k: metadata[k] for k in metadata.keys()},
    }


def retrieve_session(session_id: str) -> dict[str, Any]:
    _client()
    return _session_dict(stripe.checkout.Session.retrieve(session_id))


def construct_event(payload: bytes, signature: str | None) -> dict[str, Any]:
    """Verify a webhook delivery. Raises ValueError or stripe.SignatureVerificationError."""
    if not signature:
        raise ValueError("Missing stripe-signature header")
    if not config.STRIPE_WEBHOOK_SECRET:
        raise ValueError("STRIPE_WEBHOOK_SECRET is not set")
    event = stripe.Webhook.construct_event(payload, signature, config.STRIPE_WEBHOOK_SECRET)
    obj = event["data"]["object"]
    if event["type"].startswith("checkout.session."):
        data = _session_dict(obj)
    else:
        data = {"id": obj.get("id"), "status": obj.get("status")}
    return {"id": event["id"], "type": event["type"], "object": data}
