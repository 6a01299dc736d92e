import logging
from typing import Any

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request

from .. import repo as auth_repo
from .. import wallet_repo
from ..auth.admin_deps import require_permission
from ..auth.deps import get_current_user
from ..config import RL_PAYMENTS_LIMIT, RL_WINDOW_SECONDS
from ..database import SessionLocal
from ..deps import get_client_ip
from ..services import payments
from ..services.events import log_product_event
from ..services.rate_limit import rate_limit_dependency
from ..services.tiers import TIERS, normalize_currency, normalize_tier, pricing_payload

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

RL_PAYMENTS = rate_limit_dependency("payments", RL_PAYMENTS_LIMIT, RL_WINDOW_SECONDS)


def _retrieve_owned_session(session_id: str, user_id: str) -> dict[str, Any]:
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId required")
    if not payments.stripe_configured():
        raise HTTPException(status_code=503, detail="Payment system not configured")
    try:
        session = payments.retrieve_session(session_id)
    except stripe.StripeError as exc:
        logger.error(f"[payments] failed to retrieve session {session_id}: {exc}")
        raise HTTPException(status_code=502, detail="Could not retrieve checkout session") from exc
    if str(session["metadata"].get("userId") or "") != user_id:
        raise HTTPException(status_code=403, detail="Checkout session belongs to another user")
    return session


def _subscription_already_applied(user_id: str, tier: str, session_id: str) -> bool:
    membership = wallet_repo.get_membership(user_id)
    return bool(
        membership
        and membership.get("status") == "active"
        and membership.get("tier") == tier
        and membership.get("stripe_session_id") == session_id
    )


def _parse_price(raw: Any, field: str) -> float:
    if isinstance(raw, bool):
        raise HTTPException(status_code=400, detail=f"{field} must be a non-negative number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be a non-negative number")
    if value < 0:
        raise HTTPException(status_code=400, detail=f"{field} must be a non-negative number")
    return value


@scaffold_router.get("/health")
def payments_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "payments"}


@router.get("/subscription-pricing")
def subscription_pricing() -> dict[str, Any]:
    return {"pricing": pricing_payload(wallet_repo.list_pricing_rows())}


@router.post("/admin/subscription-pricing")
def admin_subscription_pricing(
    payload: dict[str, Any],
    request: Request,
    admin_user: dict[str, Any] = Depends(require_permission("manage_pricing")),
) -> dict[str, Any]:
    tier = normalize_tier(payload.get("tier_id") or payload.get("tier"))
    if not tier:
        raise HTTPException(status_code=400, detail=f"tier must be one of: {', '.join(TIERS)}")
    prices = {f: _parse_price(payload.get(f), f) for f in ("price_ngn", "price_usd", "price_gbp")}
    row = wallet_repo.upsert_pricing(tier, prices["price_ngn"], prices["price_usd"], prices["price_gbp"], admin_user.get("id"))
    auth_repo.log_admin_action(
        admin_user.get("id"),
        "update_pricing",
        meta={"tier": tier, **prices},
        ip_address=get_client_ip(request),
    )
    return {"success": True, "pricing": pricing_payload([row])}


@router.post("/create-checkout-session")
def create_checkout_session(
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(get_current_user),
    _: None = RL_PAYMENTS,
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    checkout_type = str(payload.get("type") or "subscription").strip()
    if checkout_type not in payments.CHECKOUT_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of: {', '.join(payments.CHECKOUT_TYPES)}")
    currency = normalize_currency(payload.get("currency"))
    if not currency:
        raise HTTPException(status_code=400, detail="Invalid currency. Supported: NGN, USD, GBP")
    if not payments.stripe_configured():
        raise HTTPException(status_code=503, detail="Payment system not configured")

    tier: str | None = None
    amount_cents: int | None = None
    credits: int | None = None
    if checkout_type == "subscription":
        tier = normalize_tier(payload.get("tier"))
        if not tier:
            raise HTTPException(status_code=400, detail="Invalid tier")
    else:
        try:
            amount_cents = int(payload.get("amountCents") or 0)
            credits = int(payload.get("credits") or 0) or None
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="amountCents and credits must be integers")
        if amount_cents <= 0:
            raise HTTPException(status_code=400, detail="amountCents must be a positive integer")
        if checkout_type == "credit_purchase" and not credits:
            raise HTTPException(status_code=400, detail="credits required for credit purchase")

    try:
        price_id = None
        if tier:
            price_id = payments.get_or_create_subscription_price(tier, currency, wallet_repo.list_pricing_rows())
        params = payments.build_checkout_params(
            user_id=user_id,
            email=current_user.get("email"),
            checkout_type=checkout_type,
            currency=currency,
            tier=tier,
            amount_cents=amount_cents,
            credits=credits,
            price_id=price_id,
        )
        session = payments.create_checkout_session(params)
    except stripe.StripeError as exc:
        logger.error(f"[payments] checkout session failed user_id={user_id} type={checkout_type}: {exc}")
        raise HTTPException(status_code=502, detail="Failed to create checkout session") from exc

    with SessionLocal() as db:
        log_product_event(
            db,
            event_name="checkout_started",
            user_id=user_id,
            properties={"type": checkout_type, "tier": tier, "currency": currency},
        )
        db.commit()
    return session


@router.post("/verify-payment")
def verify_payment(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    session = _retrieve_owned_session(str(payload.get("sessionId") or "").strip(), str(current_user["id"]))
    if session.get("payment_status") != "paid":
        return {"paid": False, "payment_status": session.get("payment_status")}
    return {
        "paid": True,
        "metadata": session["metadata"],
        "amount_total": session.get("amount_total"),
        "currency": session.get("currency"),
    }


@router.post("/verify-subscription")
def verify_subscription(payload: dict[str, Any], current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    session_id = str(payload.get("sessionId") or "").strip()
    session = _retrieve_owned_session(session_id, user_id)
    if session.get("payment_status") != "paid":
        raise HTTPException(status_code=400, detail="Payment not completed")
    tier = normalize_tier(session["metadata"].get("tier"))
    if not tier:
        raise HTTPException(status_code=400, detail="Checkout session has no valid tier")

    if _subscription_already_applied(user_id, tier, session_id):
        return {"success": True, "alreadyProcessed": True, "tier": tier}

    applied = wallet_repo.apply_subscription(
        user_id,
        tier,
        stripe_session_id=session_id,
        stripe_subscription_id=session.get("subscription"),
    )
    if applied.get("already_processed"):
        return {"success": True, "alreadyProcessed": True, "tier": tier}
    with SessionLocal() as db:
        log_product_event(db, event_name="subscription_activated", user_id=user_id, properties={"tier": tier})
        db.commit()
    return {
        "success": True,
        "tier": tier,
        "expires_at": applied["expires_at"].isoformat(),
        "credits_total": applied["credits_total"],
    }


@router.post("/webhook/stripe")
async def stripe_webhook(request: Request) -> dict[str, Any]:
    body = await request.body()
    try:
        event = payments.construct_event(body, request.headers.get("stripe-signature"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc) or "Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise HTTPException(status_code=400, detail="Invalid signature") from exc

    obj = event["object"]
    if event["type"] == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        user_id = str(metadata.get("userId") or "")
        kind = str(metadata.get("type") or "")
        session_id = str(obj.get("id") or "")
        if not user_id:
            logger.warning(f"[webhook] checkout.session.completed without userId session={session_id}")
        elif kind == "subscription" and normalize_tier(metadata.get("tier")):
            tier = normalize_tier(metadata.get("tier"))
            applied = wallet_repo.apply_subscription(
                user_id,
                tier,
                stripe_session_id=session_id,
                stripe_subscription_id=obj.get("subscription"),
            )
            if applied.get("already_processed"):
                logger.info(f"[webhook] subscription already applied session={session_id}")
        elif kind == "wallet_topup":
            amount = int(metadata.get("amountCents") or obj.get("amount_total") or 0)
            if amount > 0:
                try:
                    wallet_repo.apply_wallet_topup(user_id, amount, session_id, normalize_currency(metadata.get("currency")) or "usd")
                except wallet_repo.LedgerError as exc:
                    logger.error(f"[webhook] topup failed session={session_id}: {exc}")
                    raise HTTPException(status_code=500, detail="Failed to apply wallet top-up") from exc
        elif kind == "credit_purchase":
            credits = int(metadata.get("credits") or 0)
            if credits > 0:
                wallet_repo.apply_credit_purchase(user_id, credits, session_id)
    elif event["type"] == "customer.subscription.deleted":
        user_id = wallet_repo.cancel_membership_by_subscription(str(obj.get("id") or ""))
        logger.info(f"[webhook] subscription canceled subscription={obj.get('id')} user_id={user_id}")

    return {"received": True}
