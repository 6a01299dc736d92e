import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from .. import wallet_repo
from ..auth.deps import get_current_user, require_active_user
from ..config import RL_PAYMENTS_LIMIT, RL_WINDOW_SECONDS
from ..database import SessionLocal
from ..services.events import log_product_event
from ..services.ledger import (
    WALLET_SPEND_TYPES,
    credits_available,
    insufficient_balance_detail,
    plan_correction,
    wallet_reference,
)
from ..services.rate_limit import rate_limit_dependency
from ..services.tiers import normalize_currency, normalize_tier

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()

RL_PAYMENTS = rate_limit_dependency("wallet_payments", RL_PAYMENTS_LIMIT, RL_WINDOW_SECONDS)


def _positive_int(raw: Any, field: str) -> int:
    if isinstance(raw, bool):
        raise HTTPException(status_code=400, detail=f"{field} must be a positive integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be a positive integer")
    if value <= 0:
        raise HTTPException(status_code=400, detail=f"{field} must be a positive integer")
    return value


def _log_event(event_name: str, user_id: str, properties: dict[str, Any]) -> None:
    with SessionLocal() as db:
        log_product_event(db, event_name=event_name, user_id=user_id, properties=properties)
        db.commit()


@scaffold_router.get("/health")
def wallet_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "wallet"}


@router.get("/wallet")
def wallet_get(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    wallet = wallet_repo.get_wallet(user_id)
    credits = wallet_repo.get_credits(user_id)
    return jsonable_encoder(
        {
            "balance_cents": int(wallet.get("balance_cents") or 0),
            "currency": wallet.get("currency") or "usd",
            "credits": {
                "total": int(credits.get("total") or 0),
                "used": int(credits.get("used") or 0),
                "rollover": int(credits.get("rollover") or 0),
                "available": credits_available(credits),
            },
            "transactions": wallet_repo.list_transactions(user_id, limit=50),
        }
    )


@router.post("/add-credits")
def add_credits(
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(get_current_user),
    _: None = RL_PAYMENTS,
) -> dict[str, Any]:
    """Credit a completed Stripe checkout to the caller; safe to call more than once per session."""
    user_id = str(current_user["id"])
    if str(payload.get("userId") or "").strip() != user_id:
        raise HTTPException(status_code=403, detail="Cannot add credits for another user")
    session_id = str(payload.get("sessionId") or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId required")
    kind = str(payload.get("type") or "").strip()

    if kind == "wallet_topup":
        amount = _positive_int(payload.get("amountCents"), "amountCents")
        currency = normalize_currency(payload.get("currency")) or "usd"
        try:
            result = wallet_repo.apply_wallet_topup(user_id, amount, session_id, currency)
        except wallet_repo.LedgerError as exc:
            raise HTTPException(status_code=500, detail="Failed to update wallet balance") from exc
        if result["already_processed"]:
            return {"success": True, "alreadyProcessed": True, "balanceAdded": 0, "newBalance": result["new_balance"]}
        _log_event("wallet_topup", user_id, {"amount_cents": amount, "currency": currency})
        return {"success": True, "balanceAdded": result["balance_added"], "newBalance": result["new_balance"]}

    if kind == "credit_purchase":
        credits = _positive_int(payload.get("credits"), "credits")
        result = wallet_repo.apply_credit_purchase(user_id, credits, session_id)
        if result["already_processed"]:
            return {"success": True, "alreadyProcessed": True, "creditsAdded": 0, "total": result["total"]}
        _log_event("credit_purchase", user_id, {"credits": credits})
        return {"success": True, "creditsAdded": result["credits_added"], "total": result["total"]}

    raise HTTPException(status_code=400, detail="type must be 'wallet_topup' or 'credit_purchase'")


@router.post("/use-wallet-balance")
def use_wallet_balance(
    payload: dict[str, Any],
    current_user: dict[str, Any] = Depends(require_active_user),
    _: None = RL_PAYMENTS,
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    kind = str(payload.get("type") or "").strip()
    if kind not in WALLET_SPEND_TYPES:
        raise HTTPException(status_code=400, detail="type must be 'subscription', 'credit_purchase' or 'payment'")
    amount = _positive_int(payload.get("amountCents"), "amountCents")

    tier: str | None = None
    credits = 0
    if kind == "subscription":
        tier = normalize_tier(payload.get("tier"))
        if not tier:
            raise HTTPException(status_code=400, detail="Invalid tier")
    elif kind == "credit_purchase":
        credits = _positive_int(payload.get("credits"), "credits")

    description = {
        "subscription": f"Subscription payment ({tier})",
        "credit_purchase": f"Purchased {credits} credits",
        "payment": str(payload.get("description") or "Wallet payment")[:200],
    }[kind]
    try:
        spent = wallet_repo.spend_wallet_balance(
            user_id,
            amount,
            tx_type=WALLET_SPEND_TYPES[kind],
            reference_id=wallet_reference(),
            description=description,
        )
    except wallet_repo.InsufficientBalanceError as exc:
        raise HTTPException(status_code=402, detail=insufficient_balance_detail(exc.balance_cents, exc.required_cents)) from exc

    response: dict[str, Any] = {"success": True, "newBalance": spent["new_balance"], "transaction_id": spent["transaction_id"]}
    if tier:
        applied = wallet_repo.apply_subscription(user_id, tier)
        response["tier"] = tier
        response["credits_total"] = applied["credits_total"]
    elif credits:
        response["credits_total"] = wallet_repo.add_credits(user_id, credits)

    _log_event("wallet_spend", user_id, {"type": kind, "amount_cents": amount, "tier": tier, "credits": credits or None})
    return jsonable_encoder(response)


@router.post("/correct-wallet-balance")
def correct_wallet_balance(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    user_id = str(current_user["id"])
    current = int(wallet_repo.get_wallet(user_id).get("balance_cents") or 0)
    plan = plan_correction(current, wallet_repo.list_transactions_for_replay(user_id))
    if not plan["needs_correction"]:
        return {"corrected": False, "balance": current}

    wallet_repo.correct_balance(user_id, current, plan["calculated"], wallet_reference("correction"))
    logger.warning(
        f"[wallet] corrected balance user_id={user_id} from={current} to={plan['calculated']} difference={plan['difference']}"
    )
    return {
        "corrected": True,
        "previousBalance": current,
        "correctedBalance": plan["calculated"],
        "difference": plan["difference"],
    }
