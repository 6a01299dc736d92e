import time
import uuid
from typing import Any

from app.config import WALLET_CORRECTION_THRESHOLD_CENTS

CREDIT_TRANSACTION_TYPES = frozenset({"topup", "refund", "credit", "admin_adjustment"})
DEBIT_TRANSACTION_TYPES = frozenset(
    {"payment", "debit", "credit_purchase", "subscription_payment", "cancellation_fee"}
)

WALLET_SPEND_TYPES = {
    "subscription": "subscription_payment",
    "credit_purchase": "credit_purchase",
    "payment": "payment",
}


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def wallet_reference(prefix: str = "wallet", now_ms: int | None = None) -> str:
    # reference_id is unique per type across all users; the suffix separates same-millisecond spends.
    stamp = now_ms if now_ms is not None else _epoch_ms()
    return f"{prefix}_{stamp}_{uuid.uuid4().hex[:8]}"


def apply_transaction(balance: int, tx_type: str, amount_cents: int) -> int:
    """Effect of one ledger row on a running balance.

    Credit-side rows add their signed amount (an admin adjustment may be
    negative); debit-side rows always subtract their magnitude, whatever sign
    the row was written with. Unknown types leave the balance untouched.
    """
    if tx_type in CREDIT_TRANSACTION_TYPES:
        return balance + int(amount_cents)
    if tx_type in DEBIT_TRANSACTION_TYPES:
        return balance - abs(int(amount_cents))
    return balance


def replay_balance(transactions: list[dict[str, Any]]) -> int:
    """Recompute a wallet balance from its transactions in created_at order."""
    ordered = sorted(transactions, key=lambda t: (t.get("created_at") is None, t.get("created_at")))
    balance = 0
    for tx in ordered:
        if str(tx.get("status") or "completed") != "completed":
            continue
        balance = apply_transaction(balance, str(tx.get("type") or ""), int(tx.get("amount_cents") or 0))
    return balance


def plan_correction(
    current_balance: int,
    transactions: list[dict[str, Any]],
    threshold_cents: int | None = None,
) -> dict[str, Any]:
    threshold = WALLET_CORRECTION_THRESHOLD_CENTS if threshold_cents is None else threshold_cents
    calculated = replay_balance(transactions)
    difference = calculated - int(current_balance)
    return {
        "needs_correction": abs(difference) > threshold,
        "current": int(current_balance),
        "calculated": calculated,
        "difference": difference,
    }


def insufficient_balance_detail(balance_cents: int, required_cents: int) -> dict[str, Any]:
    return {
        "error": "Insufficient wallet balance",
        "currentBalance": int(balance_cents),
        "required": int(required_cents),
        "shortfall": int(required_cents) - int(balance_cents),
    }


def credits_available(credits_row: dict[str, Any] | None) -> int:
    if not credits_row:
        return 0
    return max(0, int(credits_row.get("total") or 0) - int(credits_row.get("used") or 0))
