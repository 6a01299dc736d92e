"""Wallet, credits and subscription persistence.

Every balance change writes a `wallet_transactions` row. Externally keyed
payments (Stripe checkout sessions) carry the session id in `reference_id`;
the partial unique index on `(reference_id, type)` is what makes replays of
the same session a no-op.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import MEMBERSHIP_PERIOD_DAYS
from app.database import SessionLocal
from app.services.tiers import allocated_credit_total

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """A balance change could not be persisted."""


class InsufficientBalanceError(Exception):
    def __init__(self, balance_cents: int, required_cents: int):
        self.balance_cents = int(balance_cents)
        self.required_cents = int(required_cents)
        super().__init__(f"balance {balance_cents} < required {required_cents}")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_wallet(user_id: str) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT user_id, balance_cents, currency, updated_at FROM wallets WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    if not row:
        return {"user_id": user_id, "balance_cents": 0, "currency": "usd", "updated_at": None}
    return dict(row)


def get_credits(user_id: str) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT user_id, total, used, rollover FROM credits WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    if not row:
        return {"user_id": user_id, "total": 0, "used": 0, "rollover": 0}
    return dict(row)


def list_transactions(user_id: str, limit: int = 50) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, type, amount_cents, balance_before_cents, balance_after_cents, currency,
                       reference_id, description, status, created_at
                FROM wallet_transactions
                WHERE user_id=CAST(:user_id AS uuid)
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            {"user_id": user_id, "limit": max(1, min(int(limit), 500))},
        ).mappings().all()
    return [dict(r) for r in rows]


def list_transactions_for_replay(user_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, type, amount_cents, status, created_at
                FROM wallet_transactions
                WHERE user_id=CAST(:user_id AS uuid)
                ORDER BY created_at ASC
                """
            ),
            {"user_id": user_id},
        ).mappings().all()
    return [dict(r) for r in rows]


def list_transactions_admin(user_id: str | None = None, limit: int = 200) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT t.*, a.email AS user_email
                FROM wallet_transactions t
                JOIN accounts a ON a.id = t.user_id
                WHERE (CAST(:user_id AS text) IS NULL OR t.user_id = CAST(:user_id AS uuid))
                ORDER BY t.created_at DESC
                LIMIT :limit
                """
            ),
            {"user_id": user_id, "limit": max(1, min(int(limit), 1000))},
        ).mappings().all()
    return [dict(r) for r in rows]


def find_transaction_by_reference(reference_id: str, tx_type: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, user_id, type, amount_cents, reference_id, created_at
                FROM wallet_transactions
                WHERE reference_id=:reference_id AND type=:type
                LIMIT 1
                """
            ),
            {"reference_id": reference_id, "type": tx_type},
        ).mappings().first()
    return dict(row) if row else None


def insert_transaction(
    db,
    *,
    user_id: str,
    tx_type: str,
    amount_cents: int,
    balance_before_cents: int | None,
    balance_after_cents: int | None,
    reference_id: str | None,
    description: str | None,
    currency: str | None = None,
) -> str:
    row = db.execute(
        text(
            """
            INSERT INTO wallet_transactions (
              user_id, type, amount_cents, balance_before_cents, balance_after_cents,
              currency, reference_id, description, status
            )
            VALUES (
              CAST(:user_id AS uuid), :type, :amount_cents, :before, :after,
              :currency, :reference_id, :description, 'completed'
            )
            RETURNING id
            """
        ),
        {
            "user_id": user_id,
            "type": tx_type,
            "amount_cents": int(amount_cents),
            "before": balance_before_cents,
            "after": balance_after_cents,
            "currency": currency,
            "reference_id": reference_id,
            "description": description,
        },
    ).mappings().first()
    return str(row["id"]) if row else ""


def delete_transaction(transaction_id: str) -> None:
    with SessionLocal() as db:
        db.execute(text("DELETE FROM wallet_transactions WHERE id=CAST(:id AS uuid)"), {"id": transaction_id})
        db.commit()


def apply_wallet_topup(
    user_id: str,
    amount_cents: int,
    reference_id: str,
    currency: str = "usd",
) -> dict[str, Any]:
    """Credit a Stripe-funded top-up at most once per checkout session.

    The ledger row is written first so a concurrent replay trips the unique
    index; if the wallet update then fails the ledger row is removed again.
    """
    if find_transaction_by_reference(reference_id, "topup"):
        return {"already_processed": True, "balance_added": 0, "new_balance": int(get_wallet(user_id)["balance_cents"])}

    before = int(get_wallet(user_id)["balance_cents"] or 0)
    after = before + int(amount_cents)
    try:
        with SessionLocal() as db:
            tx_id = insert_transaction(
                db,
                user_id=user_id,
                tx_type="topup",
                amount_cents=amount_cents,
                balance_before_cents=before,
                balance_after_cents=after,
                reference_id=reference_id,
                description="Wallet top-up",
                currency=currency,
            )
            db.commit()
    except IntegrityError:
        logger.info(f"[wallet] topup already processed reference_id={reference_id}")
        return {"already_processed": True, "balance_added": 0, "new_balance": int(get_wallet(user_id)["balance_cents"])}

    try:
        with SessionLocal() as db:
            row = db.execute(
                text(
                    """
                    INSERT INTO wallets (user_id, balance_cents, currency, updated_at)
                    VALUES (CAST(:user_id AS uuid), :amount, :currency, NOW())
                    ON CONFLICT (user_id)
                    DO UPDATE SET balance_cents = wallets.balance_cents + EXCLUDED.balance_cents, updated_at = NOW()
                    RETURNING balance_cents
                    """
                ),
                {"user_id": user_id, "amount": int(amount_cents), "currency": currency},
            ).mappings().first()
            db.commit()
    except SQLAlchemyError as exc:
        logger.error(f"[wallet] wallet update failed after ledger insert user_id={user_id} reference_id={reference_id}: {exc}")
        delete_transaction(tx_id)
        raise LedgerError("Failed to update wallet balance") from exc

    new_balance = int(row["balance_cents"]) if row else after
    logger.info(f"[wallet] topup user_id={user_id} amount={amount_cents} new_balance={new_balance}")
    return {"already_processed": False, "balance_added": int(amount_cents), "new_balance": new_balance}


def apply_credit_purchase(user_id: str, credits: int, reference_id: str) -> dict[str, Any]:
    """Add purchased meeting credits once per reference; `used` and `rollover` are preserved."""
    if find_transaction_by_reference(reference_id, "credit_purchase"):
        return {"already_processed": True, "credits_added": 0, "total": int(get_credits(user_id)["total"])}
    try:
        with SessionLocal() as db:
            insert_transaction(
                db,
                user_id=user_id,
                tx_type="credit_purchase",
                amount_cents=0,
                balance_before_cents=None,
                balance_after_cents=None,
                reference_id=reference_id,
                description=f"Purchased {int(credits)} credits",
            )
            row = db.execute(
                text(
                    """
                    INSERT INTO credits (user_id, total, updated_at)
                    VALUES (CAST(:user_id AS uuid), :credits, NOW())
                    ON CONFLICT (user_id)
                    DO UPDATE SET total = credits.total + EXCLUDED.total, updated_at = NOW()
                    RETURNING total
                    """
                ),
                {"user_id": user_id, "credits": int(credits)},
            ).mappings().first()
            db.commit()
    except IntegrityError:
        return {"already_processed": True, "credits_added": 0, "total": int(get_credits(user_id)["total"])}
    return {"already_processed": False, "credits_added": int(credits), "total": int(row["total"]) if row else int(credits)}


def spend_wallet_balance(
    user_id: str,
    amount_cents: int,
    *,
    tx_type: str,
    reference_id: str,
    description: str,
) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT balance_cents, currency FROM wallets WHERE user_id=CAST(:user_id AS uuid) FOR UPDATE"),
            {"user_id": user_id},
        ).mappings().first()
        before = int(row["balance_cents"]) if row else 0
        if before < int(amount_cents):
            db.rollback()
            raise InsufficientBalanceError(before, amount_cents)
        after = before - int(amount_cents)
        db.execute(
            text("UPDATE wallets SET balance_cents=:after, updated_at=NOW() WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id, "after": after},
        )
        tx_id = insert_transaction(
            db,
            user_id=user_id,
            tx_type=tx_type,
            amount_cents=-int(amount_cents),
            balance_before_cents=before,
            balance_after_cents=after,
            reference_id=reference_id,
            description=description,
            currency=str(row["currency"]) if row else "usd",
        )
        db.commit()
    return {"new_balance": after, "transaction_id": tx_id}


def add_credits(user_id: str, credits: int) -> int:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO credits (user_id, total, updated_at)
                VALUES (CAST(:user_id AS uuid), :credits, NOW())
                ON CONFLICT (user_id)
                DO UPDATE SET total = credits.total + EXCLUDED.total, updated_at = NOW()
                RETURNING total
                """
            ),
            {"user_id": user_id, "credits": int(credits)},
        ).mappings().first()
        db.commit()
    return int(row["total"]) if row else int(credits)


def adjust_credits(user_id: str, adjustment: int) -> int:
    """Admin credit adjustment; the total never drops below zero."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO credits (user_id, total, updated_at)
                VALUES (CAST(:user_id AS uuid), GREATEST(:adj, 0), NOW())
                ON CONFLICT (user_id)
                DO UPDATE SET total = GREATEST(credits.total + :adj, 0), updated_at = NOW()
                RETURNING total
                """
            ),
            {"user_id": user_id, "adj": int(adjustment)},
        ).mappings().first()
        db.commit()
    return int(row["total"]) if row else max(int(adjustment), 0)


def apply_subscription(
    user_id: str,
    tier: str,
    *,
    stripe_session_id: str | None = None,
    stripe_subscription_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Switch the account tier, activate the membership and allocate the tier's credits.

    The account row is locked before the membership is read, so a webhook and
    a success-page verify racing on the same checkout session serialize here
    and only the first one allocates credits.
    """
    now = now or _now_utc()
    expires_at = now + timedelta(days=MEMBERSHIP_PERIOD_DAYS)
    with SessionLocal() as db:
        existing = db.execute(
            text(
                """
                SELECT m.stripe_session_id, m.status, m.tier, m.expires_at
                FROM accounts a
                LEFT JOIN memberships m ON m.user_id = a.id
                WHERE a.id = CAST(:user_id AS uuid)
                FOR UPDATE OF a
                """
            ),
            {"user_id": user_id},
        ).mappings().first()
        if (
            stripe_session_id
            and existing
            and existing.get("stripe_session_id") == stripe_session_id
            and existing.get("status") == "active"
            and existing.get("tier") == tier
        ):
            credits_row = db.execute(
                text("SELECT total FROM credits WHERE user_id=CAST(:user_id AS uuid)"),
                {"user_id": user_id},
            ).mappings().first()
            db.rollback()
            logger.info(f"[wallet] subscription already applied user_id={user_id} session={stripe_session_id}")
            return {
                "already_processed": True,
                "tier": tier,
                "expires_at": existing.get("expires_at"),
                "credits_total": int(credits_row["total"]) if credits_row else 0,
            }

        db.execute(text("UPDATE accounts SET tier=:tier WHERE id=CAST(:user_id AS uuid)"), {"user_id": user_id, "tier": tier})
        db.execute(
            text(
                """
                INSERT INTO memberships (user_id, tier, status, started_at, expires_at, stripe_session_id, stripe_subscription_id, updated_at)
                VALUES (CAST(:user_id AS uuid), :tier, 'active', :now, :expires_at, :session_id, :subscription_id, NOW())
                ON CONFLICT (user_id) DO UPDATE SET
                  tier = EXCLUDED.tier,
                  status = 'active',
                  started_at = EXCLUDED.started_at,
                  expires_at = EXCLUDED.expires_at,
                  stripe_session_id = EXCLUDED.stripe_session_id,
                  stripe_subscription_id = COALESCE(EXCLUDED.stripe_subscription_id, memberships.stripe_subscription_id),
                  updated_at = NOW()
                """
            ),
            {
                "user_id": user_id,
                "tier": tier,
                "now": now,
                "expires_at": expires_at,
                "session_id": stripe_session_id,
                "subscription_id": stripe_subscription_id,
            },
        )
        current = db.execute(
            text("SELECT total FROM credits WHERE user_id=CAST(:user_id AS uuid) FOR UPDATE"),
            {"user_id": user_id},
        ).mappings().first()
        new_total = allocated_credit_total(int(current["total"]) if current else 0, tier)
        db.execute(
            text(
                """
                INSERT INTO credits (user_id, total, updated_at)
                VALUES (CAST(:user_id AS uuid), :total, NOW())
                ON CONFLICT (user_id) DO UPDATE SET total = EXCLUDED.total, updated_at = NOW()
                """
            ),
            {"user_id": user_id, "total": new_total},
        )
        db.commit()
    logger.info(f"[wallet] subscription applied user_id={user_id} tier={tier} credits_total={new_total}")
    return {"already_processed": False, "tier": tier, "expires_at": expires_at, "credits_total": new_total}


def get_membership(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT * FROM memberships WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def cancel_membership_by_subscription(stripe_subscription_id: str) -> str | None:
    """Cancel the membership tied to a Stripe subscription and drop the account to basic."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE memberships
                SET status='canceled', updated_at=NOW()
                WHERE stripe_subscription_id=:subscription_id
                RETURNING user_id
                """
            ),
            {"subscription_id": stripe_subscription_id},
        ).mappings().first()
        if row:
            db.execute(
                text("UPDATE accounts SET tier='basic' WHERE id=CAST(:user_id AS uuid)"),
                {"user_id": str(row["user_id"])},
            )
        db.commit()
    return str(row["user_id"]) if row else None


def correct_balance(user_id: str, current_cents: int, calculated_cents: int, reference_id: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO wallets (user_id, balance_cents, updated_at)
                VALUES (CAST(:user_id AS uuid), :calculated, NOW())
                ON CONFLICT (user_id) DO UPDATE SET balance_cents = EXCLUDED.balance_cents, updated_at = NOW()
                """
            ),
            {"user_id": user_id, "calculated": int(calculated_cents)},
        )
        insert_transaction(
            db,
            user_id=user_id,
            tx_type="admin_adjustment",
            amount_cents=int(calculated_cents) - int(current_cents),
            balance_before_cents=int(current_cents),
            balance_after_cents=int(calculated_cents),
            reference_id=reference_id,
            description="Automatic balance correction from transaction history",
        )
        db.commit()


def charge_cancellation_fee(db, user_id: str, fee_cents: int, meeting_id: str, canceller_role: str) -> int:
    """Debit the canceller's wallet inside the caller's transaction; the balance may go negative."""
    row = db.execute(
        text("SELECT balance_cents FROM wallets WHERE user_id=CAST(:user_id AS uuid) FOR UPDATE"),
        {"user_id": user_id},
    ).mappings().first()
    before = int(row["balance_cents"]) if row else 0
    after = before - int(fee_cents)
    db.execute(
        text(
            """
            INSERT INTO wallets (user_id, balance_cents, updated_at)
            VALUES (CAST(:user_id AS uuid), :after, NOW())
            ON CONFLICT (user_id) DO UPDATE SET balance_cents = EXCLUDED.balance_cents, updated_at = NOW()
            """
        ),
        {"user_id": user_id, "after": after},
    )
    insert_transaction(
        db,
        user_id=user_id,
        tx_type="cancellation_fee",
        amount_cents=-int(fee_cents),
        balance_before_cents=before,
        balance_after_cents=after,
        reference_id=f"cancel_{meeting_id}_{user_id}",
        description=f"Cancellation fee for meeting {meeting_id}. Canceled by {canceller_role}.",
    )
    return after


# Pricing and tier configuration


def list_pricing_rows() -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text("SELECT tier_id, price_ngn, price_usd, price_gbp, updated_by, updated_at FROM subscription_pricing")
        ).mappings().all()
    return [dict(r) for r in rows]


def get_pricing_row(tier: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT tier_id, price_ngn, price_usd, price_gbp FROM subscription_pricing WHERE tier_id=:tier"),
            {"tier": tier},
        ).mappings().first()
    return dict(row) if row else None


def upsert_pricing(tier: str, price_ngn: float, price_usd: float, price_gbp: float, updated_by: str | None) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO subscription_pricing (tier_id, price_ngn, price_usd, price_gbp, updated_by, updated_at)
                VALUES (:tier, :ngn, :usd, :gbp, CAST(NULLIF(:updated_by, '') AS uuid), NOW())
                ON CONFLICT (tier_id) DO UPDATE SET
                  price_ngn = EXCLUDED.price_ngn,
                  price_usd = EXCLUDED.price_usd,
                  price_gbp = EXCLUDED.price_gbp,
                  updated_by = EXCLUDED.updated_by,
                  updated_at = NOW()
                RETURNING tier_id, price_ngn, price_usd, price_gbp, updated_at
                """
            ),
            {"tier": tier, "ngn": price_ngn, "usd": price_usd, "gbp": price_gbp, "updated_by": updated_by or ""},
        ).mappings().first()
        db.commit()
    return dict(row) if row else {}


def get_tier_config(tier: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(text("SELECT * FROM account_tier_config WHERE tier=:tier"), {"tier": tier}).mappings().first()
    return dict(row) if row else None
