from datetime import datetime, timedelta, timezone

from app.services.ledger import (
    apply_transaction,
    credits_available,
    insufficient_balance_detail,
    plan_correction,
    replay_balance,
    wallet_reference,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _tx(minutes: int, tx_type: str, amount: int, status: str = "completed") -> dict:
    return {"created_at": T0 + timedelta(minutes=minutes), "type": tx_type, "amount_cents": amount, "status": status}


def test_debits_subtract_magnitude_whatever_the_sign():
    assert apply_transaction(1000, "payment", -300) == 700
    assert apply_transaction(1000, "payment", 300) == 700
    assert apply_transaction(1000, "cancellation_fee", -1500) == -500


def test_credits_add_signed_amount_and_unknown_types_are_ignored():
    assert apply_transaction(0, "topup", 500) == 500
    assert apply_transaction(500, "admin_adjustment", -200) == 300
    assert apply_transaction(500, "mystery", 999) == 500


def test_replay_orders_by_created_at_and_skips_incomplete():
    txs = [
        _tx(2, "payment", -400),
        _tx(1, "topup", 1000),
        _tx(3, "topup", 5000, status="failed"),
        _tx(4, "refund", 100),
    ]
    assert replay_balance(txs) == 700


def test_plan_correction_threshold_is_exclusive():
    txs = [_tx(1, "topup", 1000)]
    assert plan_correction(900, txs, threshold_cents=100)["needs_correction"] is False
    plan = plan_correction(899, txs, threshold_cents=100)
    assert plan["needs_correction"] is True
    assert plan["calculated"] == 1000
    assert plan["difference"] == 101


def test_insufficient_balance_detail_shape():
    assert insufficient_balance_detail(300, 1000) == {
        "error": "Insufficient wallet balance",
        "currentBalance": 300,
        "required": 1000,
        "shortfall": 700,
    }


def test_credits_available_never_negative():
    assert credits_available({"total": 5, "used": 2}) == 3
    assert credits_available({"total": 1, "used": 4}) == 0
    assert credits_available(None) == 0


def test_wallet_reference_prefix():
    assert wallet_reference(now_ms=1700000000000).startswith("wallet_1700000000000_")
    assert wallet_reference("correction", now_ms=5).startswith("correction_5_")


def test_wallet_references_within_one_millisecond_are_distinct():
    refs = {wallet_reference(now_ms=1700000000000) for _ in range(500)}
    assert len(refs) == 500
    assert all(len(ref.rsplit("_", 1)[1]) == 8 for ref in refs)
