from datetime import date, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from app.database import SessionLocal
from app.wallet_repo import charge_cancellation_fee, insert_transaction


class InsufficientCreditsError(Exception):
    pass


# Availability


def add_availability(user_id: str, slot_date: date, slot_time: str) -> dict[str, Any] | None:
    try:
        with SessionLocal() as db:
            row = db.execute(
                text(
                    """
                    INSERT INTO meeting_availability (user_id, slot_date, slot_time)
                    VALUES (CAST(:user_id AS uuid), :slot_date, :slot_time)
                    RETURNING id, user_id, slot_date, slot_time, created_at
                    """
                ),
                {"user_id": user_id, "slot_date": slot_date, "slot_time": slot_time},
            ).mappings().first()
            db.commit()
    except IntegrityError:
        return None
    return dict(row) if row else None


def list_availability(user_id: str, from_date: date | None = None) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, user_id, slot_date, slot_time, created_at
                FROM meeting_availability
                WHERE user_id=CAST(:user_id AS uuid)
                  AND (CAST(:from_date AS date) IS NULL OR slot_date >= :from_date)
                ORDER BY slot_date ASC, slot_time ASC
                """
            ),
            {"user_id": user_id, "from_date": from_date},
        ).mappings().all()
    return [dict(r) for r in rows]


def has_availability(user_id: str, slot_date: date, slot_time: str) -> bool:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT 1 FROM meeting_availability
                WHERE user_id=CAST(:user_id AS uuid) AND slot_date=:slot_date AND slot_time=:slot_time
                """
            ),
            {"user_id": user_id, "slot_date": slot_date, "slot_time": slot_time},
        ).first()
    return bool(row)


def delete_availability(user_id: str, slot_id: str) -> int:
    with SessionLocal() as db:
        res = db.execute(
            text("DELETE FROM meeting_availability WHERE id=CAST(:id AS uuid) AND user_id=CAST(:user_id AS uuid)"),
            {"id": slot_id, "user_id": user_id},
        )
        db.commit()
        return int(res.rowcount or 0)


# Meetings


def create_meeting(
    *,
    host_id: str,
    guest_id: str,
    scheduled_at: datetime,
    location_pref: str | None,
    fee_cents: int,
    credits_required: int,
) -> dict[str, Any]:
    """Insert a pending one-on-one and consume the guest's credits in one transaction."""
    with SessionLocal() as db:
        spent = db.execute(
            text(
                """
                UPDATE credits
                SET used = used + :n, updated_at = NOW()
                WHERE user_id=CAST(:guest AS uuid) AND total - used >= :n
                """
            ),
            {"guest": guest_id, "n": int(credits_required)},
        )
        if int(spent.rowcount or 0) == 0:
            db.rollback()
            raise InsufficientCreditsError()
        meeting = db.execute(
            text(
                """
                INSERT INTO meetings (host_id, type, status, scheduled_at, location_pref, fee_cents, cancellation_fee_cents, credits_charged)
                VALUES (CAST(:host AS uuid), 'one_on_one', 'pending', :scheduled_at, :location_pref, :fee, :fee, :credits)
                RETURNING *
                """
            ),
            {
                "host": host_id,
                "scheduled_at": scheduled_at,
                "location_pref": location_pref,
                "fee": int(fee_cents),
                "credits": int(credits_required),
            },
        ).mappings().first()
        db.execute(
            text(
                """
                INSERT INTO meeting_participants (meeting_id, user_id, role, response, responded_at)
                VALUES
                  (:meeting_id, CAST(:host AS uuid), 'host', 'requested', NULL),
                  (:meeting_id, CAST(:guest AS uuid), 'guest', 'accepted', NOW())
                """
            ),
            {"meeting_id": meeting["id"], "host": host_id, "guest": guest_id},
        )
        db.commit()
    return dict(meeting)


def get_meeting(meeting_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(text("SELECT * FROM meetings WHERE id=CAST(:id AS uuid)"), {"id": meeting_id}).mappings().first()
    return dict(row) if row else None


def list_participants(meeting_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT mp.meeting_id, mp.user_id, mp.role, mp.response, mp.responded_at,
                       a.email, a.display_name, up.first_name
                FROM meeting_participants mp
                JOIN accounts a ON a.id = mp.user_id
                LEFT JOIN user_profiles up ON up.user_id = mp.user_id
                WHERE mp.meeting_id=CAST(:meeting_id AS uuid)
                ORDER BY mp.role DESC
                """
            ),
            {"meeting_id": meeting_id},
        ).mappings().all()
    return [dict(r) for r in rows]


def list_meetings_for_user(user_id: str, status: str | None = None, upcoming: bool = False) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT m.*
                FROM meetings m
                JOIN meeting_participants mp ON mp.meeting_id = m.id
                WHERE mp.user_id=CAST(:user_id AS uuid)
                  AND (CAST(:status AS text) IS NULL OR m.status=:status)
                  AND (:upcoming = FALSE OR m.scheduled_at >= NOW())
                ORDER BY m.scheduled_at ASC
                """
            ),
            {"user_id": user_id, "status": status, "upcoming": bool(upcoming)},
        ).mappings().all()
    meetings = [dict(r) for r in rows]
    for m in meetings:
        m["participants"] = list_participants(str(m["id"]))
    return meetings


def respond_to_meeting(meeting_id: str, user_id: str, response: str, new_status: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text(
                """
                UPDATE meeting_participants
                SET response=:response, responded_at=NOW()
                WHERE meeting_id=CAST(:meeting_id AS uuid) AND user_id=CAST(:user_id AS uuid)
                """
            ),
            {"meeting_id": meeting_id, "user_id": user_id, "response": response},
        )
        db.execute(
            text("UPDATE meetings SET status=:status, updated_at=NOW() WHERE id=CAST(:id AS uuid)"),
            {"id": meeting_id, "status": new_status},
        )
        db.commit()


def cancel_meeting(
    meeting_id: str,
    *,
    canceled_by: str,
    reason: str | None = None,
    refund_user_id: str | None = None,
    refund_credits: int = 1,
    fee_cents: int = 0,
    canceller_role: str = "guest",
    response: str | None = None,
) -> int | None:
    """Cancel, refund and charge in one transaction. Returns the canceller's balance when a fee was charged."""
    balance_after: int | None = None
    with SessionLocal() as db:
        db.execute(
            text(
                """
                UPDATE meetings
                SET status='canceled', canceled_by=CAST(:canceled_by AS uuid), canceled_at=NOW(),
                    cancellation_reason=:reason, updated_at=NOW()
                WHERE id=CAST(:id AS uuid)
                """
            ),
            {"id": meeting_id, "canceled_by": canceled_by, "reason": reason},
        )
        if response:
            db.execute(
                text(
                    """
                    UPDATE meeting_participants
                    SET response=:response, responded_at=NOW()
                    WHERE meeting_id=CAST(:meeting_id AS uuid) AND user_id=CAST(:user_id AS uuid)
                    """
                ),
                {"meeting_id": meeting_id, "user_id": canceled_by, "response": response},
            )
        if refund_user_id:
            db.execute(
                text(
                    """
                    UPDATE credits
                    SET used = GREATEST(used - :n, 0), updated_at = NOW()
                    WHERE user_id=CAST(:user_id AS uuid)
                    """
                ),
                {"user_id": refund_user_id, "n": int(refund_credits)},
            )
        if fee_cents > 0:
            balance_after = charge_cancellation_fee(db, canceled_by, fee_cents, meeting_id, canceller_role)
        db.commit()
    return balance_after


def finalize_meeting(
    meeting_id: str,
    *,
    expected_status: str,
    expected_charge_status: str | None,
    finalized_by: str,
    outcome: str,
    fault: str,
    charge_status: str,
    notes: str | None = None,
    refund_user_id: str | None = None,
    refund_credits: int = 1,
) -> bool:
    """Settle a meeting's charge in one transaction.

    The update only applies while the meeting is still in the state the caller
    saw, so two finalizers racing on the same meeting settle it once. A refund
    returns the guest's credit and records a credit_refund ledger entry keyed
    on the meeting. Returns False when the meeting moved on in the meantime.
    """
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE meetings
                SET status='completed', charge_status=:charge_status, outcome=:outcome,
                    fault_determination=:fault, host_notes=:notes,
                    finalized_by=CAST(:finalized_by AS uuid), finalized_at=NOW(), updated_at=NOW()
                WHERE id=CAST(:id AS uuid)
                  AND status=:expected_status
                  AND charge_status IS NOT DISTINCT FROM :expected_charge_status
                RETURNING id
                """
            ),
            {
                "id": meeting_id,
                "charge_status": charge_status,
                "outcome": outcome,
                "fault": fault,
                "notes": notes,
                "finalized_by": finalized_by,
                "expected_status": expected_status,
                "expected_charge_status": expected_charge_status,
            },
        ).mappings().first()
        if not row:
            db.rollback()
            return False
        if refund_user_id:
            db.execute(
                text(
                    """
                    UPDATE credits
                    SET used = GREATEST(used - :n, 0), updated_at = NOW()
                    WHERE user_id=CAST(:user_id AS uuid)
                    """
                ),
                {"user_id": refund_user_id, "n": int(refund_credits)},
            )
            insert_transaction(
                db,
                user_id=refund_user_id,
                tx_type="credit_refund",
                amount_cents=0,
                balance_before_cents=None,
                balance_after_cents=None,
                reference_id=f"finalize_{meeting_id}",
                description=f"Refunded {int(refund_credits)} credit(s) for meeting {meeting_id}",
            )
        db.commit()
    return True


# Reminder notifications


def upsert_meeting_notifications(rows: list[dict[str, Any]]) -> int:
    if not rows:
        return 0
    with SessionLocal() as db:
        for row in rows:
            db.execute(
                text(
                    """
                    INSERT INTO meeting_notifications (meeting_id, user_id, notification_type, scheduled_for)
                    VALUES (CAST(:meeting_id AS uuid), CAST(:user_id AS uuid), :notification_type, :scheduled_for)
                    ON CONFLICT (meeting_id, user_id, notification_type)
                    DO UPDATE SET scheduled_for = EXCLUDED.scheduled_for
                    """
                ),
                row,
            )
        db.commit()
    return len(rows)


def list_meeting_notifications(meeting_id: str, user_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, meeting_id, notification_type, scheduled_for, dashboard_sent, email_sent, sent_at
                FROM meeting_notifications
                WHERE meeting_id=CAST(:meeting_id AS uuid) AND user_id=CAST(:user_id AS uuid)
                ORDER BY scheduled_for ASC
                """
            ),
            {"meeting_id": meeting_id, "user_id": user_id},
        ).mappings().all()
    return [dict(r) for r in rows]


def list_due_meeting_notifications(until: datetime, limit: int = 500) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT
                  mn.id,
                  mn.meeting_id,
                  mn.user_id,
                  mn.notification_type,
                  mn.scheduled_for,
                  mn.dashboard_sent,
                  mn.email_sent,
                  m.scheduled_at,
                  a.email,
                  COALESCE(up.first_name, a.display_name) AS first_name,
                  (
                    SELECT COALESCE(op.first_name, oa.display_name)
                    FROM meeting_participants other
                    JOIN accounts oa ON oa.id = other.user_id
                    LEFT JOIN user_profiles op ON op.user_id = other.user_id
                    WHERE other.meeting_id = mn.meeting_id AND other.user_id <> mn.user_id
                    LIMIT 1
                  ) AS partner_first_name
                FROM meeting_notifications mn
                JOIN meetings m ON m.id = mn.meeting_id
                JOIN accounts a ON a.id = mn.user_id
                LEFT JOIN user_profiles up ON up.user_id = mn.user_id
                WHERE mn.scheduled_for <= :until
                  AND (mn.dashboard_sent = FALSE OR mn.email_sent = FALSE)
                  AND m.status = 'confirmed'
                ORDER BY mn.scheduled_for ASC
                LIMIT :limit
                """
            ),
            {"until": until, "limit": int(limit)},
        ).mappings().all()
    return [dict(r) for r in rows]


def mark_notification_dashboard_sent(notification_id: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE meeting_notifications SET dashboard_sent=TRUE WHERE id=CAST(:id AS uuid)"),
            {"id": notification_id},
        )
        db.commit()


def mark_notification_email_sent(notification_id: str, sent_at: datetime) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE meeting_notifications SET email_sent=TRUE, sent_at=:sent_at WHERE id=CAST(:id AS uuid)"),
            {"id": notification_id, "sent_at": sent_at},
        )
        db.commit()
