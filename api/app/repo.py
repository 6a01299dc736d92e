import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.database import SessionLocal
from app.services.events import insert_notification
from app.services.matching import canonical_pair
from app.services.notifications import should_send

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "gender",
    "location",
    "about_yourself",
    "photos",
    "profile_photo_url",
    "height_cm",
    "ethnicity",
    "religion",
    "education_level",
    "employment",
    "languages",
    "relationship_status",
    "have_children",
    "want_children",
    "smoking_habits",
    "drinking_habits",
    "diet",
    "willing_to_relocate",
    "ready_for_marriage",
    "relationship_type",
    "career_stability",
    "long_term_goals",
    "emotional_connection",
    "love_languages",
    "personality_type",
)
PROFILE_JSON_COLUMNS = {"photos", "languages", "love_languages"}

PREFERENCE_COLUMNS = (
    "partner_location",
    "partner_age_range",
    "partner_height_min_cm",
    "partner_height_max_cm",
    "partner_ethnicity",
    "partner_religion",
    "partner_education",
    "partner_employment",
    "partner_have_children",
    "partner_want_children",
    "partner_smoking",
    "partner_drinking",
    "partner_diet",
)
PREFERENCE_JSON_COLUMNS = {"partner_ethnicity", "partner_religion", "partner_education"}

ACCOUNT_PUBLIC_COLUMNS = "id, email, display_name, role, tier, account_status, suspended_until, suspension_reason, last_login_at, last_active_at, created_at"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# Accounts and auth


def create_account(email: str, password_hash: str, display_name: str | None = None) -> dict[str, Any] | None:
    user_id = str(uuid.uuid4())
    try:
        with SessionLocal() as db:
            db.execute(
                text(
                    """
                    INSERT INTO accounts (id, email, password_hash, display_name)
                    VALUES (CAST(:id AS uuid), :email, :password_hash, :display_name)
                    """
                ),
                {"id": user_id, "email": email, "password_hash": password_hash, "display_name": display_name},
            )
            db.execute(text("INSERT INTO wallets (user_id) VALUES (CAST(:id AS uuid))"), {"id": user_id})
            db.execute(text("INSERT INTO credits (user_id) VALUES (CAST(:id AS uuid))"), {"id": user_id})
            db.execute(
                text("INSERT INTO user_profiles (user_id, first_name) VALUES (CAST(:id AS uuid), :first_name)"),
                {"id": user_id, "first_name": display_name},
            )
            db.commit()
    except IntegrityError:
        return None
    return get_account_by_id(user_id)


def get_account_by_email(email: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(text("SELECT * FROM accounts WHERE email=:email"), {"email": email}).mappings().first()
    return dict(row) if row else None


def get_account_by_id(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(f"SELECT {ACCOUNT_PUBLIC_COLUMNS} FROM accounts WHERE id=CAST(:id AS uuid)"),
            {"id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def update_last_login(user_id: str) -> None:
    with SessionLocal() as db:
        db.execute(text("UPDATE accounts SET last_login_at=:ts WHERE id=CAST(:id AS uuid)"), {"ts": _now_utc(), "id": user_id})
        db.commit()


def touch_last_active(user_id: str) -> datetime:
    ts = _now_utc()
    with SessionLocal() as db:
        db.execute(text("UPDATE accounts SET last_active_at=:ts WHERE id=CAST(:id AS uuid)"), {"ts": ts, "id": user_id})
        db.commit()
    return ts


def create_refresh_token_row(user_id: str, token_hash: str, expires_at: datetime) -> None:
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO auth_refresh_tokens (user_id, token_hash, expires_at)
                VALUES (CAST(:user_id AS uuid), :token_hash, :expires_at)
                """
            ),
            {"user_id": user_id, "token_hash": token_hash, "expires_at": expires_at},
        )
        db.commit()


def get_refresh_token_row(token_hash: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT * FROM auth_refresh_tokens WHERE token_hash=:token_hash"),
            {"token_hash": token_hash},
        ).mappings().first()
    return dict(row) if row else None


def rotate_refresh_token(old_token_hash: str, user_id: str, new_token_hash: str, expires_at: datetime) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE auth_refresh_tokens SET revoked_at=NOW() WHERE token_hash=:token_hash AND revoked_at IS NULL"),
            {"token_hash": old_token_hash},
        )
        db.execute(
            text(
                """
                INSERT INTO auth_refresh_tokens (user_id, token_hash, expires_at)
                VALUES (CAST(:user_id AS uuid), :token_hash, :expires_at)
                """
            ),
            {"user_id": user_id, "token_hash": new_token_hash, "expires_at": expires_at},
        )
        db.commit()


def revoke_refresh_tokens_for_user(user_id: str) -> None:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE auth_refresh_tokens SET revoked_at=NOW() WHERE user_id=CAST(:user_id AS uuid) AND revoked_at IS NULL"),
            {"user_id": user_id},
        )
        db.commit()


def set_account_status(
    user_id: str,
    status: str,
    *,
    suspended_until: datetime | None = None,
    reason: str | None = None,
) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                UPDATE accounts
                SET account_status=:status,
                    suspended_until=:suspended_until,
                    suspension_reason=:reason
                WHERE id=CAST(:id AS uuid)
                RETURNING {ACCOUNT_PUBLIC_COLUMNS}
                """
            ),
            {"id": user_id, "status": status, "suspended_until": suspended_until, "reason": reason},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def set_account_role(user_id: str, role: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(f"UPDATE accounts SET role=:role WHERE id=CAST(:id AS uuid) RETURNING {ACCOUNT_PUBLIC_COLUMNS}"),
            {"id": user_id, "role": role},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def set_account_tier(user_id: str, tier: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(f"UPDATE accounts SET tier=:tier WHERE id=CAST(:id AS uuid) RETURNING {ACCOUNT_PUBLIC_COLUMNS}"),
            {"id": user_id, "tier": tier},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def list_admin_account_ids() -> list[str]:
    with SessionLocal() as db:
        rows = db.execute(text("SELECT id FROM accounts WHERE role IN ('admin', 'superadmin')")).mappings().all()
    return [str(r["id"]) for r in rows]


# Profiles and preferences


def get_profile(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT * FROM user_profiles WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def update_profile(user_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    cols = [c for c in PROFILE_COLUMNS if c in updates]
    params: dict[str, Any] = {"user_id": user_id}
    values_sql: list[str] = []
    set_sql: list[str] = []
    for c in cols:
        if c in PROFILE_JSON_COLUMNS:
            params[c] = json.dumps(updates[c] or [])
            values_sql.append(f"CAST(:{c} AS jsonb)")
        else:
            params[c] = updates[c]
            values_sql.append(f":{c}")
        set_sql.append(f"{c}=EXCLUDED.{c}")
    set_sql.append("updated_at=NOW()")

    insert_cols = ", ".join(["user_id", *cols])
    insert_vals = ", ".join(["CAST(:user_id AS uuid)", *values_sql])
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                INSERT INTO user_profiles ({insert_cols})
                VALUES ({insert_vals})
                ON CONFLICT (user_id) DO UPDATE SET {", ".join(set_sql)}
                RETURNING *
                """
            ),
            params,
        ).mappings().first()
        db.commit()
    return dict(row) if row else {}


def set_profile_visibility(user_id: str, is_visible: bool) -> bool:
    with SessionLocal() as db:
        res = db.execute(
            text(
                """
                UPDATE user_profiles SET is_visible=:is_visible, updated_at=NOW()
                WHERE user_id=CAST(:user_id AS uuid)
                """
            ),
            {"user_id": user_id, "is_visible": bool(is_visible)},
        )
        db.commit()
        return int(res.rowcount or 0) > 0


def get_public_profile(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT
                  a.id AS user_id,
                  a.email,
                  a.display_name,
                  a.tier,
                  up.first_name,
                  up.date_of_birth,
                  up.gender,
                  up.location,
                  up.about_yourself,
                  up.photos,
                  up.profile_photo_url,
                  up.height_cm,
                  up.ethnicity,
                  up.religion,
                  up.education_level,
                  up.have_children,
                  up.want_children,
                  up.smoking_habits
                FROM accounts a
                LEFT JOIN user_profiles up ON up.user_id = a.id
                WHERE a.id=CAST(:id AS uuid)
                """
            ),
            {"id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def get_preferences(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT * FROM user_preferences WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def upsert_preferences(user_id: str, prefs: dict[str, Any]) -> dict[str, Any]:
    params: dict[str, Any] = {"user_id": user_id}
    values_sql: list[str] = []
    for c in PREFERENCE_COLUMNS:
        if c in PREFERENCE_JSON_COLUMNS:
            params[c] = json.dumps(prefs.get(c) or [])
            values_sql.append(f"CAST(:{c} AS jsonb)")
        else:
            params[c] = prefs.get(c)
            values_sql.append(f":{c}")
    set_sql = ", ".join([f"{c}=EXCLUDED.{c}" for c in PREFERENCE_COLUMNS] + ["updated_at=NOW()"])
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                INSERT INTO user_preferences (user_id, {", ".join(PREFERENCE_COLUMNS)})
                VALUES (CAST(:user_id AS uuid), {", ".join(values_sql)})
                ON CONFLICT (user_id) DO UPDATE SET {set_sql}
                RETURNING *
                """
            ),
            params,
        ).mappings().first()
        db.commit()
    return dict(row) if row else {}


def get_blocked_locations(user_id: str) -> list[str]:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT blocked_locations FROM user_preferences WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    value = row["blocked_locations"] if row else None
    return list(value) if isinstance(value, list) else []


def set_blocked_locations(user_id: str, locations: list[str]) -> list[str]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO user_preferences (user_id, blocked_locations)
                VALUES (CAST(:user_id AS uuid), CAST(:locations AS jsonb))
                ON CONFLICT (user_id) DO UPDATE SET blocked_locations=EXCLUDED.blocked_locations, updated_at=NOW()
                RETURNING blocked_locations
                """
            ),
            {"user_id": user_id, "locations": json.dumps(locations)},
        ).mappings().first()
        db.commit()
    return list(row["blocked_locations"]) if row else list(locations)


def get_notification_preferences(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT settings FROM notification_preferences WHERE user_id=CAST(:user_id AS uuid)"),
            {"user_id": user_id},
        ).mappings().first()
    return dict(row["settings"] or {}) if row else None


def upsert_notification_preferences(user_id: str, updates: dict[str, bool]) -> dict[str, Any]:
    """Merge `updates` over the stored switches; keys not mentioned keep their value."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO notification_preferences (user_id, settings)
                VALUES (CAST(:user_id AS uuid), CAST(:updates AS jsonb))
                ON CONFLICT (user_id)
                DO UPDATE SET settings = notification_preferences.settings || EXCLUDED.settings, updated_at=NOW()
                RETURNING settings
                """
            ),
            {"user_id": user_id, "updates": json.dumps(updates)},
        ).mappings().first()
        db.commit()
    return dict(row["settings"] or {}) if row else dict(updates)


# Profile drafts


def upsert_draft(user_id: str, form_key: str, data: dict[str, Any]) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO profile_drafts (user_id, form_key, data, saved_at)
                VALUES (CAST(:user_id AS uuid), :form_key, CAST(:data AS jsonb), NOW())
                ON CONFLICT (user_id, form_key)
                DO UPDATE SET data=EXCLUDED.data, saved_at=EXCLUDED.saved_at
                RETURNING form_key, saved_at
                """
            ),
            {"user_id": user_id, "form_key": form_key, "data": json.dumps(data, default=str)},
        ).mappings().first()
        db.commit()
    return dict(row) if row else {"form_key": form_key}


def get_draft(user_id: str, form_key: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT form_key, data, saved_at
                FROM profile_drafts
                WHERE user_id=CAST(:user_id AS uuid) AND form_key=:form_key
                """
            ),
            {"user_id": user_id, "form_key": form_key},
        ).mappings().first()
    return dict(row) if row else None


def delete_draft(user_id: str, form_key: str) -> int:
    with SessionLocal() as db:
        res = db.execute(
            text("DELETE FROM profile_drafts WHERE user_id=CAST(:user_id AS uuid) AND form_key=:form_key"),
            {"user_id": user_id, "form_key": form_key},
        )
        db.commit()
        return int(res.rowcount or 0)


def purge_expired_drafts(user_id: str, cutoff: datetime) -> int:
    with SessionLocal() as db:
        res = db.execute(
            text("DELETE FROM profile_drafts WHERE user_id=CAST(:user_id AS uuid) AND saved_at < :cutoff"),
            {"user_id": user_id, "cutoff": cutoff},
        )
        db.commit()
        return int(res.rowcount or 0)


def list_drafts(user_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT form_key, saved_at
                FROM profile_drafts
                WHERE user_id=CAST(:user_id AS uuid)
                ORDER BY saved_at DESC
                """
            ),
            {"user_id": user_id},
        ).mappings().all()
    return [dict(r) for r in rows]


# Notifications


def create_notification(
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> str:
    with SessionLocal() as db:
        notification_id = insert_notification(db, user_id=user_id, type=type, title=title, message=message, data=data)
        db.commit()
    return notification_id


def notify_user(
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Best-effort dashboard notification; failures are logged, never raised.

    Returns False without writing anything when the user switched off in-app
    notifications for this category.
    """
    try:
        if not should_send(get_notification_preferences(user_id), type, "inapp"):
            return False
        create_notification(user_id, type, title, message, data)
        return True
    except SQLAlchemyError as exc:
        logger.error(f"[notifications] failed to notify user_id={user_id} type={type}: {exc}")
        return False


def list_notifications(user_id: str, unread_only: bool = False, limit: int = 50) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, type, title, message, data, read_at, created_at
                FROM notifications
                WHERE user_id=CAST(:user_id AS uuid)
                  AND (:unread_only = FALSE OR read_at IS NULL)
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            {"user_id": user_id, "unread_only": bool(unread_only), "limit": max(1, min(int(limit), 200))},
        ).mappings().all()
    return [dict(r) for r in rows]


def mark_notifications_read(user_id: str, ids: list[str] | None = None) -> int:
    with SessionLocal() as db:
        if ids:
            res = db.execute(
                text(
                    """
                    UPDATE notifications SET read_at=NOW()
                    WHERE user_id=CAST(:user_id AS uuid)
                      AND read_at IS NULL
                      AND id = ANY(CAST(:ids AS uuid[]))
                    """
                ),
                {"user_id": user_id, "ids": ids},
            )
        else:
            res = db.execute(
                text("UPDATE notifications SET read_at=NOW() WHERE user_id=CAST(:user_id AS uuid) AND read_at IS NULL"),
                {"user_id": user_id},
            )
        db.commit()
        return int(res.rowcount or 0)


# Activities and matches


def find_activity(user_id: str, target_user_id: str, activity_type: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, user_id, target_user_id, activity_type, created_at
                FROM user_activities
                WHERE user_id=CAST(:user_id AS uuid)
                  AND target_user_id=CAST(:target AS uuid)
                  AND activity_type=:activity_type
                """
            ),
            {"user_id": user_id, "target": target_user_id, "activity_type": activity_type},
        ).mappings().first()
    return dict(row) if row else None


def create_activity(user_id: str, target_user_id: str, activity_type: str) -> dict[str, Any] | None:
    try:
        with SessionLocal() as db:
            row = db.execute(
                text(
                    """
                    INSERT INTO user_activities (user_id, target_user_id, activity_type)
                    VALUES (CAST(:user_id AS uuid), CAST(:target AS uuid), :activity_type)
                    RETURNING id, user_id, target_user_id, activity_type, created_at
                    """
                ),
                {"user_id": user_id, "target": target_user_id, "activity_type": activity_type},
            ).mappings().first()
            db.commit()
    except IntegrityError:
        return None
    return dict(row) if row else None


def count_activities_since(user_id: str, activity_type: str, since: datetime) -> int:
    with SessionLocal() as db:
        total = db.execute(
            text(
                """
                SELECT COUNT(1)
                FROM user_activities
                WHERE user_id=CAST(:user_id AS uuid)
                  AND activity_type=:activity_type
                  AND created_at >= :since
                """
            ),
            {"user_id": user_id, "activity_type": activity_type, "since": since},
        ).scalar() or 0
    return int(total)


def has_positive_activity(user_id: str, target_user_id: str) -> bool:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT 1
                FROM user_activities
                WHERE user_id=CAST(:user_id AS uuid)
                  AND target_user_id=CAST(:target AS uuid)
                  AND activity_type IN ('like', 'interested', 'wink')
                LIMIT 1
                """
            ),
            {"user_id": user_id, "target": target_user_id},
        ).first()
    return bool(row)


def list_activities(user_id: str, direction: str = "sent", activity_type: str | None = None) -> list[dict[str, Any]]:
    own_col, other_col = ("user_id", "target_user_id") if direction == "sent" else ("target_user_id", "user_id")
    with SessionLocal() as db:
        rows = db.execute(
            text(
                f"""
                SELECT ua.id, ua.user_id, ua.target_user_id, ua.activity_type, ua.created_at,
                       up.first_name AS other_first_name,
                       up.profile_photo_url AS other_photo_url
                FROM user_activities ua
                LEFT JOIN user_profiles up ON up.user_id = ua.{other_col}
                WHERE ua.{own_col}=CAST(:user_id AS uuid)
                  AND (CAST(:activity_type AS text) IS NULL OR ua.activity_type=:activity_type)
                ORDER BY ua.created_at DESC
                LIMIT 200
                """
            ),
            {"user_id": user_id, "activity_type": activity_type},
        ).mappings().all()
    return [dict(r) for r in rows]


def delete_activity(user_id: str, activity_id: str) -> int:
    with SessionLocal() as db:
        res = db.execute(
            text("DELETE FROM user_activities WHERE id=CAST(:id AS uuid) AND user_id=CAST(:user_id AS uuid)"),
            {"id": activity_id, "user_id": user_id},
        )
        db.commit()
        return int(res.rowcount or 0)


def get_activity_limits(tier: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(text("SELECT * FROM user_activity_limits WHERE tier=:tier"), {"tier": tier}).mappings().first()
    return dict(row) if row else None


def list_activity_limits() -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT *
                FROM user_activity_limits
                ORDER BY CASE tier WHEN 'basic' THEN 1 WHEN 'standard' THEN 2 WHEN 'premium' THEN 3 ELSE 4 END
                """
            )
        ).mappings().all()
    return [dict(r) for r in rows]


def update_activity_limits(tier: str, values: dict[str, int | None]) -> dict[str, Any] | None:
    cols = sorted(values)
    params: dict[str, Any] = {"tier": tier, **values}
    set_sql = ", ".join([f"{c}=EXCLUDED.{c}" for c in cols] + ["updated_at=NOW()"])
    with SessionLocal() as db:
        row = db.execute(
            text(
                f"""
                INSERT INTO user_activity_limits (tier, {", ".join(cols)})
                VALUES (:tier, {", ".join(f":{c}" for c in cols)})
                ON CONFLICT (tier) DO UPDATE SET {set_sql}
                RETURNING *
                """
            ),
            params,
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def create_match(user_a: str, user_b: str) -> dict[str, Any] | None:
    first, second = canonical_pair(user_a, user_b)
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO user_matches (user1_id, user2_id)
                VALUES (CAST(:first AS uuid), CAST(:second AS uuid))
                ON CONFLICT (user1_id, user2_id) DO NOTHING
                RETURNING id, user1_id, user2_id, created_at
                """
            ),
            {"first": first, "second": second},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


def list_matches(user_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT
                  m.id,
                  m.created_at,
                  m.profile_reactivation_requested,
                  CASE WHEN m.user1_id = CAST(:user_id AS uuid) THEN m.user2_id ELSE m.user1_id END AS partner_id
                FROM user_matches m
                WHERE m.user1_id = CAST(:user_id AS uuid) OR m.user2_id = CAST(:user_id AS uuid)
                ORDER BY m.created_at DESC
                """
            ),
            {"user_id": user_id},
        ).mappings().all()
    return [dict(r) for r in rows]


def get_latest_match(user_id: str) -> dict[str, Any] | None:
    matches = list_matches(user_id)
    return matches[0] if matches else None


def get_match_by_id(match_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, user1_id, user2_id, messaging_enabled, last_message_at, last_message_preview, created_at
                FROM user_matches
                WHERE id=CAST(:id AS uuid)
                """
            ),
            {"id": match_id},
        ).mappings().first()
    return dict(row) if row else None


# Messages


def list_conversations(user_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT
                  m.id AS match_id,
                  m.messaging_enabled,
                  m.last_message_at,
                  m.last_message_preview,
                  m.created_at,
                  p.id AS partner_id,
                  p.display_name AS partner_display_name,
                  p.tier AS partner_tier,
                  up.first_name AS partner_first_name,
                  up.profile_photo_url AS partner_photo_url,
                  (
                    SELECT COUNT(*)
                    FROM messages msg
                    WHERE msg.match_id = m.id AND msg.sender_id <> CAST(:user_id AS uuid) AND msg.read_at IS NULL
                  ) AS unread_count
                FROM user_matches m
                JOIN accounts p
                  ON p.id = CASE WHEN m.user1_id = CAST(:user_id AS uuid) THEN m.user2_id ELSE m.user1_id END
                LEFT JOIN user_profiles up ON up.user_id = p.id
                WHERE m.user1_id = CAST(:user_id AS uuid) OR m.user2_id = CAST(:user_id AS uuid)
                ORDER BY COALESCE(m.last_message_at, m.created_at) DESC
                """
            ),
            {"user_id": user_id},
        ).mappings().all()
    return [dict(r) for r in rows]


def list_messages(match_id: str, limit: int = 50, before: datetime | None = None) -> list[dict[str, Any]]:
    """Newest first, at most `limit` rows older than `before`."""
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT id, match_id, sender_id, content, message_type, read_at, created_at
                FROM messages
                WHERE match_id=CAST(:match_id AS uuid)
                  AND (CAST(:before AS timestamptz) IS NULL OR created_at < :before)
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            {"match_id": match_id, "before": before, "limit": int(limit)},
        ).mappings().all()
    return [dict(r) for r in rows]


def create_message(match_id: str, sender_id: str, content: str) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO messages (match_id, sender_id, content, message_type)
                VALUES (CAST(:match_id AS uuid), CAST(:sender_id AS uuid), :content, 'text')
                RETURNING id, match_id, sender_id, content, message_type, read_at, created_at
                """
            ),
            {"match_id": match_id, "sender_id": sender_id, "content": content},
        ).mappings().first()
        db.execute(
            text(
                """
                UPDATE user_matches
                SET last_message_at=:created_at, last_message_preview=:preview
                WHERE id=CAST(:match_id AS uuid)
                """
            ),
            {"match_id": match_id, "created_at": row["created_at"], "preview": content[:100]},
        )
        db.commit()
    return dict(row)


def mark_messages_read(match_id: str, reader_id: str) -> int:
    with SessionLocal() as db:
        res = db.execute(
            text(
                """
                UPDATE messages
                SET read_at=NOW()
                WHERE match_id=CAST(:match_id AS uuid) AND sender_id <> CAST(:reader_id AS uuid) AND read_at IS NULL
                """
            ),
            {"match_id": match_id, "reader_id": reader_id},
        )
        db.commit()
        return int(res.rowcount or 0)


# Blocks


def create_block(blocker_id: str, blocked_id: str) -> bool:
    """Returns True when a new block row was written; an existing block is a no-op."""
    with SessionLocal() as db:
        res = db.execute(
            text(
                """
                INSERT INTO blocked_users (blocker_id, blocked_id)
                VALUES (CAST(:blocker AS uuid), CAST(:blocked AS uuid))
                ON CONFLICT (blocker_id, blocked_id) DO NOTHING
                """
            ),
            {"blocker": blocker_id, "blocked": blocked_id},
        )
        db.commit()
        return int(res.rowcount or 0) > 0


def remove_block(blocker_id: str, blocked_id: str) -> int:
    with SessionLocal() as db:
        res = db.execute(
            text("DELETE FROM blocked_users WHERE blocker_id=CAST(:blocker AS uuid) AND blocked_id=CAST(:blocked AS uuid)"),
            {"blocker": blocker_id, "blocked": blocked_id},
        )
        db.commit()
        return int(res.rowcount or 0)


def list_blocks(blocker_id: str) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT b.blocked_id, b.created_at, up.first_name, up.profile_photo_url
                FROM blocked_users b
                LEFT JOIN user_profiles up ON up.user_id = b.blocked_id
                WHERE b.blocker_id=CAST(:blocker AS uuid)
                ORDER BY b.created_at DESC
                """
            ),
            {"blocker": blocker_id},
        ).mappings().all()
    return [dict(r) for r in rows]


def is_blocked_pair(user_a: str, user_b: str) -> bool:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT 1
                FROM blocked_users
                WHERE (blocker_id=CAST(:a AS uuid) AND blocked_id=CAST(:b AS uuid))
                   OR (blocker_id=CAST(:b AS uuid) AND blocked_id=CAST(:a AS uuid))
                LIMIT 1
                """
            ),
            {"a": user_a, "b": user_b},
        ).first()
    return bool(row)


# Reports


def find_recent_report(reporter_id: str, reported_user_id: str, reason: str, since: datetime) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT id, created_at
                FROM user_reports
                WHERE reporter_id=CAST(:reporter AS uuid)
                  AND reported_user_id=CAST(:reported AS uuid)
                  AND reason=:reason
                  AND created_at >= :since
                LIMIT 1
                """
            ),
            {"reporter": reporter_id, "reported": reported_user_id, "reason": reason, "since": since},
        ).mappings().first()
    return dict(row) if row else None


def count_open_reports_against(reported_user_id: str) -> int:
    with SessionLocal() as db:
        total = db.execute(
            text(
                """
                SELECT COUNT(1)
                FROM user_reports
                WHERE reported_user_id=CAST(:reported AS uuid)
                  AND status <> 'dismissed'
                """
            ),
            {"reported": reported_user_id},
        ).scalar() or 0
    return int(total)


def create_report(
    reporter_id: str,
    reported_user_id: str,
    reason: str,
    description: str | None,
    priority: str,
) -> dict[str, Any]:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                INSERT INTO user_reports (reporter_id, reported_user_id, reason, description, priority, status)
                VALUES (CAST(:reporter AS uuid), CAST(:reported AS uuid), :reason, :description, :priority, 'pending')
                RETURNING id, reporter_id, reported_user_id, reason, description, priority, status, created_at
                """
            ),
            {
                "reporter": reporter_id,
                "reported": reported_user_id,
                "reason": reason,
                "description": description,
                "priority": priority,
            },
        ).mappings().first()
        db.commit()
    return dict(row) if row else {}


def has_active_report(reporter_id: str, reported_user_id: str) -> bool:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT 1
                FROM user_reports
                WHERE reporter_id=CAST(:reporter AS uuid)
                  AND reported_user_id=CAST(:reported AS uuid)
                  AND status IN ('pending', 'reviewing')
                LIMIT 1
                """
            ),
            {"reporter": reporter_id, "reported": reported_user_id},
        ).first()
    return bool(row)


def list_reports(status: str | None = None, priority: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT r.*, reporter.email AS reporter_email, reported.email AS reported_email
                FROM user_reports r
                JOIN accounts reporter ON reporter.id = r.reporter_id
                JOIN accounts reported ON reported.id = r.reported_user_id
                WHERE (CAST(:status AS text) IS NULL OR r.status=:status)
                  AND (CAST(:priority AS text) IS NULL OR r.priority=:priority)
                ORDER BY
                  CASE r.priority WHEN 'urgent' THEN 1 WHEN 'high' THEN 2 WHEN 'normal' THEN 3 ELSE 4 END,
                  r.created_at DESC
                LIMIT :limit
                """
            ),
            {"status": status, "priority": priority, "limit": max(1, min(int(limit), 500))},
        ).mappings().all()
    return [dict(r) for r in rows]


def resolve_report(report_id: str, status: str, admin_notes: str | None, admin_id: str | None) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE user_reports
                SET status=:status,
                    admin_notes=COALESCE(:admin_notes, admin_notes),
                    resolved_by=CAST(NULLIF(:admin_id, '') AS uuid),
                    resolved_at=CASE WHEN :status IN ('resolved', 'dismissed') THEN NOW() ELSE resolved_at END
                WHERE id=CAST(:id AS uuid)
                RETURNING *
                """
            ),
            {"id": report_id, "status": status, "admin_notes": admin_notes, "admin_id": admin_id or ""},
        ).mappings().first()
        db.commit()
    return dict(row) if row else None


# Reactivation


def create_reactivation_request(
    user_id: str,
    matched_with_user_id: str,
    match_id: str,
    reason_code: str,
    reason_text: str | None,
) -> dict[str, Any]:
    with SessionLocal() as db:
        db.execute(
            text("UPDATE user_matches SET profile_reactivation_requested=TRUE WHERE id=CAST(:id AS uuid)"),
            {"id": match_id},
        )
        row = db.execute(
            text(
                """
                INSERT INTO profile_reactivation_requests (user_id, matched_with_user_id, match_id, reason_code, reason_text, status)
                VALUES (CAST(:user_id AS uuid), CAST(:partner AS uuid), CAST(:match_id AS uuid), :reason_code, :reason_text, 'partner_notified')
                RETURNING *
                """
            ),
            {
                "user_id": user_id,
                "partner": matched_with_user_id,
                "match_id": match_id,
                "reason_code": reason_code,
                "reason_text": reason_text,
            },
        ).mappings().first()
        db.commit()
    return dict(row) if row else {}


def get_latest_reactivation_request(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                SELECT *
                FROM profile_reactivation_requests
                WHERE user_id=CAST(:user_id AS uuid)
                ORDER BY created_at DESC
                LIMIT 1
                """
            ),
            {"user_id": user_id},
        ).mappings().first()
    return dict(row) if row else None


def get_reactivation_request(request_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT * FROM profile_reactivation_requests WHERE id=CAST(:id AS uuid)"),
            {"id": request_id},
        ).mappings().first()
    return dict(row) if row else None


def list_reactivation_requests(status: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT r.*, a.email AS user_email, p.email AS partner_email
                FROM profile_reactivation_requests r
                JOIN accounts a ON a.id = r.user_id
                JOIN accounts p ON p.id = r.matched_with_user_id
                WHERE (CAST(:status AS text) IS NULL OR r.status=:status)
                ORDER BY r.created_at DESC
                LIMIT :limit
                """
            ),
            {"status": status, "limit": max(1, min(int(limit), 500))},
        ).mappings().all()
    return [dict(r) for r in rows]


def list_due_reactivation_requests(cutoff: datetime) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT *
                FROM profile_reactivation_requests
                WHERE status='partner_notified'
                  AND created_at < :cutoff
                ORDER BY created_at ASC
                """
            ),
            {"cutoff": cutoff},
        ).mappings().all()
    return [dict(r) for r in rows]


def decide_reactivation_request(
    request_id: str,
    decision: str,
    admin_notes: str | None,
    *,
    reactivate_user_id: str | None = None,
) -> dict[str, Any] | None:
    """Record a decision; an approval with `reactivate_user_id` also reactivates that account."""
    with SessionLocal() as db:
        row = db.execute(
            text(
                """
                UPDATE profile_reactivation_requests
                SET status=:decision, admin_decision=:decision, admin_notes=:admin_notes, updated_at=NOW()
                WHERE id=CAST(:id AS uuid)
                RETURNING *
                """
            ),
            {"id": request_id, "decision": decision, "admin_notes": admin_notes},
        ).mappings().first()
        if row and decision == "approved" and reactivate_user_id:
            db.execute(
                text(
                    """
                    UPDATE accounts
                    SET account_status='active', suspended_until=NULL, suspension_reason=NULL
                    WHERE id=CAST(:id AS uuid)
                    """
                ),
                {"id": reactivate_user_id},
            )
        db.commit()
    return dict(row) if row else None


# Admin permissions and logs


def role_has_permission(role: str, permission: str) -> bool:
    with SessionLocal() as db:
        row = db.execute(
            text("SELECT 1 FROM admin_permissions WHERE role=:role AND permission=:permission"),
            {"role": role, "permission": permission},
        ).first()
    return bool(row)


def list_role_permissions() -> dict[str, list[str]]:
    with SessionLocal() as db:
        rows = db.execute(text("SELECT role, permission FROM admin_permissions ORDER BY role, permission")).mappings().all()
    out: dict[str, list[str]] = {"moderator": [], "admin": []}
    for r in rows:
        out.setdefault(str(r["role"]), []).append(str(r["permission"]))
    return out


def replace_role_permissions(role: str, permissions: list[str], granted_by: str | None) -> list[str]:
    with SessionLocal() as db:
        db.execute(text("DELETE FROM admin_permissions WHERE role=:role"), {"role": role})
        for permission in permissions:
            db.execute(
                text(
                    """
                    INSERT INTO admin_permissions (role, permission, granted_by)
                    VALUES (:role, :permission, CAST(NULLIF(:granted_by, '') AS uuid))
                    """
                ),
                {"role": role, "permission": permission, "granted_by": granted_by or ""},
            )
        db.commit()
    return sorted(permissions)


def log_admin_action(
    admin_id: str | None,
    action: str,
    *,
    target_user_id: str | None = None,
    meta: dict[str, Any] | None = None,
    ip_address: str | None = None,
) -> None:
    with SessionLocal() as db:
        db.execute(
            text(
                """
                INSERT INTO admin_logs (admin_id, target_user_id, action, meta, ip_address)
                VALUES (
                  CAST(NULLIF(:admin_id, '') AS uuid),
                  CAST(NULLIF(:target_user_id, '') AS uuid),
                  :action,
                  CAST(:meta AS jsonb),
                  :ip_address
                )
                """
            ),
            {
                "admin_id": admin_id or "",
                "target_user_id": target_user_id or "",
                "action": action,
                "meta": json.dumps(meta or {}, default=str),
                "ip_address": ip_address,
            },
        )
        db.commit()


def list_admin_logs(limit: int = 100) -> list[dict[str, Any]]:
    with SessionLocal() as db:
        rows = db.execute(
            text(
                """
                SELECT l.id, l.admin_id, a.email AS admin_email, l.target_user_id, l.action, l.meta, l.ip_address, l.created_at
                FROM admin_logs l
                LEFT JOIN accounts a ON a.id = l.admin_id
                ORDER BY l.created_at DESC
                LIMIT :limit
                """
            ),
            {"limit": max(1, min(int(limit), 500))},
        ).mappings().all()
    return [dict(r) for r in rows]
