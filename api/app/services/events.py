import json
import uuid
from typing import Any

from sqlalchemy import text


def log_product_event(
    db,
    *,
    event_name: str,
    user_id: str | None = None,
    properties: dict[str, Any] | None = None,
) -> None:
    properties = properties or {}
    db.execute(
        text(
            """
            INSERT INTO product_event (id, user_id, event_name, properties)
            VALUES (
              :id,
              CAST(NULLIF(:user_id, '') AS uuid),
              :event_name,
              CAST(:properties AS jsonb)
            )
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id or "",
            "event_name": event_name,
            "properties": json.dumps(properties, default=str),
        },
    )


def insert_notification(
    db,
    *,
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> str:
    notification_id = str(uuid.uuid4())
    db.execute(
        text(
            """
            INSERT INTO notifications (id, user_id, type, title, message, data)
            VALUES (CAST(:id AS uuid), CAST(:user_id AS uuid), :type, :title, :message, CAST(:data AS jsonb))
            """
        ),
        {
            "id": notification_id,
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "data": json.dumps(data or {}, default=str),
        },
    )
    return notification_id
