import json

from app.services.events import insert_notification, log_product_event


class FakeDB:
    def __init__(self):
        self.calls = []

    def execute(self, stmt, params):
        self.calls.append((str(stmt), params))


def test_log_product_event_inserts_expected_payload_shape():
    db = FakeDB()
    log_product_event(
        db,
        event_name="wallet_topup",
        user_id="00000000-0000-0000-0000-000000000123",
        properties={"amount_cents": 500},
    )
    assert len(db.calls) == 1
    sql, params = db.calls[0]
    assert "INSERT INTO product_event" in sql
    assert params["event_name"] == "wallet_topup"
    assert params["user_id"] == "00000000-0000-0000-0000-000000000123"
    assert json.loads(params["properties"]) == {"amount_cents": 500}


def test_log_product_event_without_user():
    db = FakeDB()
    log_product_event(db, event_name="checkout_started")
    _sql, params = db.calls[0]
    assert params["user_id"] == ""
    assert params["properties"] == "{}"


def test_insert_notification_returns_generated_id():
    db = FakeDB()
    notification_id = insert_notification(
        db,
        user_id="00000000-0000-0000-0000-000000000123",
        type="match",
        title="It's a Match!",
        message="You have a new mutual match. Say hello!",
        data={"match_id": "m1"},
    )
    sql, params = db.calls[0]
    assert "INSERT INTO notifications" in sql
    assert params["id"] == notification_id
    assert json.loads(params["data"]) == {"match_id": "m1"}
