from decimal import Decimal

import pytest

from app.kibbledrop.db import session_scope
from app.kibbledrop.modules.orders.models import Order
from app.kibbledrop.modules.subscriptions.models import Subscription
from app.kibbledrop.modules.tradesafe.models import Trade, WebhookDelivery
from app.kibbledrop.modules.tradesafe.service import normalize_event, parse_webhook
from app.kibbledrop.modules.tradesafe.signatures import SIGNATURE_HEADER, compute_signature

from tests.conftest import DELIVERY, WEBHOOK_SECRET


class TestParseWebhook:
    def test_event_and_transaction_id_shape(self):
        assert parse_webhook({"event": "transaction.funds_received", "transactionId": "tx-1"}) == ("tx-1", "FUNDS_RECEIVED")

    def test_data_state_shape(self):
        assert parse_webhook({"data": {"id": "tx-2", "state": "COMPLETED"}}) == ("tx-2", "COMPLETED")

    def test_missing_parts(self):
        with pytest.raises(ValueError):
            parse_webhook({"event": "transaction.completed"})
        with pytest.raises(ValueError):
            parse_webhook({"transactionId": "tx-1"})

    def test_normalize_event(self):
        assert normalize_event("transaction.funds_received") == "FUNDS_RECEIVED"
        assert normalize_event("funds received") == "FUNDS_RECEIVED"
        assert normalize_event("Funds-Received") == "FUNDS_RECEIVED"
        assert normalize_event(None) == ""


@pytest.fixture()
def pending_trade(app, seed):
    """A customer order awaiting payment with its TradeSafe transaction."""
    with session_scope(app) as s:
        order = Order(
            user_id=seed["customer"],
            status="payment_pending",
            payment_status="pending",
            subtotal=Decimal("29.99"),
            shipping=Decimal("0"),
            total=Decimal("29.99"),
            transaction_id="tx-100",
            **DELIVERY,
        )
        s.add(order)
        s.flush()
        s.add(
            Trade(
                trade_id="tx-100",
                status="CREATED",
                title="Order",
                amount=Decimal("29.99"),
                buyer_email="jane@example.com",
                order_id=order.id,
            )
        )
        order_id = order.id
    return order_id


def _order(app, order_id):
    with session_scope(app) as s:
        o = s.get(Order, order_id)
        return o.status, o.payment_status


def test_rejects_when_secret_not_configured(app, post_webhook):
    app.config["TRADESAFE_WEBHOOK_SECRET"] = ""
    r = post_webhook({"event": "transaction.funds_received", "transactionId": "tx-1"})
    assert r.status_code == 500


def test_missing_and_bad_signatures_are_401(post_webhook):
    payload = {"event": "transaction.funds_received", "transactionId": "tx-1"}
    r = post_webhook(payload, signature=None)
    assert r.status_code == 401
    assert r.json["error"] == "Missing signature"

    r = post_webhook(payload, signature="deadbeef")
    assert r.status_code == 401
    assert r.json["error"] == "Invalid signature"


def test_bad_payloads_are_400(post_webhook):
    assert post_webhook(None, raw=b"not json").status_code == 400
    assert post_webhook(None, raw=b"[1, 2]").status_code == 400
    assert post_webhook({"event": "transaction.funds_received"}).status_code == 400


def test_unknown_transaction_is_acknowledged(app, post_webhook):
    r = post_webhook({"event": "transaction.funds_received", "transactionId": "tx-unknown"})
    assert r.status_code == 200
    assert r.json["matched"] is False
    with session_scope(app) as s:
        assert s.query(WebhookDelivery).one().outcome == "unmatched"


def test_funds_received_marks_order_paid(app, pending_trade, post_webhook):
    r = post_webhook({"event": "transaction.funds_received", "transactionId": "tx-100"})
    assert r.status_code == 200
    assert r.json["applied"] is True
    assert r.json["order"] == {"id": pending_trade, "status": "processing", "payment_status": "paid"}

    with session_scope(app) as s:
        order = s.get(Order, pending_trade)
        assert order.payment_completed_at is not None
        assert s.query(Trade).one().status == "FUNDS_RECEIVED"


def test_duplicate_delivery_is_idempotent(app, pending_trade, post_webhook):
    payload = {"event": "transaction.funds_received", "transactionId": "tx-100"}
    assert post_webhook(payload).json["applied"] is True
    r = post_webhook(payload)
    assert r.status_code == 200
    assert r.json["duplicate"] is True
    with session_scope(app) as s:
        assert s.query(WebhookDelivery).count() == 1


def test_full_lifecycle_and_no_going_back(app, pending_trade, post_webhook):
    post_webhook({"event": "transaction.funds_received", "transactionId": "tx-100"})
    post_webhook({"data": {"id": "tx-100", "state": "DELIVERED"}})
    assert _order(app, pending_trade) == ("shipped", "paid")

    # late FUNDED after shipping must not drag the order back
    r = post_webhook({"event": "transaction.funded", "transactionId": "tx-100"})
    assert r.json["applied"] is False
    assert _order(app, pending_trade) == ("shipped", "paid")

    post_webhook({"event": "transaction.completed", "transactionId": "tx-100"})
    assert _order(app, pending_trade) == ("delivered", "paid")

    # delivered is terminal
    post_webhook({"event": "transaction.cancelled", "transactionId": "tx-100"})
    assert _order(app, pending_trade) == ("delivered", "paid")


def test_cancel_and_refund(app, pending_trade, post_webhook):
    post_webhook({"event": "transaction.funds_received", "transactionId": "tx-100"})
    post_webhook({"event": "transaction.refunded", "transactionId": "tx-100"})
    assert _order(app, pending_trade) == ("canceled", "refunded")


def test_cancel_before_payment(app, pending_trade, post_webhook):
    post_webhook({"event": "transaction.declined", "transactionId": "tx-100"})
    assert _order(app, pending_trade) == ("canceled", "cancelled")


def test_payment_activates_pending_subscription(app, seed, pending_trade, post_webhook):
    with session_scope(app) as s:
        sub = Subscription(
            user_id=seed["customer"],
            frequency="monthly",
            status="pending",
            next_delivery=s.get(Order, pending_trade).created_at,
            **DELIVERY,
        )
        s.add(sub)
        s.flush()
        s.get(Order, pending_trade).subscription_id = sub.id
        sub_id = sub.id

    post_webhook({"event": "transaction.funds_received", "transactionId": "tx-100"})
    with session_scope(app) as s:
        sub = s.get(Subscription, sub_id)
        assert sub.status == "active"
        assert sub.activated_at is not None


def test_webhook_does_not_need_csrf_or_login(app, pending_trade):
    # no session at all: the signature is the only credential
    body = b'{"event": "transaction.funds_received", "transactionId": "tx-100"}'
    r = app.test_client().post(
        "/api/tradesafe/webhook",
        data=body,
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: "sha256=" + compute_signature(WEBHOOK_SECRET, body)},
    )
    assert r.status_code == 200
    assert r.json["applied"] is True


def test_late_payment_leaves_delivered_order_alone(app, pending_trade, post_webhook):
    post_webhook({"event": "transaction.completed", "transactionId": "tx-100"})
    assert _order(app, pending_trade) == ("delivered", "pending")

    r = post_webhook({"event": "transaction.funds_received", "transactionId": "tx-100"})
    assert r.json["applied"] is False
    assert _order(app, pending_trade) == ("delivered", "pending")
    with session_scope(app) as s:
        assert s.get(Order, pending_trade).payment_completed_at is None


def test_late_payment_does_not_activate_subscription_of_canceled_order(app, seed, pending_trade, post_webhook):
    with session_scope(app) as s:
        sub = Subscription(
            user_id=seed["customer"],
            frequency="monthly",
            status="pending",
            next_delivery=s.get(Order, pending_trade).created_at,
            **DELIVERY,
        )
        s.add(sub)
        s.flush()
        s.get(Order, pending_trade).subscription_id = sub.id
        sub_id = sub.id

    post_webhook({"event": "transaction.cancelled", "transactionId": "tx-100"})
    r = post_webhook({"event": "transaction.funds_received", "transactionId": "tx-100"})
    assert r.json["applied"] is False
    assert _order(app, pending_trade) == ("canceled", "cancelled")
    with session_scope(app) as s:
        assert s.get(Subscription, sub_id).status == "pending"
