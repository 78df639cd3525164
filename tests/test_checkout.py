from app.kibbledrop.db import session_scope
from app.kibbledrop.models import AuditEvent
from app.kibbledrop.modules.orders.models import Order
from app.kibbledrop.modules.tradesafe.models import Trade

from tests.conftest import DELIVERY


def _fill_cart(c, headers, seed):
    c.post("/api/cart", json={"product_id": seed["dog_food"], "quantity": 2}, headers=headers)
    c.post("/api/cart", json={"product_id": seed["chews"], "quantity": 1}, headers=headers)


def test_checkout_not_configured_is_503(customer, seed):
    c, headers = customer
    _fill_cart(c, headers, seed)
    r = c.post("/api/checkout", json=DELIVERY, headers=headers)
    assert r.status_code == 503
    # nothing was committed and the cart is untouched
    assert len(c.get("/api/cart").json["items"]) == 2
    assert c.get("/api/orders").json == []


def test_checkout_from_cart(app, customer, seed, fake_tradesafe):
    c, headers = customer
    _fill_cart(c, headers, seed)

    r = c.post("/api/checkout", json=DELIVERY, headers=headers)
    assert r.status_code == 200, r.json
    body = r.json
    assert body["success"] is True
    assert body["payment_url"] == f"https://pay.example/{body['transaction_id']}"
    assert body["reference"] == f"KD-{body['order_id']}"
    assert c.get("/api/cart").json["items"] == []

    calls = [name for name, _ in fake_tradesafe.calls]
    # buyer token, seller token (none configured), transaction, payment link
    assert calls == ["token_create", "token_create", "transaction_create", "checkout_link"]
    buyer = fake_tradesafe.calls[0][1]
    assert buyer["email"] == "jane@example.com"
    assert buyer["given_name"] == "Jane"
    assert buyer["mobile"] == "+27821234567"
    allocations = fake_tradesafe.calls[2][1]["allocations"]
    assert [a["value"] for a in allocations] == [5998, 1250]

    with session_scope(app) as s:
        order = s.get(Order, body["order_id"])
        assert (order.status, order.payment_status) == ("payment_pending", "pending")
        assert order.transaction_id == body["transaction_id"]
        trade = s.query(Trade).one()
        assert trade.amount == order.total
        assert trade.order_id == order.id


def test_configured_seller_token_is_reused(app, customer, seed, fake_tradesafe):
    app.config["TRADESAFE_SELLER_TOKEN"] = "seller-xyz"
    c, headers = customer
    _fill_cart(c, headers, seed)
    c.post("/api/checkout", json=DELIVERY, headers=headers)

    calls = [name for name, _ in fake_tradesafe.calls]
    assert calls == ["token_create", "transaction_create", "checkout_link"]
    assert fake_tradesafe.calls[1][1]["seller_token"] == "seller-xyz"


def test_checkout_existing_order(customer, seed, fake_tradesafe):
    c, headers = customer
    order = c.post("/api/orders", json=dict(DELIVERY, items=[{"product_id": seed["cat_food"]}]), headers=headers).json

    r = c.post("/api/checkout", json={"order_id": order["id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json["order_id"] == order["id"]

    # only pending orders can be paid
    r = c.post("/api/checkout", json={"order_id": order["id"]}, headers=headers)
    assert r.status_code == 400


def test_checkout_someone_elses_order_is_404(customer, other_customer, seed, fake_tradesafe):
    c, headers = customer
    order = c.post("/api/orders", json=dict(DELIVERY, items=[{"product_id": seed["cat_food"]}]), headers=headers).json

    o, o_headers = other_customer
    assert o.post("/api/checkout", json={"order_id": order["id"]}, headers=o_headers).status_code == 404


def test_checkout_empty_cart_is_400(customer, fake_tradesafe):
    c, headers = customer
    r = c.post("/api/checkout", json=DELIVERY, headers=headers)
    assert r.status_code == 400
    assert r.json["error"] == "Cart is empty"


def test_provider_failure_marks_order_failed(app, customer, seed, fake_tradesafe):
    fake_tradesafe.fail_on = "transaction_create"
    c, headers = customer
    _fill_cart(c, headers, seed)

    r = c.post("/api/checkout", json=DELIVERY, headers=headers)
    assert r.status_code == 502
    assert "transaction_create exploded" in r.json["error"]

    # the cart survives so the customer can retry
    assert len(c.get("/api/cart").json["items"]) == 2
    with session_scope(app) as s:
        order = s.query(Order).one()
        assert (order.status, order.payment_status) == ("failed", "failed")
        assert s.query(Trade).count() == 0
        assert s.query(AuditEvent).filter(AuditEvent.action == "payment.checkout_failed").count() == 1


def test_subscription_checkout_and_activation(app, customer, seed, fake_tradesafe, post_webhook):
    c, headers = customer
    sub = c.post(
        "/api/subscriptions",
        json=dict(DELIVERY, frequency="weekly", pay_first=True, items=[{"product_id": seed["dog_food"], "quantity": 1}]),
        headers=headers,
    ).json
    assert sub["status"] == "pending"

    r = c.post(f"/api/subscriptions/{sub['id']}/checkout", headers=headers)
    assert r.status_code == 200
    tx_id = r.json["transaction_id"]

    with session_scope(app) as s:
        order = s.get(Order, r.json["order_id"])
        assert order.subscription_id == sub["id"]
        assert order.total == s.query(Trade).one().amount

    post_webhook({"event": "transaction.funds_received", "transactionId": tx_id})
    assert c.get(f"/api/subscriptions/{sub['id']}").json["status"] == "active"

    # already active: nothing left to pay for
    assert c.post(f"/api/subscriptions/{sub['id']}/checkout", headers=headers).status_code == 400


def test_checkout_status_polls_provider(customer, seed, fake_tradesafe):
    c, headers = customer
    _fill_cart(c, headers, seed)
    body = c.post("/api/checkout", json=DELIVERY, headers=headers).json

    r = c.get(f"/api/checkout/status?order_id={body['order_id']}")
    assert r.status_code == 200
    assert r.json["status"] == "payment_pending"
    assert r.json["trade_status"] == "CREATED"

    fake_tradesafe.states[body["transaction_id"]] = "FUNDS_RECEIVED"
    r = c.get(f"/api/checkout/status?order_id={body['order_id']}")
    assert r.json["status"] == "processing"
    assert r.json["payment_status"] == "paid"
    assert r.json["trade_status"] == "FUNDS_RECEIVED"


def test_checkout_status_survives_provider_errors(customer, seed, fake_tradesafe):
    c, headers = customer
    _fill_cart(c, headers, seed)
    body = c.post("/api/checkout", json=DELIVERY, headers=headers).json

    fake_tradesafe.fail_on = "get_transaction"
    r = c.get(f"/api/checkout/status?order_id={body['order_id']}")
    assert r.status_code == 200
    assert r.json["status"] == "payment_pending"

    assert c.get("/api/checkout/status?order_id=9999").status_code == 404


def test_admin_payment_views(app, admin, customer, seed, fake_tradesafe):
    c, headers = customer
    _fill_cart(c, headers, seed)
    c.post("/api/checkout", json=DELIVERY, headers=headers)

    a, _ = admin
    trades = a.get("/api/admin/tradesafe/trades").json
    assert len(trades) == 1
    assert trades[0]["amount"] == 72.48
    assert a.get("/api/admin/tradesafe/trades?status=completed").json == []

    status = a.get("/api/admin/tradesafe/config-status").json
    assert status["configured"] is False
    assert "TRADESAFE_CLIENT_ID" in status["missing"]
    assert c.get("/api/admin/tradesafe/config-status").status_code == 403
