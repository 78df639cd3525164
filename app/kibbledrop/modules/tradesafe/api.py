from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.orders.models import Order
from app.kibbledrop.modules.orders.service import cart_lines, create_order, serialize_order
from app.kibbledrop.modules.subscriptions.models import Subscription
from app.kibbledrop.modules.tradesafe.client import TradeSafeConfigError, TradeSafeError
from app.kibbledrop.modules.tradesafe.config import get_client
from app.kibbledrop.modules.tradesafe.models import Trade
from app.kibbledrop.modules.tradesafe.service import handle_webhook, refresh_trade, start_checkout
from app.kibbledrop.modules.tradesafe.signatures import SIGNATURE_HEADER, verify_signature
from app.kibbledrop.rbac import require_login
from app.kibbledrop.utils import parse_int

bp = Blueprint("tradesafe", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _client_or_503():
    try:
        return get_client()
    except TradeSafeConfigError as e:
        current_app.logger.error("TradeSafe not configured: %s", e)
        abort(503, description="Payment provider is not configured")


def _pay(s, order: Order):
    """Run checkout for order and shape the response; commits either way."""
    client = _client_or_503()
    try:
        trade = start_checkout(s, client, g.current_user, order, current_app.config)
    except TradeSafeError as e:
        s.commit()  # keep the failed order for support follow-up
        abort(502, description=f"Payment initialization failed: {e}")
    return trade


@bp.post("/checkout")
@require_login
def checkout():
    """Pay an existing pending order (order_id) or turn the cart into an order and pay it."""
    payload = _payload()
    s = db_session()
    user = g.current_user

    from_cart = False
    order_id = parse_int(payload.get("order_id"))
    if order_id is not None:
        order = s.get(Order, order_id)
        if not order or order.user_id != user.id:
            abort(404, description="Order not found")
        if order.status != "pending":
            abort(400, description="Order is not awaiting payment")
    else:
        try:
            order = create_order(s, user, payload, lines=cart_lines(s, user))
        except ValueError as e:
            abort(400, description=str(e))
        from_cart = True

    trade = _pay(s, order)
    if from_cart:
        from app.kibbledrop.modules.cart.service import clear_cart

        clear_cart(s, user)
    s.commit()
    return jsonify(
        {
            "success": True,
            "order_id": order.id,
            "transaction_id": trade.trade_id,
            "payment_url": trade.payment_url,
            "reference": trade.reference,
        }
    )


@bp.post("/subscriptions/<int:subscription_id>/checkout")
@require_login
def subscription_checkout(subscription_id: int):
    s = db_session()
    user = g.current_user
    sub = s.get(Subscription, subscription_id)
    if not sub or sub.user_id != user.id:
        abort(404, description="Subscription not found")
    if sub.status != "pending":
        abort(400, description="Subscription is not awaiting payment")
    if not sub.items:
        abort(400, description="Subscription has no items")

    payload = {
        "delivery_name": sub.delivery_name,
        "delivery_phone": sub.delivery_phone,
        "delivery_address": sub.delivery_address,
        "city": sub.city,
        "postal_code": sub.postal_code,
        "instructions": sub.instructions,
    }
    order = create_order(s, user, payload, lines=[(i.product, i.quantity) for i in sub.items], subscription=sub)
    trade = _pay(s, order)
    s.commit()
    return jsonify(
        {
            "success": True,
            "subscription_id": sub.id,
            "order_id": order.id,
            "transaction_id": trade.trade_id,
            "payment_url": trade.payment_url,
            "reference": trade.reference,
        }
    )


@bp.get("/checkout/status")
@require_login
def checkout_status():
    s = db_session()
    order = s.get(Order, request.args.get("order_id", type=int) or 0)
    if not order or order.user_id != g.current_user.id:
        abort(404, description="Order not found")

    trade = s.query(Trade).filter(Trade.order_id == order.id).order_by(Trade.id.desc()).first()
    if trade is not None and order.status in ("pending", "payment_pending", "processing", "shipped"):
        try:
            if refresh_trade(s, get_client(), trade):
                s.commit()
        except TradeSafeError as e:
            # Serve what we have locally; the webhook will catch up.
            s.rollback()
            current_app.logger.warning("TradeSafe status refresh failed for order %s: %s", order.id, e)

    return jsonify(
        {
            "order_id": order.id,
            "status": order.status,
            "payment_status": order.payment_status,
            "transaction_id": order.transaction_id,
            "trade_status": trade.status if trade is not None else None,
            "payment_url": trade.payment_url if trade is not None else None,
            "order": serialize_order(order),
        }
    )


@bp.post("/tradesafe/webhook")
def webhook():
    secret = (current_app.config.get("TRADESAFE_WEBHOOK_SECRET") or "").strip()
    if not secret:
        current_app.logger.error("TRADESAFE_WEBHOOK_SECRET is not configured; rejecting webhook")
        abort(500, description="Webhook secret not configured")

    body = request.get_data(cache=True)
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        abort(401, description="Missing signature")
    if not verify_signature(secret, body, signature):
        current_app.logger.warning("Invalid TradeSafe webhook signature (request_id=%s)", getattr(g, "request_id", None))
        abort(401, description="Invalid signature")

    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Invalid JSON payload")

    s = db_session()
    try:
        result = handle_webhook(s, payload, signature=signature)
        s.commit()
    except ValueError as e:
        s.rollback()
        abort(400, description=str(e))
    except IntegrityError:
        # A concurrent delivery of the same event won the insert.
        s.rollback()
        return jsonify({"received": True, "duplicate": True})
    return jsonify(result)
