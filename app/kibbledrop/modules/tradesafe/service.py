"""
Checkout and webhook handling for TradeSafe escrow payments.

Checkout is sequential: buyer token -> transaction -> payment link. There is
no retry; a provider failure marks the order failed and propagates.

Webhooks are idempotent per (transaction id, event): a repeated delivery is
acknowledged without touching the order again, and order transitions only
ever move forward.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

from app.kibbledrop.audit import record_event
from app.kibbledrop.constants import TERMINAL_ORDER_STATUSES
from app.kibbledrop.modules.orders.service import advance_order
from app.kibbledrop.modules.tradesafe.client import TradeSafeError, normalize_mobile, to_cents
from app.kibbledrop.utils import money, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.orders.models import Order
    from app.kibbledrop.modules.tradesafe.client import TradeSafeClient
    from app.kibbledrop.modules.tradesafe.models import Trade

logger = logging.getLogger(__name__)

DAYS_TO_DELIVER = 7
DAYS_TO_INSPECT = 3

# provider event/state -> (order status, payment status)
STATE_TRANSITIONS: dict[str, tuple[str, str | None]] = {
    "FUNDS_RECEIVED": ("processing", "paid"),
    "FUNDS_DEPOSITED": ("processing", "paid"),
    "FUNDED": ("processing", "paid"),
    "INITIATED": ("shipped", None),
    "SENT": ("shipped", None),
    "DELIVERED": ("shipped", None),
    "COMPLETED": ("delivered", None),
    "CANCELLED": ("canceled", "cancelled"),
    "DECLINED": ("canceled", "cancelled"),
    "REFUNDED": ("canceled", "refunded"),
}


def normalize_event(raw: Any) -> str:
    """Canonical event name: transaction.funds_received, FUNDS_RECEIVED and "funds received" all map to FUNDS_RECEIVED."""
    name = str(raw or "").strip()
    if "." in name:
        name = name.rsplit(".", 1)[1]
    return name.replace("-", "_").replace(" ", "_").upper()


def parse_webhook(payload: Mapping[str, Any]) -> tuple[str, str]:
    """
    (transaction_id, event) from either webhook shape the provider sends:
    {"event": "transaction.funded", "transactionId": ..} or
    {"event_type"?: .., "data": {"id": .., "state": ..}}.
    Raises ValueError when either part is missing.
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    event = normalize_event(payload.get("event") or payload.get("event_type") or data.get("state"))
    tx_id = str(
        payload.get("transactionId") or payload.get("transaction_id") or data.get("transactionId") or data.get("id") or ""
    ).strip()
    if not event or not tx_id:
        raise ValueError("Webhook payload is missing the event or transaction id")
    return tx_id, event


def serialize_trade(trade: "Trade") -> dict:
    return {
        "id": trade.id,
        "trade_id": trade.trade_id,
        "status": trade.status,
        "reference": trade.reference,
        "title": trade.title,
        "amount": money(trade.amount),
        "currency": trade.currency,
        "buyer_email": trade.buyer_email,
        "payment_url": trade.payment_url,
        "order_id": trade.order_id,
        "subscription_id": trade.subscription_id,
    }


def _split_name(full: str) -> tuple[str, str]:
    parts = (full or "").strip().split(None, 1)
    if not parts:
        return "Customer", "Customer"
    return parts[0], parts[1] if len(parts) > 1 else parts[0]


def _seller_token(client: "TradeSafeClient", config: Mapping[str, Any]) -> str:
    configured = (config.get("TRADESAFE_SELLER_TOKEN") or "").strip()
    if configured:
        return configured
    token = client.token_create(
        given_name="KibbleDrop",
        family_name="Store",
        email=config.get("BUSINESS_EMAIL") or "admin@kibbledrop.com",
    )
    return token["id"]


def start_checkout(
    s: "Session",
    client: "TradeSafeClient",
    user: "User",
    order: "Order",
    config: Mapping[str, Any],
) -> "Trade":
    """
    Open an escrow transaction for a pending order and return the saved Trade.
    On provider failure the order is marked failed (caller commits) and the
    TradeSafeError is re-raised.
    """
    from app.kibbledrop.modules.tradesafe.models import Trade

    if order.status != "pending":
        raise ValueError(f"Order {order.id} is not awaiting payment")

    reference = f"KD-{order.id}"
    title = f"KibbleDrop Order #{order.id} - {len(order.items)} item(s)"
    given, family = _split_name(order.delivery_name)
    try:
        buyer = client.token_create(
            given_name=given,
            family_name=family,
            email=user.email,
            mobile=normalize_mobile(order.delivery_phone),
        )
        seller_token = _seller_token(client, config)
        tx = client.transaction_create(
            title=title,
            description="Pet food order from KibbleDrop",
            reference=reference,
            buyer_token=buyer["id"],
            seller_token=seller_token,
            allocations=[
                {
                    "title": item.product.name,
                    "description": f"{item.quantity}x {item.product.name}",
                    "value": to_cents(item.price * item.quantity),
                    "daysToDeliver": DAYS_TO_DELIVER,
                    "daysToInspect": DAYS_TO_INSPECT,
                }
                for item in order.items
            ],
        )
        link = client.checkout_link(tx["id"])
    except TradeSafeError as e:
        order.status = "failed"
        order.payment_status = "failed"
        order.updated_at = utcnow()
        record_event(
            s,
            actor=user,
            action="payment.checkout_failed",
            entity_type="Order",
            entity_id=str(order.id),
            reason=str(e)[:500],
        )
        logger.error("TradeSafe checkout failed for order %s: %s", order.id, e)
        raise

    trade = Trade(
        trade_id=tx["id"],
        status=normalize_event(tx.get("state")) or "CREATED",
        reference=tx.get("reference") or reference,
        title=title,
        amount=order.total,
        currency="ZAR",
        buyer_email=user.email,
        seller_token=seller_token,
        payment_url=link["url"],
        order_id=order.id,
        subscription_id=order.subscription_id,
    )
    s.add(trade)
    order.transaction_id = tx["id"]
    order.status = "payment_pending"
    order.payment_status = "pending"
    order.updated_at = utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="payment.checkout",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={"transaction_id": trade.trade_id, "amount": money(order.total)},
    )
    logger.info("TradeSafe transaction %s opened for order %s", trade.trade_id, order.id)
    return trade


def apply_transaction_state(s: "Session", trade: "Trade", state: str, *, source: str) -> bool:
    """
    Record the provider state on the trade and move the linked order (and a
    pending subscription, once paid) forward. Returns whether the order changed.
    """
    from app.kibbledrop.modules.orders.models import Order
    from app.kibbledrop.modules.subscriptions.models import Subscription
    from app.kibbledrop.modules.subscriptions.service import activate_subscription

    trade.status = state
    trade.updated_at = utcnow()

    transition = STATE_TRANSITIONS.get(state)
    order = s.get(Order, trade.order_id) if trade.order_id else None
    if transition is None or order is None:
        return False

    # delivered/canceled/failed orders (and their subscriptions) stay as they are
    if order.status in TERMINAL_ORDER_STATUSES:
        logger.info("Order %s is %s; ignoring %s %s", order.id, order.status, source, state)
        return False

    target_status, target_payment = transition
    changed = advance_order(order, target_status)

    if target_payment == "paid":
        if order.status != "canceled" and order.payment_status in ("unpaid", "pending", "failed"):
            order.payment_status = "paid"
            order.payment_completed_at = utcnow()
            changed = True
        sub_id = order.subscription_id or trade.subscription_id
        sub = s.get(Subscription, sub_id) if sub_id else None
        if sub is not None and sub.status == "pending":
            activate_subscription(s, sub, None, source="payment")
    elif target_payment == "refunded":
        if changed or (order.status == "canceled" and order.payment_status == "paid"):
            order.payment_status = "refunded"
            changed = True
    elif target_payment and changed:
        order.payment_status = target_payment

    if changed:
        order.updated_at = utcnow()
        record_event(
            s,
            actor=None,
            action="payment.state_change",
            entity_type="Order",
            entity_id=str(order.id),
            metadata={
                "transaction_id": trade.trade_id,
                "state": state,
                "source": source,
                "status": order.status,
                "payment_status": order.payment_status,
            },
        )
        logger.info("Order %s -> %s/%s from %s %s", order.id, order.status, order.payment_status, source, state)
    return changed


def handle_webhook(s: "Session", payload: Mapping[str, Any], *, signature: str | None = None) -> dict:
    """
    Process a verified webhook payload. Raises ValueError for unusable payloads.
    """
    from app.kibbledrop.modules.tradesafe.models import Trade, WebhookDelivery

    tx_id, event = parse_webhook(payload)

    seen = (
        s.query(WebhookDelivery)
        .filter(WebhookDelivery.transaction_id == tx_id, WebhookDelivery.event == event)
        .one_or_none()
    )
    if seen is not None:
        logger.info("Duplicate TradeSafe webhook ignored (transaction=%s event=%s)", tx_id, event)
        return {"received": True, "duplicate": True, "event": event}

    delivery = WebhookDelivery(transaction_id=tx_id, event=event, signature=(signature or "")[:128] or None)
    s.add(delivery)

    trade = s.query(Trade).filter(Trade.trade_id == tx_id).one_or_none()
    if trade is None:
        delivery.outcome = "unmatched"
        logger.warning("TradeSafe webhook for unknown transaction %s (event=%s)", tx_id, event)
        return {"received": True, "matched": False, "event": event}

    changed = apply_transaction_state(s, trade, event, source="webhook")
    delivery.outcome = "applied" if changed else "ignored"
    record_event(
        s,
        actor=None,
        action="payment.webhook",
        entity_type="Trade",
        entity_id=trade.trade_id,
        metadata={"event": event, "outcome": delivery.outcome},
    )

    out: dict[str, Any] = {"received": True, "matched": True, "event": event, "applied": changed}
    if trade.order_id:
        from app.kibbledrop.modules.orders.models import Order

        order = s.get(Order, trade.order_id)
        if order is not None:
            out["order"] = {"id": order.id, "status": order.status, "payment_status": order.payment_status}
    return out


def refresh_trade(s: "Session", client: "TradeSafeClient", trade: "Trade") -> bool:
    """Poll the provider for the current state; provider errors propagate."""
    tx = client.get_transaction(trade.trade_id)
    state = normalize_event(tx.get("state"))
    if not state or state == trade.status:
        return False
    return apply_transaction_state(s, trade, state, source="poll")
