from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from app.kibbledrop.audit import record_event
from app.kibbledrop.constants import (
    CANCELLABLE_ORDER_STATUSES,
    DELIVERY_DAYS,
    DELIVERY_METHODS,
    ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
)
from app.kibbledrop.modules.catalog.service import resolve_line_items
from app.kibbledrop.utils import iso, money, parse_date, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.catalog.models import Product
    from app.kibbledrop.modules.orders.models import Order
    from app.kibbledrop.modules.subscriptions.models import Subscription

logger = logging.getLogger(__name__)

# Forward order of the fulfilment lifecycle; canceled/failed sit outside it.
STATUS_RANK = {"pending": 0, "payment_pending": 1, "processing": 2, "shipped": 3, "delivered": 4}
SHIPPING_FEE = Decimal("0.00")


def estimated_delivery_for(method: str, start: datetime | None = None) -> datetime:
    return (start or utcnow()) + timedelta(days=DELIVERY_DAYS.get(method, DELIVERY_DAYS["standard"]))


def serialize_order(order: "Order", *, include_customer: bool = False) -> dict:
    out = {
        "id": order.id,
        "user_id": order.user_id,
        "subscription_id": order.subscription_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "subtotal": money(order.subtotal),
        "shipping": money(order.shipping),
        "total": money(order.total),
        "delivery_name": order.delivery_name,
        "delivery_phone": order.delivery_phone,
        "delivery_address": order.delivery_address,
        "city": order.city,
        "postal_code": order.postal_code,
        "instructions": order.instructions,
        "delivery_method": order.delivery_method,
        "tracking_number": order.tracking_number,
        "estimated_delivery": iso(order.estimated_delivery),
        "transaction_id": order.transaction_id,
        "payment_completed_at": iso(order.payment_completed_at),
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "name": item.product.name,
                "image": item.product.image,
                "price": money(item.price),
                "quantity": item.quantity,
                "total": money(item.price * item.quantity),
            }
            for item in order.items
        ],
    }
    if include_customer:
        out["customer"] = {"id": order.user.id, "name": order.user.name, "email": order.user.email}
    return out


def _delivery_fields(payload: dict, user: "User") -> dict:
    name = str(payload.get("delivery_name") or "").strip()
    if not name:
        first = str(payload.get("first_name") or "").strip()
        last = str(payload.get("last_name") or "").strip()
        name = f"{first} {last}".strip() or (user.name or "")
    fields = {
        "delivery_name": name,
        "delivery_phone": str(payload.get("delivery_phone") or payload.get("phone") or "").strip(),
        "delivery_address": str(payload.get("delivery_address") or payload.get("address") or "").strip(),
        "city": str(payload.get("city") or "").strip(),
        "postal_code": str(payload.get("postal_code") or "").strip(),
    }
    missing = [k for k, v in fields.items() if not v]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    method = str(payload.get("delivery_method") or "standard").strip().lower()
    if method not in DELIVERY_METHODS:
        raise ValueError(f"Invalid delivery method. Must be one of: {', '.join(DELIVERY_METHODS)}")
    fields["delivery_method"] = method
    fields["instructions"] = str(payload.get("instructions") or "").strip() or None
    return fields


def cart_lines(s: "Session", user: "User") -> list[tuple["Product", int]]:
    from app.kibbledrop.modules.cart.service import get_cart

    cart = get_cart(s, user)
    if cart is None or not cart.items:
        raise ValueError("Cart is empty")
    return [(item.product, item.quantity) for item in cart.items]


def create_order(
    s: "Session",
    user: "User",
    payload: dict,
    *,
    lines: list[tuple["Product", int]] | None = None,
    subscription: "Subscription | None" = None,
) -> "Order":
    """
    Create an order priced from the catalog. Lines come from (in order) the
    explicit argument, payload["items"], or the user's cart, which is then emptied.
    Raises ValueError for bad input and LookupError for unknown products.
    """
    from app.kibbledrop.modules.cart.service import clear_cart
    from app.kibbledrop.modules.orders.models import Order, OrderItem

    fields = _delivery_fields(payload, user)
    from_cart = False
    if lines is None:
        if payload.get("items"):
            lines = resolve_line_items(s, payload.get("items"))
        else:
            lines = cart_lines(s, user)
            from_cart = True

    subtotal = sum((p.price * qty for p, qty in lines), Decimal("0"))
    now = utcnow()
    order = Order(
        user_id=user.id,
        subscription_id=subscription.id if subscription is not None else None,
        status="pending",
        payment_status="unpaid",
        subtotal=subtotal,
        shipping=SHIPPING_FEE,
        total=subtotal + SHIPPING_FEE,
        estimated_delivery=estimated_delivery_for(fields["delivery_method"], now),
        created_at=now,
        updated_at=now,
        **fields,
    )
    order.items.extend(OrderItem(product_id=p.id, product=p, quantity=qty, price=p.price) for p, qty in lines)
    s.add(order)
    s.flush()

    if from_cart:
        clear_cart(s, user)

    record_event(
        s,
        actor=user,
        action="order.create",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={"total": money(order.total), "items": len(lines), "subscription_id": order.subscription_id},
    )
    logger.info("Order %s created for user %s total=%s", order.id, user.id, money(order.total))
    return order


def cancel_order(s: "Session", order: "Order", user: "User | None", reason: str | None = None) -> "Order":
    if order.status not in CANCELLABLE_ORDER_STATUSES:
        raise ValueError("Cannot cancel order that has already been shipped")
    old = order.status
    order.status = "canceled"
    order.cancel_reason = reason
    if order.payment_status == "paid":
        order.payment_status = "refunded"
    elif order.payment_status in ("unpaid", "pending"):
        order.payment_status = "cancelled"
    order.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="order.cancel",
        entity_type="Order",
        entity_id=str(order.id),
        reason=reason,
        metadata={"old_status": old},
    )
    return order


def update_order(s: "Session", order: "Order", payload: dict, user: "User") -> "Order":
    """Admin edit of fulfilment fields: status, tracking number, estimated delivery."""
    changes = {}

    if "status" in payload:
        status = str(payload.get("status") or "").strip()
        if status not in ORDER_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
        if status != order.status:
            changes["status"] = {"old": order.status, "new": status}
            order.status = status

    if "tracking_number" in payload:
        tracking = str(payload.get("tracking_number") or "").strip() or None
        if tracking != order.tracking_number:
            changes["tracking_number"] = {"old": order.tracking_number, "new": tracking}
            order.tracking_number = tracking

    if "estimated_delivery" in payload:
        try:
            d = parse_date(payload.get("estimated_delivery"))
        except ValueError as e:
            raise ValueError("estimated_delivery must be a YYYY-MM-DD date") from e
        new = datetime(d.year, d.month, d.day) if d else None
        if new != order.estimated_delivery:
            changes["estimated_delivery"] = {"old": iso(order.estimated_delivery), "new": iso(new)}
            order.estimated_delivery = new

    order.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="order.edit",
        entity_type="Order",
        entity_id=str(order.id),
        metadata={"changes": changes},
    )
    return order


def advance_order(order: "Order", status: str) -> bool:
    """
    Move an order forward in the lifecycle. Never moves backwards and never
    touches terminal orders; returns whether anything changed.
    """
    if order.status in TERMINAL_ORDER_STATUSES or order.status == status:
        return False
    if status in ("canceled", "failed"):
        order.status = status
        return True
    if STATUS_RANK.get(status, -1) <= STATUS_RANK.get(order.status, -1):
        return False
    order.status = status
    return True


def payment_status_label(order: "Order") -> str:
    if order.status == "canceled" or order.payment_status == "refunded":
        return "Refunded" if order.payment_status in ("paid", "refunded") else "Cancelled"
    if order.payment_status == "paid":
        return "Paid"
    if order.payment_status == "failed":
        return "Failed"
    return "Pending"


def build_invoice(order: "Order", *, business_email: str) -> dict:
    return {
        "invoice_number": f"INV-{order.id:08d}",
        "order_id": order.id,
        "issued_at": iso(order.created_at),
        "due_date": iso(order.created_at + timedelta(days=30)),
        "seller": {"name": "KibbleDrop", "email": business_email},
        "customer": {
            "name": order.delivery_name,
            "email": order.user.email,
            "phone": order.delivery_phone,
            "address": order.delivery_address,
            "city": order.city,
            "postal_code": order.postal_code,
        },
        "items": [
            {
                "description": item.product.name,
                "quantity": item.quantity,
                "unit_price": money(item.price),
                "total": money(item.price * item.quantity),
            }
            for item in order.items
        ],
        "subtotal": money(order.subtotal),
        "shipping": money(order.shipping),
        "total": money(order.total),
        "status": order.status,
        "payment_status": payment_status_label(order),
        "tracking_number": order.tracking_number,
    }
