from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from app.kibbledrop.audit import record_event
from app.kibbledrop.constants import SUBSCRIPTION_FREQUENCIES, SUBSCRIPTION_FREQUENCY_DAYS, SUBSCRIPTION_STATUSES
from app.kibbledrop.modules.catalog.service import resolve_line_items
from app.kibbledrop.utils import add_months, iso, money, parse_int, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.subscriptions.models import Subscription

logger = logging.getLogger(__name__)

DELIVERY_FIELDS = ("delivery_name", "delivery_phone", "delivery_address", "city", "postal_code")


def next_delivery_for(frequency: str, start: datetime | None = None) -> datetime:
    """
    Next delivery date for a frequency. Weekly cadences add whole days;
    monthly (and anything unrecognized, e.g. "custom") adds one calendar month.
    """
    start = start or utcnow()
    days = SUBSCRIPTION_FREQUENCY_DAYS.get(frequency)
    if days is not None:
        return start + timedelta(days=days)
    return add_months(start, 1)


def subscription_value(sub: "Subscription") -> Decimal:
    """Per-delivery value at current catalog prices."""
    return sum((item.product.price * item.quantity for item in sub.items), Decimal("0"))


def serialize_subscription(sub: "Subscription") -> dict:
    return {
        "id": sub.id,
        "user_id": sub.user_id,
        "pet_profile_id": sub.pet_profile_id,
        "frequency": sub.frequency,
        "status": sub.status,
        "delivery_name": sub.delivery_name,
        "delivery_phone": sub.delivery_phone,
        "delivery_address": sub.delivery_address,
        "city": sub.city,
        "postal_code": sub.postal_code,
        "instructions": sub.instructions,
        "next_delivery": iso(sub.next_delivery),
        "activated_at": iso(sub.activated_at),
        "cancelled_at": iso(sub.cancelled_at),
        "created_at": iso(sub.created_at),
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "name": item.product.name,
                "price": money(item.product.price),
                "quantity": item.quantity,
                "image": item.product.image,
            }
            for item in sub.items
        ],
        "total": money(subscription_value(sub)),
    }


def _delivery_name(payload: dict) -> str:
    name = str(payload.get("delivery_name") or "").strip()
    if name:
        return name
    first = str(payload.get("first_name") or "").strip()
    last = str(payload.get("last_name") or "").strip()
    return f"{first} {last}".strip()


def _check_pet(s: "Session", user: "User", pet_profile_id) -> int | None:
    from app.kibbledrop.modules.pets.models import PetProfile

    if pet_profile_id in (None, ""):
        return None
    pet_id = parse_int(pet_profile_id)
    pet = s.get(PetProfile, pet_id) if pet_id is not None else None
    if not pet or pet.user_id != user.id:
        raise LookupError("Pet profile not found")
    return pet.id


def _item_models(s: "Session", raw_items):
    from app.kibbledrop.modules.subscriptions.models import SubscriptionItem

    return [SubscriptionItem(product_id=p.id, product=p, quantity=qty) for p, qty in resolve_line_items(s, raw_items)]


def create_subscription(s: "Session", payload: dict, user: "User") -> "Subscription":
    """
    Create a subscription for user. Raises ValueError on missing data and
    LookupError for unknown products/pets.
    """
    from app.kibbledrop.modules.subscriptions.models import Subscription

    frequency = str(payload.get("frequency") or "").strip()
    fields = {key: str(payload.get(key) or "").strip() for key in DELIVERY_FIELDS}
    fields["delivery_name"] = _delivery_name(payload)
    missing = [k for k, v in fields.items() if not v]
    if not frequency:
        missing.insert(0, "frequency")
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")
    if frequency not in SUBSCRIPTION_FREQUENCIES:
        raise ValueError(f"Invalid frequency. Must be one of: {', '.join(SUBSCRIPTION_FREQUENCIES)}")

    items = _item_models(s, payload.get("items"))
    pay_first = bool(payload.get("pay_first"))
    now = utcnow()
    sub = Subscription(
        user_id=user.id,
        pet_profile_id=_check_pet(s, user, payload.get("pet_profile_id")),
        frequency=frequency,
        status="pending" if pay_first else "active",
        instructions=str(payload.get("instructions") or "").strip() or None,
        next_delivery=next_delivery_for(frequency, now),
        activated_at=None if pay_first else now,
        created_at=now,
        updated_at=now,
        **fields,
    )
    sub.items.extend(items)
    s.add(sub)
    s.flush()

    record_event(
        s,
        actor=user,
        action="subscription.create",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"frequency": frequency, "status": sub.status, "items": len(items)},
    )
    return sub


def update_subscription(s: "Session", sub: "Subscription", payload: dict, user: "User") -> "Subscription":
    changes = {}

    if "frequency" in payload:
        frequency = str(payload.get("frequency") or "").strip()
        if frequency not in SUBSCRIPTION_FREQUENCIES:
            raise ValueError(f"Invalid frequency. Must be one of: {', '.join(SUBSCRIPTION_FREQUENCIES)}")
        if frequency != sub.frequency:
            changes["frequency"] = {"old": sub.frequency, "new": frequency}
            sub.frequency = frequency
            sub.next_delivery = next_delivery_for(frequency)

    if "status" in payload:
        status = str(payload.get("status") or "").strip()
        if status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
        if status != sub.status:
            changes["status"] = {"old": sub.status, "new": status}
            sub.status = status
            if status == "cancelled":
                sub.cancelled_at = utcnow()
            elif status == "active" and sub.activated_at is None:
                sub.activated_at = utcnow()

    for key in DELIVERY_FIELDS + ("instructions",):
        if key not in payload:
            continue
        new = str(payload.get(key) or "").strip() or None
        if new is None and key != "instructions":
            raise ValueError(f"{key} cannot be blank")
        if new != getattr(sub, key):
            changes[key] = {"old": getattr(sub, key), "new": new}
            setattr(sub, key, new)

    if "pet_profile_id" in payload:
        pet_id = _check_pet(s, user, payload.get("pet_profile_id"))
        if pet_id != sub.pet_profile_id:
            changes["pet_profile_id"] = {"old": sub.pet_profile_id, "new": pet_id}
            sub.pet_profile_id = pet_id

    sub.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="subscription.edit",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"changes": changes},
    )
    return sub


def replace_items(s: "Session", sub: "Subscription", raw_items, user: "User") -> "Subscription":
    items = _item_models(s, raw_items)
    sub.items.clear()
    s.flush()
    sub.items.extend(items)
    sub.updated_at = utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="subscription.items_replace",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"items": [{"product_id": i.product_id, "quantity": i.quantity} for i in items]},
    )
    return sub


def activate_subscription(s: "Session", sub: "Subscription", actor: "User | None", *, source: str = "customer") -> "Subscription":
    """pending -> active. Raises ValueError for any other status."""
    if sub.status != "pending":
        raise ValueError("Subscription not found or already activated")
    now = utcnow()
    sub.status = "active"
    sub.activated_at = now
    sub.next_delivery = next_delivery_for(sub.frequency, now)
    sub.updated_at = now
    record_event(
        s,
        actor=actor,
        action="subscription.activate",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"source": source, "next_delivery": iso(sub.next_delivery)},
    )
    logger.info("Subscription %s activated (source=%s)", sub.id, source)
    return sub


def delete_subscription(s: "Session", sub: "Subscription", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="subscription.delete",
        entity_type="Subscription",
        entity_id=str(sub.id),
        metadata={"frequency": sub.frequency, "status": sub.status},
    )
    s.delete(sub)
