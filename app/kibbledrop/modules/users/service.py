from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from werkzeug.security import check_password_hash, generate_password_hash

from app.kibbledrop.audit import record_event
from app.kibbledrop.auth import password_problems, serialize_user
from app.kibbledrop.utils import iso, money

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User


USER_STATUSES = ("active", "inactive")


def serialize_admin_user(s: "Session", user: "User") -> dict:
    from app.kibbledrop.modules.orders.models import Order

    orders = s.query(Order).filter(Order.user_id == user.id).order_by(Order.created_at.desc(), Order.id.desc()).all()
    out = serialize_user(user)
    out["status"] = "active" if user.is_active else "inactive"
    out["orders"] = [
        {"id": o.id, "status": o.status, "total": money(o.total), "created_at": iso(o.created_at)} for o in orders
    ]
    return out


def update_user(s: "Session", user: "User", payload: dict, actor: "User") -> "User":
    """Admin change of account status and/or role. Raises ValueError/LookupError."""
    from app.kibbledrop.models import Role

    changes = {}
    status = str(payload.get("status") or "").strip().lower()
    if status:
        if status not in USER_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(USER_STATUSES)}")
        if user.id == actor.id and status == "inactive":
            raise ValueError("You cannot deactivate your own account")
        is_active = status == "active"
        if is_active != user.is_active:
            changes["status"] = {"old": "active" if user.is_active else "inactive", "new": status}
            user.is_active = is_active

    role_key = str(payload.get("role") or "").strip()
    if role_key:
        role = s.query(Role).filter(Role.key == role_key).one_or_none()
        if not role:
            raise LookupError(f"Unknown role: {role_key}")
        if user.role_keys() != [role.key]:
            changes["roles"] = {"old": user.role_keys(), "new": [role.key]}
            user.roles = [role]

    record_event(
        s,
        actor=actor,
        action="user.edit",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"changes": changes},
    )
    return user


def delete_user(s: "Session", user: "User", actor: "User") -> None:
    """Remove a customer account. Raises ValueError while history still references it."""
    from app.kibbledrop.modules.cart.models import Cart
    from app.kibbledrop.modules.orders.models import Order
    from app.kibbledrop.modules.pets.models import PetProfile
    from app.kibbledrop.modules.subscriptions.models import Subscription

    if user.id == actor.id:
        raise ValueError("You cannot delete your own account")
    if s.query(Subscription.id).filter(Subscription.user_id == user.id).first() is not None:
        raise ValueError("Cannot delete user with active subscriptions. Please cancel subscriptions first.")
    if s.query(Order.id).filter(Order.user_id == user.id).first() is not None:
        raise ValueError("Cannot delete user with order history")

    s.query(PetProfile).filter(PetProfile.user_id == user.id).delete(synchronize_session=False)
    cart = s.query(Cart).filter(Cart.user_id == user.id).one_or_none()
    if cart is not None:
        s.delete(cart)
    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    s.delete(user)


def user_stats(s: "Session", user: "User") -> dict:
    from app.kibbledrop.modules.orders.models import Order
    from app.kibbledrop.modules.pets.models import PetProfile
    from app.kibbledrop.modules.subscriptions.models import Subscription
    from app.kibbledrop.modules.subscriptions.service import serialize_subscription

    orders = s.query(Order).filter(Order.user_id == user.id).order_by(Order.created_at.desc(), Order.id.desc()).all()
    active_subs = (
        s.query(Subscription)
        .filter(Subscription.user_id == user.id, Subscription.status == "active")
        .order_by(Subscription.created_at.desc())
        .all()
    )
    pets = s.query(PetProfile.id).filter(PetProfile.user_id == user.id).count()
    total_spent = sum((o.total for o in orders if o.status == "delivered"), Decimal("0"))

    return {
        "total_orders": len(orders),
        "active_subscriptions": len(active_subs),
        "pet_profiles": pets,
        "total_spent": money(total_spent),
        "recent_orders": [
            {
                "id": o.id,
                "status": o.status,
                "total": money(o.total),
                "created_at": iso(o.created_at),
                "items": [{"name": i.product.name, "quantity": i.quantity} for i in o.items],
            }
            for o in orders[:5]
        ],
        "subscriptions": [serialize_subscription(sub) for sub in active_subs],
    }


def change_password(s: "Session", user: "User", payload: dict) -> None:
    """Raises ValueError with a user-facing message when the change is refused."""
    current = payload.get("current_password") or ""
    new = payload.get("new_password") or ""
    confirm = payload.get("confirm_password") or ""

    if not current or not new or not confirm:
        raise ValueError("All fields are required")
    if new != confirm:
        raise ValueError("New passwords do not match")
    problems = password_problems(new)
    if problems:
        raise ValueError(problems[0])
    if not check_password_hash(user.password_hash, current):
        raise ValueError("Current password is incorrect")

    user.password_hash = generate_password_hash(new)
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=str(user.id))
