from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.kibbledrop.constants import ORDER_STATUSES
from app.kibbledrop.db import db_session
from app.kibbledrop.models import User
from app.kibbledrop.modules.orders.models import Order
from app.kibbledrop.modules.orders.service import build_invoice, cancel_order, serialize_order, update_order
from app.kibbledrop.rbac import require_permission

bp = Blueprint("orders_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_order(order_id: int) -> Order:
    order = db_session().get(Order, order_id)
    if not order:
        abort(404, description="Order not found")
    return order


# ---------- List ----------
@bp.get("/orders")
@require_permission("orders.manage")
def orders_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()

    q = s.query(Order)
    if status:
        if status not in ORDER_STATUSES:
            abort(400, description=f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
        q = q.filter(Order.status == status)

    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return jsonify([serialize_order(o, include_customer=True) for o in orders])


# ---------- Detail / edit / cancel ----------
@bp.get("/orders/<int:order_id>")
@require_permission("orders.manage")
def order_detail(order_id: int):
    return jsonify(serialize_order(_get_order(order_id), include_customer=True))


@bp.put("/orders/<int:order_id>")
@require_permission("orders.manage")
def order_update(order_id: int):
    order = _get_order(order_id)
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Expected a JSON object")

    s = db_session()
    try:
        update_order(s, order, payload, _current_user())
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_order(order, include_customer=True))


@bp.delete("/orders/<int:order_id>")
@require_permission("orders.manage")
def order_cancel(order_id: int):
    order = _get_order(order_id)
    payload = request.get_json(silent=True) or {}
    reason = str(payload.get("reason") or "").strip() or None

    s = db_session()
    try:
        cancel_order(s, order, _current_user(), reason)
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    current_app.logger.info("Order %s cancelled by admin %s", order.id, _current_user().id)
    return jsonify({"message": "Order cancelled successfully", "order": serialize_order(order, include_customer=True)})


# ---------- Invoice ----------
@bp.get("/orders/<int:order_id>/invoice")
@require_permission("orders.manage")
def order_invoice(order_id: int):
    order = _get_order(order_id)
    return jsonify(build_invoice(order, business_email=current_app.config.get("BUSINESS_EMAIL") or ""))
