from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.orders.models import Order
from app.kibbledrop.modules.orders.service import create_order, serialize_order
from app.kibbledrop.rbac import require_login

bp = Blueprint("orders", __name__)


@bp.get("/orders")
@require_login
def orders_list():
    s = db_session()
    orders = (
        s.query(Order)
        .filter(Order.user_id == g.current_user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return jsonify([serialize_order(o) for o in orders])


@bp.post("/orders")
@require_login
def orders_create():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Expected a JSON object")

    s = db_session()
    try:
        order = create_order(s, g.current_user, payload)
    except LookupError as e:
        abort(404, description=str(e))
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_order(order)), 201


@bp.get("/orders/<int:order_id>")
@require_login
def order_detail(order_id: int):
    s = db_session()
    order = s.get(Order, order_id)
    if not order or order.user_id != g.current_user.id:
        abort(404, description="Order not found")
    return jsonify(serialize_order(order))
