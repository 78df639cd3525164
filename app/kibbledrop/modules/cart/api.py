from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.cart.service import (
    add_item,
    clear_cart,
    find_item,
    get_cart,
    remove_item,
    serialize_cart,
    set_quantity,
)
from app.kibbledrop.rbac import require_login
from app.kibbledrop.utils import parse_int

bp = Blueprint("cart", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _refreshed():
    s = db_session()
    return jsonify(serialize_cart(get_cart(s, g.current_user)))


@bp.get("/cart")
def cart_get():
    user = getattr(g, "current_user", None)
    if not user:
        return jsonify(serialize_cart(None))
    return jsonify(serialize_cart(get_cart(db_session(), user)))


@bp.post("/cart")
@require_login
def cart_add():
    data = _payload()
    product_id = parse_int(data.get("product_id"))
    quantity = parse_int(data.get("quantity"))
    if product_id is None:
        abort(400, description="Product ID is required")

    s = db_session()
    try:
        add_item(s, g.current_user, product_id, 1 if quantity is None else quantity)
    except LookupError as e:
        abort(404, description=str(e))
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return _refreshed()


@bp.put("/cart/<int:item_id>")
@require_login
def cart_update(item_id: int):
    quantity = parse_int(_payload().get("quantity"))
    if quantity is None:
        abort(400, description="Invalid quantity")

    s = db_session()
    item = find_item(s, g.current_user, item_id)
    if not item:
        abort(404, description="Cart item not found")
    try:
        set_quantity(s, item, quantity)
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return _refreshed()


@bp.delete("/cart/<int:item_id>")
@require_login
def cart_remove(item_id: int):
    s = db_session()
    item = find_item(s, g.current_user, item_id)
    if not item:
        abort(404, description="Cart item not found")
    remove_item(s, item)
    s.commit()
    return _refreshed()


@bp.delete("/cart")
@require_login
def cart_clear():
    s = db_session()
    clear_cart(s, g.current_user)
    s.commit()
    return _refreshed()
