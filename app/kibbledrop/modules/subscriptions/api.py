from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.subscriptions.models import Subscription
from app.kibbledrop.modules.subscriptions.service import (
    activate_subscription,
    create_subscription,
    delete_subscription,
    replace_items,
    serialize_subscription,
    update_subscription,
)
from app.kibbledrop.rbac import require_login

bp = Blueprint("subscriptions", __name__)


def _json_payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Expected a JSON object")
    return data


def own_subscription(s, subscription_id: int) -> Subscription:
    sub = s.get(Subscription, subscription_id)
    if not sub or sub.user_id != g.current_user.id:
        abort(404, description="Subscription not found")
    return sub


@bp.get("/subscriptions")
@require_login
def subscriptions_list():
    s = db_session()
    subs = (
        s.query(Subscription)
        .filter(Subscription.user_id == g.current_user.id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .all()
    )
    return jsonify([serialize_subscription(sub) for sub in subs])


@bp.post("/subscriptions")
@require_login
def subscriptions_create():
    s = db_session()
    try:
        sub = create_subscription(s, _json_payload(), g.current_user)
    except LookupError as e:
        abort(404, description=str(e))
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_subscription(sub)), 201


@bp.get("/subscriptions/<int:subscription_id>")
@require_login
def subscription_detail(subscription_id: int):
    s = db_session()
    return jsonify(serialize_subscription(own_subscription(s, subscription_id)))


@bp.put("/subscriptions/<int:subscription_id>")
@require_login
def subscription_update(subscription_id: int):
    s = db_session()
    sub = own_subscription(s, subscription_id)
    try:
        update_subscription(s, sub, _json_payload(), g.current_user)
    except LookupError as e:
        abort(404, description=str(e))
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_subscription(sub))


@bp.put("/subscriptions/<int:subscription_id>/items")
@require_login
def subscription_items_replace(subscription_id: int):
    s = db_session()
    sub = own_subscription(s, subscription_id)
    try:
        replace_items(s, sub, _json_payload().get("items"), g.current_user)
    except LookupError as e:
        abort(404, description=str(e))
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_subscription(sub))


@bp.post("/subscriptions/<int:subscription_id>/activate")
@require_login
def subscription_activate(subscription_id: int):
    s = db_session()
    sub = own_subscription(s, subscription_id)
    try:
        activate_subscription(s, sub, g.current_user)
    except ValueError as e:
        abort(404, description=str(e))
    s.commit()
    return jsonify({"success": True, "subscription": serialize_subscription(sub)})


@bp.delete("/subscriptions/<int:subscription_id>")
@require_login
def subscription_delete(subscription_id: int):
    s = db_session()
    sub = own_subscription(s, subscription_id)
    delete_subscription(s, sub, g.current_user)
    s.commit()
    return jsonify({"message": "Subscription deleted successfully"})
