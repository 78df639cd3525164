from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.kibbledrop.constants import SUBSCRIPTION_STATUSES
from app.kibbledrop.db import db_session
from app.kibbledrop.modules.subscriptions.models import Subscription
from app.kibbledrop.modules.subscriptions.service import serialize_subscription
from app.kibbledrop.rbac import require_permission

bp = Blueprint("subscriptions_admin", __name__)


@bp.get("/subscriptions")
@require_permission("subscriptions.view")
def subscriptions_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()

    q = s.query(Subscription)
    if status:
        if status not in SUBSCRIPTION_STATUSES:
            abort(400, description=f"Invalid status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
        q = q.filter(Subscription.status == status)

    subs = q.order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()
    out = []
    for sub in subs:
        row = serialize_subscription(sub)
        row["customer"] = {"id": sub.user.id, "name": sub.user.name, "email": sub.user.email}
        out.append(row)
    return jsonify(out)
