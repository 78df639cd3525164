from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.users.service import change_password, user_stats
from app.kibbledrop.rbac import require_login

bp = Blueprint("account", __name__)


@bp.get("/user/stats")
@require_login
def stats():
    return jsonify(user_stats(db_session(), g.current_user))


@bp.post("/user/change-password")
@require_login
def password_change():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Expected a JSON object")

    s = db_session()
    try:
        change_password(s, g.current_user, payload)
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify({"message": "Password changed successfully"})
