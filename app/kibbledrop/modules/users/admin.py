from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.models import User
from app.kibbledrop.modules.users.service import delete_user, serialize_admin_user, update_user
from app.kibbledrop.rbac import require_permission

bp = Blueprint("users_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_user(s, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        abort(404, description="User not found")
    return user


@bp.get("/users")
@require_permission("users.manage")
def users_list():
    s = db_session()
    users = s.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify([serialize_admin_user(s, u) for u in users])


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def user_detail(user_id: int):
    s = db_session()
    return jsonify(serialize_admin_user(s, _get_user(s, user_id)))


@bp.put("/users/<int:user_id>")
@require_permission("users.manage")
def user_update(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Expected a JSON object")
    try:
        update_user(s, user, payload, _current_user())
    except LookupError as e:
        abort(400, description=str(e))
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify(serialize_admin_user(s, user))


@bp.delete("/users/<int:user_id>")
@require_permission("users.manage")
def user_delete(user_id: int):
    s = db_session()
    user = _get_user(s, user_id)
    try:
        delete_user(s, user, _current_user())
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    return jsonify({"message": "User deleted successfully"})
