from __future__ import annotations

import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, abort, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.kibbledrop.audit import record_event
from app.kibbledrop.constants import ROLE_CUSTOMER
from app.kibbledrop.db import db_session
from app.kibbledrop.models import Role, User
from app.kibbledrop.security import ensure_csrf_token
from app.kibbledrop.utils import iso, utcnow

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_rate_limit(ip: str) -> bool:
    now = utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def password_problems(password: str) -> list[str]:
    """Password policy: 8+ chars with an upper, a lower and a digit."""
    problems = []
    if len(password) < 8:
        problems.append("Password must be at least 8 characters long")
    if not re.search(r"[a-z]", password) or not re.search(r"[A-Z]", password) or not re.search(r"\d", password):
        problems.append("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return problems


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "is_active": user.is_active,
        "roles": user.role_keys(),
        "permissions": user.permission_keys(),
        "created_at": iso(user.created_at),
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def ensure_customer_role(s) -> Role:
    role = s.query(Role).filter(Role.key == ROLE_CUSTOMER).one_or_none()
    if not role:
        role = Role(key=ROLE_CUSTOMER, name="Customer")
        s.add(role)
    return role


@bp.post("/login")
def login_post():
    data = _payload()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        abort(429, description="Too many login attempts. Please wait 5 minutes.")

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        abort(401, description="Invalid credentials")

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.info("Login ok user_id=%s request_id=%s", user.id, g.request_id)
    return jsonify({"user": serialize_user(user), "csrf_token": ensure_csrf_token()})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"ok": True})


@bp.post("/register")
def register():
    data = _payload()
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    phone = (data.get("phone") or "").strip() or None

    if not name or not email or not password:
        abort(400, description="Name, email and password are required")
    if not _EMAIL_RE.match(email):
        abort(400, description="Invalid email address")
    problems = password_problems(password)
    if problems:
        abort(400, description=problems[0])

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        abort(409, description="User already exists")

    user = User(name=name, email=email, phone=phone, password_hash=generate_password_hash(password), is_active=True)
    user.roles.append(ensure_customer_role(s))
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    return jsonify({"user": serialize_user(user), "csrf_token": ensure_csrf_token()}), 201


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        abort(401, description="Authentication required")
    return jsonify({"user": serialize_user(user), "csrf_token": ensure_csrf_token()})
