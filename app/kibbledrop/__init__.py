import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.kibbledrop.config import load_config
from app.kibbledrop.db import init_db, teardown_db_session
from app.kibbledrop.routes import bp as routes_bp
from app.kibbledrop.auth import bp as auth_bp, load_current_user
from app.kibbledrop.modules.catalog.api import bp as catalog_bp
from app.kibbledrop.modules.catalog.admin import bp as catalog_admin_bp
from app.kibbledrop.modules.cart.api import bp as cart_bp
from app.kibbledrop.modules.orders.api import bp as orders_bp
from app.kibbledrop.modules.orders.admin import bp as orders_admin_bp
from app.kibbledrop.modules.subscriptions.api import bp as subscriptions_bp
from app.kibbledrop.modules.subscriptions.admin import bp as subscriptions_admin_bp
from app.kibbledrop.modules.pets.api import bp as pets_bp
from app.kibbledrop.modules.users.api import bp as account_bp
from app.kibbledrop.modules.users.admin import bp as users_admin_bp
from app.kibbledrop.modules.analytics.admin import bp as analytics_admin_bp
from app.kibbledrop.modules.tradesafe.api import bp as tradesafe_bp
from app.kibbledrop.modules.tradesafe.admin import bp as tradesafe_admin_bp

_UNGUARDED_PREFIXES = ("/health", "/healthz", "/uploads/")

# Endpoints that authenticate some other way (credentials, HMAC) instead of the session CSRF token.
_CSRF_EXEMPT_ENDPOINTS = frozenset({"tradesafe.webhook"})


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    # CSRF protection (minimal)
    from app.kibbledrop.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        endpoint = request.endpoint or ""
        if endpoint in _CSRF_EXEMPT_ENDPOINTS:
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/logout/register establish the session, so they cannot carry a token yet
            if endpoint.startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("TRADESAFE_WEBHOOK_SECRET"):
            app.logger.error("TRADESAFE_WEBHOOK_SECRET is not set; payment webhooks will be rejected.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(catalog_bp, url_prefix="/api")
    app.register_blueprint(cart_bp, url_prefix="/api")
    app.register_blueprint(orders_bp, url_prefix="/api")
    app.register_blueprint(subscriptions_bp, url_prefix="/api")
    app.register_blueprint(pets_bp, url_prefix="/api")
    app.register_blueprint(account_bp, url_prefix="/api")
    app.register_blueprint(tradesafe_bp, url_prefix="/api")
    app.register_blueprint(catalog_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(orders_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(subscriptions_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(users_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(analytics_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(tradesafe_admin_bp, url_prefix="/api/admin")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        elif e.code == 500:
            app.logger.error("500 (request_id=%s): %s", getattr(g, "request_id", None), e.description)
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "Internal server error", "request_id": rid}), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
