import mimetypes

from flask import Blueprint, abort, current_app, send_file

from app.kibbledrop.storage import StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"name": "KibbleDrop API", "ok": True}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/uploads/<path:key>")
def uploaded_image(key: str):
    """Serve product images written by the admin upload endpoint."""
    if not key.startswith("products/"):
        abort(404)
    storage = storage_from_config(current_app.config)
    try:
        if not storage.exists(key):
            abort(404)
        fh = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fh, mimetype=mimetype, max_age=86400)
