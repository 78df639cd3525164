from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.models import User
from app.kibbledrop.modules.catalog.models import Product
from app.kibbledrop.modules.catalog.service import (
    create_product,
    delete_product,
    serialize_product,
    update_product,
    upload_product_image,
    validate_product_payload,
)
from app.kibbledrop.rbac import require_permission
from app.kibbledrop.storage import storage_from_config

bp = Blueprint("catalog_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _json_payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Expected a JSON object")
    return data


# ---------- List ----------
@bp.get("/products")
@require_permission("products.manage")
def products_list():
    s = db_session()
    products = s.query(Product).order_by(Product.created_at.desc(), Product.id.desc()).all()
    return jsonify([serialize_product(p) for p in products])


# ---------- Create ----------
@bp.post("/products")
@require_permission("products.manage")
def products_create():
    s = db_session()
    payload = _json_payload()

    errors = validate_product_payload(payload)
    if errors:
        abort(400, description=" ".join(errors))

    product = create_product(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_product(product)), 201


# ---------- Detail / edit / delete ----------
@bp.get("/products/<int:product_id>")
@require_permission("products.manage")
def product_detail(product_id: int):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404, description="Product not found")
    return jsonify(serialize_product(product))


@bp.put("/products/<int:product_id>")
@require_permission("products.manage")
def product_update(product_id: int):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404, description="Product not found")
    payload = _json_payload()

    errors = validate_product_payload(payload, partial=True)
    if errors:
        abort(400, description=" ".join(errors))

    update_product(s, product, payload, _current_user())
    s.commit()
    return jsonify(serialize_product(product))


@bp.delete("/products/<int:product_id>")
@require_permission("products.manage")
def product_delete(product_id: int):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404, description="Product not found")
    try:
        delete_product(s, product, _current_user())
    except ValueError as e:
        abort(409, description=str(e))
    s.commit()
    return jsonify({"message": "Product deleted successfully"})


# ---------- Image upload ----------
@bp.post("/uploads")
@require_permission("products.manage")
def image_upload():
    f = request.files.get("file")
    if not f or not f.filename:
        abort(400, description="No file uploaded")
    data = f.read()

    s = db_session()
    storage = storage_from_config(current_app.config)
    try:
        key = upload_product_image(s, storage, data, f.filename, f.mimetype or "", _current_user())
    except ValueError as e:
        abort(400, description=str(e))
    s.commit()
    current_app.logger.info("Product image stored key=%s size=%s", key, len(data))
    return jsonify({"success": True, "key": key, "url": f"/uploads/{key}"}), 201
