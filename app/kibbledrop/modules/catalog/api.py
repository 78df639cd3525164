from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.kibbledrop.db import db_session
from app.kibbledrop.modules.catalog.models import Product
from app.kibbledrop.modules.catalog.service import serialize_product

bp = Blueprint("catalog", __name__)


@bp.get("/products")
def products_list():
    s = db_session()

    pet_type = (request.args.get("pet_type") or request.args.get("petType") or "").strip()
    category = (request.args.get("category") or "").strip()
    featured = (request.args.get("featured") or "").strip().lower()

    q = s.query(Product)
    if pet_type:
        q = q.filter(Product.pet_type == pet_type)
    if category:
        q = q.filter(Product.category == category)
    if featured == "true":
        q = q.filter(Product.featured.is_(True))

    products = q.order_by(Product.created_at.desc(), Product.id.desc()).all()
    return jsonify([serialize_product(p) for p in products])


@bp.get("/products/<int:product_id>")
def product_detail(product_id: int):
    s = db_session()
    product = s.get(Product, product_id)
    if not product:
        abort(404, description="Product not found")
    return jsonify(serialize_product(product))
