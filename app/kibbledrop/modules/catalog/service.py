from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from werkzeug.utils import secure_filename

from app.kibbledrop.audit import record_event
from app.kibbledrop.constants import ALLOWED_IMAGE_TYPES, MAX_IMAGE_BYTES, PLACEHOLDER_IMAGE
from app.kibbledrop.utils import iso, money, parse_int, parse_money, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.catalog.models import Product
    from app.kibbledrop.storage import Storage


REQUIRED_FIELDS = ("name", "description", "price", "category", "pet_type")


def serialize_product(p: "Product") -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "price": money(p.price),
        "category": p.category,
        "pet_type": p.pet_type,
        "image": p.image,
        "featured": p.featured,
        "brand": p.brand,
        "weight": p.weight,
        "life_stage": p.life_stage,
        "ingredients": p.ingredients,
        "stock": p.stock,
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


def _text(payload: dict, key: str) -> str | None:
    return (str(payload.get(key) or "")).strip() or None


def _truthy(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in ("1", "true", "yes", "on")


def validate_product_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Returns a list of errors; partial=True only checks fields that are present."""
    errors = []
    for key in REQUIRED_FIELDS:
        if partial and key not in payload:
            continue
        if not _text(payload, key):
            errors.append(f"{key} is required.")
    if "price" in payload or not partial:
        price = parse_money(payload.get("price"))
        if payload.get("price") not in (None, "") and (price is None or price <= 0):
            errors.append("price must be a positive number.")
    if payload.get("stock") not in (None, ""):
        stock = parse_int(payload.get("stock"))
        if stock is None or stock < 0:
            errors.append("stock must be a non-negative integer.")
    return errors


def create_product(s: "Session", payload: dict, user: "User") -> "Product":
    from app.kibbledrop.modules.catalog.models import Product

    now = utcnow()
    product = Product(
        name=_text(payload, "name"),
        description=_text(payload, "description"),
        price=parse_money(payload.get("price")),
        category=_text(payload, "category"),
        pet_type=_text(payload, "pet_type"),
        image=_text(payload, "image") or PLACEHOLDER_IMAGE,
        featured=_truthy(payload.get("featured")),
        brand=_text(payload, "brand"),
        weight=_text(payload, "weight"),
        life_stage=_text(payload, "life_stage"),
        ingredients=_text(payload, "ingredients"),
        stock=parse_int(payload.get("stock")),
        created_at=now,
        updated_at=now,
    )
    s.add(product)
    s.flush()

    record_event(
        s,
        actor=user,
        action="product.create",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"name": product.name, "price": money(product.price)},
    )
    return product


def update_product(s: "Session", product: "Product", payload: dict, user: "User") -> "Product":
    """Apply the fields present in payload; absent fields are left alone."""
    changes = {}

    for key in ("name", "description", "category", "pet_type", "brand", "weight", "life_stage", "ingredients", "image"):
        if key not in payload:
            continue
        new = _text(payload, key)
        if key == "image" and not new:
            new = PLACEHOLDER_IMAGE
        if new != getattr(product, key):
            changes[key] = {"old": getattr(product, key), "new": new}
            setattr(product, key, new)

    if "price" in payload:
        new_price = parse_money(payload.get("price"))
        if new_price != product.price:
            changes["price"] = {"old": money(product.price), "new": money(new_price)}
            product.price = new_price

    if "featured" in payload:
        new_featured = _truthy(payload.get("featured"))
        if new_featured != product.featured:
            changes["featured"] = {"old": product.featured, "new": new_featured}
            product.featured = new_featured

    if "stock" in payload:
        new_stock = parse_int(payload.get("stock"))
        if new_stock != product.stock:
            changes["stock"] = {"old": product.stock, "new": new_stock}
            product.stock = new_stock

    product.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="product.edit",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"name": product.name, "changes": changes},
    )
    return product


def resolve_line_items(s: "Session", raw_items) -> list[tuple["Product", int]]:
    """
    Turn [{"product_id": .., "quantity": ..}, ...] into (Product, qty) pairs.
    Prices always come from the catalog, never from the client.
    """
    from app.kibbledrop.modules.catalog.models import Product

    if not isinstance(raw_items, list) or not raw_items:
        raise ValueError("At least one item is required")
    lines: list[tuple[Product, int]] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValueError("Invalid item")
        product_id = parse_int(raw.get("product_id", raw.get("productId")))
        quantity = parse_int(raw.get("quantity", 1))
        if product_id is None:
            raise ValueError("Each item needs a product_id")
        if quantity is None or quantity < 1:
            raise ValueError("Item quantity must be at least 1")
        product = s.get(Product, product_id)
        if not product:
            raise LookupError(f"Product {product_id} not found")
        lines.append((product, quantity))
    return lines


def product_in_subscriptions(s: "Session", product: "Product") -> bool:
    from app.kibbledrop.modules.subscriptions.models import SubscriptionItem

    return s.query(SubscriptionItem.id).filter(SubscriptionItem.product_id == product.id).first() is not None


def delete_product(s: "Session", product: "Product", user: "User") -> None:
    """Delete a product. Raises ValueError while subscriptions still reference it."""
    from app.kibbledrop.modules.cart.models import CartItem
    from app.kibbledrop.modules.orders.models import OrderItem

    if product_in_subscriptions(s, product):
        raise ValueError("Cannot delete product that is used in active subscriptions")
    if s.query(OrderItem.id).filter(OrderItem.product_id == product.id).first() is not None:
        raise ValueError("Cannot delete product that appears in existing orders")

    s.query(CartItem).filter(CartItem.product_id == product.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=user,
        action="product.delete",
        entity_type="Product",
        entity_id=str(product.id),
        metadata={"name": product.name},
    )
    s.delete(product)


def build_image_storage_key(filename: str, data: bytes, content_type: str) -> str:
    """Content-addressed key so re-uploading the same image is a no-op."""
    digest = hashlib.sha256(data).hexdigest()[:16]
    stem = (secure_filename(filename) or "image").rsplit(".", 1)[0] or "image"
    return f"products/{digest}-{stem}.{ALLOWED_IMAGE_TYPES[content_type]}"


def upload_product_image(
    s: "Session",
    storage: "Storage",
    data: bytes,
    filename: str,
    content_type: str,
    user: "User",
) -> str:
    """Validate and store an image; returns the storage key. Raises ValueError on bad input."""
    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValueError("Invalid file type. Only JPEG, PNG, and WebP are allowed.")
    if not data:
        raise ValueError("No file uploaded")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValueError("File too large. Maximum size is 2MB.")

    key = build_image_storage_key(filename, data, content_type)
    storage.put_bytes(key, data, content_type=content_type)
    record_event(
        s,
        actor=user,
        action="product.image_upload",
        entity_type="ProductImage",
        entity_id=key,
        metadata={"filename": filename, "size_bytes": len(data), "content_type": content_type},
    )
    return key
