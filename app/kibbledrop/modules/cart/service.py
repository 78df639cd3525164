from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from app.kibbledrop.utils import money, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.cart.models import Cart, CartItem


def get_cart(s: "Session", user: "User", *, create: bool = False) -> "Cart | None":
    from app.kibbledrop.modules.cart.models import Cart

    cart = s.query(Cart).filter(Cart.user_id == user.id).one_or_none()
    if cart is None and create:
        cart = Cart(user_id=user.id)
        s.add(cart)
        s.flush()
    return cart


def cart_total(cart: "Cart | None") -> Decimal:
    if cart is None:
        return Decimal("0")
    return sum((item.product.price * item.quantity for item in cart.items), Decimal("0"))


def serialize_cart(cart: "Cart | None") -> dict:
    items = []
    for item in cart.items if cart else []:
        p = item.product
        items.append(
            {
                "id": item.id,
                "product_id": p.id,
                "name": p.name,
                "price": money(p.price),
                "quantity": item.quantity,
                "image": p.image,
                "category": p.category,
                "pet_type": p.pet_type,
            }
        )
    return {"items": items, "total": money(cart_total(cart))}


def add_item(s: "Session", user: "User", product_id: int, quantity: int = 1) -> "CartItem":
    """Add a product, merging into an existing line. Raises LookupError for unknown products."""
    from app.kibbledrop.modules.cart.models import CartItem
    from app.kibbledrop.modules.catalog.models import Product

    if quantity < 1:
        raise ValueError("Quantity must be at least 1")
    product = s.get(Product, product_id)
    if not product:
        raise LookupError("Product not found")

    cart = get_cart(s, user, create=True)
    for item in cart.items:
        if item.product_id == product.id:
            item.quantity += quantity
            break
    else:
        item = CartItem(product_id=product.id, quantity=quantity, product=product)
        cart.items.append(item)
    cart.updated_at = utcnow()
    s.flush()
    return item


def find_item(s: "Session", user: "User", item_id: int) -> "CartItem | None":
    """The line, only when it belongs to the user's cart."""
    from app.kibbledrop.modules.cart.models import CartItem

    item = s.get(CartItem, item_id)
    if not item or item.cart.user_id != user.id:
        return None
    return item


def set_quantity(s: "Session", item: "CartItem", quantity: int) -> None:
    if quantity < 0:
        raise ValueError("Invalid quantity")
    cart = item.cart
    if quantity == 0:
        cart.items.remove(item)
    else:
        item.quantity = quantity
    cart.updated_at = utcnow()
    s.flush()


def remove_item(s: "Session", item: "CartItem") -> None:
    set_quantity(s, item, 0)


def clear_cart(s: "Session", user: "User") -> None:
    cart = get_cart(s, user)
    if cart is None:
        return
    cart.items.clear()
    cart.updated_at = utcnow()
    s.flush()
