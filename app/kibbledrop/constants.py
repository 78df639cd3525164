"""
Central constants for the KibbleDrop application.
"""
from __future__ import annotations

# Order lifecycle
ORDER_STATUSES = ("pending", "payment_pending", "processing", "shipped", "delivered", "canceled", "failed")
CANCELLABLE_ORDER_STATUSES = frozenset({"pending", "payment_pending", "processing"})
TERMINAL_ORDER_STATUSES = frozenset({"delivered", "canceled", "failed"})

PAYMENT_STATUSES = ("unpaid", "pending", "paid", "failed", "cancelled", "refunded")

DELIVERY_METHODS = ("standard", "express")
DELIVERY_DAYS = {"standard": 7, "express": 2}

# Subscriptions
SUBSCRIPTION_STATUSES = ("pending", "active", "paused", "cancelled")
SUBSCRIPTION_FREQUENCY_DAYS = {"weekly": 7, "bi-weekly": 14, "tri-weekly": 21}
SUBSCRIPTION_FREQUENCIES = ("weekly", "bi-weekly", "tri-weekly", "monthly", "custom")

# Catalog
PLACEHOLDER_IMAGE = "/placeholder.svg"
ALLOWED_IMAGE_TYPES = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}
MAX_IMAGE_BYTES = 2 * 1024 * 1024

# RBAC
PERMISSIONS = {
    "admin.view": "Admin: view dashboard",
    "products.manage": "Products: manage catalog",
    "orders.manage": "Orders: manage",
    "users.manage": "Users: manage",
    "subscriptions.view": "Subscriptions: view all",
    "analytics.view": "Analytics: view",
    "payments.view": "Payments: view provider status",
}
ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"
