"""
Admin dashboard analytics.

Everything here is a reduction over plain in-memory collections: the loader
pulls orders, subscriptions, products and users once and `compute_analytics`
groups and sums them. `compute_analytics` only relies on attribute access, so
it works on ORM rows and on lightweight stand-ins alike.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from app.kibbledrop.utils import iso, money, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TOP_N = 10
ZERO = Decimal("0")


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _pct(part: int | Decimal, whole: int | Decimal) -> float:
    if not whole:
        return 0.0
    return round(float(Decimal(part) / Decimal(whole) * 100), 2)


def _money_map(acc: dict[str, Decimal]) -> dict[str, float]:
    return {k: money(v) for k, v in sorted(acc.items())}


def _line_revenue(item) -> Decimal:
    return _dec(item.price) * item.quantity


def _subscription_value(sub, prices: dict[int, Decimal]) -> Decimal:
    return sum((prices.get(i.product_id, ZERO) * i.quantity for i in sub.items), ZERO)


def sales_summary(orders: list) -> dict:
    total = sum((_dec(o.total) for o in orders), ZERO)
    by_status: dict[str, Decimal] = defaultdict(lambda: ZERO)
    daily: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for o in orders:
        by_status[o.status] += _dec(o.total)
        daily[o.created_at.strftime("%Y-%m-%d")] += _dec(o.total)
    return {
        "total_revenue": money(total),
        "total_orders": len(orders),
        "average_order_value": money(total / len(orders)) if orders else 0.0,
        "revenue_by_status": _money_map(by_status),
        "daily_revenue": _money_map(daily),
    }


def revenue_growth(current: Decimal, previous: Decimal) -> float:
    """Percent change against the previous window; 0 when there is nothing to compare to."""
    if previous <= 0:
        return 0.0
    return round(float((current - previous) / previous * 100), 2)


def average_lifetime_days(orders_by_user: dict[int, list]) -> float:
    """Mean days between each customer's first and last order."""
    spans = []
    for orders in orders_by_user.values():
        if not orders:
            continue
        first = min(o.created_at for o in orders)
        last = max(o.created_at for o in orders)
        spans.append((last - first).total_seconds() / 86400)
    if not spans:
        return 0.0
    return round(sum(spans) / len(spans), 2)


def compute_analytics(
    *,
    orders: Iterable,
    subscriptions: Iterable,
    products: Iterable,
    users: Iterable,
    period_days: int,
    now: datetime | None = None,
) -> dict:
    """
    Build the analytics payload for the `period_days` window ending at `now`.

    `orders` and `subscriptions` are all rows; window filtering happens here so
    per-customer and per-product totals can use full history while the sales,
    churn and growth figures stay window-scoped.
    """
    now = now or utcnow()
    start = now - timedelta(days=period_days)
    previous_start = start - timedelta(days=period_days)

    orders = list(orders)
    subscriptions = list(subscriptions)
    products = sorted(products, key=lambda p: p.id)
    users = sorted(users, key=lambda u: u.id)

    window_orders = [o for o in orders if o.created_at >= start]
    previous_orders = [o for o in orders if previous_start <= o.created_at < start]
    window_subs = [sub for sub in subscriptions if sub.created_at >= start]
    prices = {p.id: _dec(p.price) for p in products}

    orders_by_user: dict[int, list] = defaultdict(list)
    for o in orders:
        orders_by_user[o.user_id].append(o)
    subs_by_user: dict[int, list] = defaultdict(list)
    for sub in subscriptions:
        subs_by_user[sub.user_id].append(sub)

    # ---- sales ----
    sales = sales_summary(window_orders)
    window_revenue = sum((_dec(o.total) for o in window_orders), ZERO)

    # ---- customers ----
    retained = [
        u
        for u in users
        if any(o.created_at >= start for o in orders_by_user[u.id])
        or any(sub.status == "active" for sub in subs_by_user[u.id])
    ]
    customer_rows = [
        {
            "id": u.id,
            "name": u.name,
            "email": u.email,
            "total_spent": sum((_dec(o.total) for o in orders_by_user[u.id]), ZERO),
            "order_count": len(orders_by_user[u.id]),
            "subscription_count": len(subs_by_user[u.id]),
        }
        for u in users
    ]
    customer_rows.sort(key=lambda r: r["total_spent"], reverse=True)
    customer_retention = _pct(len(retained), len(users))
    customers = {
        "total_customers": len(users),
        "new_customers": sum(1 for u in users if u.created_at >= start),
        "customers_with_orders": sum(1 for u in users if orders_by_user[u.id]),
        "customers_with_subscriptions": sum(1 for u in users if subs_by_user[u.id]),
        "customer_retention": customer_retention,
        "top_customers": [dict(r, total_spent=money(r["total_spent"])) for r in customer_rows[:TOP_N]],
    }

    # ---- products ----
    order_lines: dict[int, list] = defaultdict(list)
    for o in orders:
        for item in o.items:
            order_lines[item.product_id].append(item)
    active_sub_qty: dict[int, int] = defaultdict(int)
    for sub in subscriptions:
        if sub.status != "active":
            continue
        for item in sub.items:
            active_sub_qty[item.product_id] += item.quantity

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_pet_type: dict[str, Decimal] = defaultdict(lambda: ZERO)
    product_rows = []
    for p in products:
        order_revenue = sum((_line_revenue(i) for i in order_lines[p.id]), ZERO)
        sub_qty = active_sub_qty[p.id]
        by_category[p.category] += order_revenue
        by_pet_type[p.pet_type] += order_revenue
        product_rows.append(
            {
                "id": p.id,
                "name": p.name,
                "category": p.category,
                "pet_type": p.pet_type,
                "total_revenue": order_revenue + prices[p.id] * sub_qty,
                "order_quantity": sum(i.quantity for i in order_lines[p.id]),
                "subscription_quantity": sub_qty,
            }
        )
    product_rows.sort(key=lambda r: r["total_revenue"], reverse=True)
    revenue_by_category = _money_map(by_category)
    products_out = {
        "total_products": len(products),
        "top_selling_products": [dict(r, total_revenue=money(r["total_revenue"])) for r in product_rows[:TOP_N]],
        "category_performance": revenue_by_category,
        "pet_type_performance": _money_map(by_pet_type),
    }

    # ---- revenue ----
    monthly: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for o in window_orders:
        monthly[o.created_at.strftime("%Y-%m")] += _dec(o.total)
    subscription_revenue = sum(
        (_subscription_value(sub, prices) for sub in window_subs if sub.status == "active"), ZERO
    )
    one_time_revenue = sum((_dec(o.total) for o in window_orders if o.subscription_id is None), ZERO)
    previous_revenue = sum((_dec(o.total) for o in previous_orders), ZERO)
    revenue = {
        "total_revenue": money(window_revenue),
        "subscription_revenue": money(subscription_revenue),
        "one_time_revenue": money(one_time_revenue),
        "revenue_growth": revenue_growth(window_revenue, previous_revenue),
        "monthly_revenue": _money_map(monthly),
        "revenue_by_category": revenue_by_category,
    }

    # ---- retention ----
    buyers = [u for u in users if orders_by_user[u.id]]
    repeat = [u for u in buyers if len(orders_by_user[u.id]) > 1]
    active_window_subs = sum(1 for sub in window_subs if sub.status == "active")
    cancelled_window_subs = sum(1 for sub in window_subs if sub.status == "cancelled")
    retention = {
        "customer_retention_rate": customer_retention,
        "repeat_customer_rate": _pct(len(repeat), len(buyers)),
        "average_customer_lifetime": average_lifetime_days({u.id: orders_by_user[u.id] for u in buyers}),
        "churn_rate": _pct(cancelled_window_subs, len(window_subs)),
        "subscription_retention": round(active_window_subs / max(len(window_subs), 1), 4),
    }

    return {
        "sales": sales,
        "customers": customers,
        "products": products_out,
        "revenue": revenue,
        "retention": retention,
        "period": period_days,
        "last_updated": iso(now),
    }


def load_analytics(s: "Session", period_days: int) -> dict:
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.catalog.models import Product
    from app.kibbledrop.modules.orders.models import Order
    from app.kibbledrop.modules.subscriptions.models import Subscription

    orders = s.query(Order).all()
    subscriptions = s.query(Subscription).all()
    products = s.query(Product).all()
    users = s.query(User).all()
    result = compute_analytics(
        orders=orders,
        subscriptions=subscriptions,
        products=products,
        users=users,
        period_days=period_days,
    )
    logger.info(
        "Analytics computed period=%s orders=%s subscriptions=%s products=%s users=%s revenue=%s",
        period_days,
        len(orders),
        len(subscriptions),
        len(products),
        len(users),
        result["sales"]["total_revenue"],
    )
    return result
