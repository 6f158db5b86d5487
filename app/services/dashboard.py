"""Per-tenant aggregate views behind the dashboard endpoints.

Results are cached in ``app.core.cache`` under keys starting with the tenant
id; order, product, purchase, expense and inventory writes call
``invalidate`` for their tenant.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Any, Callable

from sqlalchemy import func

from app.core import cache
from app.core.database import utcnow
from app.models.customer_profile import CustomerProfile
from app.models.expense import Expense
from app.models.order import Order, OrderItem
from app.models.product import Product
from app.models.purchase import Purchase
from app.models.shop import Shop
from app.models.supplier import Supplier
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services.inventory import low_stock_clause
from app.services.tenant_context import RequestContext, scoped_query

logger = logging.getLogger(__name__)

OPEN_PURCHASE_STATUSES = ("pending", "confirmed", "partially_received")


def invalidate(tenant_id: int | None) -> None:
    cache.invalidate_tenant(tenant_id)


def _cached(ctx: RequestContext, key: tuple, build: Callable[[], Any]) -> Any:
    if ctx.all_tenants:
        # Cross-tenant figures never land under a tenant key
        return build()
    full_key = (ctx.require_tenant(),) + key
    value = cache.get(full_key)
    if value is not None:
        return value
    logger.debug("Dashboard cache miss: key=%s", full_key)
    value = build()
    cache.put(full_key, value)
    return value


def _count(ctx: RequestContext, model: Any, *criteria: Any) -> int:
    return scoped_query(ctx, model).filter(*criteria).with_entities(func.count(model.id)).scalar() or 0


def _sum(ctx: RequestContext, model: Any, expression: Any, *criteria: Any) -> float:
    value = scoped_query(ctx, model).filter(*criteria).with_entities(func.coalesce(func.sum(expression), 0)).scalar()
    return round(float(value or 0), 2)


def _summary(ctx: RequestContext) -> dict[str, Any]:
    return {
        "total_products": _count(ctx, Product),
        "active_products": _count(ctx, Product, Product.status == "active"),
        "total_orders": _count(ctx, Order),
        "pending_orders": _count(ctx, Order, Order.status == "pending"),
        "total_customers": _count(ctx, CustomerProfile),
        "total_users": _count(ctx, User),
        "total_warehouses": _count(ctx, Warehouse),
        "total_shops": _count(ctx, Shop),
        "total_revenue": _sum(ctx, Order, Order.total_amount, Order.status == "delivered"),
        "low_stock_products": _count(ctx, Product, low_stock_clause()),
    }


def _alerts(ctx: RequestContext) -> list[dict[str, Any]]:
    alerts = []
    low_stock = _count(ctx, Product, low_stock_clause())
    if low_stock:
        alerts.append(
            {
                "type": "warning",
                "title": "Low Stock Alert",
                "message": f"{low_stock} products are running low on stock",
            }
        )
    pending = _count(ctx, Order, Order.status == "pending")
    if pending:
        alerts.append(
            {
                "type": "info",
                "title": "Pending Orders",
                "message": f"{pending} orders are pending confirmation",
            }
        )
    overdue = _count(
        ctx,
        Purchase,
        Purchase.status.in_(OPEN_PURCHASE_STATUSES),
        Purchase.expected_delivery_date.isnot(None),
        Purchase.expected_delivery_date < utcnow().date(),
    )
    if overdue:
        alerts.append(
            {
                "type": "error",
                "title": "Overdue Purchases",
                "message": f"{overdue} purchases are overdue",
            }
        )
    return alerts


def _quick_stats(ctx: RequestContext) -> dict[str, Any]:
    month_start = datetime.combine(utcnow().date().replace(day=1), time.min)
    return {
        "inventory_value": _sum(ctx, Product, Product.stock_quantity * Product.cost_price),
        "pending_order_value": _sum(ctx, Order, Order.total_amount, Order.status == "pending"),
        "monthly_expenses": _sum(
            ctx,
            Expense,
            Expense.amount,
            Expense.approval_status == "approved",
            Expense.expense_date >= month_start.date(),
        ),
        "active_suppliers": _count(ctx, Supplier, Supplier.is_active.is_(True)),
    }


def _recent_orders(ctx: RequestContext) -> list[dict[str, Any]]:
    orders = scoped_query(ctx, Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5).all()
    return [
        {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "total_amount": order.total_amount,
            "created_at": order.created_at.isoformat() if order.created_at else None,
        }
        for order in orders
    ]


def overview(ctx: RequestContext) -> dict[str, Any]:
    def build() -> dict[str, Any]:
        return {
            "summary": _summary(ctx),
            "recent_orders": _recent_orders(ctx),
            "alerts": _alerts(ctx),
            "quick_stats": _quick_stats(ctx),
        }

    return _cached(ctx, ("overview",), build)


def _daily_series(ctx: RequestContext, start: datetime, days: int) -> tuple[list[dict], list[dict]]:
    day = func.date(Order.created_at)
    rows = (
        scoped_query(ctx, Order)
        .filter(Order.created_at >= start, Order.status != "cancelled")
        .with_entities(day.label("day"), func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .group_by(day)
        .all()
    )
    by_day = {str(row[0]): (int(row[1]), round(float(row[2] or 0), 2)) for row in rows}
    revenue, orders = [], []
    for offset in range(days):
        current = (start + timedelta(days=offset)).date().isoformat()
        count, total = by_day.get(current, (0, 0.0))
        revenue.append({"date": current, "revenue": total})
        orders.append({"date": current, "orders": count})
    return revenue, orders


def _top_products(ctx: RequestContext, start: datetime, limit: int = 10) -> list[dict[str, Any]]:
    quantity = func.sum(OrderItem.quantity)
    rows = (
        scoped_query(ctx, OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(Order.created_at >= start, Order.status != "cancelled")
        .with_entities(Product.id, Product.name, Product.sku, quantity, func.sum(OrderItem.total_price))
        .group_by(Product.id, Product.name, Product.sku)
        .order_by(quantity.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row[0],
            "name": row[1],
            "sku": row[2],
            "quantity_sold": int(row[3] or 0),
            "revenue": round(float(row[4] or 0), 2),
        }
        for row in rows
    ]


def _grouped_counts(ctx: RequestContext, column: Any, start: datetime) -> dict[str, dict[str, Any]]:
    rows = (
        scoped_query(ctx, Order)
        .filter(Order.created_at >= start)
        .with_entities(column, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .group_by(column)
        .all()
    )
    return {
        str(row[0] or "unspecified"): {"count": int(row[1]), "amount": round(float(row[2] or 0), 2)}
        for row in rows
    }


def sales_stats(ctx: RequestContext, days: int = 30) -> dict[str, Any]:
    def build() -> dict[str, Any]:
        start = datetime.combine(utcnow().date() - timedelta(days=days - 1), time.min)
        revenue_trend, order_trend = _daily_series(ctx, start, days)
        return {
            "period_days": days,
            "revenue_trend": revenue_trend,
            "order_trend": order_trend,
            "top_products": _top_products(ctx, start),
            "status_breakdown": _grouped_counts(ctx, Order.status, start),
            "payment_methods": _grouped_counts(ctx, Order.payment_method, start),
        }

    return _cached(ctx, ("sales", days), build)


def inventory_stats(ctx: RequestContext) -> dict[str, Any]:
    def build() -> dict[str, Any]:
        cost_value = _sum(ctx, Product, Product.stock_quantity * Product.cost_price)
        retail_value = _sum(ctx, Product, Product.stock_quantity * Product.selling_price)
        return {
            "total_products": _count(ctx, Product),
            "in_stock": _count(ctx, Product, Product.stock_quantity > Product.min_stock_level),
            "low_stock": _count(ctx, Product, Product.stock_quantity > 0, low_stock_clause()),
            "out_of_stock": _count(ctx, Product, Product.stock_quantity <= 0),
            "total_cost_value": cost_value,
            "total_retail_value": retail_value,
            "potential_profit": round(retail_value - cost_value, 2),
        }

    return _cached(ctx, ("inventory",), build)


def financial_stats(ctx: RequestContext, days: int = 30) -> dict[str, Any]:
    def build() -> dict[str, Any]:
        start = datetime.combine(utcnow().date() - timedelta(days=days - 1), time.min)
        revenue = _sum(ctx, Order, Order.total_amount, Order.status == "delivered", Order.created_at >= start)
        expenses = _sum(
            ctx,
            Expense,
            Expense.amount,
            Expense.approval_status == "approved",
            Expense.expense_date >= start.date(),
        )
        purchases = _sum(
            ctx,
            Purchase,
            Purchase.total_amount,
            Purchase.status != "cancelled",
            Purchase.created_at >= start,
        )
        return {
            "period_days": days,
            "revenue": revenue,
            "expenses": expenses,
            "purchases": purchases,
            "net_profit": round(revenue - expenses - purchases, 2),
            "profit_margin": round((revenue - expenses - purchases) / revenue * 100, 2) if revenue else 0,
        }

    return _cached(ctx, ("financial", days), build)
