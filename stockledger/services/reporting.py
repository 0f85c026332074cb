from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from ..core.exceptions import InvalidFilterError
from ..db.session import storage_errors
from ..models.inventory_log import InventoryLog
from ..models.product import Product, utcnow
from ..models.user import User
from .stock_queries import line_value, quantize_currency

DEFAULT_MOVEMENT_WINDOW = timedelta(days=30)


def inventory_value_report(db: Session, top: int = 10) -> Dict[str, Any]:
    """Stock valuation per category plus the most valuable products."""

    with storage_errors("inventory_value_report"):
        products = db.execute(select(Product).where(Product.archived_at.is_(None))).scalars().all()

    categories: Dict[str, Dict[str, Any]] = defaultdict(
        lambda: {"product_count": 0, "total_stock": 0, "total_value": Decimal("0")}
    )
    valued: List[tuple[Decimal, Product]] = []
    total_value = Decimal("0")
    for product in products:
        value = line_value(product.stock, product.price)
        bucket = categories[product.category]
        bucket["product_count"] += 1
        bucket["total_stock"] += product.stock
        bucket["total_value"] += value
        total_value += value
        valued.append((value, product))

    category_values = [
        {
            "category": name,
            "product_count": data["product_count"],
            "total_stock": data["total_stock"],
            "total_value": quantize_currency(data["total_value"]),
        }
        for name, data in categories.items()
    ]
    category_values.sort(key=lambda row: (-row["total_value"], row["category"]))

    valued.sort(key=lambda pair: (-pair[0], pair[1].id))
    top_products = [
        {
            "id": product.id,
            "name": product.name,
            "sku": product.sku,
            "category": product.category,
            "stock": product.stock,
            "price": product.price,
            "total_value": quantize_currency(value),
        }
        for value, product in valued[:top]
    ]

    return {
        "category_values": category_values,
        "total_value": quantize_currency(total_value),
        "total_products": len(products),
        "top_products": top_products,
    }


def stock_movement_report(
    db: Session,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Dict[str, Any]:
    """Summarise ledger activity between ``start`` and ``end`` (inclusive).

    Without bounds the window is the last 30 days up to now.
    """

    end = end or utcnow()
    start = start or (end - DEFAULT_MOVEMENT_WINDOW)
    if start > end:
        raise InvalidFilterError("startDate must not be after endDate")
    in_range = (InventoryLog.created_at >= start, InventoryLog.created_at <= end)
    day = func.date(InventoryLog.created_at)

    by_action_stmt = (
        select(
            InventoryLog.action,
            func.count(InventoryLog.id).label("entry_count"),
            func.coalesce(func.sum(InventoryLog.quantity), 0).label("total_quantity"),
        )
        .where(*in_range)
        .group_by(InventoryLog.action)
        .order_by(InventoryLog.action)
    )
    by_day_stmt = (
        select(
            day.label("date"),
            InventoryLog.action,
            func.coalesce(func.sum(InventoryLog.quantity), 0).label("total_quantity"),
        )
        .where(*in_range)
        .group_by(day, InventoryLog.action)
        .order_by(day, InventoryLog.action)
    )
    moved_total = func.sum(InventoryLog.quantity).label("total_quantity")
    top_products_stmt = (
        select(
            InventoryLog.product_id,
            Product.name,
            Product.sku,
            Product.category,
            moved_total,
            func.count(InventoryLog.id).label("movement_count"),
        )
        .join(Product, Product.id == InventoryLog.product_id)
        .where(*in_range)
        .group_by(InventoryLog.product_id, Product.name, Product.sku, Product.category)
        .order_by(desc(moved_total), InventoryLog.product_id)
        .limit(10)
    )
    activity = func.count(InventoryLog.id).label("activity_count")
    top_users_stmt = (
        select(InventoryLog.user_id, User.username, User.email, User.role, activity)
        .join(User, User.id == InventoryLog.user_id)
        .where(*in_range)
        .group_by(InventoryLog.user_id, User.username, User.email, User.role)
        .order_by(desc(activity), InventoryLog.user_id)
        .limit(5)
    )

    with storage_errors("stock_movement_report"):
        by_action = db.execute(by_action_stmt).all()
        by_day = db.execute(by_day_stmt).all()
        top_products = db.execute(top_products_stmt).all()
        top_users = db.execute(top_users_stmt).all()

    return {
        "date_range": {"start_date": start, "end_date": end},
        "movement_by_action": [
            {"action": row.action.value, "count": row.entry_count, "total_quantity": int(row.total_quantity)}
            for row in by_action
        ],
        "movement_by_day": [
            {"date": str(row.date), "action": row.action.value, "total_quantity": int(row.total_quantity)}
            for row in by_day
        ],
        "top_moved_products": [
            {
                "product_id": row.product_id,
                "name": row.name,
                "sku": row.sku,
                "category": row.category,
                "total_quantity": int(row.total_quantity or 0),
                "movement_count": row.movement_count,
            }
            for row in top_products
        ],
        "top_active_users": [
            {
                "user_id": row.user_id,
                "username": row.username,
                "email": row.email,
                "role": row.role,
                "activity_count": row.activity_count,
            }
            for row in top_users
        ],
    }
