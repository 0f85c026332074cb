"""Read-side derivations over current product state and the ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.stock import StockStatus, classify_stock, stock_ratio
from ..db.session import storage_errors
from ..models.inventory_log import InventoryLog
from ..models.product import Product
from .ledger import recent_movements

TWOPLACES = Decimal("0.01")


def line_value(stock: int, price: Decimal | None) -> Decimal:
    """``stock * price`` in exact decimal arithmetic; no price values at 0."""

    if price is None:
        return Decimal("0")
    return Decimal(stock) * Decimal(price)


def quantize_currency(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LowStockItem:
    product: Product
    ratio: Fraction

    @property
    def status(self) -> StockStatus:
        return classify_stock(self.product.stock, self.product.threshold)


@dataclass
class InventoryStats:
    total_products: int
    stock_value: Decimal
    low_stock_count: int
    out_of_stock_count: int
    recent_activity: list[InventoryLog] = field(default_factory=list)


def _active_products(db: Session, *conditions) -> list[Product]:
    stmt = select(Product).where(Product.archived_at.is_(None), *conditions)
    return list(db.execute(stmt).scalars().all())


def list_low_stock(db: Session) -> list[LowStockItem]:
    """Active products at or under their threshold, most critical first.

    The ratio is computed here as an exact fraction, so ``3/10`` sorts before
    ``1/3`` no matter which database sits underneath.
    """

    with storage_errors("list_low_stock"):
        products = _active_products(db, Product.stock <= Product.threshold)
    items = [LowStockItem(product=p, ratio=stock_ratio(p.stock, p.threshold)) for p in products]
    items.sort(key=lambda item: (item.ratio, item.product.name, item.product.id))
    return items


def compute_stats(db: Session, recent_limit: int = 5) -> InventoryStats:
    with storage_errors("compute_stats"):
        products = _active_products(db)
    total_value = Decimal("0")
    low = 0
    out = 0
    for product in products:
        total_value += line_value(product.stock, product.price)
        if product.stock <= product.threshold:
            low += 1
        if product.stock == 0:
            out += 1
    return InventoryStats(
        total_products=len(products),
        stock_value=quantize_currency(total_value),
        low_stock_count=low,
        out_of_stock_count=out,
        recent_activity=recent_movements(db, limit=recent_limit),
    )
