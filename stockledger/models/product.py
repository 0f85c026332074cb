from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String, Text

from ..core.config import settings
from ..core.stock import StockStatus, classify_stock
from ..db.session import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class Product(Base):
    """One stock-keeping unit.

    ``stock`` is owned by the ledger service; catalogue edits never touch it.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("threshold >= 1", name="ck_products_threshold_positive"),
        CheckConstraint("price IS NULL OR price >= 0", name="ck_products_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(128), nullable=False, index=True)
    description = Column(Text, nullable=True)
    barcode = Column(String(64), nullable=True, unique=True)
    image_url = Column(String(1024), nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    threshold = Column(Integer, nullable=False, default=lambda: settings.DEFAULT_LOW_STOCK_THRESHOLD)
    price = Column(Numeric(10, 2), nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    # Tombstone: archived products keep their ledger but leave every listing.
    archived_at = Column(DateTime, nullable=True)

    @property
    def stock_status(self) -> StockStatus:
        return classify_stock(self.stock, self.threshold)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None
