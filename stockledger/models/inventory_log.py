"""Append-only ledger of stock movements.

WHAT: One row per successful stock mutation, snapshotting the product's stock
before and after.
WHEN: Written by ``services.ledger`` inside the same transaction that changes
``Product.stock``; never updated or deleted afterwards.
WHY: Folding a product's rows in ``created_at`` order must reproduce its
current stock, which is what the audit endpoint checks.
HOW: ``quantity`` is the delta for Add/Remove and the absolute target for
Update; ``previous_stock``/``new_stock`` make every row self-describing.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from ..core.stock import StockAction
from ..db.session import Base
from .product import utcnow
from .user import User  # noqa: F401


class InventoryLog(Base):
    __tablename__ = "inventory_logs"
    __table_args__ = (
        Index("ix_inventory_logs_product_created", "product_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    action = Column(
        Enum(StockAction, name="stock_action", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
    )
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    product = relationship("Product", lazy="joined")
    user = relationship("User", lazy="joined")