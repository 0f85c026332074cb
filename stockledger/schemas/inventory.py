from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from ..core.stock import INTEGER_MAX, StockAction
from .product import ProductOut

CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StockUpdateRequest(BaseModel):
    """Body of ``POST /inventory/update``.

    ``action`` and ``quantity`` stay loosely typed here: the ledger owns
    their validation and answers with 400, not a schema 422.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {"productId": 1, "action": "Remove", "quantity": 3, "notes": "Damaged in transit"}
        },
    )

    product_id: int = Field(ge=1, le=INTEGER_MAX)
    action: Any
    quantity: Any
    notes: Optional[str] = None


class ProductRef(BaseModel):
    model_config = CAMEL

    id: int
    name: str
    sku: str


class ActorRef(BaseModel):
    model_config = CAMEL

    id: int
    username: str


class InventoryLogOut(BaseModel):
    model_config = CAMEL

    id: int
    product_id: int
    user_id: int
    action: StockAction
    quantity: Any
    previous_stock: int
    new_stock: int
    notes: Optional[str] = None
    created_at: datetime
    product: Optional[ProductRef] = None
    user: Optional[ActorRef] = None


class InventoryLogPage(BaseModel):
    model_config = CAMEL

    logs: list[InventoryLogOut]
    page: int
    pages: int
    total: int


class LowStockProductOut(ProductOut):
    ratio: float

    @classmethod
    def from_item(cls, item) -> "LowStockProductOut":
        base = ProductOut.model_validate(item.product)
        fields = base.model_dump(exclude={"status"})
        return cls(**fields, stock_status=base.status, ratio=float(item.ratio))


class InventoryStatsOut(BaseModel):
    model_config = CAMEL

    total_products: int
    stock_value: Decimal
    low_stock_count: int
    out_of_stock_count: int
    recent_activity: list[InventoryLogOut] = Field(default_factory=list)

    @field_serializer("stock_value")
    def _stock_value(self, value: Decimal) -> float:
        return float(value)


class LedgerAuditOut(BaseModel):
    model_config = CAMEL

    product_id: int
    current_stock: int
    replayed_stock: Optional[int]
    entry_count: int
    consistent: bool
    broken_entry_id: Optional[int] = None
