from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from .inventory import LowStockProductOut

CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class CategoryValue(BaseModel):
    model_config = CAMEL

    category: str
    product_count: int
    total_stock: int
    total_value: Decimal

    @field_serializer("total_value")
    def _total_value(self, value: Decimal) -> float:
        return _as_float(value)


class ProductValue(BaseModel):
    model_config = CAMEL

    id: int
    name: str
    sku: str
    category: str
    stock: int
    price: Optional[Decimal] = None
    total_value: Decimal

    @field_serializer("price", "total_value")
    def _money(self, value: Optional[Decimal]) -> Optional[float]:
        return _as_float(value)


class InventoryValueReport(BaseModel):
    model_config = CAMEL

    category_values: list[CategoryValue]
    total_value: Decimal
    total_products: int
    top_products: list[ProductValue]

    @field_serializer("total_value")
    def _total_value(self, value: Decimal) -> float:
        return _as_float(value)


class DateRange(BaseModel):
    model_config = CAMEL

    start_date: datetime
    end_date: datetime


class ActionMovement(BaseModel):
    model_config = CAMEL

    action: str
    count: int
    total_quantity: int


class DailyMovement(BaseModel):
    model_config = CAMEL

    date: str
    action: str
    total_quantity: int


class MovedProduct(BaseModel):
    model_config = CAMEL

    product_id: int
    name: str
    sku: str
    category: str
    total_quantity: int
    movement_count: int


class ActiveUser(BaseModel):
    model_config = CAMEL

    user_id: int
    username: str
    email: Optional[str] = None
    role: str
    activity_count: int


class StockMovementReport(BaseModel):
    model_config = CAMEL

    date_range: DateRange
    movement_by_action: list[ActionMovement]
    movement_by_day: list[DailyMovement]
    top_moved_products: list[MovedProduct]
    top_active_users: list[ActiveUser]


class LowStockReport(BaseModel):
    model_config = CAMEL

    low_stock_products: list[LowStockProductOut]
