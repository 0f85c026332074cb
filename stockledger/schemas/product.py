from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from ..core.stock import INTEGER_MAX, StockStatus


class ProductBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=128)
    barcode: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=1024)
    threshold: Optional[int] = Field(default=None, ge=1, le=INTEGER_MAX)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    expiry_date: Optional[datetime] = None


class ProductCreate(ProductBase):
    stock: int = Field(default=0, ge=0, le=INTEGER_MAX)


class ProductUpdate(BaseModel):
    """Descriptive fields only; there is no way to set ``stock`` here."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sku: Optional[str] = Field(default=None, min_length=1, max_length=64)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, min_length=1, max_length=128)
    barcode: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=1024)
    threshold: Optional[int] = Field(default=None, ge=1, le=INTEGER_MAX)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    expiry_date: Optional[datetime] = None


class ProductOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    sku: str
    name: str
    category: str
    barcode: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    stock: int
    threshold: int
    price: Optional[Decimal] = None
    expiry_date: Optional[datetime] = None
    status: StockStatus = Field(validation_alias="stock_status")
    created_at: datetime
    updated_at: datetime

    @field_serializer("price")
    def _price(self, value: Optional[Decimal]) -> Optional[float]:
        return float(value) if value is not None else None
