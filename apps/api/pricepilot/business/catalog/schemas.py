from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CatalogItemUpsert(BaseModel):
    title: str = Field(min_length=1)
    sku: str | None = None
    vendor: str | None = None
    inventory_quantity: int | None = Field(default=None, ge=0)
    status: str | None = None
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    compare_at_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    external_product_id: str | None = None
    external_variant_id: str | None = None


class CatalogItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    title: str
    sku: str | None
    vendor: str | None
    inventory_quantity: int | None
    low_stock_threshold: int | None
    status: str | None
    price: Decimal | None
    compare_at_price: Decimal | None
    external_product_id: str | None
    external_variant_id: str | None
    updated_at: datetime


class CatalogItemPriceUpdate(BaseModel):
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    compare_at_price: Decimal | None = Field(default=None, ge=Decimal("0"))


class CatalogItemThresholdUpdate(BaseModel):
    threshold: int = Field(ge=0)
