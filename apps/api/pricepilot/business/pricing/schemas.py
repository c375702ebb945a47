from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from pricepilot.business.pricing.calculator import AdjustmentRule


ActionType = Literal["uniform", "calculated", "rule"]
ItemOutcome = Literal["updated", "local_only", "unchanged", "failed"]


class AllScope(BaseModel):
    mode: Literal["all"] = "all"


class ExplicitScope(BaseModel):
    mode: Literal["explicit"] = "explicit"
    ids: list[UUID] = Field(default_factory=list)


class CollectionScope(BaseModel):
    mode: Literal["collection"] = "collection"
    collection_ids: list[str] = Field(min_length=1)


class VendorScope(BaseModel):
    mode: Literal["vendor"] = "vendor"
    vendor: str = Field(min_length=1)


ScopeSpec = Annotated[
    Union[AllScope, ExplicitScope, CollectionScope, VendorScope],
    Field(discriminator="mode"),
]


class CampaignCreate(BaseModel):
    name: str
    scope: ScopeSpec
    rule: AdjustmentRule


class UniformCampaignCreate(BaseModel):
    name: str
    item_ids: list[UUID] = Field(default_factory=list)
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    compare_price: Decimal | None = Field(default=None, ge=Decimal("0"))


class ComputedPriceUpdate(BaseModel):
    item_id: UUID
    new_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    new_compare_price: Decimal | None = Field(default=None, ge=Decimal("0"))


class ComputedCampaignCreate(BaseModel):
    name: str
    updates: list[ComputedPriceUpdate] = Field(default_factory=list)


class BulkActionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    name: str
    action_type: ActionType | str
    new_price: Decimal | None
    new_compare_at_price: Decimal | None
    item_count: int
    rule_snapshot: dict[str, Any] | None
    created_by: str | None
    created_at: datetime
    reverted_at: datetime | None


class BulkActionItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    bulk_action_id: UUID
    inventory_item_id: UUID
    original_price: Decimal | None
    original_compare_at_price: Decimal | None
    new_price: Decimal | None
    new_compare_at_price: Decimal | None
    created_at: datetime
    title: str | None = None
    sku: str | None = None


class ItemMutationResult(BaseModel):
    inventory_item_id: UUID
    variant_id: str | None
    outcome: ItemOutcome
    error: str | None = None


class CampaignReport(BaseModel):
    """Outcome of an apply or revert: the campaign row plus one result per item."""

    bulk_action: BulkActionRead
    items: list[ItemMutationResult] = Field(default_factory=list)

    @property
    def failed_items(self) -> list[ItemMutationResult]:
        return [item for item in self.items if item.outcome == "failed"]


class CampaignDetail(BaseModel):
    bulk_action: BulkActionRead
    items: list[BulkActionItemRead] = Field(default_factory=list)


class CollectionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    handle: str
    products_count: int


class CollectionItemsRead(BaseModel):
    collection_id: str
    item_ids: list[UUID]


class ShopifyAction(BaseModel):
    """Base for the camelCase bodies accepted by the ``/api/shopify`` action endpoint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    action: str
    shop_domain: str | None = None


class UpdatePricesAction(ShopifyAction):
    item_id: UUID
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    compare_at_price: Decimal | None = Field(default=None, ge=Decimal("0"))


class UpdateThresholdAction(ShopifyAction):
    item_id: UUID
    threshold: int = Field(ge=0)


class BulkUpdatePricesAction(ShopifyAction):
    product_ids: list[UUID] = Field(default_factory=list)
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    compare_at_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    action_name: str = ""


class CalculatedPriceUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: UUID
    new_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    new_compare_price: Decimal | None = Field(default=None, ge=Decimal("0"))


class BulkUpdatePricesCalculatedAction(ShopifyAction):
    price_updates: list[CalculatedPriceUpdate] = Field(default_factory=list)
    action_name: str = ""


class RevertBulkActionAction(ShopifyAction):
    bulk_action_id: UUID


class FetchCollectionProductsAction(ShopifyAction):
    collection_id: str = Field(min_length=1)
