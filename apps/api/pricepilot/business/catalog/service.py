from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal

from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pricepilot import audit
from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.catalog.repository import CatalogItemRepository
from pricepilot.business.catalog.schemas import (
    CatalogItemPriceUpdate,
    CatalogItemRead,
    CatalogItemThresholdUpdate,
    CatalogItemUpsert,
)
from pricepilot.business.pricing.calculator import quantize_price
from pricepilot.core.errors import InvalidRequest, NotFound
from pricepilot.integrations.shopify.client import PriceMutator, ShopifyAdminClient
from pricepilot.metrics import observe_item_mutation
from pricepilot.shops.service import ShopSession


logger = logging.getLogger("pricepilot.catalog")


@dataclass(slots=True)
class CatalogService:
    item_repository: CatalogItemRepository = CatalogItemRepository()
    client_factory: Callable[[ShopSession], PriceMutator] = ShopifyAdminClient.for_shop

    def upsert_item(self, session: Session, shop_id: uuid.UUID, dto: CatalogItemUpsert) -> CatalogItemRead:
        payload = dto.model_dump(mode="python")
        payload["price"] = quantize_price(dto.price)
        payload["compare_at_price"] = quantize_price(dto.compare_at_price)

        existing: CatalogItem | None = None
        if dto.external_variant_id is not None:
            existing = self.item_repository.get_by_variant(session, shop_id, dto.external_variant_id)

        if existing is None:
            existing = CatalogItem(shop_id=shop_id, **payload)
            session.add(existing)
        else:
            for key, value in payload.items():
                setattr(existing, key, value)

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="catalog item conflict")
        session.refresh(existing)
        return CatalogItemRead.model_validate(existing)

    def list_items(self, session: Session, shop_id: uuid.UUID) -> list[CatalogItemRead]:
        rows = self.item_repository.list_for_shop(session, shop_id)
        return [CatalogItemRead.model_validate(row) for row in rows]

    def get_items(self, session: Session, shop_id: uuid.UUID, item_ids: Iterable[uuid.UUID]) -> list[CatalogItem]:
        return self.item_repository.get_many(session, shop_id, item_ids)

    def list_all_items(self, session: Session, shop_id: uuid.UUID) -> list[CatalogItem]:
        return self.item_repository.list_for_shop(session, shop_id)

    def list_ids_by_external_products(
        self,
        session: Session,
        shop_id: uuid.UUID,
        product_ids: Iterable[str],
    ) -> set[uuid.UUID]:
        return self.item_repository.ids_for_external_products(session, shop_id, product_ids)

    def apply_prices(
        self,
        session: Session,
        item: CatalogItem,
        price: Decimal | None,
        compare_price: Decimal | None,
    ) -> None:
        self.item_repository.apply_prices(item, price, compare_price)
        session.add(item)

    async def update_item_prices(
        self,
        session: Session,
        shop: ShopSession,
        item_id: uuid.UUID,
        dto: CatalogItemPriceUpdate,
        *,
        actor_user_id: str = "anonymous",
    ) -> CatalogItemRead:
        """Set one variant's price and/or compare-at price on Shopify, then locally."""
        if dto.price is None and dto.compare_at_price is None:
            raise InvalidRequest("Please enter at least one price")

        item = await run_in_threadpool(self.item_repository.get, session, shop.shop_id, item_id)
        if item is None or not item.external_variant_id:
            raise NotFound("Inventory item not found")

        before = {"price": item.price, "compare_at_price": item.compare_at_price}
        new_price = quantize_price(dto.price) if dto.price is not None else item.price
        new_compare_price = quantize_price(dto.compare_at_price) if dto.compare_at_price is not None else item.compare_at_price

        mutator = self.client_factory(shop)
        try:
            await mutator.update_variant_prices(
                product_id=item.external_product_id,
                variant_id=item.external_variant_id,
                price=quantize_price(dto.price),
                compare_price=quantize_price(dto.compare_at_price),
            )
        except Exception:
            observe_item_mutation("update", "failed")
            raise

        await run_in_threadpool(self._save_prices, session, item, new_price, new_compare_price)
        observe_item_mutation("update", "updated")
        logger.info(
            "catalog.item_prices_updated",
            extra={"item_id": str(item.id), "variant_id": item.external_variant_id, "shop_domain": shop.shop_domain},
        )
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="catalog.item",
            entity_id=str(item.id),
            action="catalog.prices_updated",
            before=before,
            after={"price": item.price, "compare_at_price": item.compare_at_price},
            shop_domain=shop.shop_domain,
        )
        return CatalogItemRead.model_validate(item)

    def update_threshold(
        self,
        session: Session,
        shop: ShopSession,
        item_id: uuid.UUID,
        dto: CatalogItemThresholdUpdate,
        *,
        actor_user_id: str = "anonymous",
    ) -> CatalogItemRead:
        """Set the low-stock alert threshold of one item. Local only; Shopify has no such field."""
        item = self.item_repository.get(session, shop.shop_id, item_id)
        if item is None:
            raise NotFound("Inventory item not found")

        before = item.low_stock_threshold
        item.low_stock_threshold = dto.threshold
        session.commit()
        session.refresh(item)
        logger.info(
            "catalog.threshold_updated",
            extra={"item_id": str(item.id), "shop_domain": shop.shop_domain},
        )
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="catalog.item",
            entity_id=str(item.id),
            action="catalog.threshold_updated",
            before={"low_stock_threshold": before},
            after={"low_stock_threshold": item.low_stock_threshold},
            shop_domain=shop.shop_domain,
        )
        return CatalogItemRead.model_validate(item)

    def _save_prices(
        self,
        session: Session,
        item: CatalogItem,
        price: Decimal | None,
        compare_price: Decimal | None,
    ) -> None:
        self.item_repository.apply_prices(item, price, compare_price)
        session.commit()
        session.refresh(item)


catalog_service = CatalogService()
