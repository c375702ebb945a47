from __future__ import annotations

import uuid
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricepilot.business.catalog.models import CatalogItem, utcnow


class CatalogItemRepository:
    def get(self, session: Session, shop_id: uuid.UUID, item_id: uuid.UUID) -> CatalogItem | None:
        return session.scalar(
            select(CatalogItem).where(CatalogItem.id == item_id, CatalogItem.shop_id == shop_id)
        )

    def get_many(self, session: Session, shop_id: uuid.UUID, item_ids: Iterable[uuid.UUID]) -> list[CatalogItem]:
        wanted = set(item_ids)
        if not wanted:
            return []
        stmt = select(CatalogItem).where(CatalogItem.shop_id == shop_id, CatalogItem.id.in_(wanted))
        return list(session.scalars(stmt.order_by(CatalogItem.title.asc())).all())

    def get_by_variant(self, session: Session, shop_id: uuid.UUID, variant_id: str) -> CatalogItem | None:
        return session.scalar(
            select(CatalogItem).where(
                CatalogItem.shop_id == shop_id,
                CatalogItem.external_variant_id == variant_id,
            )
        )

    def list_for_shop(self, session: Session, shop_id: uuid.UUID) -> list[CatalogItem]:
        stmt = select(CatalogItem).where(CatalogItem.shop_id == shop_id).order_by(CatalogItem.title.asc())
        return list(session.scalars(stmt).all())

    def ids_for_external_products(
        self,
        session: Session,
        shop_id: uuid.UUID,
        product_ids: Iterable[str],
    ) -> set[uuid.UUID]:
        wanted = {str(item) for item in product_ids}
        if not wanted:
            return set()
        stmt = select(CatalogItem.id).where(
            CatalogItem.shop_id == shop_id,
            CatalogItem.external_product_id.in_(wanted),
        )
        return set(session.scalars(stmt).all())

    def apply_prices(self, item: CatalogItem, price: Decimal | None, compare_price: Decimal | None) -> None:
        item.price = price
        item.compare_at_price = compare_price
        item.updated_at = utcnow()
