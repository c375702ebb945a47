from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricepilot.business.catalog.models import CatalogItem
from pricepilot.business.pricing.models import BulkAction, BulkActionItem


class BulkActionLedger:
    """Persistence for campaigns and their per-item price snapshots."""

    def create_campaign(self, session: Session, bulk_action: BulkAction, items: Sequence[BulkActionItem]) -> uuid.UUID:
        """Stage a campaign and its snapshot rows; the caller commits them as one unit."""
        session.add(bulk_action)
        session.flush()
        for item in items:
            item.bulk_action_id = bulk_action.id
            session.add(item)
        session.flush()
        return bulk_action.id

    def get_campaign(self, session: Session, shop_id: uuid.UUID, bulk_action_id: uuid.UUID) -> BulkAction | None:
        return session.scalar(
            select(BulkAction).where(BulkAction.id == bulk_action_id, BulkAction.shop_id == shop_id)
        )

    def list_campaigns(self, session: Session, shop_id: uuid.UUID) -> list[BulkAction]:
        stmt = (
            select(BulkAction)
            .where(BulkAction.shop_id == shop_id)
            .order_by(BulkAction.created_at.desc(), BulkAction.id.desc())
        )
        return list(session.scalars(stmt).all())

    def get_items(self, session: Session, bulk_action_id: uuid.UUID) -> list[BulkActionItem]:
        stmt = (
            select(BulkActionItem)
            .where(BulkActionItem.bulk_action_id == bulk_action_id)
            .order_by(BulkActionItem.created_at.asc(), BulkActionItem.id.asc())
        )
        return list(session.scalars(stmt).all())

    def get_items_with_catalog(
        self,
        session: Session,
        bulk_action_id: uuid.UUID,
    ) -> list[tuple[BulkActionItem, CatalogItem | None]]:
        stmt = (
            select(BulkActionItem, CatalogItem)
            .outerjoin(CatalogItem, CatalogItem.id == BulkActionItem.inventory_item_id)
            .where(BulkActionItem.bulk_action_id == bulk_action_id)
            .order_by(BulkActionItem.created_at.asc(), BulkActionItem.id.asc())
        )
        return [(row[0], row[1]) for row in session.execute(stmt).all()]

    def mark_reverted(self, session: Session, bulk_action: BulkAction, reverted_at: datetime) -> None:
        if bulk_action.is_reverted:
            return
        bulk_action.reverted_at = reverted_at
        session.add(bulk_action)
