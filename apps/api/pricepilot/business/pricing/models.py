from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricepilot.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BulkAction(Base):
    __tablename__ = "bulk_actions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False, default="uniform", server_default="uniform")
    new_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    new_compare_at_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rule_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    reverted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list[BulkActionItem]] = relationship(
        "BulkActionItem",
        back_populates="bulk_action",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BulkActionItem.created_at",
    )

    __table_args__ = (Index("ix_bulk_actions_shop_created", "shop_id", "created_at"),)

    @property
    def is_reverted(self) -> bool:
        return self.reverted_at is not None


class BulkActionItem(Base):
    """Snapshot of one catalog item's prices before and after a campaign."""

    __tablename__ = "bulk_action_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bulk_action_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bulk_actions.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Snapshots outlive catalog edits: an item referenced by a campaign cannot be
    # deleted on its own. NO ACTION is checked at statement end, so removing a
    # whole shop still cascades through bulk_actions.
    inventory_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="NO ACTION"),
        nullable=False,
    )
    original_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    original_compare_at_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    new_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    new_compare_at_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    bulk_action: Mapped[BulkAction] = relationship("BulkAction", back_populates="items")

    __table_args__ = (
        UniqueConstraint("bulk_action_id", "inventory_item_id", name="uq_bulk_action_items_action_item"),
        Index("ix_bulk_action_items_inventory_item", "inventory_item_id"),
    )
