"""create shops, inventory items and bulk pricing ledger

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("shop_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("installed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_domain", name="uq_shops_shop_domain"),
    )

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("sku", sa.String(length=255), nullable=True),
        sa.Column("vendor", sa.String(length=255), nullable=True),
        sa.Column("inventory_quantity", sa.Integer(), nullable=True),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("compare_at_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("external_product_id", sa.String(length=64), nullable=True),
        sa.Column("external_variant_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "external_variant_id", name="uq_inventory_items_shop_variant"),
    )
    op.create_index("ix_inventory_items_shop_product", "inventory_items", ["shop_id", "external_product_id"], unique=False)
    op.create_index("ix_inventory_items_shop_title", "inventory_items", ["shop_id", "title"], unique=False)

    op.create_table(
        "bulk_actions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("action_type", sa.String(length=32), nullable=False, server_default="uniform"),
        sa.Column("new_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_compare_at_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("item_count", sa.Integer(), nullable=False),
        sa.Column("rule_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reverted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bulk_actions_shop_created", "bulk_actions", ["shop_id", "created_at"], unique=False)

    op.create_table(
        "bulk_action_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("bulk_action_id", sa.Uuid(), nullable=False),
        sa.Column("inventory_item_id", sa.Uuid(), nullable=False),
        sa.Column("original_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("original_compare_at_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_compare_at_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bulk_action_id"], ["bulk_actions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"], ondelete="NO ACTION"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bulk_action_id", "inventory_item_id", name="uq_bulk_action_items_action_item"),
    )
    op.create_index("ix_bulk_action_items_inventory_item", "bulk_action_items", ["inventory_item_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bulk_action_items_inventory_item", table_name="bulk_action_items")
    op.drop_table("bulk_action_items")
    op.drop_index("ix_bulk_actions_shop_created", table_name="bulk_actions")
    op.drop_table("bulk_actions")
    op.drop_index("ix_inventory_items_shop_title", table_name="inventory_items")
    op.drop_index("ix_inventory_items_shop_product", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_table("shops")
