"""create inventory items and stock events

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "inventory_items"):
        op.create_table(
            "inventory_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("supplier_id", sa.String(length=36), nullable=True),
            sa.Column("minimum_quantity", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
            sa.CheckConstraint("unit_price >= 0", name="ck_inventory_items_unit_price_non_negative"),
            sa.CheckConstraint(
                "minimum_quantity >= 0",
                name="ck_inventory_items_minimum_quantity_non_negative",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name", name="uq_inventory_items_name"),
        )

    if not _table_exists(inspector, "stock_events"):
        op.create_table(
            "stock_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("supplier_id", sa.String(length=36), nullable=True),
            sa.Column("quantity_delta", sa.Integer(), nullable=False),
            sa.Column("resulting_quantity", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=40), nullable=False),
            sa.Column("price_at_change", sa.Numeric(12, 2), nullable=True),
            sa.Column("actor", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint(
                "resulting_quantity >= 0",
                name="ck_stock_events_resulting_quantity_non_negative",
            ),
            sa.CheckConstraint(
                "quantity_delta <> 0 OR reason = 'price_change'",
                name="ck_stock_events_zero_delta_price_change_only",
            ),
            sa.ForeignKeyConstraint(["item_id"], ["inventory_items.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("item_id", "sequence", name="uq_stock_events_item_sequence"),
        )

    inspector = sa.inspect(bind)
    if _table_exists(inspector, "inventory_items"):
        if not _index_exists(inspector, "inventory_items", "ix_inventory_items_supplier_id"):
            op.create_index("ix_inventory_items_supplier_id", "inventory_items", ["supplier_id"], unique=False)
        if not _index_exists(inspector, "inventory_items", "ix_inventory_items_active_quantity"):
            op.create_index(
                "ix_inventory_items_active_quantity",
                "inventory_items",
                ["is_active", "quantity"],
                unique=False,
            )

    if _table_exists(inspector, "stock_events"):
        if not _index_exists(inspector, "stock_events", "ix_stock_events_item_created_at"):
            op.create_index(
                "ix_stock_events_item_created_at",
                "stock_events",
                ["item_id", "created_at"],
                unique=False,
            )
        if not _index_exists(inspector, "stock_events", "ix_stock_events_created_at"):
            op.create_index("ix_stock_events_created_at", "stock_events", ["created_at"], unique=False)
        if not _index_exists(inspector, "stock_events", "ix_stock_events_supplier_created_at"):
            op.create_index(
                "ix_stock_events_supplier_created_at",
                "stock_events",
                ["supplier_id", "created_at"],
                unique=False,
            )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if _table_exists(inspector, "stock_events"):
        for index_name in (
            "ix_stock_events_supplier_created_at",
            "ix_stock_events_created_at",
            "ix_stock_events_item_created_at",
        ):
            if _index_exists(inspector, "stock_events", index_name):
                op.drop_index(index_name, table_name="stock_events")
        op.drop_table("stock_events")

    inspector = sa.inspect(bind)
    if _table_exists(inspector, "inventory_items"):
        for index_name in ("ix_inventory_items_active_quantity", "ix_inventory_items_supplier_id"):
            if _index_exists(inspector, "inventory_items", index_name):
                op.drop_index(index_name, table_name="inventory_items")
        op.drop_table("inventory_items")
