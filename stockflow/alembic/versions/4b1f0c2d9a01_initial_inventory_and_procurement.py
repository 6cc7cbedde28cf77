"""initial inventory ledger + procurement schema

Revision ID: 4b1f0c2d9a01
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4b1f0c2d9a01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Les enums SQLAlchemy stockent le NOM du membre Python
location_kind = sa.Enum("shop", "warehouse", name="location_kind")
movement_type = sa.Enum(
    "purchase",
    "sale",
    "adjustment_in",
    "adjustment_out",
    "transfer_in",
    "transfer_out",
    "return_",
    "damage",
    "loss",
    "stock_take",
    "po_reserved",
    "po_reservation_released",
    "po_shipped",
    "po_received",
    name="movement_type",
)
po_status = sa.Enum(
    "draft",
    "submitted",
    "approved",
    "processing",
    "shipped",
    "partially_received",
    "received",
    "completed",
    "cancelled",
    name="po_status",
)
po_payment_status = sa.Enum("pending", "partial", "paid", "overdue", "cancelled", name="po_payment_status")
payment_method = sa.Enum(
    "bank_transfer", "cash", "mobile_money", "cheque", "card", "other", name="payment_method"
)
connection_status = sa.Enum("pending", "active", "suspended", "rejected", name="connection_status")

ENUMS = (location_kind, movement_type, po_status, po_payment_status, payment_method, connection_status)


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True)


def _user_fk(name: str, nullable: bool = True, ondelete: str = "SET NULL") -> sa.Column:
    return sa.Column(name, sa.BigInteger(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    # ---------- Tenancy ----------
    op.create_table(
        "tenants",
        _pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "shops",
        _pk(),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.UniqueConstraint("tenant_id", "name", name="uq_shop_tenant_name"),
    )
    op.create_index("ix_shops_tenant_id", "shops", ["tenant_id"])
    op.create_table(
        "users",
        _pk(),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "product_variants",
        _pk(),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
    )

    # ---------- Supplier ----------
    op.create_table(
        "supplier_profiles",
        _pk(),
        sa.Column(
            "tenant_id",
            sa.BigInteger(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("payment_terms", sa.String(32), nullable=False, server_default="Net 30"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "supplier_connections",
        _pk(),
        sa.Column("buyer_tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("supplier_tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", connection_status, nullable=False),
        sa.Column("credit_limit", sa.Numeric(14, 2)),
        sa.Column("payment_terms_override", sa.String(32)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("buyer_tenant_id", "supplier_tenant_id", name="uq_supplier_connection_pair"),
        sa.CheckConstraint("credit_limit IS NULL OR credit_limit >= 0", name="ck_connection_credit_limit_nonneg"),
    )
    op.create_table(
        "supplier_catalog_items",
        _pk(),
        sa.Column("supplier_tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "product_variant_id",
            sa.BigInteger(),
            sa.ForeignKey("product_variants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("base_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("minimum_order_quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("base_price >= 0", name="ck_catalog_base_price_nonneg"),
        sa.CheckConstraint("minimum_order_quantity >= 1", name="ck_catalog_moq_pos"),
    )
    op.create_index("ix_supplier_catalog_items_supplier_tenant_id", "supplier_catalog_items", ["supplier_tenant_id"])
    op.create_table(
        "supplier_pricing_tiers",
        _pk(),
        sa.Column(
            "catalog_item_id",
            sa.BigInteger(),
            sa.ForeignKey("supplier_catalog_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("connection_id", sa.BigInteger(), sa.ForeignKey("supplier_connections.id", ondelete="CASCADE")),
        sa.Column("min_quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("min_quantity >= 1", name="ck_tier_min_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_tier_unit_price_nonneg"),
    )
    op.create_index("ix_supplier_pricing_tiers_catalog_item_id", "supplier_pricing_tiers", ["catalog_item_id"])

    # ---------- Inventory ----------
    op.create_table(
        "inventory_locations",
        _pk(),
        sa.Column(
            "product_variant_id",
            sa.BigInteger(),
            sa.ForeignKey("product_variants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("location_type", location_kind, nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("product_variant_id", "location_type", "location_id", name="uq_inventory_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonneg"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_nonneg"),
        sa.CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_reserved_le_qty"),
    )
    op.create_index("ix_inventory_locations_place", "inventory_locations", ["location_type", "location_id"])

    # ---------- Procurement ----------
    op.create_table(
        "purchase_orders",
        _pk(),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("buyer_tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("supplier_tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", po_status, nullable=False),
        sa.Column("payment_status", po_payment_status, nullable=False),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("shipping_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("expected_delivery_date", sa.Date()),
        sa.Column("actual_delivery_date", sa.Date()),
        sa.Column("payment_due_date", sa.Date()),
        sa.Column("payment_date", sa.Date()),
        sa.Column("buyer_notes", sa.Text()),
        sa.Column("supplier_notes", sa.Text()),
        _user_fk("created_by", nullable=False, ondelete="RESTRICT"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        _user_fk("submitted_by"),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        _user_fk("approved_by"),
        sa.Column("processing_at", sa.DateTime(timezone=True)),
        _user_fk("processing_by"),
        sa.Column("shipped_at", sa.DateTime(timezone=True)),
        _user_fk("shipped_by"),
        sa.Column("received_at", sa.DateTime(timezone=True)),
        _user_fk("received_by"),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        _user_fk("completed_by"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        _user_fk("cancelled_by"),
        sa.CheckConstraint("total_amount >= 0", name="ck_po_total_nonneg"),
    )
    op.create_index("ix_purchase_orders_shop_id", "purchase_orders", ["shop_id"])
    op.create_index("ix_purchase_orders_pair", "purchase_orders", ["buyer_tenant_id", "supplier_tenant_id"])

    op.create_table(
        "purchase_order_items",
        _pk(),
        sa.Column(
            "purchase_order_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_variant_id",
            sa.BigInteger(),
            sa.ForeignKey("product_variants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "catalog_item_id",
            sa.BigInteger(),
            sa.ForeignKey("supplier_catalog_items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("source_location_id", sa.BigInteger(), sa.ForeignKey("inventory_locations.id", ondelete="RESTRICT")),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_item_unit_price_nonneg"),
        sa.CheckConstraint("received_quantity >= 0", name="ck_po_item_received_nonneg"),
        sa.CheckConstraint("received_quantity <= quantity", name="ck_po_item_received_le_qty"),
    )
    op.create_index("ix_purchase_order_items_purchase_order_id", "purchase_order_items", ["purchase_order_id"])

    op.create_table(
        "purchase_order_payments",
        _pk(),
        sa.Column(
            "purchase_order_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("reference_number", sa.String(128)),
        sa.Column("notes", sa.Text()),
        _user_fk("recorded_by", nullable=False, ondelete="RESTRICT"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_po_payment_amount_pos"),
    )
    op.create_index("ix_purchase_order_payments_purchase_order_id", "purchase_order_payments", ["purchase_order_id"])

    # ---------- Ledger (append-only) ----------
    op.create_table(
        "stock_movements",
        _pk(),
        sa.Column(
            "product_variant_id",
            sa.BigInteger(),
            sa.ForeignKey("product_variants.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "inventory_location_id",
            sa.BigInteger(),
            sa.ForeignKey("inventory_locations.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("from_location_id", sa.BigInteger(), sa.ForeignKey("inventory_locations.id", ondelete="RESTRICT")),
        sa.Column("to_location_id", sa.BigInteger(), sa.ForeignKey("inventory_locations.id", ondelete="RESTRICT")),
        sa.Column("purchase_order_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT")),
        sa.Column("type", movement_type, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_before", sa.Integer(), nullable=False),
        sa.Column("quantity_after", sa.Integer(), nullable=False),
        sa.Column("reference_number", sa.String(64), nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column("notes", sa.Text()),
        _user_fk("created_by", nullable=False, ondelete="RESTRICT"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity_after = quantity_before + quantity", name="ck_stock_movement_snapshot"),
    )
    op.create_index("ix_stock_movements_product_variant_id", "stock_movements", ["product_variant_id"])
    op.create_index("ix_stock_movements_reference_number", "stock_movements", ["reference_number"])
    op.create_index("ix_stock_movements_location_id", "stock_movements", ["inventory_location_id", "id"])


def downgrade() -> None:
    op.drop_table("stock_movements")
    op.drop_table("purchase_order_payments")
    op.drop_table("purchase_order_items")
    op.drop_table("purchase_orders")
    op.drop_table("inventory_locations")
    op.drop_table("supplier_pricing_tiers")
    op.drop_table("supplier_catalog_items")
    op.drop_table("supplier_connections")
    op.drop_table("supplier_profiles")
    op.drop_table("product_variants")
    op.drop_table("users")
    op.drop_table("shops")
    op.drop_table("tenants")

    bind = op.get_bind()
    for enum in ENUMS:
        enum.drop(bind, checkfirst=True)
