from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockflow.app.db.base import Base, BigIntPK
from stockflow.app.db.models.core_types import (
    LocationKind,
    LocationRef,
    MovementType,
    POStatus,
    POPaymentStatus,
    PaymentMethod,
    ConnectionStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- TENANCY (collaborateurs, lecture seule pour le moteur) ----------
class Tenant(Base):
    __tablename__ = "tenants"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    shops: Mapped[list["Shop"]] = relationship(back_populates="tenant", order_by="Shop.id")
    supplier_profile: Mapped[SupplierProfile | None] = relationship(back_populates="tenant", uselist=False)


class Shop(Base):
    __tablename__ = "shops"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    tenant: Mapped[Tenant] = relationship(back_populates="shops")
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_shop_tenant_name"),)


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ProductVariant(Base):
    __tablename__ = "product_variants"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


# ---------- SUPPLIER ----------
class SupplierProfile(Base):
    __tablename__ = "supplier_profiles"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False)
    payment_terms: Mapped[str] = mapped_column(String(32), default="Net 30", nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tenant: Mapped[Tenant] = relationship(back_populates="supplier_profile")


class SupplierConnection(Base):
    __tablename__ = "supplier_connections"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    buyer_tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    supplier_tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[ConnectionStatus] = mapped_column(
        Enum(ConnectionStatus, name="connection_status"),
        default=ConnectionStatus.pending,
        nullable=False,
    )
    credit_limit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))  # NULL = illimité
    payment_terms_override: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("buyer_tenant_id", "supplier_tenant_id", name="uq_supplier_connection_pair"),
        CheckConstraint("credit_limit IS NULL OR credit_limit >= 0", name="ck_connection_credit_limit_nonneg"),
    )


class SupplierCatalogItem(Base):
    __tablename__ = "supplier_catalog_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    supplier_tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    product_variant_id: Mapped[int] = mapped_column(ForeignKey("product_variants.id", ondelete="RESTRICT"), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    minimum_order_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    pricing_tiers: Mapped[list["SupplierPricingTier"]] = relationship(
        back_populates="catalog_item",
        cascade="all, delete-orphan",
        order_by="SupplierPricingTier.min_quantity",
    )

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="ck_catalog_base_price_nonneg"),
        CheckConstraint("minimum_order_quantity >= 1", name="ck_catalog_moq_pos"),
    )


class SupplierPricingTier(Base):
    __tablename__ = "supplier_pricing_tiers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    catalog_item_id: Mapped[int] = mapped_column(
        ForeignKey("supplier_catalog_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # NULL = tier général, sinon tarif négocié pour une connexion précise
    connection_id: Mapped[int | None] = mapped_column(ForeignKey("supplier_connections.id", ondelete="CASCADE"))
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    catalog_item: Mapped[SupplierCatalogItem] = relationship(back_populates="pricing_tiers")

    __table_args__ = (
        CheckConstraint("min_quantity >= 1", name="ck_tier_min_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_tier_unit_price_nonneg"),
    )


# ---------- INVENTORY ----------
class InventoryLocation(Base):
    __tablename__ = "inventory_locations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_variant_id: Mapped[int] = mapped_column(
        ForeignKey("product_variants.id", ondelete="RESTRICT"),
        nullable=False,
    )
    location_type: Mapped[LocationKind] = mapped_column(Enum(LocationKind, name="location_kind"), nullable=False)
    location_id: Mapped[int] = mapped_column(Integer, nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    variant: Mapped[ProductVariant] = relationship()

    __table_args__ = (
        UniqueConstraint("product_variant_id", "location_type", "location_id", name="uq_inventory_location"),
        CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_nonneg"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_reserved_le_qty"),
        Index("ix_inventory_locations_place", "location_type", "location_id"),
    )

    @property
    def ref(self) -> LocationRef:
        return LocationRef(self.location_type, self.location_id)

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity


class StockMovement(Base):
    """Écriture du ledger. Append-only : jamais modifiée ni supprimée."""

    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    product_variant_id: Mapped[int] = mapped_column(
        ForeignKey("product_variants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # Emplacement dont la quantité est décrite par quantity_before/after
    inventory_location_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_locations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    from_location_id: Mapped[int | None] = mapped_column(ForeignKey("inventory_locations.id", ondelete="RESTRICT"))
    to_location_id: Mapped[int | None] = mapped_column(ForeignKey("inventory_locations.id", ondelete="RESTRICT"))
    purchase_order_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_orders.id", ondelete="RESTRICT"))

    type: Mapped[MovementType] = mapped_column(Enum(MovementType, name="movement_type"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # delta signé
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reference_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity_after = quantity_before + quantity", name="ck_stock_movement_snapshot"),
        Index("ix_stock_movements_location_id", "inventory_location_id", "id"),
    )


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    buyer_tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False)
    supplier_tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False, index=True)

    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), default=POStatus.draft, nullable=False)
    payment_status: Mapped[POPaymentStatus] = mapped_column(
        Enum(POPaymentStatus, name="po_payment_status"),
        default=POPaymentStatus.pending,
        nullable=False,
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    shipping_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    # cache : le ledger des paiements reste la source de vérité
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    actual_delivery_date: Mapped[date | None] = mapped_column(Date)
    payment_due_date: Mapped[date | None] = mapped_column(Date)
    payment_date: Mapped[date | None] = mapped_column(Date)

    buyer_notes: Mapped[str | None] = mapped_column(Text)
    supplier_notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    submitted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    shipped_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )
    payments: Mapped[list["PurchaseOrderPayment"]] = relationship(
        back_populates="po",
        order_by="PurchaseOrderPayment.id",
    )

    __table_args__ = (
        Index("ix_purchase_orders_pair", "buyer_tenant_id", "supplier_tenant_id"),
        CheckConstraint("total_amount >= 0", name="ck_po_total_nonneg"),
    )

    @property
    def total_ordered_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_received_quantity(self) -> int:
        return sum(item.received_quantity for item in self.items)

    @property
    def receipt_completion_percentage(self) -> float:
        ordered = self.total_ordered_quantity
        if ordered == 0:
            return 0.0
        return round(self.total_received_quantity / ordered * 100, 2)

    @property
    def is_fully_received(self) -> bool:
        return bool(self.items) and all(item.is_fully_received for item in self.items)

    @property
    def has_receipts(self) -> bool:
        return any(item.received_quantity > 0 for item in self.items)


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_variant_id: Mapped[int] = mapped_column(ForeignKey("product_variants.id", ondelete="RESTRICT"), nullable=False)
    catalog_item_id: Mapped[int] = mapped_column(ForeignKey("supplier_catalog_items.id", ondelete="RESTRICT"), nullable=False)
    # Emplacement fournisseur qui porte la réservation (fixé au submit)
    source_location_id: Mapped[int | None] = mapped_column(ForeignKey("inventory_locations.id", ondelete="RESTRICT"))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    received_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    po: Mapped[PurchaseOrder] = relationship(back_populates="items")
    variant: Mapped[ProductVariant] = relationship()
    catalog_item: Mapped[SupplierCatalogItem] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_item_unit_price_nonneg"),
        CheckConstraint("received_quantity >= 0", name="ck_po_item_received_nonneg"),
        CheckConstraint("received_quantity <= quantity", name="ck_po_item_received_le_qty"),
    )

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - self.received_quantity

    @property
    def is_fully_received(self) -> bool:
        return self.received_quantity >= self.quantity


class PurchaseOrderPayment(Base):
    """Paiement enregistré contre un PO. Append-only."""

    __tablename__ = "purchase_order_payments"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="payments")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_po_payment_amount_pos"),)
