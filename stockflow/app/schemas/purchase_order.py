from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from stockflow.app.db.models.core_types import PaymentMethod, POPaymentStatus, POStatus


# ---------- Payloads ----------
class POItemCreate(BaseModel):
    catalog_item_id: int
    quantity: int = Field(gt=0)
    # None = prix résolu depuis le catalogue fournisseur
    unit_price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class POItemUpdate(BaseModel):
    quantity: int | None = Field(default=None, gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class POCreate(BaseModel):
    shop_id: int
    supplier_tenant_id: int
    buyer_notes: str | None = None
    expected_delivery_date: date | None = None
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    items: list[POItemCreate] = Field(default_factory=list)


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: PaymentMethod
    payment_date: date | None = None
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None


# ---------- Read models ----------
class PurchaseOrderItemRead(BaseModel):
    id: int
    product_variant_id: int
    catalog_item_id: int
    source_location_id: int | None = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    received_quantity: int
    notes: str | None = None

    class Config:
        from_attributes = True


class PaymentRead(BaseModel):
    id: int
    purchase_order_id: int
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    reference_number: str | None = None
    notes: str | None = None
    recorded_by: int

    class Config:
        from_attributes = True


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    buyer_tenant_id: int
    supplier_tenant_id: int
    shop_id: int
    status: POStatus
    payment_status: POPaymentStatus

    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal

    expected_delivery_date: date | None = None
    actual_delivery_date: date | None = None
    payment_due_date: date | None = None

    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    shipped_at: datetime | None = None
    received_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_by: int | None = None
    cancelled_by: int | None = None

    receipt_completion_percentage: float
    items: list[PurchaseOrderItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CreditExposureRead(BaseModel):
    buyer_tenant_id: int
    supplier_tenant_id: int
    credit_limit: Decimal | None = None  # None = illimité
    outstanding_amount: Decimal
    available_credit: Decimal | None = None
