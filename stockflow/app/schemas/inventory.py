from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from stockflow.app.db.models.core_types import LocationKind, MovementType


class InventoryLocationRead(BaseModel):
    id: int
    product_variant_id: int
    location_type: LocationKind
    location_id: int

    quantity: int
    reserved_quantity: int
    available_quantity: int  # READ ONLY: quantity - reserved_quantity

    class Config:
        from_attributes = True


class StockMovementRead(BaseModel):
    id: int
    product_variant_id: int
    inventory_location_id: int
    from_location_id: int | None = None
    to_location_id: int | None = None
    purchase_order_id: int | None = None

    type: MovementType
    quantity: int
    quantity_before: int
    quantity_after: int
    reference_number: str
    reason: str | None = None
    notes: str | None = None

    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True
