from __future__ import annotations

import enum
from dataclasses import dataclass


class LocationKind(str, enum.Enum):
    shop = "shop"
    warehouse = "warehouse"


@dataclass(frozen=True)
class LocationRef:
    """Emplacement physique : (kind, id). Un shop appartient à un seul tenant."""

    kind: LocationKind
    id: int

    @classmethod
    def shop(cls, shop_id: int) -> "LocationRef":
        return cls(LocationKind.shop, int(shop_id))

    @classmethod
    def warehouse(cls, warehouse_id: int) -> "LocationRef":
        return cls(LocationKind.warehouse, int(warehouse_id))


class MovementType(str, enum.Enum):
    purchase = "PURCHASE"
    sale = "SALE"
    adjustment_in = "ADJUSTMENT_IN"
    adjustment_out = "ADJUSTMENT_OUT"
    transfer_in = "TRANSFER_IN"
    transfer_out = "TRANSFER_OUT"
    return_ = "RETURN"
    damage = "DAMAGE"
    loss = "LOSS"
    stock_take = "STOCK_TAKE"
    po_reserved = "PO_RESERVED"
    po_reservation_released = "PO_RESERVATION_RELEASED"
    po_shipped = "PO_SHIPPED"
    po_received = "PO_RECEIVED"

    @property
    def is_increase(self) -> bool:
        return self in INCREASE_MOVEMENTS

    @property
    def is_decrease(self) -> bool:
        return self in DECREASE_MOVEMENTS

    @property
    def is_reservation(self) -> bool:
        return self in RESERVATION_MOVEMENTS


INCREASE_MOVEMENTS = frozenset(
    {
        MovementType.purchase,
        MovementType.adjustment_in,
        MovementType.transfer_in,
        MovementType.return_,
        MovementType.po_received,
    }
)
DECREASE_MOVEMENTS = frozenset(
    {
        MovementType.sale,
        MovementType.adjustment_out,
        MovementType.transfer_out,
        MovementType.damage,
        MovementType.loss,
        MovementType.po_shipped,
    }
)
# delta toujours 0 : audit uniquement, ignorés pour la reconstruction
RESERVATION_MOVEMENTS = frozenset(
    {
        MovementType.po_reserved,
        MovementType.po_reservation_released,
    }
)
# Types acceptés par adjust_stock (les autres ont leur propre chemin)
MANUAL_MOVEMENTS = frozenset(
    {
        MovementType.purchase,
        MovementType.sale,
        MovementType.adjustment_in,
        MovementType.adjustment_out,
        MovementType.return_,
        MovementType.damage,
        MovementType.loss,
    }
)

REFERENCE_PREFIXES = {
    MovementType.purchase: "PUR",
    MovementType.sale: "SAL",
    MovementType.adjustment_in: "ADJ-IN",
    MovementType.adjustment_out: "ADJ-OUT",
    MovementType.transfer_in: "TRF",
    MovementType.transfer_out: "TRF",
    MovementType.return_: "RET",
    MovementType.damage: "DMG",
    MovementType.loss: "LOSS",
    MovementType.stock_take: "STK",
    MovementType.po_reserved: "PO-RSV",
    MovementType.po_reservation_released: "PO-REL",
    MovementType.po_shipped: "PO-SHIP",
    MovementType.po_received: "PO-RCV",
}


class POStatus(str, enum.Enum):
    draft = "DRAFT"
    submitted = "SUBMITTED"
    approved = "APPROVED"
    processing = "PROCESSING"
    shipped = "SHIPPED"
    partially_received = "PARTIALLY_RECEIVED"
    received = "RECEIVED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


# Machine à états PO : statut courant -> statuts suivants autorisés.
# Tout ce qui n'est pas ici est rejeté (InvalidStateTransition).
PO_TRANSITIONS: dict[POStatus, frozenset[POStatus]] = {
    POStatus.draft: frozenset({POStatus.submitted, POStatus.cancelled}),
    POStatus.submitted: frozenset({POStatus.approved, POStatus.cancelled}),
    POStatus.approved: frozenset({POStatus.processing, POStatus.cancelled}),
    POStatus.processing: frozenset({POStatus.shipped, POStatus.cancelled}),
    POStatus.shipped: frozenset({POStatus.partially_received, POStatus.received}),
    POStatus.partially_received: frozenset({POStatus.partially_received, POStatus.received}),
    POStatus.received: frozenset({POStatus.completed}),
    POStatus.completed: frozenset(),
    POStatus.cancelled: frozenset(),
}

EDITABLE_PO_STATUSES = frozenset({POStatus.draft})
RECEIVABLE_PO_STATUSES = frozenset({POStatus.shipped, POStatus.partially_received})
# Statuts où une réservation fournisseur est en cours
RESERVED_PO_STATUSES = frozenset({POStatus.submitted, POStatus.approved, POStatus.processing})


class POPaymentStatus(str, enum.Enum):
    pending = "PENDING"
    partial = "PARTIAL"
    paid = "PAID"
    overdue = "OVERDUE"
    cancelled = "CANCELLED"

    @property
    def can_record_payment(self) -> bool:
        return self not in {POPaymentStatus.paid, POPaymentStatus.cancelled}


class PaymentMethod(str, enum.Enum):
    bank_transfer = "BANK_TRANSFER"
    cash = "CASH"
    mobile_money = "MOBILE_MONEY"
    cheque = "CHEQUE"
    card = "CARD"
    other = "OTHER"


class ConnectionStatus(str, enum.Enum):
    pending = "PENDING"
    active = "ACTIVE"
    suspended = "SUSPENDED"
    rejected = "REJECTED"

    @property
    def can_order(self) -> bool:
        return self is ConnectionStatus.active
