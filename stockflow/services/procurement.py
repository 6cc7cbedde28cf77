"""
Procurement service : cycle de vie des purchase orders (PO) inter-tenants.

Ce module orchestre les flux d'achat (articles, soumission, expédition,
réception, annulation) mais ne contient AUCUNE logique de calcul de stock.

Toute la logique stock est centralisée dans :
    stockflow.services.inventory

Ordre des verrous dans chaque opération : emplacements (id croissant) puis
ligne PO. Chaque opération est une seule transaction : en cas d'erreur,
rien n'est appliqué (pas de réservation, d'expédition ou de libération
partielle).
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.app.core.config import settings
from stockflow.app.core.errors import (
    ExcessReceipt,
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from stockflow.app.db.models.core_types import (
    EDITABLE_PO_STATUSES,
    PO_TRANSITIONS,
    RECEIVABLE_PO_STATUSES,
    RESERVED_PO_STATUSES,
    LocationRef,
    POPaymentStatus,
    POStatus,
)
from stockflow.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderItem,
    Shop,
    SupplierConnection,
)
from stockflow.app.db.transaction import atomic
from stockflow.app.schemas.purchase_order import POCreate, POItemCreate, POItemUpdate
from stockflow.services import catalog, credit, inventory, payments

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def generate_po_number() -> str:
    return f"{settings.po_number_prefix}-{_now():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


# ---------- Machine à états ----------
def ensure_transition(po: PurchaseOrder, target: POStatus) -> None:
    if target not in PO_TRANSITIONS[po.status]:
        raise InvalidStateTransition(
            f"Purchase order {po.po_number} cannot move from {po.status.value} to {target.value}",
            {"po_id": po.id, "status": po.status.value, "target": target.value},
        )


def _ensure_editable(po: PurchaseOrder) -> None:
    if po.status not in EDITABLE_PO_STATUSES:
        raise InvalidStateTransition(
            f"Cannot edit items of purchase order {po.po_number} in status {po.status.value}",
            {"po_id": po.id, "status": po.status.value},
        )


# ---------- Lecture ----------
def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFound(f"Purchase order {po_id} not found", {"po_id": po_id})
    return po


def list_purchase_orders(
    db: Session,
    *,
    buyer_tenant_id: int | None = None,
    supplier_tenant_id: int | None = None,
    shop_id: int | None = None,
    status: POStatus | None = None,
    limit: int | None = None,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())

    if buyer_tenant_id is not None:
        stmt = stmt.where(PurchaseOrder.buyer_tenant_id == buyer_tenant_id)
    if supplier_tenant_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_tenant_id == supplier_tenant_id)
    if shop_id is not None:
        stmt = stmt.where(PurchaseOrder.shop_id == shop_id)
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if limit is not None:
        stmt = stmt.limit(limit)

    return list(db.execute(stmt).scalars().all())


# ---------- Helpers ----------
def _lock_po(db: Session, po_id: int) -> PurchaseOrder:
    db.flush()
    po = db.execute(
        select(PurchaseOrder)
        .where(PurchaseOrder.id == po_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not po:
        raise NotFound(f"Purchase order {po_id} not found", {"po_id": po_id})
    return po


def _load_items(db: Session, po_id: int) -> list[PurchaseOrderItem]:
    return list(
        db.execute(
            select(PurchaseOrderItem)
            .where(PurchaseOrderItem.purchase_order_id == po_id)
            .order_by(PurchaseOrderItem.id.asc())
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )


def _reservation_snapshot(po: PurchaseOrder, items: list[PurchaseOrderItem]) -> tuple:
    return (
        po.status in RESERVED_PO_STATUSES,
        tuple((item.id, item.source_location_id, item.quantity) for item in items),
    )


def _lock_for_item_change(db: Session, po: PurchaseOrder, connection: SupplierConnection) -> PurchaseOrder:
    # Avec limite de crédit : on verrouille tout l'ensemble des PO ouverts de
    # la paire (le PO courant inclus), par id -> pas de deadlock entre ajouts.
    if connection.credit_limit is not None:
        credit.lock_outstanding_orders(
            db,
            buyer_tenant_id=po.buyer_tenant_id,
            supplier_tenant_id=po.supplier_tenant_id,
        )
        db.refresh(po)
        return po
    return _lock_po(db, po.id)


def _recalculate_totals(po: PurchaseOrder) -> None:
    subtotal = sum((Decimal(item.total_price) for item in po.items), Decimal("0"))
    total = (
        subtotal
        + Decimal(po.tax_amount or 0)
        + Decimal(po.shipping_amount or 0)
        - Decimal(po.discount_amount or 0)
    )
    po.subtotal = catalog.money(subtotal)
    po.total_amount = catalog.money(max(total, Decimal("0")))


def _add_item(
    db: Session,
    po: PurchaseOrder,
    payload: POItemCreate,
    connection: SupplierConnection,
) -> PurchaseOrderItem:
    _ensure_editable(po)

    catalog_item = catalog.get_catalog_item(db, payload.catalog_item_id, supplier_tenant_id=po.supplier_tenant_id)
    catalog.check_minimum_order_quantity(catalog_item, payload.quantity)

    if payload.unit_price is not None:
        unit_price = catalog.money(payload.unit_price)
    else:
        unit_price = catalog.resolve_unit_price(catalog_item, payload.quantity, connection.id)
    line_total = catalog.money(unit_price * payload.quantity)

    credit.ensure_within_credit_limit(db, po=po, connection=connection, additional_amount=line_total)

    item = PurchaseOrderItem(
        product_variant_id=catalog_item.product_variant_id,
        catalog_item_id=catalog_item.id,
        quantity=payload.quantity,
        unit_price=unit_price,
        total_price=line_total,
        received_quantity=0,
        notes=payload.notes,
    )
    po.items.append(item)
    _recalculate_totals(po)
    db.flush()
    payments.refresh_payment_status(db, po)
    return item


# ---------- Création & articles ----------
def create_purchase_order(
    db: Session,
    *,
    buyer_tenant_id: int,
    payload: POCreate,
    actor_id: int,
) -> PurchaseOrder:
    with atomic(db):
        shop = db.get(Shop, payload.shop_id)
        if not shop:
            raise NotFound(f"Shop {payload.shop_id} not found", {"shop_id": payload.shop_id})
        if shop.tenant_id != buyer_tenant_id:
            raise ValidationError("Shop does not belong to the buyer tenant", {"shop_id": shop.id})

        connection = catalog.require_connection(
            db,
            buyer_tenant_id=buyer_tenant_id,
            supplier_tenant_id=payload.supplier_tenant_id,
            for_ordering=True,
        )

        po = PurchaseOrder(
            po_number=generate_po_number(),
            buyer_tenant_id=buyer_tenant_id,
            supplier_tenant_id=payload.supplier_tenant_id,
            shop_id=shop.id,
            status=POStatus.draft,
            payment_status=POPaymentStatus.pending,
            tax_amount=catalog.money(payload.tax_amount),
            shipping_amount=catalog.money(payload.shipping_amount),
            discount_amount=catalog.money(payload.discount_amount),
            subtotal=Decimal("0"),
            total_amount=Decimal("0"),
            paid_amount=Decimal("0"),
            buyer_notes=payload.buyer_notes,
            expected_delivery_date=payload.expected_delivery_date,
            created_by=actor_id,
        )
        db.add(po)
        db.flush()  # get po.id

        _recalculate_totals(po)
        for item_payload in payload.items:
            if connection.credit_limit is not None:
                _lock_for_item_change(db, po, connection)
            _add_item(db, po, item_payload, connection)

        terms = catalog.resolve_payment_terms(db, connection)
        po.payment_due_date = catalog.payment_due_date(terms, start=_now().date())
        db.flush()

        logger.info(
            "Purchase order created",
            extra={
                "po_id": po.id,
                "po_number": po.po_number,
                "buyer_tenant_id": buyer_tenant_id,
                "supplier_tenant_id": payload.supplier_tenant_id,
                "actor_id": actor_id,
            },
        )
        po_id = po.id

    return get_purchase_order(db, po_id)


def add_item(db: Session, po_id: int, payload: POItemCreate, *, actor_id: int) -> PurchaseOrderItem:
    with atomic(db):
        po = get_purchase_order(db, po_id)
        connection = catalog.require_connection(
            db,
            buyer_tenant_id=po.buyer_tenant_id,
            supplier_tenant_id=po.supplier_tenant_id,
        )
        po = _lock_for_item_change(db, po, connection)
        item = _add_item(db, po, payload, connection)

        logger.info(
            "Purchase order item added",
            extra={"po_id": po.id, "item_id": item.id, "quantity": item.quantity, "actor_id": actor_id},
        )

    return item


def update_item(db: Session, item_id: int, payload: POItemUpdate, *, actor_id: int) -> PurchaseOrderItem:
    with atomic(db):
        item = db.get(PurchaseOrderItem, item_id)
        if not item:
            raise NotFound(f"Purchase order item {item_id} not found", {"item_id": item_id})

        po = item.po
        connection = catalog.require_connection(
            db,
            buyer_tenant_id=po.buyer_tenant_id,
            supplier_tenant_id=po.supplier_tenant_id,
        )
        po = _lock_for_item_change(db, po, connection)
        _ensure_editable(po)

        quantity = payload.quantity if payload.quantity is not None else item.quantity
        catalog.check_minimum_order_quantity(item.catalog_item, quantity)

        if payload.unit_price is not None:
            unit_price = catalog.money(payload.unit_price)
        elif quantity != item.quantity:
            # nouveau palier de quantité -> nouveau prix catalogue
            unit_price = catalog.resolve_unit_price(item.catalog_item, quantity, connection.id)
        else:
            unit_price = catalog.money(item.unit_price)
        line_total = catalog.money(unit_price * quantity)

        increase = line_total - Decimal(item.total_price)
        if increase > 0:
            credit.ensure_within_credit_limit(db, po=po, connection=connection, additional_amount=increase)

        item.quantity = quantity
        item.unit_price = unit_price
        item.total_price = line_total
        if payload.notes is not None:
            item.notes = payload.notes
        _recalculate_totals(po)
        db.flush()
        payments.refresh_payment_status(db, po)

        logger.info(
            "Purchase order item updated",
            extra={"po_id": po.id, "item_id": item.id, "quantity": quantity, "actor_id": actor_id},
        )

    return item


def remove_item(db: Session, item_id: int, *, actor_id: int) -> PurchaseOrder:
    with atomic(db):
        item = db.get(PurchaseOrderItem, item_id)
        if not item:
            raise NotFound(f"Purchase order item {item_id} not found", {"item_id": item_id})

        po = _lock_po(db, item.purchase_order_id)
        _ensure_editable(po)

        po.items.remove(item)
        _recalculate_totals(po)
        db.flush()
        # total en baisse : un PO déjà payé peut devenir soldé
        payments.refresh_payment_status(db, po)

        logger.info(
            "Purchase order item removed",
            extra={"po_id": po.id, "item_id": item_id, "actor_id": actor_id},
        )
        po_id = po.id

    return get_purchase_order(db, po_id)


# ---------- Cycle de vie ----------
def submit_purchase_order(db: Session, po_id: int, *, actor_id: int) -> PurchaseOrder:
    """
    DRAFT -> SUBMITTED.

    Réserve le stock fournisseur pour chaque article : premier emplacement
    shop du fournisseur (par id) dont le disponible couvre la quantité.
    """
    with atomic(db):
        po = get_purchase_order(db, po_id)
        ensure_transition(po, POStatus.submitted)

        items = _load_items(db, po.id)
        if not items:
            raise ValidationError("Cannot submit empty purchase order", {"po_id": po.id})
        snapshot = [(item.id, item.quantity) for item in items]

        locations = inventory.lock_tenant_shop_locations(
            db,
            tenant_id=po.supplier_tenant_id,
            variant_ids=[item.product_variant_id for item in items],
        )

        po = _lock_po(db, po.id)
        ensure_transition(po, POStatus.submitted)
        items = _load_items(db, po.id)
        if [(item.id, item.quantity) for item in items] != snapshot:
            raise InvalidStateTransition(
                f"Purchase order {po.po_number} was modified during submission",
                {"po_id": po.id},
            )

        for item in sorted(items, key=lambda i: (i.product_variant_id, i.id)):
            location = next(
                (
                    loc
                    for loc in locations
                    if loc.product_variant_id == item.product_variant_id
                    and loc.available_quantity >= item.quantity
                ),
                None,
            )
            if location is None:
                raise InsufficientStock(
                    f"No supplier location has {item.quantity} available units of variant {item.product_variant_id}",
                    {"po_id": po.id, "item_id": item.id, "variant_id": item.product_variant_id},
                )

            inventory.reserve_stock(
                db,
                location,
                quantity=item.quantity,
                actor_id=actor_id,
                reference_number=po.po_number,
                purchase_order_id=po.id,
                reason=f"Reserved for PO #{po.po_number}",
            )
            item.source_location_id = location.id

        po.status = POStatus.submitted
        po.submitted_at = _now()
        po.submitted_by = actor_id
        db.flush()

        logger.info(
            "Purchase order submitted",
            extra={"po_id": po.id, "po_number": po.po_number, "actor_id": actor_id},
        )

    return get_purchase_order(db, po_id)


def approve_purchase_order(db: Session, po_id: int, *, actor_id: int) -> PurchaseOrder:
    with atomic(db):
        po = _lock_po(db, po_id)
        ensure_transition(po, POStatus.approved)

        po.status = POStatus.approved
        po.approved_at = _now()
        po.approved_by = actor_id

        logger.info(
            "Purchase order approved",
            extra={"po_id": po.id, "po_number": po.po_number, "actor_id": actor_id},
        )

    return get_purchase_order(db, po_id)


def start_processing_purchase_order(db: Session, po_id: int, *, actor_id: int) -> PurchaseOrder:
    with atomic(db):
        po = _lock_po(db, po_id)
        ensure_transition(po, POStatus.processing)

        po.status = POStatus.processing
        po.processing_at = _now()
        po.processing_by = actor_id

        logger.info(
            "Purchase order processing started",
            extra={"po_id": po.id, "po_number": po.po_number, "actor_id": actor_id},
        )

    return get_purchase_order(db, po_id)


def ship_purchase_order(db: Session, po_id: int, *, actor_id: int) -> PurchaseOrder:
    """
    PROCESSING -> SHIPPED.

    Re-valide sous verrou que chaque emplacement réservé a toujours la
    quantité commandée : tout ou rien.
    """
    with atomic(db):
        po = get_purchase_order(db, po_id)
        ensure_transition(po, POStatus.shipped)

        items = _load_items(db, po.id)
        unreserved = [item.id for item in items if item.source_location_id is None]
        if unreserved:
            raise NotFound("No reserved supplier location for purchase order items", {"item_ids": unreserved})

        locations = inventory.lock_locations_by_id(db, [item.source_location_id for item in items])

        po = _lock_po(db, po.id)
        ensure_transition(po, POStatus.shipped)

        required: dict[int, int] = {}
        for item in items:
            required[item.source_location_id] = required.get(item.source_location_id, 0) + item.quantity
        for location_id, needed in required.items():
            location = locations[location_id]
            if location.quantity < needed:
                raise InsufficientStock(
                    f"Supplier location {location_id} no longer holds {needed} units (on_hand={location.quantity})",
                    {"po_id": po.id, "location_id": location_id, "on_hand": location.quantity, "requested": needed},
                )

        for item in items:
            inventory.ship_reserved_stock(
                db,
                locations[item.source_location_id],
                quantity=item.quantity,
                actor_id=actor_id,
                reference_number=po.po_number,
                purchase_order_id=po.id,
                reason=f"Shipped to buyer tenant {po.buyer_tenant_id} - PO #{po.po_number}",
            )

        po.status = POStatus.shipped
        po.shipped_at = _now()
        po.shipped_by = actor_id
        db.flush()

        logger.info(
            "Purchase order shipped",
            extra={"po_id": po.id, "po_number": po.po_number, "actor_id": actor_id},
        )

    return get_purchase_order(db, po_id)


def receive_purchase_order(
    db: Session,
    po_id: int,
    items: Mapping[int, int] | None = None,
    *,
    actor_id: int,
    actual_delivery_date: date | None = None,
) -> PurchaseOrder:
    """
    Réception (partielle ou complète) côté buyer.

    `items` : {item_id: quantité reçue en plus}. None = tout le reste à recevoir.
    """
    with atomic(db):
        po = get_purchase_order(db, po_id)
        if po.status not in RECEIVABLE_PO_STATUSES:
            raise InvalidStateTransition(
                f"Purchase order {po.po_number} cannot be received in status {po.status.value}",
                {"po_id": po.id, "status": po.status.value},
            )

        po_items = _load_items(db, po.id)
        variant_ids = [item.product_variant_id for item in po_items]
        locations = inventory.lock_variant_locations_at(
            db,
            location=LocationRef.shop(po.shop_id),
            variant_ids=variant_ids,
        )

        po = _lock_po(db, po.id)
        if po.status not in RECEIVABLE_PO_STATUSES:
            raise InvalidStateTransition(
                f"Purchase order {po.po_number} cannot be received in status {po.status.value}",
                {"po_id": po.id, "status": po.status.value},
            )
        by_id = {item.id: item for item in _load_items(db, po.id)}

        if items is None:
            increments = {item_id: item.remaining_quantity for item_id, item in by_id.items()}
        else:
            increments = {int(item_id): int(qty) for item_id, qty in items.items()}

        for item_id, qty in increments.items():
            item = by_id.get(item_id)
            if item is None:
                raise NotFound(f"Item {item_id} is not part of purchase order {po.po_number}", {"item_id": item_id})
            if qty < 0:
                raise ValidationError("Received quantity cannot be negative", {"item_id": item_id, "quantity": qty})
            if item.received_quantity + qty > item.quantity:
                raise ExcessReceipt(
                    f"Item {item_id}: receiving {qty} would exceed ordered quantity {item.quantity}"
                    f" (already received {item.received_quantity})",
                    {
                        "item_id": item_id,
                        "ordered": item.quantity,
                        "already_received": item.received_quantity,
                        "increment": qty,
                    },
                )

        for item_id in sorted(increments):
            qty = increments[item_id]
            if qty == 0:
                continue
            item = by_id[item_id]
            inventory.receive_stock(
                db,
                locations[item.product_variant_id],
                quantity=qty,
                actor_id=actor_id,
                reference_number=po.po_number,
                purchase_order_id=po.id,
                reason=f"Received from supplier tenant {po.supplier_tenant_id} - PO #{po.po_number}",
            )
            item.received_quantity += qty

        db.flush()
        db.refresh(po, attribute_names=["items"])

        if po.is_fully_received:
            target = POStatus.received
        elif po.has_receipts:
            target = POStatus.partially_received
        else:
            target = po.status

        if target != po.status:
            ensure_transition(po, target)
            po.status = target
            if target == POStatus.received and po.received_at is None:
                po.received_at = _now()
                po.received_by = actor_id
                po.actual_delivery_date = actual_delivery_date or _now().date()
        db.flush()

        logger.info(
            "Purchase order received",
            extra={
                "po_id": po.id,
                "po_number": po.po_number,
                "status": po.status.value,
                "completion": po.receipt_completion_percentage,
                "actor_id": actor_id,
            },
        )

    return get_purchase_order(db, po_id)


def complete_purchase_order(db: Session, po_id: int, *, actor_id: int) -> PurchaseOrder:
    with atomic(db):
        po = _lock_po(db, po_id)
        ensure_transition(po, POStatus.completed)

        po.status = POStatus.completed
        po.completed_at = _now()
        po.completed_by = actor_id

        logger.info(
            "Purchase order completed",
            extra={"po_id": po.id, "po_number": po.po_number, "actor_id": actor_id},
        )

    return get_purchase_order(db, po_id)


def cancel_purchase_order(
    db: Session,
    po_id: int,
    *,
    actor_id: int,
    reason: str | None = None,
) -> PurchaseOrder:
    """
    Annulation (DRAFT, SUBMITTED, APPROVED, PROCESSING).

    Les réservations fournisseur sont libérées exactement. Les paiements déjà
    enregistrés ne sont PAS remboursés ici (process manuel).
    """
    with atomic(db):
        po = get_purchase_order(db, po_id)
        ensure_transition(po, POStatus.cancelled)

        items = _load_items(db, po.id)
        snapshot = _reservation_snapshot(po, items)
        reserved_items = [item for item in items if item.source_location_id is not None]
        locations = {}
        if po.status in RESERVED_PO_STATUSES:
            locations = inventory.lock_locations_by_id(db, [item.source_location_id for item in reserved_items])

        po = _lock_po(db, po.id)
        ensure_transition(po, POStatus.cancelled)
        items = _load_items(db, po.id)
        if _reservation_snapshot(po, items) != snapshot:
            # soumis (ou modifié) entre la lecture et le verrou : les
            # emplacements verrouillés ne correspondent plus aux réservations
            raise InvalidStateTransition(
                f"Purchase order {po.po_number} was modified during cancellation",
                {"po_id": po.id, "status": po.status.value},
            )
        reserved_items = [item for item in items if item.source_location_id is not None]

        if po.status in RESERVED_PO_STATUSES:
            for item in reserved_items:
                inventory.release_reservation(
                    db,
                    locations[item.source_location_id],
                    quantity=item.quantity,
                    actor_id=actor_id,
                    reference_number=po.po_number,
                    purchase_order_id=po.id,
                    reason=f"Reservation released - PO #{po.po_number} cancelled",
                )

        po.status = POStatus.cancelled
        po.payment_status = POPaymentStatus.cancelled
        if reason:
            po.supplier_notes = reason
        po.cancelled_at = _now()
        po.cancelled_by = actor_id
        db.flush()

        logger.info(
            "Purchase order cancelled",
            extra={"po_id": po.id, "po_number": po.po_number, "reason": reason, "actor_id": actor_id},
        )

    return get_purchase_order(db, po_id)
