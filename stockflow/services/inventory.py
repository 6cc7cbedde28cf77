"""
Inventory ledger + stock movement recorder.

Source de vérité des quantités par emplacement :
    inventory_locations.quantity / reserved_quantity
et journal append-only :
    stock_movements (delta signé + snapshots before/after)

Règles :
- toute mutation se fait sous verrou SQL (FOR UPDATE) sur la ligne
  inventory_locations concernée, dans UNE transaction
- verrous pris par id croissant (pas de deadlock entre opérations concurrentes)
- 0 <= reserved_quantity <= quantity, toujours
- une sortie ne peut pas consommer du stock réservé
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from stockflow.app.core.errors import InsufficientStock, NotFound, StockflowError, ValidationError
from stockflow.app.db.models.core_types import (
    MANUAL_MOVEMENTS,
    REFERENCE_PREFIXES,
    RESERVATION_MOVEMENTS,
    LocationKind,
    LocationRef,
    MovementType,
)
from stockflow.app.db.models.models_v1 import InventoryLocation, ProductVariant, Shop, StockMovement
from stockflow.app.db.transaction import atomic

logger = logging.getLogger(__name__)


# ---------- Helpers ----------
def generate_reference_number(movement_type: MovementType) -> str:
    return f"{REFERENCE_PREFIXES[movement_type]}-{uuid.uuid4().hex[:13].upper()}"


def _require_variant(db: Session, variant_id: int) -> ProductVariant:
    variant = db.get(ProductVariant, variant_id)
    if not variant:
        raise NotFound(f"Product variant {variant_id} not found", {"variant_id": variant_id})
    return variant


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", {"quantity": quantity})


def _locked(stmt):
    # populate_existing : on relit la ligne verrouillée, pas la copie en identity map
    return stmt.with_for_update().execution_options(populate_existing=True)


def _new_location(db: Session, variant_id: int, location: LocationRef) -> InventoryLocation:
    loc = InventoryLocation(
        product_variant_id=variant_id,
        location_type=location.kind,
        location_id=location.id,
        quantity=0,
        reserved_quantity=0,
    )
    db.add(loc)
    db.flush()
    return loc


def get_stock_level(db: Session, *, variant_id: int, location: LocationRef) -> InventoryLocation | None:
    """Lecture simple, sans verrou."""
    return db.execute(
        select(InventoryLocation)
        .where(InventoryLocation.product_variant_id == variant_id)
        .where(InventoryLocation.location_type == location.kind)
        .where(InventoryLocation.location_id == location.id)
    ).scalar_one_or_none()


def lock_locations(
    db: Session,
    *,
    variant_id: int,
    refs: Sequence[LocationRef],
) -> dict[LocationRef, InventoryLocation]:
    """
    Verrouille (et crée si absent) les emplacements d'un variant.

    Les lignes existantes sont verrouillées en une requête, par id croissant.
    """
    db.flush()
    wanted = list(dict.fromkeys(refs))
    conditions = [
        and_(InventoryLocation.location_type == ref.kind, InventoryLocation.location_id == ref.id)
        for ref in wanted
    ]
    rows = (
        db.execute(
            _locked(
                select(InventoryLocation)
                .where(InventoryLocation.product_variant_id == variant_id)
                .where(or_(*conditions))
                .order_by(InventoryLocation.id.asc())
            )
        )
        .scalars()
        .all()
    )
    found = {loc.ref: loc for loc in rows}
    for ref in wanted:
        if ref not in found:
            found[ref] = _new_location(db, variant_id, ref)
    return found


def get_or_create_location(db: Session, *, variant_id: int, location: LocationRef) -> InventoryLocation:
    return lock_locations(db, variant_id=variant_id, refs=[location])[location]


def lock_locations_by_id(db: Session, location_ids: Iterable[int]) -> dict[int, InventoryLocation]:
    ids = sorted({int(i) for i in location_ids if i is not None})
    if not ids:
        return {}
    db.flush()
    rows = (
        db.execute(
            _locked(
                select(InventoryLocation)
                .where(InventoryLocation.id.in_(ids))
                .order_by(InventoryLocation.id.asc())
            )
        )
        .scalars()
        .all()
    )
    found = {int(loc.id): loc for loc in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFound("Inventory location not found", {"location_ids": missing})
    return found


def lock_tenant_shop_locations(
    db: Session,
    *,
    tenant_id: int,
    variant_ids: Iterable[int],
) -> list[InventoryLocation]:
    """Tous les emplacements shop d'un tenant pour ces variants, verrouillés par id."""
    variant_ids = sorted({int(v) for v in variant_ids})
    if not variant_ids:
        return []
    db.flush()
    shop_ids = select(Shop.id).where(Shop.tenant_id == tenant_id)
    return list(
        db.execute(
            _locked(
                select(InventoryLocation)
                .where(InventoryLocation.product_variant_id.in_(variant_ids))
                .where(InventoryLocation.location_type == LocationKind.shop)
                .where(InventoryLocation.location_id.in_(shop_ids))
                .order_by(InventoryLocation.id.asc())
            )
        )
        .scalars()
        .all()
    )


def lock_variant_locations_at(
    db: Session,
    *,
    location: LocationRef,
    variant_ids: Iterable[int],
) -> dict[int, InventoryLocation]:
    """Emplacements de plusieurs variants au même endroit (créés si absents)."""
    variant_ids = sorted({int(v) for v in variant_ids})
    if not variant_ids:
        return {}
    db.flush()
    rows = (
        db.execute(
            _locked(
                select(InventoryLocation)
                .where(InventoryLocation.product_variant_id.in_(variant_ids))
                .where(InventoryLocation.location_type == location.kind)
                .where(InventoryLocation.location_id == location.id)
                .order_by(InventoryLocation.id.asc())
            )
        )
        .scalars()
        .all()
    )
    found = {int(loc.product_variant_id): loc for loc in rows}
    for variant_id in variant_ids:
        if variant_id not in found:
            found[variant_id] = _new_location(db, variant_id, location)
    return found


def _apply_movement(
    db: Session,
    location: InventoryLocation,
    *,
    movement_type: MovementType,
    delta: int,
    actor_id: int,
    reference_number: str,
    reason: str | None = None,
    notes: str | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    purchase_order_id: int | None = None,
) -> StockMovement:
    """Applique le delta à l'emplacement (déjà verrouillé) et écrit le mouvement."""
    quantity_before = location.quantity
    location.quantity = quantity_before + delta

    movement = StockMovement(
        product_variant_id=location.product_variant_id,
        inventory_location_id=location.id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        purchase_order_id=purchase_order_id,
        type=movement_type,
        quantity=delta,
        quantity_before=quantity_before,
        quantity_after=location.quantity,
        reference_number=reference_number,
        reason=reason,
        notes=notes,
        created_by=actor_id,
    )
    db.add(movement)
    db.flush()

    logger.info(
        "Stock movement recorded",
        extra={
            "movement_id": movement.id,
            "movement_type": movement_type.value,
            "location_id": location.id,
            "delta": delta,
        },
    )
    return movement


# ---------- Movement recorder ----------
def adjust_stock(
    db: Session,
    *,
    variant_id: int,
    location: LocationRef,
    quantity: int,
    movement_type: MovementType,
    actor_id: int,
    reason: str | None = None,
    notes: str | None = None,
    reference_number: str | None = None,
) -> StockMovement:
    """
    Entrée / sortie manuelle sur un emplacement.

    `quantity` est toujours positive ; le sens vient du type de mouvement.
    """
    logger.info(
        "Stock adjustment started",
        extra={"variant_id": variant_id, "location": location, "quantity": quantity},
    )
    try:
        _require_positive(quantity)
        if movement_type not in MANUAL_MOVEMENTS:
            raise ValidationError(
                f"Movement type {movement_type.value} cannot be used for a stock adjustment",
                {"movement_type": movement_type.value},
            )

        with atomic(db):
            _require_variant(db, variant_id)
            loc = get_or_create_location(db, variant_id=variant_id, location=location)

            if movement_type.is_decrease:
                if loc.available_quantity < quantity:
                    raise InsufficientStock(
                        f"Insufficient stock (available={loc.available_quantity})",
                        {"location_id": loc.id, "available": loc.available_quantity, "requested": quantity},
                    )
                delta = -quantity
            else:
                delta = quantity

            movement = _apply_movement(
                db,
                loc,
                movement_type=movement_type,
                delta=delta,
                actor_id=actor_id,
                reference_number=reference_number or generate_reference_number(movement_type),
                reason=reason,
                notes=notes,
                from_location_id=loc.id if delta < 0 else None,
                to_location_id=loc.id if delta > 0 else None,
            )
    except StockflowError as exc:
        logger.error(
            "Stock adjustment failed",
            extra={"variant_id": variant_id, "location": location, "error": exc.code},
        )
        raise

    return movement


def record_sale(
    db: Session,
    *,
    variant_id: int,
    location: LocationRef,
    quantity: int,
    actor_id: int,
    reference_number: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    return adjust_stock(
        db,
        variant_id=variant_id,
        location=location,
        quantity=quantity,
        movement_type=MovementType.sale,
        actor_id=actor_id,
        notes=notes,
        reference_number=reference_number,
    )


def record_purchase(
    db: Session,
    *,
    variant_id: int,
    location: LocationRef,
    quantity: int,
    actor_id: int,
    reference_number: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    return adjust_stock(
        db,
        variant_id=variant_id,
        location=location,
        quantity=quantity,
        movement_type=MovementType.purchase,
        actor_id=actor_id,
        notes=notes,
        reference_number=reference_number,
    )


def transfer_stock(
    db: Session,
    *,
    variant_id: int,
    from_location: LocationRef,
    to_location: LocationRef,
    quantity: int,
    actor_id: int,
    reason: str | None = None,
    notes: str | None = None,
) -> tuple[StockMovement, StockMovement]:
    """
    Transfert entre deux emplacements : (mouvement sortant, mouvement entrant).

    Les deux jambes partagent le même numéro de référence et sont commitées
    ensemble, ou pas du tout.
    """
    logger.info(
        "Stock transfer started",
        extra={
            "variant_id": variant_id,
            "from_location": from_location,
            "to_location": to_location,
            "quantity": quantity,
        },
    )
    try:
        _require_positive(quantity)
        if from_location == to_location:
            raise ValidationError("from_location and to_location must differ")

        with atomic(db):
            _require_variant(db, variant_id)
            locs = lock_locations(db, variant_id=variant_id, refs=[from_location, to_location])
            src = locs[from_location]
            dst = locs[to_location]

            if src.available_quantity < quantity:
                raise InsufficientStock(
                    f"Insufficient stock at source location (available={src.available_quantity})",
                    {"location_id": src.id, "available": src.available_quantity, "requested": quantity},
                )

            reference = generate_reference_number(MovementType.transfer_out)
            out_movement = _apply_movement(
                db,
                src,
                movement_type=MovementType.transfer_out,
                delta=-quantity,
                actor_id=actor_id,
                reference_number=reference,
                reason=reason,
                notes=notes,
                from_location_id=src.id,
                to_location_id=dst.id,
            )
            in_movement = _apply_movement(
                db,
                dst,
                movement_type=MovementType.transfer_in,
                delta=quantity,
                actor_id=actor_id,
                reference_number=reference,
                reason=reason,
                notes=notes,
                from_location_id=src.id,
                to_location_id=dst.id,
            )
    except StockflowError as exc:
        logger.error(
            "Stock transfer failed",
            extra={"variant_id": variant_id, "from_location": from_location, "error": exc.code},
        )
        raise

    return out_movement, in_movement


def stock_take(
    db: Session,
    *,
    variant_id: int,
    location: LocationRef,
    actual_quantity: int,
    actor_id: int,
    notes: str | None = None,
) -> StockMovement | None:
    """
    Inventaire physique : aligne la quantité sur le comptage.

    Retourne None (aucun mouvement) si le comptage égale le stock enregistré.
    """
    logger.info(
        "Stock take started",
        extra={"variant_id": variant_id, "location": location, "actual_quantity": actual_quantity},
    )
    if actual_quantity < 0:
        raise ValidationError("Counted quantity cannot be negative", {"actual_quantity": actual_quantity})

    try:
        with atomic(db):
            _require_variant(db, variant_id)
            loc = get_or_create_location(db, variant_id=variant_id, location=location)
            difference = actual_quantity - loc.quantity

            if difference == 0:
                logger.info("Stock take completed: no adjustment needed", extra={"location_id": loc.id})
                return None

            if actual_quantity < loc.reserved_quantity:
                raise InsufficientStock(
                    f"Counted quantity is below reserved quantity (reserved={loc.reserved_quantity})",
                    {"location_id": loc.id, "reserved": loc.reserved_quantity, "counted": actual_quantity},
                )

            movement = _apply_movement(
                db,
                loc,
                movement_type=MovementType.stock_take,
                delta=difference,
                actor_id=actor_id,
                reference_number=generate_reference_number(MovementType.stock_take),
                reason="Stock take - surplus found" if difference > 0 else "Stock take - shortage found",
                notes=notes,
                to_location_id=loc.id,
            )
    except StockflowError as exc:
        logger.error(
            "Stock take failed",
            extra={"variant_id": variant_id, "location": location, "error": exc.code},
        )
        raise

    return movement


# ---------- Primitives PO (appelées dans la transaction du cycle de vie PO) ----------
def reserve_stock(
    db: Session,
    location: InventoryLocation,
    *,
    quantity: int,
    actor_id: int,
    reference_number: str,
    purchase_order_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    if location.available_quantity < quantity:
        raise InsufficientStock(
            f"Insufficient available stock (available={location.available_quantity})",
            {"location_id": location.id, "available": location.available_quantity, "requested": quantity},
        )
    location.reserved_quantity += quantity
    return _apply_movement(
        db,
        location,
        movement_type=MovementType.po_reserved,
        delta=0,
        actor_id=actor_id,
        reference_number=reference_number,
        reason=reason,
        from_location_id=location.id,
        purchase_order_id=purchase_order_id,
    )


def _release(location: InventoryLocation, quantity: int, *, purchase_order_id: int | None) -> None:
    # Libération tolérante : bornée à zéro, mais on trace l'incohérence
    if location.reserved_quantity < quantity:
        logger.warning(
            "Reservation release exceeds reserved quantity, clamping to zero",
            extra={
                "location_id": location.id,
                "reserved": location.reserved_quantity,
                "released": quantity,
                "po_id": purchase_order_id,
            },
        )
        location.reserved_quantity = 0
    else:
        location.reserved_quantity -= quantity


def release_reservation(
    db: Session,
    location: InventoryLocation,
    *,
    quantity: int,
    actor_id: int,
    reference_number: str,
    purchase_order_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    _release(location, quantity, purchase_order_id=purchase_order_id)
    return _apply_movement(
        db,
        location,
        movement_type=MovementType.po_reservation_released,
        delta=0,
        actor_id=actor_id,
        reference_number=reference_number,
        reason=reason,
        from_location_id=location.id,
        purchase_order_id=purchase_order_id,
    )


def ship_reserved_stock(
    db: Session,
    location: InventoryLocation,
    *,
    quantity: int,
    actor_id: int,
    reference_number: str,
    purchase_order_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    """Sortie physique d'une quantité réservée : quantity ET reserved baissent."""
    if location.quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock to ship (on_hand={location.quantity})",
            {"location_id": location.id, "on_hand": location.quantity, "requested": quantity},
        )
    _release(location, quantity, purchase_order_id=purchase_order_id)
    return _apply_movement(
        db,
        location,
        movement_type=MovementType.po_shipped,
        delta=-quantity,
        actor_id=actor_id,
        reference_number=reference_number,
        reason=reason,
        from_location_id=location.id,
        purchase_order_id=purchase_order_id,
    )


def receive_stock(
    db: Session,
    location: InventoryLocation,
    *,
    quantity: int,
    actor_id: int,
    reference_number: str,
    purchase_order_id: int | None = None,
    reason: str | None = None,
) -> StockMovement:
    _require_positive(quantity)
    return _apply_movement(
        db,
        location,
        movement_type=MovementType.po_received,
        delta=quantity,
        actor_id=actor_id,
        reference_number=reference_number,
        reason=reason,
        to_location_id=location.id,
        purchase_order_id=purchase_order_id,
    )


# ---------- Ledger queries ----------
def list_movements(
    db: Session,
    *,
    variant_id: int | None = None,
    location_id: int | None = None,
    purchase_order_id: int | None = None,
    movement_type: MovementType | None = None,
    limit: int | None = None,
) -> list[StockMovement]:
    stmt = select(StockMovement).order_by(StockMovement.id.asc())

    if variant_id is not None:
        stmt = stmt.where(StockMovement.product_variant_id == variant_id)
    if location_id is not None:
        stmt = stmt.where(StockMovement.inventory_location_id == location_id)
    if purchase_order_id is not None:
        stmt = stmt.where(StockMovement.purchase_order_id == purchase_order_id)
    if movement_type is not None:
        stmt = stmt.where(StockMovement.type == movement_type)
    if limit is not None:
        stmt = stmt.limit(limit)

    return list(db.execute(stmt).scalars().all())


def reconstruct_quantity(db: Session, location_id: int) -> int:
    """
    Rejoue le ledger d'un emplacement (ordre de création) depuis zéro.

    Les mouvements de réservation (delta 0) sont ignorés.
    """
    quantity = 0
    for movement in list_movements(db, location_id=location_id):
        if movement.type in RESERVATION_MOVEMENTS:
            continue
        quantity += movement.quantity
    return quantity


def ledger_is_consistent(db: Session, location_id: int) -> bool:
    """Chaque quantity_before doit égaler le quantity_after du mouvement précédent."""
    previous_after = 0
    for movement in list_movements(db, location_id=location_id):
        if movement.quantity_before != previous_after:
            return False
        if movement.quantity_after != movement.quantity_before + movement.quantity:
            return False
        previous_after = movement.quantity_after
    return True
