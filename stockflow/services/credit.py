"""
Credit exposure buyer -> supplier.

Exposition = SUM(max(0, total_amount - paiements)) sur les PO de la paire
    - status != CANCELLED
    - non soldés d'après le ledger des paiements (paiements >= total -> exclu)

Le cache payment_status n'est JAMAIS lu ici : seul le ledger fait foi.

Les PO concernés sont verrouillés (FOR UPDATE) pendant la lecture : deux
ajouts d'articles concurrents pour la même paire se sérialisent au lieu de
passer chacun le contrôle et de dépasser la limite ensemble.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.app.core.errors import CreditLimitExceeded
from stockflow.app.db.models.core_types import POStatus
from stockflow.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderPayment, SupplierConnection
from stockflow.app.schemas.purchase_order import CreditExposureRead
from stockflow.services.catalog import get_connection, money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def lock_outstanding_orders(db: Session, *, buyer_tenant_id: int, supplier_tenant_id: int) -> list[PurchaseOrder]:
    """Tous les PO non annulés de la paire, verrouillés par id (soldés ou non)."""
    db.flush()
    return list(
        db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.buyer_tenant_id == buyer_tenant_id)
            .where(PurchaseOrder.supplier_tenant_id == supplier_tenant_id)
            .where(PurchaseOrder.status != POStatus.cancelled)
            .order_by(PurchaseOrder.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )


def payments_by_order(db: Session, po_ids: Iterable[int]) -> dict[int, Decimal]:
    ids = list(po_ids)
    totals: dict[int, Decimal] = {po_id: Decimal("0") for po_id in ids}
    if not ids:
        return totals

    rows = db.execute(
        select(PurchaseOrderPayment.purchase_order_id, PurchaseOrderPayment.amount)
        .where(PurchaseOrderPayment.purchase_order_id.in_(ids))
    ).all()
    for po_id, amount in rows:
        totals[int(po_id)] += Decimal(amount)
    return totals


def order_exposure(total_amount: Decimal, paid: Decimal) -> Decimal:
    # surpaiement d'un PO : 0, jamais une déduction sur les autres PO
    return max(Decimal(total_amount) - Decimal(paid), ZERO)


def calculate_outstanding_amount(
    db: Session,
    *,
    buyer_tenant_id: int,
    supplier_tenant_id: int,
    exclude_po_id: int | None = None,
) -> Decimal:
    """
    Montant restant dû par le buyer au supplier.

    `exclude_po_id` : le PO en cours de construction est verrouillé comme les
    autres mais pas compté (l'appelant ajoute sa propre exposition).
    """
    orders = lock_outstanding_orders(db, buyer_tenant_id=buyer_tenant_id, supplier_tenant_id=supplier_tenant_id)
    counted = [po for po in orders if po.id != exclude_po_id]
    paid = payments_by_order(db, [po.id for po in counted])

    outstanding = sum((order_exposure(po.total_amount, paid[po.id]) for po in counted), ZERO)
    return money(outstanding)


def ensure_within_credit_limit(
    db: Session,
    *,
    po: PurchaseOrder,
    connection: SupplierConnection,
    additional_amount: Decimal,
) -> None:
    """Lève CreditLimitExceeded si le PO (total courant + ajout) dépasse la limite."""
    if connection.credit_limit is None:
        return

    others = calculate_outstanding_amount(
        db,
        buyer_tenant_id=po.buyer_tenant_id,
        supplier_tenant_id=po.supplier_tenant_id,
        exclude_po_id=po.id,
    )
    already_paid = payments_by_order(db, [po.id])[po.id]
    projected = others + order_exposure(Decimal(po.total_amount) + Decimal(additional_amount), already_paid)
    limit = Decimal(connection.credit_limit)

    if projected > limit:
        logger.info(
            "Credit limit check rejected",
            extra={"po_id": po.id, "projected": str(projected), "credit_limit": str(limit)},
        )
        raise CreditLimitExceeded(
            f"Credit limit exceeded: outstanding would be {money(projected)} (limit {money(limit)})",
            {
                "po_id": po.id,
                "credit_limit": str(money(limit)),
                "outstanding_other_orders": str(others),
                "projected": str(money(projected)),
            },
        )


def get_credit_exposure(db: Session, *, buyer_tenant_id: int, supplier_tenant_id: int) -> CreditExposureRead:
    connection = get_connection(db, buyer_tenant_id=buyer_tenant_id, supplier_tenant_id=supplier_tenant_id)
    outstanding = calculate_outstanding_amount(
        db,
        buyer_tenant_id=buyer_tenant_id,
        supplier_tenant_id=supplier_tenant_id,
    )
    limit = money(connection.credit_limit) if connection and connection.credit_limit is not None else None
    return CreditExposureRead(
        buyer_tenant_id=buyer_tenant_id,
        supplier_tenant_id=supplier_tenant_id,
        credit_limit=limit,
        outstanding_amount=outstanding,
        available_credit=max(limit - outstanding, ZERO) if limit is not None else None,
    )
