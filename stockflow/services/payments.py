from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.app.core.errors import InvalidStateTransition, NotFound, ValidationError
from stockflow.app.db.models.core_types import POPaymentStatus
from stockflow.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderPayment
from stockflow.app.db.transaction import atomic
from stockflow.app.schemas.purchase_order import PaymentCreate
from stockflow.services.catalog import money
from stockflow.services.credit import payments_by_order

logger = logging.getLogger(__name__)


def payments_total(db: Session, po_id: int) -> Decimal:
    return money(payments_by_order(db, [po_id])[po_id])


def outstanding_balance(db: Session, po_id: int) -> Decimal:
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFound(f"Purchase order {po_id} not found", {"po_id": po_id})
    return money(Decimal(po.total_amount) - payments_total(db, po_id))


def derive_payment_status(
    *,
    total_amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    today: date | None = None,
) -> POPaymentStatus:
    """
    Statut de paiement dérivé du ledger.

    Priorité : PAID > OVERDUE > PARTIAL > PENDING
    (CANCELLED n'est jamais dérivé : il est forcé par l'annulation du PO)
    """
    today = today or date.today()
    total = Decimal(total_amount)
    paid = Decimal(paid_amount)

    if total > 0 and paid >= total:
        return POPaymentStatus.paid
    if due_date is not None and today > due_date:
        return POPaymentStatus.overdue
    if paid > 0:
        return POPaymentStatus.partial
    return POPaymentStatus.pending


def refresh_payment_status(db: Session, po: PurchaseOrder, *, today: date | None = None) -> POPaymentStatus:
    """Recalcule paid_amount / payment_status (cache sur la ligne PO)."""
    if po.payment_status == POPaymentStatus.cancelled:
        return po.payment_status

    paid = payments_total(db, po.id)
    po.paid_amount = paid
    po.payment_status = derive_payment_status(
        total_amount=po.total_amount,
        paid_amount=paid,
        due_date=po.payment_due_date,
        today=today,
    )
    if po.payment_status != POPaymentStatus.paid:
        # total remonté après un ajout d'article : le PO n'est plus soldé
        po.payment_date = None
    elif po.payment_date is None:
        po.payment_date = db.execute(
            select(func.max(PurchaseOrderPayment.payment_date)).where(PurchaseOrderPayment.purchase_order_id == po.id)
        ).scalar_one()
    db.flush()
    return po.payment_status


def record_payment(
    db: Session,
    po_id: int,
    payload: PaymentCreate,
    *,
    actor_id: int,
) -> PurchaseOrderPayment:
    if payload.amount <= 0:
        raise ValidationError("Payment amount must be greater than zero", {"amount": str(payload.amount)})

    with atomic(db):
        po = db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not po:
            raise NotFound(f"Purchase order {po_id} not found", {"po_id": po_id})

        # le cache peut être en retard : on re-dérive avant de décider
        current = refresh_payment_status(db, po)
        if not current.can_record_payment:
            raise InvalidStateTransition(
                f"Cannot record payment for purchase order {po.po_number} (payment status {current.value})",
                {"po_id": po.id, "payment_status": current.value},
            )

        payment = PurchaseOrderPayment(
            purchase_order_id=po.id,
            amount=money(payload.amount),
            payment_date=payload.payment_date or date.today(),
            payment_method=payload.payment_method,
            reference_number=payload.reference_number,
            notes=payload.notes,
            recorded_by=actor_id,
        )
        db.add(payment)
        db.flush()

        refresh_payment_status(db, po)

        logger.info(
            "Payment recorded for purchase order",
            extra={
                "po_id": po.id,
                "payment_id": payment.id,
                "amount": str(payment.amount),
                "payment_status": po.payment_status.value,
                "actor_id": actor_id,
            },
        )

    return payment
