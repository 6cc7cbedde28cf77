from datetime import date, timedelta
from decimal import Decimal

import pydantic
import pytest

from stockflow.app.core.errors import InvalidStateTransition, NotFound
from stockflow.app.core.errors import ValidationError as StockflowValidationError
from stockflow.app.db.models.core_types import PaymentMethod, POPaymentStatus
from stockflow.app.db.models.models_v1 import PurchaseOrder
from stockflow.app.schemas.purchase_order import PaymentCreate
from stockflow.services import payments, procurement


def _pay(db, world, po_id, amount, **fields):
    return payments.record_payment(
        db,
        po_id,
        PaymentCreate(amount=Decimal(amount), payment_method=PaymentMethod.cash, **fields),
        actor_id=world.buyer_user_id,
    )


@pytest.mark.parametrize(
    "paid, due_in_days, expected",
    [
        ("0", 10, POPaymentStatus.pending),
        ("40", 10, POPaymentStatus.partial),
        ("100", 10, POPaymentStatus.paid),
        ("150", 10, POPaymentStatus.paid),
        ("0", -1, POPaymentStatus.overdue),
        ("40", -1, POPaymentStatus.overdue),
        ("100", -1, POPaymentStatus.paid),
    ],
)
def test_derive_payment_status(paid, due_in_days, expected):
    today = date(2026, 3, 1)
    status = payments.derive_payment_status(
        total_amount=Decimal("100"),
        paid_amount=Decimal(paid),
        due_date=today + timedelta(days=due_in_days),
        today=today,
    )
    assert status == expected


def test_partial_then_full_payment(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 10)])  # 100.00

    first = _pay(db_session, world, po.id, "40", reference_number="VIR-001", payment_date=date(2026, 2, 1))
    po = procurement.get_purchase_order(db_session, po.id)
    assert first.recorded_by == world.buyer_user_id
    assert po.payment_status == POPaymentStatus.partial
    assert po.paid_amount == Decimal("40.00")
    assert payments.outstanding_balance(db_session, po.id) == Decimal("60.00")

    _pay(db_session, world, po.id, "60", payment_date=date(2026, 2, 10))
    po = procurement.get_purchase_order(db_session, po.id)
    assert po.payment_status == POPaymentStatus.paid
    assert po.paid_amount == Decimal("100.00")
    assert po.payment_date == date(2026, 2, 10)
    assert payments.outstanding_balance(db_session, po.id) == Decimal("0.00")
    assert [p.amount for p in po.payments] == [Decimal("40.00"), Decimal("60.00")]


def test_paid_order_rejects_further_payments(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 1)])
    _pay(db_session, world, po.id, "10")

    with pytest.raises(InvalidStateTransition):
        _pay(db_session, world, po.id, "1")
    assert len(procurement.get_purchase_order(db_session, po.id).payments) == 1


def test_overpayment_marks_paid(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 1)])

    _pay(db_session, world, po.id, "15")

    po = procurement.get_purchase_order(db_session, po.id)
    assert po.payment_status == POPaymentStatus.paid
    assert payments.outstanding_balance(db_session, po.id) == Decimal("-5.00")


def test_cancelled_order_rejects_payments(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 1)])
    procurement.cancel_purchase_order(db_session, po.id, actor_id=world.buyer_user_id)

    with pytest.raises(InvalidStateTransition):
        _pay(db_session, world, po.id, "5")
    assert procurement.get_purchase_order(db_session, po.id).payment_status == POPaymentStatus.cancelled


def test_overdue_order_still_accepts_payments(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 10)])
    row = db_session.get(PurchaseOrder, po.id)
    row.payment_due_date = date.today() - timedelta(days=3)
    db_session.commit()

    _pay(db_session, world, po.id, "30")
    assert procurement.get_purchase_order(db_session, po.id).payment_status == POPaymentStatus.overdue

    _pay(db_session, world, po.id, "70")
    assert procurement.get_purchase_order(db_session, po.id).payment_status == POPaymentStatus.paid


def test_payment_amount_must_be_positive():
    with pytest.raises(pydantic.ValidationError):
        PaymentCreate(amount=Decimal("0"), payment_method=PaymentMethod.cash)


def test_payment_unknown_order(db_session, world):
    with pytest.raises(NotFound):
        _pay(db_session, world, 987654, "5")


def test_service_rejects_non_positive_amount_even_without_schema_validation(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 1)])
    payload = PaymentCreate.model_construct(amount=Decimal("0"), payment_method=PaymentMethod.cash)

    with pytest.raises(StockflowValidationError):
        payments.record_payment(db_session, po.id, payload, actor_id=world.buyer_user_id)
