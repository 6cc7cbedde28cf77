from decimal import Decimal

import pytest

from stockflow.app.core.errors import CreditLimitExceeded
from stockflow.app.db.models.core_types import PaymentMethod, POPaymentStatus
from stockflow.app.db.models.models_v1 import SupplierConnection
from stockflow.app.schemas.purchase_order import PaymentCreate, POItemCreate, POItemUpdate
from stockflow.services import credit, payments, procurement


@pytest.fixture
def credit_limit(db_session, world):
    def _set(amount):
        connection = db_session.get(SupplierConnection, world.connection_id)
        connection.credit_limit = Decimal(amount) if amount is not None else None
        db_session.commit()

    return _set


def _add_widgets(db, world, po_id, quantity):
    # widget : 10.00 l'unité
    return procurement.add_item(
        db, po_id, POItemCreate(catalog_item_id=world.widget_item_id, quantity=quantity), actor_id=world.buyer_user_id
    )


def _pay(db, world, po_id, amount):
    return payments.record_payment(
        db,
        po_id,
        PaymentCreate(amount=Decimal(amount), payment_method=PaymentMethod.bank_transfer),
        actor_id=world.buyer_user_id,
    )


def test_limit_is_inclusive(db_session, world, make_po, credit_limit):
    """
    GIVEN credit_limit = 1000, aucune dette
    THEN un article à 1100 est refusé, un total de 1000 pile passe
    """
    credit_limit("1000")
    po = make_po([])

    with pytest.raises(CreditLimitExceeded):
        _add_widgets(db_session, world, po.id, 110)
    assert procurement.get_purchase_order(db_session, po.id).items == []

    _add_widgets(db_session, world, po.id, 60)
    _add_widgets(db_session, world, po.id, 40)
    assert procurement.get_purchase_order(db_session, po.id).total_amount == Decimal("1000.00")

    with pytest.raises(CreditLimitExceeded):
        procurement.add_item(
            db_session,
            po.id,
            POItemCreate(catalog_item_id=world.gadget_item_id, quantity=1),
            actor_id=world.buyer_user_id,
        )


def test_limit_spans_open_orders_of_the_pair(db_session, world, make_po, credit_limit):
    credit_limit("1000")
    make_po([(world.widget_item_id, 60)])
    second = make_po([])

    with pytest.raises(CreditLimitExceeded) as exc_info:
        _add_widgets(db_session, world, second.id, 50)
    assert exc_info.value.details["outstanding_other_orders"] == "600.00"

    _add_widgets(db_session, world, second.id, 40)
    exposure = credit.get_credit_exposure(db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id)
    assert exposure.outstanding_amount == Decimal("1000.00")
    assert exposure.available_credit == Decimal("0.00")


def test_create_with_items_over_limit_persists_nothing(db_session, world, make_po, credit_limit):
    credit_limit("1000")

    with pytest.raises(CreditLimitExceeded):
        make_po([(world.widget_item_id, 90), (world.gadget_item_id, 30)])

    assert procurement.list_purchase_orders(db_session, buyer_tenant_id=world.buyer_id) == []


def test_fees_count_toward_limit(db_session, world, make_po, credit_limit):
    credit_limit("1000")

    with pytest.raises(CreditLimitExceeded):
        make_po([(world.widget_item_id, 96)], shipping_amount=Decimal("50.00"))

    po = make_po([(world.widget_item_id, 95)], shipping_amount=Decimal("50.00"))
    assert po.total_amount == Decimal("1000.00")


def test_quantity_increase_is_checked(db_session, world, make_po, credit_limit):
    credit_limit("500")
    po = make_po([(world.widget_item_id, 40)])
    item_id = po.items[0].id

    with pytest.raises(CreditLimitExceeded):
        procurement.update_item(db_session, item_id, POItemUpdate(quantity=51), actor_id=world.buyer_user_id)

    item = procurement.update_item(db_session, item_id, POItemUpdate(quantity=50), actor_id=world.buyer_user_id)
    assert item.total_price == Decimal("500.00")


def test_payments_free_up_credit(db_session, world, make_po, credit_limit):
    credit_limit("1000")
    first = make_po([(world.widget_item_id, 100)])
    _pay(db_session, world, first.id, "300")

    second = make_po([])
    _add_widgets(db_session, world, second.id, 30)
    with pytest.raises(CreditLimitExceeded):
        _add_widgets(db_session, world, second.id, 1)


def test_cancelled_and_paid_orders_are_excluded(db_session, world, make_po, credit_limit):
    credit_limit("1000")
    cancelled = make_po([(world.widget_item_id, 100)])
    procurement.cancel_purchase_order(db_session, cancelled.id, actor_id=world.buyer_user_id)

    paid = make_po([(world.widget_item_id, 50)])
    _pay(db_session, world, paid.id, "500")
    assert procurement.get_purchase_order(db_session, paid.id).payment_status == POPaymentStatus.paid

    assert credit.calculate_outstanding_amount(
        db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id
    ) == Decimal("0.00")
    make_po([(world.widget_item_id, 100)])


def test_exposure_report(db_session, world, make_po, credit_limit):
    credit_limit("1000")
    po = make_po([(world.widget_item_id, 30)])
    _pay(db_session, world, po.id, "100")

    exposure = credit.get_credit_exposure(db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id)

    assert exposure.credit_limit == Decimal("1000.00")
    assert exposure.outstanding_amount == Decimal("200.00")
    assert exposure.available_credit == Decimal("800.00")


def test_no_limit_means_unlimited(db_session, world, make_po):
    po = make_po([(world.widget_item_id, 1000)])
    assert po.total_amount == Decimal("10000.00")

    exposure = credit.get_credit_exposure(db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id)
    assert exposure.credit_limit is None
    assert exposure.available_credit is None
    assert exposure.outstanding_amount == Decimal("10000.00")


def test_overpaid_order_does_not_offset_other_debt(db_session, world, make_po, credit_limit):
    """
    GIVEN PO A = 300 + 200, 400 payés, puis l'article à 200 retiré (A surpayé de 100)
    THEN A est PAID, l'exposition vaut 0 et le surplus ne libère pas de crédit pour B
    """
    credit_limit("1000")
    first = make_po([(world.widget_item_id, 30), (world.gadget_item_id, 50)])
    assert first.total_amount == Decimal("500.00")
    _pay(db_session, world, first.id, "400")

    gadget_line = next(i for i in first.items if i.catalog_item_id == world.gadget_item_id)
    first = procurement.remove_item(db_session, gadget_line.id, actor_id=world.buyer_user_id)
    assert first.total_amount == Decimal("300.00")
    assert first.payment_status == POPaymentStatus.paid
    assert first.payment_date is not None

    assert credit.calculate_outstanding_amount(
        db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id
    ) == Decimal("0.00")

    second = make_po([])
    with pytest.raises(CreditLimitExceeded):
        _add_widgets(db_session, world, second.id, 101)
    _add_widgets(db_session, world, second.id, 100)


def test_paid_order_reopened_by_new_item_counts_again(db_session, world, make_po, credit_limit):
    credit_limit("1000")
    po = make_po([(world.widget_item_id, 20)])
    _pay(db_session, world, po.id, "200")
    assert procurement.get_purchase_order(db_session, po.id).payment_status == POPaymentStatus.paid

    _add_widgets(db_session, world, po.id, 15)

    po = procurement.get_purchase_order(db_session, po.id)
    assert po.payment_status == POPaymentStatus.partial
    assert po.payment_date is None
    assert credit.calculate_outstanding_amount(
        db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id
    ) == Decimal("150.00")
