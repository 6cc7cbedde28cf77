from datetime import date
from decimal import Decimal

import pytest

from stockflow.app.core.config import settings
from stockflow.app.core.errors import ConfigurationError, NotFound, ValidationError
from stockflow.app.db.models.models_v1 import (
    ProductVariant,
    SupplierCatalogItem,
    SupplierConnection,
    SupplierPricingTier,
    SupplierProfile,
    Tenant,
)
from stockflow.app.schemas.purchase_order import POItemCreate
from stockflow.services import catalog, procurement


@pytest.fixture
def tiered_widget(db_session, world):
    """
    widget (base 10.00) :
    - général : >=10 -> 9.00, >=50 -> 8.00
    - négocié pour la connexion : >=20 -> 8.50
    """
    item = db_session.get(SupplierCatalogItem, world.widget_item_id)
    item.pricing_tiers.extend(
        [
            SupplierPricingTier(min_quantity=10, unit_price=Decimal("9.00")),
            SupplierPricingTier(min_quantity=50, unit_price=Decimal("8.00")),
            SupplierPricingTier(min_quantity=20, unit_price=Decimal("8.50"), connection_id=world.connection_id),
        ]
    )
    db_session.commit()
    return db_session.get(SupplierCatalogItem, world.widget_item_id)


@pytest.mark.parametrize(
    "quantity, expected",
    [
        (5, Decimal("10.00")),
        (10, Decimal("9.00")),
        (19, Decimal("9.00")),
        (20, Decimal("8.50")),
        (60, Decimal("8.50")),
    ],
)
def test_connection_tier_beats_general_tier(world, tiered_widget, quantity, expected):
    assert catalog.resolve_unit_price(tiered_widget, quantity, world.connection_id) == expected


def test_general_tiers_without_connection(tiered_widget):
    assert catalog.resolve_unit_price(tiered_widget, 60) == Decimal("8.00")
    assert catalog.resolve_unit_price(tiered_widget, 49) == Decimal("9.00")


def test_add_item_uses_tier_price_unless_explicit(db_session, world, make_po, tiered_widget):
    po = make_po([(world.widget_item_id, 25)])
    assert po.items[0].unit_price == Decimal("8.50")
    assert po.items[0].total_price == Decimal("212.50")

    item = procurement.add_item(
        db_session,
        po.id,
        POItemCreate(catalog_item_id=world.widget_item_id, quantity=2, unit_price=Decimal("7.25")),
        actor_id=world.buyer_user_id,
    )
    assert item.unit_price == Decimal("7.25")
    assert item.total_price == Decimal("14.50")


def test_minimum_order_quantity(db_session, world, make_po):
    item = db_session.get(SupplierCatalogItem, world.gadget_item_id)
    item.minimum_order_quantity = 5
    db_session.commit()
    po = make_po([])

    with pytest.raises(ValidationError):
        procurement.add_item(
            db_session, po.id, POItemCreate(catalog_item_id=world.gadget_item_id, quantity=3), actor_id=world.buyer_user_id
        )
    procurement.add_item(
        db_session, po.id, POItemCreate(catalog_item_id=world.gadget_item_id, quantity=5), actor_id=world.buyer_user_id
    )


def test_unavailable_and_foreign_catalog_items(db_session, world, make_po):
    item = db_session.get(SupplierCatalogItem, world.gadget_item_id)
    item.is_available = False
    other_supplier = Tenant(name="OTHER-SUPPLIER")
    variant = ProductVariant(sku="TEST-OTHER", name="Other")
    db_session.add_all([other_supplier, variant])
    db_session.flush()
    foreign = SupplierCatalogItem(
        supplier_tenant_id=other_supplier.id,
        product_variant_id=variant.id,
        base_price=Decimal("1.00"),
    )
    db_session.add(foreign)
    db_session.commit()
    po = make_po([])

    with pytest.raises(ValidationError):
        procurement.add_item(
            db_session, po.id, POItemCreate(catalog_item_id=world.gadget_item_id, quantity=1), actor_id=world.buyer_user_id
        )
    with pytest.raises(NotFound):
        procurement.add_item(
            db_session, po.id, POItemCreate(catalog_item_id=foreign.id, quantity=1), actor_id=world.buyer_user_id
        )


def test_payment_terms_resolution(db_session, world):
    connection = db_session.get(SupplierConnection, world.connection_id)
    assert catalog.resolve_payment_terms(db_session, connection) == "Net 30"

    connection.payment_terms_override = "Net 45"
    db_session.commit()
    assert catalog.resolve_payment_terms(db_session, connection) == "Net 45"

    connection.payment_terms_override = None
    profile = db_session.query(SupplierProfile).filter_by(tenant_id=world.supplier_id).one()
    db_session.delete(profile)
    db_session.commit()
    assert catalog.resolve_payment_terms(db_session, connection) == f"Net {settings.default_payment_terms_days}"


@pytest.mark.parametrize(
    "terms, days",
    [
        ("Net 45", 45),
        ("net60", 60),
        ("Net 0", 0),
        ("COD", None),
        (None, None),
    ],
)
def test_payment_due_date(terms, days):
    start = date(2026, 1, 1)
    expected_days = settings.default_payment_terms_days if days is None else days

    due = catalog.payment_due_date(terms, start=start)

    assert (due - start).days == expected_days


def test_require_connection(db_session, world):
    assert catalog.require_connection(
        db_session, buyer_tenant_id=world.buyer_id, supplier_tenant_id=world.supplier_id, for_ordering=True
    ).id == world.connection_id

    with pytest.raises(ConfigurationError):
        catalog.require_connection(db_session, buyer_tenant_id=world.supplier_id, supplier_tenant_id=world.buyer_id)
