import os
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockflow.app.db.base import Base
from stockflow.app.db.models import models_v1  # noqa: F401  (tables)
from stockflow.app.db.models.core_types import ConnectionStatus, LocationRef
from stockflow.app.db.models.models_v1 import (
    ProductVariant,
    Shop,
    SupplierCatalogItem,
    SupplierConnection,
    SupplierProfile,
    Tenant,
    User,
)
from stockflow.app.schemas.purchase_order import POCreate, POItemCreate
from stockflow.services import inventory, procurement

# SQLite en mémoire par défaut ; TEST_DATABASE_URL pour tourner sur Postgres
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")


@pytest.fixture(scope="function")
def engine():
    kwargs = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    engine = create_engine(TEST_DATABASE_URL, **kwargs)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Session:
    """
    Session DB isolée par test.

    Les services commitent eux-mêmes : le schéma est recréé pour chaque test.
    """
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def world(db_session):
    """
    Deux tenants connectés :
    - supplier : 1 shop (entrepôt), 2 variants au catalogue (base 10.00 / 4.00)
    - buyer : 1 shop
    Connexion ACTIVE, sans limite de crédit, conditions "Net 30".
    """
    db = db_session

    supplier = Tenant(name="TEST-SUPPLIER")
    buyer = Tenant(name="TEST-BUYER")
    db.add_all([supplier, buyer])
    db.flush()

    supplier_shop = Shop(tenant_id=supplier.id, name="TEST-SUP-SHOP")
    buyer_shop = Shop(tenant_id=buyer.id, name="TEST-BUY-SHOP")
    supplier_user = User(tenant_id=supplier.id, name="SUP-ADMIN")
    buyer_user = User(tenant_id=buyer.id, name="BUY-ADMIN")
    db.add_all([supplier_shop, buyer_shop, supplier_user, buyer_user])

    widget = ProductVariant(sku="TEST-WIDGET", name="Widget")
    gadget = ProductVariant(sku="TEST-GADGET", name="Gadget")
    db.add_all([widget, gadget])
    db.flush()

    db.add(SupplierProfile(tenant_id=supplier.id, payment_terms="Net 30"))
    connection = SupplierConnection(
        buyer_tenant_id=buyer.id,
        supplier_tenant_id=supplier.id,
        status=ConnectionStatus.active,
        credit_limit=None,
    )
    widget_item = SupplierCatalogItem(
        supplier_tenant_id=supplier.id,
        product_variant_id=widget.id,
        base_price=Decimal("10.00"),
        minimum_order_quantity=1,
    )
    gadget_item = SupplierCatalogItem(
        supplier_tenant_id=supplier.id,
        product_variant_id=gadget.id,
        base_price=Decimal("4.00"),
        minimum_order_quantity=1,
    )
    db.add_all([connection, widget_item, gadget_item])
    db.commit()

    return SimpleNamespace(
        supplier_id=supplier.id,
        buyer_id=buyer.id,
        supplier_shop_id=supplier_shop.id,
        buyer_shop_id=buyer_shop.id,
        supplier_user_id=supplier_user.id,
        buyer_user_id=buyer_user.id,
        widget_id=widget.id,
        gadget_id=gadget.id,
        widget_item_id=widget_item.id,
        gadget_item_id=gadget_item.id,
        connection_id=connection.id,
        supplier_shop=LocationRef.shop(supplier_shop.id),
        buyer_shop=LocationRef.shop(buyer_shop.id),
    )


@pytest.fixture
def stock_supplier(db_session, world):
    """Ajoute du stock chez le supplier : stock_supplier(variant_id, qty)."""

    def _stock(variant_id: int, quantity: int):
        return inventory.record_purchase(
            db_session,
            variant_id=variant_id,
            location=world.supplier_shop,
            quantity=quantity,
            actor_id=world.supplier_user_id,
        )

    return _stock


@pytest.fixture
def make_po(db_session, world):
    """Crée un PO DRAFT : make_po([(catalog_item_id, qty), ...], **po_fields)."""

    def _make(lines, **fields):
        payload = POCreate(
            shop_id=world.buyer_shop_id,
            supplier_tenant_id=world.supplier_id,
            items=[POItemCreate(catalog_item_id=item_id, quantity=qty) for item_id, qty in lines],
            **fields,
        )
        return procurement.create_purchase_order(
            db_session,
            buyer_tenant_id=world.buyer_id,
            payload=payload,
            actor_id=world.buyer_user_id,
        )

    return _make


@pytest.fixture
def advance_to_processing(db_session, world):
    """DRAFT -> SUBMITTED -> APPROVED -> PROCESSING."""

    def _advance(po_id: int):
        procurement.submit_purchase_order(db_session, po_id, actor_id=world.buyer_user_id)
        procurement.approve_purchase_order(db_session, po_id, actor_id=world.supplier_user_id)
        return procurement.start_processing_purchase_order(db_session, po_id, actor_id=world.supplier_user_id)

    return _advance
