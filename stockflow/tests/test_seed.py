from sqlalchemy import func, select

from stockflow.app.db.models.core_types import LocationRef, MovementType
from stockflow.app.db.models.models_v1 import ProductVariant, StockMovement, SupplierCatalogItem
from stockflow.app.db.seed import DEMO_VARIANTS, run_seed
from stockflow.services import inventory


def test_seed_is_idempotent(db_session):
    """
    GIVEN une base vide
    WHEN run_seed deux fois
    THEN mêmes ids, stock fournisseur initial posé une seule fois
    """
    first = run_seed(db_session)
    second = run_seed(db_session)

    assert first == second
    assert db_session.scalar(select(func.count()).select_from(ProductVariant)) == len(DEMO_VARIANTS)
    assert db_session.scalar(select(func.count()).select_from(SupplierCatalogItem)) == len(DEMO_VARIANTS)
    assert db_session.scalar(
        select(func.count()).select_from(StockMovement).where(StockMovement.type == MovementType.purchase)
    ) == len(DEMO_VARIANTS)

    supplier_shop = LocationRef.shop(first["supplier_shop_id"])
    for sku, _name, _price, initial_stock in DEMO_VARIANTS:
        variant = db_session.scalar(select(ProductVariant).where(ProductVariant.sku == sku))
        loc = inventory.get_stock_level(db_session, variant_id=variant.id, location=supplier_shop)
        assert loc.quantity == initial_stock
        assert loc.reserved_quantity == 0
