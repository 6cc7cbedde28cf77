from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.app.db.models.core_types import ConnectionStatus, LocationRef
from stockflow.app.db.models.models_v1 import (
    ProductVariant,
    Shop,
    SupplierCatalogItem,
    SupplierConnection,
    SupplierPricingTier,
    SupplierProfile,
    Tenant,
    User,
)
from stockflow.services.inventory import get_stock_level, record_purchase

DEMO_VARIANTS = [
    # sku, nom, prix de base, stock fournisseur initial
    ("RICE-5KG", "Riz 5kg", Decimal("12.50"), 200),
    ("OIL-1L", "Huile 1L", Decimal("4.20"), 150),
    ("SUGAR-1KG", "Sucre 1kg", Decimal("2.10"), 300),
]


def _get_or_create(db: Session, model, defaults: dict | None = None, **filters):
    obj = db.scalar(select(model).filter_by(**filters))
    if obj:
        return obj
    obj = model(**filters, **(defaults or {}))
    db.add(obj)
    db.flush()
    return obj


def run_seed(db: Session | None = None) -> dict[str, int]:
    """
    Jeu de données de démo : un supplier (grossiste) et un buyer (épicerie)
    connectés, un catalogue avec paliers, du stock chez le supplier.

    Idempotent : relancer ne duplique rien.
    """
    owns_session = db is None
    if owns_session:
        from stockflow.app.db.session import SessionLocal

        db = SessionLocal()
    try:
        # 1) Tenants + shops + users
        supplier = _get_or_create(db, Tenant, name="Grossiste Demo")
        buyer = _get_or_create(db, Tenant, name="Epicerie Demo")
        supplier_shop = _get_or_create(db, Shop, tenant_id=supplier.id, name="Entrepot principal")
        buyer_shop = _get_or_create(db, Shop, tenant_id=buyer.id, name="Boutique centre")
        supplier_user = _get_or_create(db, User, tenant_id=supplier.id, name="ADMIN")
        _get_or_create(db, User, tenant_id=buyer.id, name="ADMIN")

        # 2) Profil fournisseur + connexion active
        _get_or_create(db, SupplierProfile, tenant_id=supplier.id, defaults={"payment_terms": "Net 30"})
        connection = _get_or_create(
            db,
            SupplierConnection,
            buyer_tenant_id=buyer.id,
            supplier_tenant_id=supplier.id,
            defaults={"status": ConnectionStatus.active, "credit_limit": Decimal("5000.00")},
        )

        # 3) Catalogue + paliers + stock initial
        for sku, name, base_price, initial_stock in DEMO_VARIANTS:
            variant = _get_or_create(db, ProductVariant, sku=sku, defaults={"name": name})
            item = _get_or_create(
                db,
                SupplierCatalogItem,
                supplier_tenant_id=supplier.id,
                product_variant_id=variant.id,
                defaults={"base_price": base_price, "minimum_order_quantity": 1},
            )
            if not item.pricing_tiers:
                item.pricing_tiers.append(
                    SupplierPricingTier(min_quantity=10, unit_price=(base_price * Decimal("0.95")).quantize(Decimal("0.01")))
                )
                item.pricing_tiers.append(
                    SupplierPricingTier(
                        min_quantity=50,
                        unit_price=(base_price * Decimal("0.90")).quantize(Decimal("0.01")),
                        connection_id=connection.id,
                    )
                )
            db.commit()

            if get_stock_level(db, variant_id=variant.id, location=LocationRef.shop(supplier_shop.id)) is None:
                record_purchase(
                    db,
                    variant_id=variant.id,
                    location=LocationRef.shop(supplier_shop.id),
                    quantity=initial_stock,
                    actor_id=supplier_user.id,
                    notes="Initial stock (seed)",
                )

        db.commit()
        print(f"SEED OK: supplier={supplier.name}, buyer={buyer.name}, variants={len(DEMO_VARIANTS)}")
        return {
            "supplier_tenant_id": supplier.id,
            "buyer_tenant_id": buyer.id,
            "supplier_shop_id": supplier_shop.id,
            "buyer_shop_id": buyer_shop.id,
            "connection_id": connection.id,
        }
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    from stockflow.app.core.logging import configure_logging

    configure_logging()
    run_seed()
