"""
Contrat catalogue fournisseur / connexions buyer-supplier.

Le catalogue lui-même (CRUD produits, tiers de prix) est géré ailleurs ;
ce module ne fait que LIRE : connexion, prix unitaire, MOQ, conditions de
paiement.
"""

from __future__ import annotations

import re
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.app.core.config import settings
from stockflow.app.core.errors import ConfigurationError, NotFound, ValidationError
from stockflow.app.db.models.models_v1 import SupplierCatalogItem, SupplierConnection, SupplierProfile

NET_TERMS_RE = re.compile(r"Net\s*(\d+)", re.IGNORECASE)
CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def get_connection(db: Session, *, buyer_tenant_id: int, supplier_tenant_id: int) -> SupplierConnection | None:
    return db.execute(
        select(SupplierConnection)
        .where(SupplierConnection.buyer_tenant_id == buyer_tenant_id)
        .where(SupplierConnection.supplier_tenant_id == supplier_tenant_id)
    ).scalar_one_or_none()


def require_connection(
    db: Session,
    *,
    buyer_tenant_id: int,
    supplier_tenant_id: int,
    for_ordering: bool = False,
) -> SupplierConnection:
    connection = get_connection(db, buyer_tenant_id=buyer_tenant_id, supplier_tenant_id=supplier_tenant_id)
    details = {"buyer_tenant_id": buyer_tenant_id, "supplier_tenant_id": supplier_tenant_id}
    if connection is None:
        raise ConfigurationError("No connection between buyer and supplier", details)
    if for_ordering and not connection.status.can_order:
        raise ConfigurationError("No active connection with supplier", details)
    return connection


def get_catalog_item(db: Session, catalog_item_id: int, *, supplier_tenant_id: int) -> SupplierCatalogItem:
    item = db.get(SupplierCatalogItem, catalog_item_id)
    if not item or item.supplier_tenant_id != supplier_tenant_id:
        raise NotFound(
            f"Catalog item {catalog_item_id} not found for this supplier",
            {"catalog_item_id": catalog_item_id, "supplier_tenant_id": supplier_tenant_id},
        )
    if not item.is_available:
        raise ValidationError(f"Catalog item {catalog_item_id} is not available", {"catalog_item_id": catalog_item_id})
    return item


def check_minimum_order_quantity(item: SupplierCatalogItem, quantity: int) -> None:
    if quantity < item.minimum_order_quantity:
        raise ValidationError(
            f"Minimum order quantity is {item.minimum_order_quantity}",
            {"catalog_item_id": item.id, "minimum_order_quantity": item.minimum_order_quantity, "quantity": quantity},
        )


def resolve_unit_price(item: SupplierCatalogItem, quantity: int, connection_id: int | None = None) -> Decimal:
    """
    Prix unitaire pour une quantité.

    Priorité :
        1. tier spécifique à la connexion
        2. tier général
        3. base_price
    Dans chaque groupe, le tier au plus grand min_quantity <= quantity gagne.
    """
    eligible = [tier for tier in item.pricing_tiers if tier.min_quantity <= quantity]
    specific = [t for t in eligible if connection_id is not None and t.connection_id == connection_id]
    general = [t for t in eligible if t.connection_id is None]

    for tiers in (specific, general):
        if tiers:
            best = max(tiers, key=lambda t: t.min_quantity)
            return money(best.unit_price)
    return money(item.base_price)


def resolve_payment_terms(db: Session, connection: SupplierConnection) -> str:
    if connection.payment_terms_override:
        return connection.payment_terms_override

    profile = db.execute(
        select(SupplierProfile).where(SupplierProfile.tenant_id == connection.supplier_tenant_id)
    ).scalar_one_or_none()
    if profile and profile.payment_terms:
        return profile.payment_terms
    return f"Net {settings.default_payment_terms_days}"


def payment_due_date(payment_terms: str | None, *, start: date) -> date:
    """'Net 45' -> start + 45 jours ; format inconnu -> délai par défaut."""
    match = NET_TERMS_RE.search(payment_terms or "")
    days = int(match.group(1)) if match else settings.default_payment_terms_days
    return start + timedelta(days=days)
