"""
Accès aux données catalogue/prix (tables 'products', 'product_prices', 'warranty_policies').
"""
from typing import Any, Dict, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import CatalogError

logger = logging.getLogger(__name__)

# module storefront.pricing.repository
def _normalize_variant(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Les variantes sont stockées en JSON dans products.variants (clés camelCase côté front)."""
    return {
        "id": str(raw.get("id") or ""),
        "length": raw.get("length"),
        "price": raw.get("price"),
        "stock_status": raw.get("stock_status") or raw.get("stockStatus") or "in_stock",
        "stripe_price_id": raw.get("stripe_price_id") or raw.get("stripePriceId"),
    }

def get_product(product_id: int) -> Optional[Dict[str, Any]]:
    """
    Récupère une ligne produit.
    - Retourne None si introuvable.
    - Soulève CatalogError si Supabase est injoignable (l'appelant ne peut rien ajouter au panier).
    """
    try:
        res = (
            supabase_client.get_supabase()
            .table("products")
            .select("*")
            .eq("id", product_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("pricing.repository.get_product failed product_id=%s", product_id)
        raise CatalogError(f"Catalogue indisponible: {e}")
    rows = res.data or []
    return rows[0] if rows else None

def get_variant(product_id: int, variant_id: str) -> Optional[Dict[str, Any]]:
    product = get_product(product_id)
    if not product:
        return None
    for raw in product.get("variants") or []:
        if str(raw.get("id")) == str(variant_id):
            return _normalize_variant(raw)
    return None

def get_active_override(product_id: int, variant_id: str, currency: str) -> Optional[Any]:
    """
    Prix administrateur actif pour (produit, variante, devise), sinon None.
    En cas d'erreur: journalise et retourne None (on retombe sur le prix catalogue).
    """
    try:
        res = (
            supabase_client.get_supabase()
            .table("product_prices")
            .select("custom_price, updated_at")
            .eq("product_id", product_id)
            .eq("variant_id", variant_id)
            .eq("currency", currency)
            .eq("is_active", True)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0].get("custom_price") if rows else None
    except Exception:
        logger.exception("pricing.repository.get_active_override failed product_id=%s variant_id=%s", product_id, variant_id)
        return None

def get_warranty_policies(product_id: int, variant_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Politiques de garantie d'un produit, triées par durée.
    - variant_id fourni: garde les politiques de cette variante et les politiques génériques (variant_id NULL);
      pour une même durée, la politique propre à la variante l'emporte.
    - variant_id None: toutes les politiques du produit.
    """
    try:
        res = (
            supabase_client.get_supabase()
            .table("warranty_policies")
            .select("*")
            .eq("product_id", product_id)
            .order("months", desc=False)
            .execute()
        )
        rows = res.data or []
    except Exception:
        logger.exception("pricing.repository.get_warranty_policies failed product_id=%s", product_id)
        return []

    if variant_id is None:
        return rows

    by_months: Dict[Any, Dict[str, Any]] = {}
    for row in rows:
        row_variant = row.get("variant_id")
        if row_variant not in (None, "", variant_id):
            continue
        current = by_months.get(row.get("months"))
        if current is None or (row_variant == variant_id and current.get("variant_id") != variant_id):
            by_months[row.get("months")] = row
    return sorted(by_months.values(), key=lambda p: p.get("months") or 0)

def get_warranty_policy(product_id: int, variant_id: str, months: int) -> Optional[Dict[str, Any]]:
    for policy in get_warranty_policies(product_id, variant_id):
        if policy.get("months") == months:
            return policy
    return None

def get_default_warranty_policy(product_id: int, variant_id: str) -> Optional[Dict[str, Any]]:
    defaults = [p for p in get_warranty_policies(product_id, variant_id) if p.get("is_default")]
    if len(defaults) > 1:
        logger.warning(
            "pricing anomaly: %s default warranty policies for product_id=%s variant_id=%s, using the shortest term",
            len(defaults), product_id, variant_id,
        )
    return defaults[0] if defaults else None

def upsert_price_override(product_id: int, variant_id: str, currency: str, price: float, is_active: bool = True) -> Optional[Dict[str, Any]]:
    """Crée/active (ou désactive) le prix administrateur d'une variante. Retourne la ligne ou None."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("product_prices")
            .upsert(
                {
                    "product_id": product_id,
                    "variant_id": variant_id,
                    "currency": currency,
                    "custom_price": price,
                    "is_active": is_active,
                },
                on_conflict="product_id,variant_id,currency",
            )
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("pricing.repository.upsert_price_override failed product_id=%s variant_id=%s", product_id, variant_id)
        return None
