"""
Cas d'usage 'cart': relie le catalogue (pricing) au panier.
Le prix de la variante copiée dans la ligne est le prix résolu (administrateur > catalogue)
au moment de l'ajout.
"""
from typing import Any, Dict, Optional
import logging

from storefront.config import STORE_CURRENCY
from storefront.errors import VariantNotFoundError
from storefront.pricing import repository as pricing_repo
from storefront.pricing import resolver
from .models import ProductVariant, warranty_from_quote
from .store import CartStore

logger = logging.getLogger(__name__)

def cart_key(cart_id: str) -> str:
    return f"cart:{cart_id}"

def resolve_variant(product_id: int, variant_id: str, currency: str = STORE_CURRENCY) -> ProductVariant:
    raw = pricing_repo.get_variant(product_id, variant_id)
    if not raw:
        raise VariantNotFoundError(f"Variante introuvable: {product_id}/{variant_id}")
    price = resolver.resolve_unit_price(product_id, variant_id, currency)
    return ProductVariant(
        id=raw["id"],
        length=resolver.to_number(raw.get("length")),
        price=price,
        stock_status=raw.get("stock_status") or "in_stock",
        stripe_price_id=raw.get("stripe_price_id"),
        catalog_price=resolver.to_number(raw.get("price")),
    )

def add_product_to_cart(
    store: CartStore,
    *,
    product_id: int,
    variant_id: str,
    warranty_months: Optional[int] = None,
    default_warranty: bool = True,
    currency: str = STORE_CURRENCY,
) -> Dict[str, Any]:
    """
    Ajoute (ou incrémente) une ligne.
    - warranty_months: garantie demandée explicitement (ignorée si aucune politique).
    - default_warranty: sinon, présélectionne la politique par défaut (is_default, puis 24 mois).
    Retourne les totaux du panier.
    """
    product = pricing_repo.get_product(product_id)
    if not product:
        raise VariantNotFoundError(f"Produit introuvable: {product_id}")
    variant = resolve_variant(product_id, variant_id, currency)
    policies = resolver.effective_policies(product_id, variant_id)

    warranty = None
    if warranty_months is not None:
        quote = resolver.quote_warranty(product_id, variant_id, warranty_months, variant.price)
        if quote:
            warranty = warranty_from_quote(quote)
        else:
            logger.info("cart.service no warranty policy product_id=%s variant_id=%s months=%s",
                        product_id, variant_id, warranty_months)
    elif default_warranty:
        policy = pricing_repo.get_default_warranty_policy(product_id, variant_id) or resolver.pick_default_policy(policies)
        if policy:
            warranty = warranty_from_quote(resolver.build_quote(policy, variant.price))

    store.add(product, variant, warranty=warranty, warranty_policies=policies)
    return store.totals()

def change_variant(store: CartStore, product_id: int, variant_id: str, currency: str = STORE_CURRENCY) -> None:
    variant = resolve_variant(product_id, variant_id, currency)
    store.set_variant(product_id, variant, warranty_policies=resolver.effective_policies(product_id, variant_id))

def cart_payload(store: CartStore) -> Dict[str, Any]:
    totals = store.totals()
    return {"items": store.snapshot(), "item_count": totals["item_count"], "total": totals["total"]}
