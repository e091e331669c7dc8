"""
Résolution des prix (prix unitaire, surcoût de garantie).

Ordre de résolution du prix unitaire:
  1) prix administrateur actif (product_prices) pour (produit, variante, devise)
  2) prix catalogue de la variante (products.variants)

Surcoût de garantie:
  1) fixed_price > 0 -> utilisé tel quel
  2) sinon round(prix_unitaire * price_multiplier)
  3) sinon 0 (garantie sélectionnable, purement informative)

Un prix ou un multiplicateur non numérique (None, NaN, texte) vaut 0 et est journalisé:
un prix cassé ne doit jamais bloquer le checkout.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional
import logging
import math

from storefront.config import BASE_VARIANT_LENGTH, STORE_CURRENCY
from storefront.errors import VariantNotFoundError
from . import repository

logger = logging.getLogger(__name__)

# module storefront.pricing.resolver
def to_number(value: Any) -> Optional[float]:
    """Convertit str|int|float en float fini; None si impossible (NaN, inf, texte, bool)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None

def as_amount(value: float):
    """Montant lisible: 5350.0 -> 5350, 12.5 reste 12.5."""
    return int(value) if float(value).is_integer() else value

def round_currency(value: float) -> int:
    """Arrondi à l'unité monétaire la plus proche (demi vers le haut, comme côté front)."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))

def _anomaly(message: str, **context: Any) -> None:
    logger.warning("pricing anomaly: %s %s", message, context)

def resolve_unit_price(product_id: int, variant_id: str, currency: str = STORE_CURRENCY):
    """
    Prix unitaire faisant autorité pour une variante.
    - Soulève VariantNotFoundError si la variante n'existe pas (sauf prix administrateur actif).
    """
    override = repository.get_active_override(product_id, variant_id, currency)
    if override is not None:
        price = to_number(override)
        if price is not None:
            return as_amount(price)
        _anomaly("non-numeric override ignored", product_id=product_id, variant_id=variant_id, value=override)

    variant = repository.get_variant(product_id, variant_id)
    if not variant:
        raise VariantNotFoundError(f"Variante introuvable: {product_id}/{variant_id}")
    price = to_number(variant.get("price"))
    if price is None:
        _anomaly("non-numeric catalog price", product_id=product_id, variant_id=variant_id, value=variant.get("price"))
        return 0
    return as_amount(price)

def compute_warranty_cost(policy: Optional[Dict[str, Any]], unit_price: Any):
    """Surcoût d'une politique pour un prix unitaire donné (fonction pure)."""
    if not policy:
        return 0
    fixed = to_number(policy.get("fixed_price"))
    if fixed is not None and fixed > 0:
        return as_amount(fixed)

    multiplier = policy.get("price_multiplier")
    if multiplier is None:
        return 0
    base = to_number(unit_price)
    factor = to_number(multiplier)
    if base is None or factor is None:
        _anomaly(
            "invalid warranty inputs",
            policy_id=policy.get("id"), unit_price=unit_price, multiplier=multiplier,
        )
        return 0
    return round_currency(base * factor)

def _base_variant_id(variant_id: str) -> Optional[str]:
    family, sep, _ = str(variant_id).rpartition("-")
    if not sep or not family:
        return None
    return f"{family}-{BASE_VARIANT_LENGTH}"

def _scaled_from_base_variant(product_id: int, variant_id: str, months: int) -> Optional[Dict[str, Any]]:
    """
    Repli heuristique: aucune politique pour la variante, mais une politique à prix fixe
    existe pour la variante de base de la même famille (ex: rgb-5 pour rgb-15).
    Le prix fixe est mis à l'échelle linéairement par le rapport des longueurs.
    Ce n'est pas un prix faisant autorité: le devis est marqué estimated=True.
    """
    base_id = _base_variant_id(variant_id)
    if not base_id or base_id == variant_id:
        return None
    base_policy = repository.get_warranty_policy(product_id, base_id, months)
    base_fixed = to_number((base_policy or {}).get("fixed_price"))
    if base_fixed is None or base_fixed <= 0:
        return None

    variant = repository.get_variant(product_id, variant_id) or {}
    base_variant = repository.get_variant(product_id, base_id) or {}
    length = to_number(variant.get("length"))
    base_length = to_number(base_variant.get("length")) or float(BASE_VARIANT_LENGTH)
    if length is None or base_length <= 0:
        _anomaly("cannot scale warranty without variant length", product_id=product_id, variant_id=variant_id)
        return None

    cost = round_currency(base_fixed * (length / base_length))
    logger.info(
        "warranty price estimated from base variant product_id=%s variant_id=%s base=%s months=%s cost=%s",
        product_id, variant_id, base_id, months, cost,
    )
    return {**base_policy, "variant_id": variant_id, "fixed_price": cost, "estimated": True}

def effective_policies(product_id: int, variant_id: str) -> List[Dict[str, Any]]:
    """
    Politiques applicables à une variante. Sans politique propre ni générique, on propose
    les politiques de la variante de base mises à l'échelle (estimated=True).
    """
    policies = repository.get_warranty_policies(product_id, variant_id)
    if policies:
        return policies
    base_id = _base_variant_id(variant_id)
    if not base_id or base_id == variant_id:
        return []
    scaled: List[Dict[str, Any]] = []
    for base_policy in repository.get_warranty_policies(product_id, base_id):
        policy = _scaled_from_base_variant(product_id, variant_id, base_policy.get("months"))
        if policy:
            scaled.append(policy)
    return scaled

def warranty_stripe_price(policy: Dict[str, Any]) -> Optional[str]:
    """
    Price Stripe de la politique, seulement s'il correspond au montant facturé:
    prix fixe propre à la politique, non estimé. Sinon None (price_data inline).
    """
    if not policy.get("stripe_price_id") or policy.get("estimated"):
        return None
    fixed = to_number(policy.get("fixed_price"))
    if fixed is None or fixed <= 0:
        return None
    return str(policy["stripe_price_id"])

def build_quote(policy: Dict[str, Any], unit_price: Any) -> Dict[str, Any]:
    return {
        "policy_id": str(policy.get("id") or ""),
        "months": policy.get("months"),
        "additional_cost": compute_warranty_cost(policy, unit_price),
        "stripe_price_id": warranty_stripe_price(policy),
        "description": policy.get("description"),
        "terms": policy.get("terms"),
        "is_default": bool(policy.get("is_default")),
        "estimated": bool(policy.get("estimated")),
    }

def quote_warranty(product_id: int, variant_id: str, months: int, unit_price: Any) -> Optional[Dict[str, Any]]:
    """Devis de garantie pour une durée; None si aucune politique (ni repli) n'existe."""
    policy = repository.get_warranty_policy(product_id, variant_id, months)
    if policy is None:
        policy = _scaled_from_base_variant(product_id, variant_id, months)
    if policy is None:
        return None
    return build_quote(policy, unit_price)

def resolve_warranty_cost(product_id: int, variant_id: str, months: int, unit_price: Any):
    quote = quote_warranty(product_id, variant_id, months, unit_price)
    return quote["additional_cost"] if quote else 0

def pick_default_policy(policies: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Politique présélectionnée: is_default, sinon 24 mois, sinon aucune."""
    policies = list(policies or [])
    for policy in policies:
        if policy.get("is_default"):
            return policy
    for policy in policies:
        if policy.get("months") == 24:
            return policy
    return None
