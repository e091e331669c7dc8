"""
Passerelle vers le checkout hébergé Stripe.

create_session(order):
  1) construit des line_items sérialisables depuis la copie des lignes de la commande
  2) crée la session hébergée (PaymentSessionError si refus/réseau; la commande reste 'pending')
  3) commande -> 'pending_payment', puis ligne payment_sessions 'pending'
Les étapes 3 peuvent échouer après la création Stripe: la session existe alors sans trace locale.
Le webhook referme cette fenêtre (insertion de la session manquante à la réconciliation).
"""
from typing import Any, Dict, List, Optional
import logging

from storefront.config import ACCESSORY_SURCHARGE, STORE_CURRENCY
from storefront.errors import OrderPersistenceError, PaymentSessionError
from storefront.orders import repository as orders_repo
from storefront.orders import status as order_status
from storefront.pricing.resolver import to_number
from . import repository
from . import stripe_client

logger = logging.getLogger(__name__)

def _minor_units(amount: float) -> int:
    return int(round(amount * 100))

def _price_data_line(name: str, amount: float, quantity: int, currency: str) -> Dict[str, Any]:
    return {
        "price_data": {
            "currency": currency.lower(),
            "unit_amount": _minor_units(amount),
            "product_data": {"name": name},
        },
        "quantity": quantity,
    }

def _variant_stripe_price(variant: Dict[str, Any]) -> Optional[str]:
    """Le price Stripe n'est utilisé que si le prix résolu est encore le prix catalogue qu'il représente."""
    stripe_price_id = variant.get("stripe_price_id")
    if not stripe_price_id:
        return None
    price = to_number(variant.get("price"))
    catalog_price = to_number(variant.get("catalog_price"))
    if price is None or catalog_price is None or price != catalog_price:
        return None
    return str(stripe_price_id)

# module storefront.payments.bridge
def build_line_items(
    items: List[Dict[str, Any]],
    currency: str = STORE_CURRENCY,
    accessory_surcharge: float = ACCESSORY_SURCHARGE,
) -> List[Dict[str, Any]]:
    """
    Une ligne par variante (price Stripe si le prix résolu est le prix catalogue, sinon price_data inline),
    + une ligne garantie (price Stripe si prix fixe non estimé, sinon price_data si coût > 0),
    + une ligne adaptateur si le drapeau est posé.
    Uniquement des valeurs simples (str/int/dict/list).
    """
    line_items: List[Dict[str, Any]] = []
    for item in items:
        quantity = to_number(item.get("quantity"))
        if quantity is None or quantity < 1 or quantity != int(quantity):
            raise PaymentSessionError(f"Quantité invalide pour le produit {item.get('id')}")
        quantity = int(quantity)
        variant = item.get("variant") or {}
        name = str(item.get("name") or f"Produit {item.get('id')}")

        stripe_price_id = _variant_stripe_price(variant)
        if stripe_price_id:
            line_items.append({"price": stripe_price_id, "quantity": quantity})
        else:
            price = to_number(variant.get("price"))
            if price is None or price <= 0:
                raise PaymentSessionError(f"Prix invalide pour le produit {item.get('id')}")
            label = f"{name} ({variant.get('id')})" if variant.get("id") else name
            line_items.append(_price_data_line(label, price, quantity, currency))

        warranty = item.get("warranty") or None
        if warranty:
            cost = to_number(warranty.get("additional_cost")) or 0
            if warranty.get("stripe_price_id") and not warranty.get("estimated"):
                line_items.append({"price": str(warranty["stripe_price_id"]), "quantity": quantity})
            elif cost > 0:
                label = f"Garantie {warranty.get('months')} mois - {name}"
                line_items.append(_price_data_line(label, cost, quantity, currency))

        if item.get("adapter"):
            plug = item.get("plug_type") or "EU"
            line_items.append(_price_data_line(f"Adaptateur secteur ({plug})", accessory_surcharge, quantity, currency))
    if not line_items:
        raise PaymentSessionError("Aucune ligne à payer")
    return line_items

def create_session(order: Dict[str, Any], currency: str = STORE_CURRENCY) -> Dict[str, Any]:
    """
    Retour: {"session_id": "cs_...", "url": "https://..."}.
    Soulève PaymentSessionError si la session hébergée n'a pas pu être créée.
    """
    order_id = str(order["id"])
    customer_email: Optional[str] = (order.get("customer_info") or {}).get("email")
    line_items = build_line_items(order.get("items") or [], currency)

    session = stripe_client.create_hosted_session(
        line_items=line_items,
        order_id=order_id,
        customer_email=customer_email,
    )
    session_id = session["id"]

    try:
        orders_repo.update_order_status(order_id, order_status.PENDING_PAYMENT)
    except OrderPersistenceError:
        logger.error("payments.bridge order status not updated order_id=%s stripe_session_id=%s", order_id, session_id)

    row = repository.insert_payment_session(
        order_id=order_id,
        stripe_session_id=session_id,
        amount=order.get("total") or 0,
        currency=currency,
        user_id=order.get("user_id"),
    )
    if row is None:
        logger.error("payments.bridge payment session not persisted order_id=%s stripe_session_id=%s", order_id, session_id)

    logger.info("payments.bridge session created order_id=%s stripe_session_id=%s", order_id, session_id)
    return {"session_id": session_id, "url": session.get("url")}
