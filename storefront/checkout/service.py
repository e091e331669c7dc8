"""
Cas d'usage 'checkout' hors machine à états:
- emplacement de confirmation du paiement à la livraison (écrit une fois, lu une fois, puis supprimé)
- retour du checkout hébergé (page succès): session de paiement -> commande, puis vidage du panier
"""
from typing import Any, Dict, Optional
import json
import logging

from storefront.errors import CheckoutValidationError
from storefront.orders import repository as orders_repo
from storefront.payments import repository as payments_repo
from storefront.cart.store import CartStore

logger = logging.getLogger(__name__)

COD_SLOT_SECONDS = 60 * 60

def cod_key(cart_id: str) -> str:
    return f"cod_order:{cart_id}"

def stash_cod_order(storage, cart_id: str, snapshot: Dict[str, Any]) -> None:
    storage.set(cod_key(cart_id), json.dumps(snapshot), ttl=COD_SLOT_SECONDS)

def take_cod_order(storage, cart_id: str) -> Optional[Dict[str, Any]]:
    """Retourne l'instantané puis le supprime; None s'il a déjà été lu ou s'il est illisible."""
    raw = storage.pop(cod_key(cart_id))
    if raw is None:
        return None
    try:
        snapshot = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("checkout.service corrupt cod snapshot cart_id=%s", cart_id)
        return None
    return snapshot if isinstance(snapshot, dict) else None

# module storefront.checkout.service
def complete_from_success_page(store: CartStore, session_id: str) -> Dict[str, Any]:
    """
    Atterrissage après paiement hébergé (?session_id=...).
    Le panier est vidé ici; le statut 'paid' reste l'affaire du webhook.
    """
    if not session_id:
        raise CheckoutValidationError("session_id manquant", code="session_id_missing")
    payment_session = payments_repo.get_payment_session_by_external_id(session_id)
    if not payment_session:
        raise CheckoutValidationError("Session de paiement inconnue", code="session_not_found")
    order = orders_repo.get_order(str(payment_session.get("order_id"))) or {}
    store.clear()
    logger.info("checkout.service success page order_id=%s stripe_session_id=%s",
                payment_session.get("order_id"), session_id)
    return {
        "order_id": payment_session.get("order_id"),
        "status": order.get("status"),
        "total": order.get("total"),
        "payment_session_status": payment_session.get("status"),
    }
