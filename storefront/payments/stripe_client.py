"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from storefront.config import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    CHECKOUT_SUCCESS_URL,
    CHECKOUT_CANCEL_URL,
    ALLOWED_SHIPPING_COUNTRIES,
)
from storefront.errors import PaymentSessionError, WebhookSignatureError

logger = logging.getLogger(__name__)

# module storefront.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - En absence de clé, les appels Stripe échoueront côté SDK (ex: No API key provided).
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    return stripe

def create_hosted_session(
    *,
    line_items: List[Dict[str, Any]],
    order_id: str,
    customer_email: Optional[str],
    success_url: str = CHECKOUT_SUCCESS_URL,
    cancel_url: str = CHECKOUT_CANCEL_URL,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout hébergée pour une commande.
    - metadata.order_id et client_reference_id portent l'id de commande (lu par le webhook)
    - collecte d'adresse limitée à ALLOWED_SHIPPING_COUNTRIES
    Retour: {"id": "cs_...", "url": "https://checkout.stripe.com/..."}
    Soulève PaymentSessionError si Stripe refuse ou est injoignable.
    """
    require_stripe()
    params: Dict[str, Any] = {
        "line_items": line_items,
        "mode": "payment",
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": {"order_id": str(order_id)},
        "client_reference_id": str(order_id),
        "payment_method_types": ["card"],
        "shipping_address_collection": {"allowed_countries": list(ALLOWED_SHIPPING_COUNTRIES)},
    }
    if customer_email:
        params["customer_email"] = customer_email
    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.exception("payments.stripe_client.create_hosted_session failed order_id=%s", order_id)
        raise PaymentSessionError(f"Création de la session de paiement impossible: {getattr(e, 'user_message', None) or e}")
    session_id = getattr(session, "id", None)
    url = getattr(session, "url", None)
    if not session_id:
        raise PaymentSessionError("Session Stripe invalide (id manquant)")
    return {"id": session_id, "url": url}

def construct_event(payload: bytes, sig_header: Optional[str], secret: str = STRIPE_WEBHOOK_SECRET) -> Dict[str, Any]:
    """
    Valide la signature (Stripe-Signature + STRIPE_WEBHOOK_SECRET) puis retourne l'événement
    sous forme de dict JSON simple.
    Soulève WebhookSignatureError si la signature ou le payload est invalide.
    """
    if not sig_header:
        raise WebhookSignatureError("En-tête Stripe-Signature manquant")
    if not secret:
        raise WebhookSignatureError("Secret webhook non configuré")
    try:
        stripe.Webhook.construct_event(payload, sig_header, secret)
    except stripe.SignatureVerificationError:
        raise WebhookSignatureError("Signature Stripe invalide")
    except ValueError:
        raise WebhookSignatureError("Payload Stripe invalide")
    raw = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
    return json.loads(raw)
