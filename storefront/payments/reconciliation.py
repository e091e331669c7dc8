"""
Consommateur des notifications Stripe (webhook), idempotent et tolérant au désordre.

1) signature vérifiée avant tout traitement (WebhookSignatureError -> 400, aucun effet)
2) événement brut persisté (stripe_events); un id déjà traité ne produit aucune écriture métier
3) branchement par type; les types inconnus sont acceptés et loggés
4) événement marqué traité seulement après succès (une erreur de stockage laisse Stripe relivrer)

Toutes les mises à jour de statut sont conditionnelles: un événement ancien relivré
tardivement ne peut pas faire régresser une commande 'paid'.
"""
from typing import Any, Callable, Dict, Optional
import logging

from storefront.config import STORE_CURRENCY
from storefront.errors import OrderPersistenceError
from storefront.orders import repository as orders_repo
from storefront.orders import status as order_status
from storefront.pricing.resolver import as_amount, to_number
from . import repository
from . import stripe_client

logger = logging.getLogger(__name__)

SESSION_COMPLETED = "checkout.session.completed"
SESSION_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
SESSION_ASYNC_FAILED = "checkout.session.async_payment_failed"
SESSION_EXPIRED = "checkout.session.expired"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"

SETTLED_PAYMENT_STATUSES = ("paid", "no_payment_required")

def _object(event: Dict[str, Any]) -> Dict[str, Any]:
    return ((event.get("data") or {}).get("object")) or {}

def _order_id_from(session: Dict[str, Any]) -> Optional[str]:
    metadata = session.get("metadata") or {}
    order_id = metadata.get("order_id") or metadata.get("orderId") or session.get("client_reference_id")
    return str(order_id) if order_id else None

def _from_minor(amount: Any) -> Any:
    value = to_number(amount)
    return as_amount(value / 100) if value is not None else None

def _currency(obj: Dict[str, Any]) -> str:
    return str(obj.get("currency") or STORE_CURRENCY).lower()

def _ensure_session(session: Dict[str, Any], order_id: str, target: str, allowed_from: list) -> None:
    """
    Avance la session locale; si elle manque (fenêtre d'échec partiel du bridge), l'insère
    directement dans le statut cible à partir de l'événement.
    """
    session_id = session.get("id")
    if not session_id:
        return
    if repository.get_payment_session_by_external_id(session_id) is None:
        logger.warning("payments.reconciliation missing local session, inserting stripe_session_id=%s order_id=%s",
                       session_id, order_id)
        order = orders_repo.get_order(order_id) or {}
        inserted = repository.insert_payment_session(
            order_id=order_id,
            stripe_session_id=session_id,
            amount=_from_minor(session.get("amount_total")) or order.get("total") or 0,
            currency=_currency(session),
            user_id=order.get("user_id"),
            status=target,
        )
        if inserted is None:
            # sans session locale, l'événement ne doit pas être marqué traité: Stripe relivrera
            raise OrderPersistenceError(f"Session de paiement non enregistrée: {session_id}")
        return
    if allowed_from:
        repository.update_payment_session_status(session_id, target, allowed_from)

# module storefront.payments.reconciliation
def _mark_paid(event: Dict[str, Any], session: Dict[str, Any], order_id: str) -> str:
    orders_repo.update_order_status(order_id, order_status.PAID)
    _ensure_session(session, order_id, "completed", ["pending", "expired"])
    repository.insert_transaction({
        "order_id": order_id,
        "stripe_payment_intent_id": session.get("payment_intent"),
        "amount": _from_minor(session.get("amount_total")),
        "currency": _currency(session),
        "status": "completed",
        "type": "payment",
        "metadata": session.get("metadata") or {},
        "stripe_event_id": event.get("id"),
    })
    return "paid"

def on_session_completed(event: Dict[str, Any]) -> str:
    session = _object(event)
    order_id = _order_id_from(session)
    if not order_id:
        logger.error("payments.reconciliation missing order id event_id=%s stripe_session_id=%s",
                     event.get("id"), session.get("id"))
        return "missing_order_id"
    if session.get("payment_status") not in SETTLED_PAYMENT_STATUSES:
        # paiement différé: la confirmation arrivera par async_payment_succeeded
        orders_repo.update_order_status(order_id, order_status.PENDING_PAYMENT)
        _ensure_session(session, order_id, "pending", [])
        return "awaiting_payment"
    return _mark_paid(event, session, order_id)

def on_async_payment_succeeded(event: Dict[str, Any]) -> str:
    session = _object(event)
    order_id = _order_id_from(session)
    if not order_id:
        logger.error("payments.reconciliation missing order id event_id=%s", event.get("id"))
        return "missing_order_id"
    return _mark_paid(event, session, order_id)

def on_async_payment_failed(event: Dict[str, Any]) -> str:
    session = _object(event)
    order_id = _order_id_from(session)
    if not order_id:
        logger.error("payments.reconciliation missing order id event_id=%s", event.get("id"))
        return "missing_order_id"
    orders_repo.update_order_status(order_id, order_status.CANCELLED)
    _ensure_session(session, order_id, "failed", ["pending"])
    return "cancelled"

def on_session_expired(event: Dict[str, Any]) -> str:
    session = _object(event)
    order_id = _order_id_from(session)
    if not order_id:
        logger.error("payments.reconciliation missing order id event_id=%s", event.get("id"))
        return "missing_order_id"
    orders_repo.update_order_status(order_id, order_status.ABANDONED)
    _ensure_session(session, order_id, "expired", ["pending"])
    return "abandoned"

def on_payment_intent_succeeded(event: Dict[str, Any]) -> str:
    """Écriture au journal uniquement: l'intent ne porte pas de lien fiable vers la commande."""
    intent = _object(event)
    repository.insert_transaction({
        "order_id": None,
        "stripe_payment_intent_id": intent.get("id"),
        "stripe_charge_id": intent.get("latest_charge"),
        "amount": _from_minor(intent.get("amount")),
        "currency": _currency(intent),
        "status": "succeeded",
        "type": "payment_intent",
        "metadata": intent.get("metadata") or {},
        "stripe_event_id": event.get("id"),
    })
    return "recorded"

HANDLERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    SESSION_COMPLETED: on_session_completed,
    SESSION_ASYNC_SUCCEEDED: on_async_payment_succeeded,
    SESSION_ASYNC_FAILED: on_async_payment_failed,
    SESSION_EXPIRED: on_session_expired,
    PAYMENT_INTENT_SUCCEEDED: on_payment_intent_succeeded,
}

def handle_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Traite un événement déjà authentifié. Retour: {"status": "..."} (informatif)."""
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    logger.info("payments.reconciliation received event_id=%s type=%s", event_id, event_type)
    if not event_id:
        logger.error("payments.reconciliation event without id type=%s", event_type)
        return {"status": "ignored"}

    stored = repository.record_event(event_id, event_type, event) or {}
    if stored.get("processed_at"):
        logger.info("payments.reconciliation duplicate event_id=%s", event_id)
        return {"status": "duplicate"}

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("payments.reconciliation unhandled type=%s event_id=%s", event_type, event_id)
        outcome = "ignored"
    else:
        outcome = handler(event)
    repository.mark_event_processed(event_id)
    return {"status": outcome}

def handle_webhook(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    event = stripe_client.construct_event(payload, signature)
    return handle_event(event)
