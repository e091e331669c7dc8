"""
Accès aux données pour la feature 'payments' (client service-role).

Tables:
- payment_sessions (order_id, stripe_session_id unique, status, amount, currency, user_id)
- payment_transactions (journal append-only; stripe_event_id unique = clé de déduplication)
- stripe_events (stripe_event_id unique, type, data, processed_at)
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from postgrest.exceptions import APIError

import storefront.infra.supabase_client as supabase_client
from storefront.errors import OrderPersistenceError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

def _is_unique_violation(e: Exception) -> bool:
    return isinstance(e, APIError) and str(getattr(e, "code", "") or "") == UNIQUE_VIOLATION

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# module storefront.payments.repository
# --- payment_sessions ---
def insert_payment_session(
    *,
    order_id: str,
    stripe_session_id: str,
    amount: float,
    currency: str,
    user_id: Optional[str] = None,
    status: str = "pending",
) -> Optional[dict]:
    """
    Insère la session locale. Retourne la ligne, ou None en cas d'échec (loggé).
    Une ligne déjà présente pour ce stripe_session_id est relue et retournée.
    """
    row = {
        "order_id": order_id,
        "stripe_session_id": stripe_session_id,
        "status": status,
        "amount": amount,
        "currency": currency.lower(),
        "user_id": user_id,
    }
    try:
        res = supabase_client.get_service_supabase().table("payment_sessions").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else row
    except Exception as e:
        if _is_unique_violation(e):
            logger.info("payments.repository.insert_payment_session already exists stripe_session_id=%s", stripe_session_id)
            return get_payment_session_by_external_id(stripe_session_id)
        logger.exception("payments.repository.insert_payment_session failed order_id=%s stripe_session_id=%s", order_id, stripe_session_id)
        return None

def get_payment_session_by_external_id(stripe_session_id: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("payment_sessions")
            .select("*")
            .eq("stripe_session_id", stripe_session_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("payments.repository.get_payment_session_by_external_id failed stripe_session_id=%s", stripe_session_id)
        return None

def update_payment_session_status(stripe_session_id: str, status: str, allowed_from: List[str]) -> bool:
    """
    Transition conditionnelle sur payment_sessions (jamais d'écrasement aveugle).
    Soulève OrderPersistenceError si Supabase échoue, pour que le webhook soit relivré.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("payment_sessions")
            .update({"status": status})
            .eq("stripe_session_id", stripe_session_id)
            .in_("status", allowed_from)
            .execute()
        )
    except Exception as e:
        logger.exception("payments.repository.update_payment_session_status failed stripe_session_id=%s status=%s", stripe_session_id, status)
        raise OrderPersistenceError(f"Mise à jour de la session de paiement impossible: {e}")
    return bool(res.data)

# --- payment_transactions ---
def insert_transaction(row: Dict[str, Any]) -> bool:
    """
    Ajoute une entrée au journal. Retourne False si stripe_event_id est déjà présent (rejeu).
    Soulève OrderPersistenceError pour toute autre erreur.
    """
    try:
        supabase_client.get_service_supabase().table("payment_transactions").insert(row).execute()
        return True
    except Exception as e:
        if _is_unique_violation(e):
            logger.info("payments.repository.insert_transaction duplicate stripe_event_id=%s", row.get("stripe_event_id"))
            return False
        logger.exception("payments.repository.insert_transaction failed order_id=%s", row.get("order_id"))
        raise OrderPersistenceError(f"Écriture du journal de paiement impossible: {e}")

# --- stripe_events ---
def record_event(event_id: str, event_type: str, data: Dict[str, Any]) -> Optional[dict]:
    """
    Persiste l'événement brut (audit) et retourne la ligne stockée.
    Un doublon d'id n'est pas une erreur: la ligne existante est retournée (processed_at inclus).
    Soulève OrderPersistenceError si l'audit ne peut pas être écrit.
    """
    row = {"stripe_event_id": event_id, "type": event_type, "data": data}
    try:
        res = supabase_client.get_service_supabase().table("stripe_events").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else row
    except Exception as e:
        if _is_unique_violation(e):
            return get_event(event_id) or row
        logger.exception("payments.repository.record_event failed stripe_event_id=%s type=%s", event_id, event_type)
        raise OrderPersistenceError(f"Enregistrement de l'événement impossible: {e}")

def get_event(event_id: str) -> Optional[dict]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("stripe_events")
            .select("*")
            .eq("stripe_event_id", event_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("payments.repository.get_event failed stripe_event_id=%s", event_id)
        return None

def mark_event_processed(event_id: str) -> None:
    try:
        (
            supabase_client.get_service_supabase()
            .table("stripe_events")
            .update({"processed_at": _now_iso()})
            .eq("stripe_event_id", event_id)
            .execute()
        )
    except Exception:
        # les écritures métier sont conditionnelles: un rejeu reste sans effet
        logger.exception("payments.repository.mark_event_processed failed stripe_event_id=%s", event_id)
