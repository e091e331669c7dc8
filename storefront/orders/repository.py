"""
Accès aux données pour les commandes (table 'orders', client service-role).
"""
from typing import Any, Dict, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import OrderPersistenceError
from . import status as order_status

logger = logging.getLogger(__name__)

# module storefront.orders.repository
def insert_order(row: Dict[str, Any]) -> str:
    """
    Insère une commande et retourne son id (généré côté serveur).
    Soulève OrderPersistenceError si l'insert échoue ou ne renvoie pas d'id.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .insert(row)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.insert_order failed user_id=%s total=%s", row.get("user_id"), row.get("total"))
        raise OrderPersistenceError(f"Impossible de créer la commande: {e}")
    rows = res.data or []
    order_id = rows[0].get("id") if rows else None
    if not order_id:
        raise OrderPersistenceError("Impossible de créer la commande: aucun id retourné")
    return str(order_id)

def update_order_status(order_id: str, status: str) -> bool:
    """
    Transition conditionnelle: UPDATE ... WHERE id = ? AND status IN (prédécesseurs autorisés).
    - True si la ligne a changé, False si la transition n'est pas applicable (déjà plus loin, ou id inconnu).
    - Soulève OrderPersistenceError si Supabase échoue.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update({"status": status})
            .eq("id", order_id)
            .in_("status", order_status.allowed_predecessors(status))
            .execute()
        )
    except ValueError:
        raise
    except Exception as e:
        logger.exception("orders.repository.update_order_status failed order_id=%s status=%s", order_id, status)
        raise OrderPersistenceError(f"Mise à jour du statut impossible: {e}")
    changed = bool(res.data)
    if not changed:
        logger.info("orders.repository.update_order_status noop order_id=%s target=%s", order_id, status)
    return changed

def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("*")
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.get_order failed order_id=%s", order_id)
        return None

def list_stale_orders(statuses: List[str], created_before: str, limit: int = 200) -> List[Dict[str, Any]]:
    """Commandes dans l'un des statuts donnés, créées avant created_before (ISO 8601)."""
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("id, status, created_at")
            .in_("status", statuses)
            .lt("created_at", created_before)
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_stale_orders failed statuses=%s", statuses)
        return []
