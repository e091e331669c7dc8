# module storefront.orders.sweep
"""
Balayage des commandes abandonnées.
Une commande restée 'pending' (session de paiement jamais créée) ou 'pending_payment'
(client parti du checkout hébergé) au-delà du délai passe en 'abandoned'.
Un paiement confirmé plus tard par le webhook reste applicable (abandoned -> paid).
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import asyncio
import logging

from storefront.config import ABANDONED_ORDER_MINUTES
from . import repository
from . import status as order_status

logger = logging.getLogger(__name__)

def sweep_abandoned_orders(older_than_minutes: int = ABANDONED_ORDER_MINUTES, now: Optional[datetime] = None) -> int:
    """Retourne le nombre de commandes passées en 'abandoned'."""
    now = now or datetime.now(timezone.utc)
    cutoff = (now - timedelta(minutes=older_than_minutes)).isoformat()
    stale = repository.list_stale_orders(
        [order_status.PENDING, order_status.PENDING_PAYMENT], created_before=cutoff
    )
    abandoned = 0
    for order in stale:
        try:
            if repository.update_order_status(str(order["id"]), order_status.ABANDONED):
                abandoned += 1
        except Exception:
            logger.exception("orders.sweep failed order_id=%s", order.get("id"))
    if abandoned:
        logger.info("orders.sweep abandoned=%s cutoff=%s", abandoned, cutoff)
    return abandoned

async def run_periodic_sweep(interval_seconds: int, older_than_minutes: int = ABANDONED_ORDER_MINUTES) -> None:
    """Boucle de fond lancée par le lifespan; annulée à l'arrêt de l'application."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(sweep_abandoned_orders, older_than_minutes)
        except Exception:
            logger.exception("orders.sweep periodic run failed")
