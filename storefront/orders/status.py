# module storefront.orders.status
"""
Statuts de commande et transitions autorisées.

pending -> pending_cod | pending_payment -> paid | cancelled | abandoned

Chaque mise à jour est conditionnelle (statut courant dans ALLOWED_FROM[cible]):
une notification ancienne rejouée tard ne peut pas faire régresser une commande payée.
"""
from typing import List

PENDING = "pending"
PENDING_COD = "pending_cod"
PENDING_PAYMENT = "pending_payment"
PAID = "paid"
CANCELLED = "cancelled"
ABANDONED = "abandoned"

ALLOWED_FROM = {
    PENDING_COD: {PENDING},
    PENDING_PAYMENT: {PENDING},
    # un paiement confirmé après le balayage l'emporte sur 'abandoned'
    PAID: {PENDING, PENDING_PAYMENT, ABANDONED},
    CANCELLED: {PENDING, PENDING_PAYMENT, PENDING_COD},
    ABANDONED: {PENDING, PENDING_PAYMENT},
}

def allowed_predecessors(target: str) -> List[str]:
    if target not in ALLOWED_FROM:
        raise ValueError(f"Statut de commande inconnu: {target}")
    return sorted(ALLOWED_FROM[target])
