"""
Module 'payments' (feature-first): point d'entrée public.
Réunit client Stripe, repository BD, passerelle de session et réconciliation webhook.
"""

from .stripe_client import require_stripe, create_hosted_session, construct_event
from .repository import (
    insert_payment_session,
    get_payment_session_by_external_id,
    insert_transaction,
    record_event,
)
from .bridge import build_line_items, create_session
from .reconciliation import handle_event, handle_webhook

__all__ = [
    # stripe
    "require_stripe",
    "create_hosted_session",
    "construct_event",
    # repository
    "insert_payment_session",
    "get_payment_session_by_external_id",
    "insert_transaction",
    "record_event",
    # services
    "build_line_items",
    "create_session",
    "handle_event",
    "handle_webhook",
]
