# module storefront.checkout.views

"""Endpoints du checkout (tentative persistée par panier).
- /info, /delivery, /back: étapes du formulaire (erreurs 422 en ligne, étape inchangée)
- /place-order: soumission unique en vol (409 si déjà en cours), rate-limitée
- /confirmation: instantané de la commande payée à la livraison, lisible une seule fois
- /success: retour du checkout hébergé (?session_id=...), vide le panier
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import get_current_user_id
from storefront.cart.store import CartStore
from storefront.cart.views import get_cart_id, get_cart_store
from storefront.checkout import service as checkout_service
from storefront.checkout.models import CheckoutStep, available_methods
from storefront.checkout.orchestrator import CheckoutOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


def get_orchestrator(
    request: Request,
    cart_id: str = Depends(get_cart_id),
    store: CartStore = Depends(get_cart_store),
    user_id: Optional[str] = Depends(get_current_user_id),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(request.app.state.cart_storage, cart_id, store, user_id=user_id)


@router.get("")
def get_checkout(orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    if orchestrator.attempt.step == CheckoutStep.DONE:
        orchestrator.restart()
    return {**orchestrator.state(), "items": orchestrator.cart.snapshot(), **available_methods()}

@router.post("/info")
def submit_info(
    payload: Dict[str, Any] = Body(...),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return orchestrator.submit_customer_info(payload)

@router.post("/delivery")
def choose_delivery(
    payload: Dict[str, Any] = Body(...),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return orchestrator.choose_delivery(payload)

@router.post("/back")
def go_back(orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    return orchestrator.back()

@router.post("/place-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def place_order(orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    """
    Crée la commande et termine la tentative.
    Réponse: next='confirmation' (paiement à la livraison) ou next='redirect' + redirect_url (carte).
    """
    return orchestrator.place_order()

@router.get("/confirmation")
def cod_confirmation(request: Request, cart_id: str = Depends(get_cart_id)) -> Dict[str, Any]:
    snapshot = checkout_service.take_cod_order(request.app.state.cart_storage, cart_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Aucune commande à confirmer")
    return snapshot

@router.get("/success")
def checkout_success(session_id: str, orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    result = checkout_service.complete_from_success_page(orchestrator.cart, session_id)
    orchestrator.reset()
    return result
