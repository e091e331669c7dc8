import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from storefront.payments import reconciliation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module storefront.payments.views
@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request):
    """
    Webhook Stripe: corps brut + en-tête Stripe-Signature.
    - Signature invalide: 400 (StorefrontError handler), aucune écriture
    - Erreur de stockage: 502, Stripe relivrera l'événement
    - Sinon {"received": true}, y compris pour les types non gérés
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    result = reconciliation.handle_webhook(payload, signature)
    return JSONResponse({"received": True, "status": result.get("status")})
