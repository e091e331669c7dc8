# module storefront.errors
"""
Erreurs typées du pipeline panier -> commande -> paiement.

- code: identifiant stable exposé au client (JSON)
- retryable: l'appelant peut relancer la même action sans autre changement
- status_code: statut HTTP utilisé par le handler global (app_setup.exceptions)
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    status_code = 400
    code = "storefront_error"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code, "retryable": self.retryable}
        if self.details:
            payload["details"] = self.details
        return payload


class CheckoutValidationError(StorefrontError):
    status_code = 422
    code = "checkout_invalid"


class SubmissionInProgressError(StorefrontError):
    status_code = 409
    code = "submission_in_progress"


class CatalogError(StorefrontError):
    status_code = 502
    code = "catalog_unavailable"
    retryable = True


class VariantNotFoundError(CatalogError):
    status_code = 404
    code = "variant_not_found"
    retryable = False


class OrderPersistenceError(StorefrontError):
    status_code = 502
    code = "order_store_unavailable"
    retryable = True


class CartPersistenceError(StorefrontError):
    status_code = 502
    code = "cart_store_unavailable"
    retryable = True


class PaymentSessionError(StorefrontError):
    status_code = 502
    code = "payment_session_failed"
    retryable = True


class WebhookSignatureError(StorefrontError):
    status_code = 400
    code = "invalid_signature"
