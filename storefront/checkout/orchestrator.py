"""
Machine à états d'une tentative de checkout:

  collecting_info -> choosing_delivery -> confirming -> submitting -> done | failed

- L'état est persisté dans le stockage du panier (clé checkout:<cart_id>): il survit aux rechargements.
- Une seule soumission en vol par tentative: verrou atomique 'si absent' avec TTL.
- Soumission: copie profonde sérialisable du panier, total recalculé sur la copie (refus si nul
  ou non numérique), une commande 'pending', puis
    cash: pending_cod, instantané de confirmation, panier vidé, done
    card: session hébergée (panier conservé jusqu'au retour ou au webhook), done
- Échec d'un appel externe: failed, panier intact, la commande reste dans son dernier statut;
  une nouvelle soumission est permise depuis failed.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4
import json
import logging

from pydantic import ValidationError

from storefront.config import CHECKOUT_LOCK_SECONDS, STORE_CURRENCY
from storefront.errors import (
    CartPersistenceError,
    CheckoutValidationError,
    StorefrontError,
    SubmissionInProgressError,
)
from storefront.cart.store import CartStore, compute_totals
from storefront.orders import repository as orders_repo
from storefront.orders import status as order_status
from storefront.payments import bridge
from . import service
from .models import CheckoutStep, CustomerInfo, DeliveryChoice, delivery_method

logger = logging.getLogger(__name__)

EDITABLE_STEPS = (
    CheckoutStep.COLLECTING_INFO,
    CheckoutStep.CHOOSING_DELIVERY,
    CheckoutStep.CONFIRMING,
    CheckoutStep.FAILED,
)

BACK_TRANSITIONS = {
    CheckoutStep.CHOOSING_DELIVERY: CheckoutStep.COLLECTING_INFO,
    CheckoutStep.CONFIRMING: CheckoutStep.CHOOSING_DELIVERY,
    CheckoutStep.FAILED: CheckoutStep.CONFIRMING,
}


class CheckoutAttempt:
    def __init__(
        self,
        attempt_id: Optional[str] = None,
        step: CheckoutStep = CheckoutStep.COLLECTING_INFO,
        customer_info: Optional[Dict[str, Any]] = None,
        delivery_method: Optional[Dict[str, Any]] = None,
        payment_method: Optional[str] = None,
        order_id: Optional[str] = None,
        session_id: Optional[str] = None,
        redirect_url: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
    ):
        self.attempt_id = attempt_id or uuid4().hex
        self.step = CheckoutStep(step)
        self.customer_info = customer_info
        self.delivery_method = delivery_method
        self.payment_method = payment_method
        self.order_id = order_id
        self.session_id = session_id
        self.redirect_url = redirect_url
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "step": self.step.value,
            "customer_info": self.customer_info,
            "delivery_method": self.delivery_method,
            "payment_method": self.payment_method,
            "order_id": self.order_id,
            "session_id": self.session_id,
            "redirect_url": self.redirect_url,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckoutAttempt":
        return cls(**{k: data.get(k) for k in (
            "attempt_id", "customer_info", "delivery_method", "payment_method",
            "order_id", "session_id", "redirect_url", "error",
        )}, step=data.get("step") or CheckoutStep.COLLECTING_INFO)


# module storefront.checkout.orchestrator
class CheckoutOrchestrator:
    """
    Une instance par requête; l'état vit dans le stockage.
      orchestrator = CheckoutOrchestrator(storage, cart_id, cart_store, user_id=...)
    """

    def __init__(self, storage, cart_id: str, cart: CartStore, *, user_id: Optional[str] = None,
                 lock_seconds: int = CHECKOUT_LOCK_SECONDS, currency: str = STORE_CURRENCY):
        self.storage = storage
        self.cart_id = cart_id
        self.cart = cart
        self.user_id = user_id
        self.lock_seconds = lock_seconds
        self.currency = currency
        self.attempt = self._load()

    @property
    def state_key(self) -> str:
        return f"checkout:{self.cart_id}"

    @property
    def lock_key(self) -> str:
        return f"checkout-lock:{self.cart_id}"

    def _load(self) -> CheckoutAttempt:
        raw = self.storage.get(self.state_key)
        if raw is None:
            return CheckoutAttempt()
        try:
            return CheckoutAttempt.from_dict(json.loads(raw))
        except (TypeError, ValueError, AttributeError):
            logger.warning("checkout.orchestrator corrupt attempt state cart_id=%s, restarting", self.cart_id)
            return CheckoutAttempt()

    def _save(self) -> None:
        self.storage.set(self.state_key, json.dumps(self.attempt.to_dict()), ttl=None)

    def _require_step(self, *allowed: CheckoutStep) -> None:
        if self.attempt.step == CheckoutStep.SUBMITTING and self.storage.get(self.lock_key) is None:
            # soumission interrompue (verrou expiré): la tentative redevient relançable
            logger.warning("checkout.orchestrator stale submission recovered cart_id=%s", self.cart_id)
            self._fail({"detail": "Soumission interrompue", "code": "submission_interrupted", "retryable": True})
        if self.attempt.step == CheckoutStep.SUBMITTING:
            raise SubmissionInProgressError("Commande en cours de soumission")
        if self.attempt.step not in allowed:
            raise CheckoutValidationError(
                f"Action impossible à l'étape {self.attempt.step.value}", code="invalid_step"
            )

    def state(self) -> Dict[str, Any]:
        return {**self.attempt.to_dict(), **self.cart.totals()}

    def restart(self) -> None:
        """Nouvelle tentative (ex: retour sur le checkout après une tentative terminée); infos client conservées."""
        info = self.attempt.customer_info
        self.attempt = CheckoutAttempt(customer_info=info)
        self._save()

    def reset(self) -> None:
        self.storage.delete(self.state_key)
        self.attempt = CheckoutAttempt()

    # --- étapes formulaire ---
    def submit_customer_info(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._require_step(*EDITABLE_STEPS)
        try:
            info = CustomerInfo.model_validate(data)
        except ValidationError as e:
            raise CheckoutValidationError(
                "Informations client invalides",
                code="customer_info_invalid",
                details={"errors": [
                    {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
                    for err in e.errors()
                ]},
            )
        self.attempt.customer_info = info.model_dump(mode="json")
        self.attempt.step = CheckoutStep.CHOOSING_DELIVERY
        self.attempt.error = None
        self._save()
        return self.state()

    def choose_delivery(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._require_step(CheckoutStep.CHOOSING_DELIVERY, CheckoutStep.CONFIRMING, CheckoutStep.FAILED)
        try:
            choice = DeliveryChoice.model_validate(data)
        except ValidationError:
            raise CheckoutValidationError("Mode de livraison ou de paiement invalide", code="delivery_invalid")
        method = delivery_method(choice.delivery_method_id)
        if method is None:
            raise CheckoutValidationError(
                f"Mode de livraison inconnu: {choice.delivery_method_id}", code="delivery_unknown"
            )
        self.attempt.delivery_method = method.model_dump()
        self.attempt.payment_method = choice.payment_method
        self.attempt.step = CheckoutStep.CONFIRMING
        self.attempt.error = None
        self._save()
        return self.state()

    def back(self) -> Dict[str, Any]:
        if self.attempt.step == CheckoutStep.SUBMITTING:
            raise SubmissionInProgressError("Commande en cours de soumission")
        previous = BACK_TRANSITIONS.get(self.attempt.step)
        if previous is not None:
            self.attempt.step = previous
            self._save()
        return self.state()

    # --- soumission ---
    def _serializable_items(self):
        # aller-retour JSON: uniquement des valeurs simples, aucune référence partagée
        return json.loads(json.dumps(self.cart.snapshot()))

    def _reusable_order(self, items, total) -> Optional[str]:
        """Une tentative relancée depuis failed réutilise sa commande si elle est inchangée et encore 'pending'."""
        if not self.attempt.order_id:
            return None
        existing = orders_repo.get_order(self.attempt.order_id)
        if (
            existing
            and existing.get("status") == order_status.PENDING
            and existing.get("items") == items
            and existing.get("total") == total
            and existing.get("payment_method") == self.attempt.payment_method
        ):
            return self.attempt.order_id
        return None

    def _require_complete(self) -> None:
        if not self.attempt.customer_info or not self.attempt.delivery_method or not self.attempt.payment_method:
            raise CheckoutValidationError("Checkout incomplet", code="checkout_incomplete")

    def place_order(self) -> Dict[str, Any]:
        self._require_step(CheckoutStep.CONFIRMING, CheckoutStep.FAILED)
        self._require_complete()

        if not self.storage.set_if_absent(self.lock_key, self.attempt.attempt_id, ttl=self.lock_seconds):
            raise SubmissionInProgressError("Commande déjà en cours de soumission")
        try:
            # état relu sous verrou: une requête concurrente a pu terminer la tentative entre-temps
            self.attempt = self._load()
            self.cart.load()
            self._require_step(CheckoutStep.CONFIRMING, CheckoutStep.FAILED)
            self._require_complete()
            return self._place_locked()
        finally:
            self.storage.delete(self.lock_key)

    def _place_locked(self) -> Dict[str, Any]:
        previous_step = self.attempt.step
        try:
            items = self._serializable_items()
            totals = compute_totals(items, self.cart.accessory_surcharge)
            total = totals["total"]
            if not items or total is None or total <= 0:
                logger.warning("checkout.orchestrator refused total=%s items=%s cart_id=%s", total, len(items), self.cart_id)
                raise CheckoutValidationError("Le total de la commande est nul ou invalide", code="invalid_total")

            self.attempt.step = CheckoutStep.SUBMITTING
            self._save()
            try:
                result = self._submit(items, total)
            except StorefrontError as e:
                self._fail(e.to_dict())
                raise
            except Exception as e:
                logger.exception("checkout.orchestrator.place_order failed cart_id=%s", self.cart_id)
                self._fail({"detail": str(e), "code": "unexpected_error", "retryable": True})
                raise
            return {**self.state(), **result}
        except CheckoutValidationError:
            self.attempt.step = previous_step
            self._save()
            raise

    def _fail(self, error: Dict[str, Any]) -> None:
        self.attempt.step = CheckoutStep.FAILED
        self.attempt.error = error
        self._save()

    def _submit(self, items, total) -> Dict[str, Any]:
        order_id = self._reusable_order(items, total)
        if order_id is None:
            row = {
                "customer_info": self.attempt.customer_info,
                "items": items,
                "total": total,
                "currency": self.currency,
                "delivery_method": self.attempt.delivery_method,
                "payment_method": self.attempt.payment_method,
                "status": order_status.PENDING,
                "user_id": self.user_id,
            }
            order_id = orders_repo.insert_order(row)
            self.attempt.order_id = order_id
            self._save()
        logger.info("checkout.orchestrator order created order_id=%s payment=%s total=%s",
                    order_id, self.attempt.payment_method, total)

        if self.attempt.payment_method == "cash":
            return self._finish_cash(order_id, items, total)
        return self._finish_card(order_id, items, total)

    def _finish_cash(self, order_id: str, items, total) -> Dict[str, Any]:
        orders_repo.update_order_status(order_id, order_status.PENDING_COD)
        snapshot = {
            "order_id": order_id,
            "customer_info": self.attempt.customer_info,
            "items": items,
            "total": total,
            "currency": self.currency,
            "delivery_method": self.attempt.delivery_method,
            "payment_method": "cash",
            "status": order_status.PENDING_COD,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        service.stash_cod_order(self.storage, self.cart_id, snapshot)
        self.attempt.step = CheckoutStep.DONE
        self.attempt.error = None
        self._save()
        try:
            self.cart.clear()
        except CartPersistenceError:
            # commande enregistrée: la tentative reste done même si le panier n'a pas pu être vidé
            logger.error("checkout.orchestrator cart not cleared after cash order order_id=%s cart_id=%s",
                         order_id, self.cart_id)
        return {"order_id": order_id, "next": "confirmation"}

    def _finish_card(self, order_id: str, items, total) -> Dict[str, Any]:
        session = bridge.create_session({
            "id": order_id,
            "items": items,
            "total": total,
            "customer_info": self.attempt.customer_info,
            "user_id": self.user_id,
        }, currency=self.currency)
        self.attempt.session_id = session["session_id"]
        self.attempt.redirect_url = session.get("url")
        self.attempt.step = CheckoutStep.DONE
        self.attempt.error = None
        self._save()
        return {"order_id": order_id, "next": "redirect", "redirect_url": session.get("url")}
