# module storefront.checkout.models
"""
Modèles du checkout: formulaire client, modes de livraison et de paiement, étapes.
La validation du formulaire est une simple barrière (champs non vides, email bien formé).
"""
from enum import Enum
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class CheckoutStep(str, Enum):
    COLLECTING_INFO = "collecting_info"
    CHOOSING_DELIVERY = "choosing_delivery"
    CONFIRMING = "confirming"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


class CustomerInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(min_length=1, max_length=40)
    address: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=2, max_length=2)

    @field_validator("country")
    @classmethod
    def _upper_country(cls, v: str) -> str:
        return v.upper()


class DeliveryMethod(BaseModel):
    id: str
    name: str
    price: float = 0
    currency: str = "EUR"
    estimated_days: str = ""


class DeliveryChoice(BaseModel):
    delivery_method_id: str = Field(min_length=1)
    payment_method: Literal["cash", "card"]


DELIVERY_METHODS: Dict[str, DeliveryMethod] = {
    "free_eu_delivery": DeliveryMethod(
        id="free_eu_delivery",
        name="Livraison gratuite en UE",
        price=0,
        currency="EUR",
        estimated_days="3-7",
    ),
}

PAYMENT_METHODS = {
    "cash": "Paiement à la livraison",
    "card": "Carte bancaire",
}


def delivery_method(method_id: str) -> Optional[DeliveryMethod]:
    return DELIVERY_METHODS.get(method_id)


def available_methods() -> Dict[str, Any]:
    return {
        "delivery_methods": [m.model_dump() for m in DELIVERY_METHODS.values()],
        "payment_methods": [{"id": k, "name": v} for k, v in PAYMENT_METHODS.items()],
    }
