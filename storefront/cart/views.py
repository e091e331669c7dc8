# module storefront.cart.views

"""Endpoints du panier.
- Le panier est identifié par un cookie httponly 'cart_id' (créé à la première requête).
- Les prix sont résolus côté serveur (prix administrateur > catalogue); le client n'envoie que des ids.
"""
from typing import Any, Dict, Iterator, Literal, Optional
from uuid import uuid4
import logging
import re

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from storefront.config import CART_COOKIE_NAME, CART_TTL_SECONDS, COOKIE_SECURE
from storefront.utils.rate_limit import optional_rate_limit
from storefront.cart import service as cart_service
from storefront.cart.store import CartStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])

_CART_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class AddItemRequest(BaseModel):
    product_id: int
    variant_id: str = Field(min_length=1)
    warranty_months: Optional[int] = Field(default=None, ge=0)
    with_default_warranty: bool = True


class UpdateItemRequest(BaseModel):
    quantity: Optional[int] = Field(default=None, ge=0)
    variant_id: Optional[str] = Field(default=None, min_length=1)
    warranty_policy_id: Optional[str] = None
    adapter: Optional[bool] = None
    plug_type: Optional[Literal["EU", "UK"]] = None


def get_cart_id(request: Request, response: Response) -> str:
    cart_id = request.cookies.get(CART_COOKIE_NAME) or ""
    if not _CART_ID_RE.match(cart_id):
        cart_id = uuid4().hex
        response.set_cookie(
            key=CART_COOKIE_NAME,
            value=cart_id,
            httponly=True,
            secure=COOKIE_SECURE,
            samesite="Lax",
            max_age=CART_TTL_SECONDS,
            path="/",
        )
    return cart_id

def get_cart_store(request: Request, cart_id: str = Depends(get_cart_id)) -> Iterator[CartStore]:
    store = CartStore.open(request.app.state.cart_storage, cart_service.cart_key(cart_id))
    try:
        yield store
    finally:
        store.close()


@router.get("")
def get_cart(store: CartStore = Depends(get_cart_store)) -> Dict[str, Any]:
    return cart_service.cart_payload(store)

@router.post("/items", dependencies=[Depends(optional_rate_limit(times=60, seconds=60))])
def add_item(payload: AddItemRequest, store: CartStore = Depends(get_cart_store)) -> Dict[str, Any]:
    """Ajoute un produit (ou incrémente sa quantité); la garantie par défaut est présélectionnée."""
    cart_service.add_product_to_cart(
        store,
        product_id=payload.product_id,
        variant_id=payload.variant_id,
        warranty_months=payload.warranty_months,
        default_warranty=payload.with_default_warranty,
    )
    return cart_service.cart_payload(store)

@router.patch("/items/{product_id}")
def update_item(product_id: int, payload: UpdateItemRequest, store: CartStore = Depends(get_cart_store)) -> Dict[str, Any]:
    """
    Mise à jour partielle d'une ligne.
    - warranty_policy_id: null explicite retire la garantie
    - quantity: 0 retire la ligne (appliqué en dernier)
    """
    if not store.has_item(product_id):
        raise HTTPException(status_code=404, detail="Produit absent du panier")
    fields = payload.model_fields_set

    if payload.variant_id is not None:
        cart_service.change_variant(store, product_id, payload.variant_id)
    if "warranty_policy_id" in fields:
        if not store.set_warranty(product_id, payload.warranty_policy_id):
            raise HTTPException(status_code=422, detail="Garantie inconnue pour ce produit")
    if payload.adapter is not None:
        store.set_accessory(product_id, payload.adapter)
    if "plug_type" in fields:
        store.set_plug_type(product_id, payload.plug_type)
    if payload.quantity is not None:
        store.set_quantity(product_id, payload.quantity)
    return cart_service.cart_payload(store)

@router.delete("/items/{product_id}")
def remove_item(product_id: int, store: CartStore = Depends(get_cart_store)) -> Dict[str, Any]:
    store.remove(product_id)
    return cart_service.cart_payload(store)

@router.delete("")
def clear_cart(store: CartStore = Depends(get_cart_store)) -> Dict[str, Any]:
    store.clear()
    return cart_service.cart_payload(store)
