from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from storefront.config import STORE_CURRENCY
from storefront.utils.security import require_admin
from storefront.pricing import repository as pricing_repo
from storefront.pricing import resolver

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/pricing", tags=["Pricing API"])
admin_router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


class PriceOverrideRequest(BaseModel):
    product_id: int
    variant_id: str = Field(min_length=1)
    currency: str = Field(default=STORE_CURRENCY, min_length=3, max_length=3)
    price: float = Field(ge=0, allow_inf_nan=False)
    is_active: bool = True


# module storefront.pricing.views
@router.get("/quote")
def quote(product_id: int, variant_id: str, currency: str = STORE_CURRENCY) -> Dict[str, Any]:
    """
    Prix unitaire faisant autorité + devis de garantie pour chaque politique applicable.
    Les devis issus du repli par variante de base portent estimated=true.
    """
    currency = currency.upper()
    unit_price = resolver.resolve_unit_price(product_id, variant_id, currency)
    policies = resolver.effective_policies(product_id, variant_id)
    default = resolver.pick_default_policy(policies)
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "currency": currency,
        "unit_price": unit_price,
        "warranties": [resolver.build_quote(p, unit_price) for p in policies],
        "default_policy_id": str(default.get("id")) if default else None,
    }

@admin_router.put("/prices")
def put_price_override(payload: PriceOverrideRequest, admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    row = pricing_repo.upsert_price_override(
        payload.product_id,
        payload.variant_id,
        payload.currency.upper(),
        payload.price,
        is_active=payload.is_active,
    )
    if row is None:
        raise HTTPException(status_code=502, detail="Enregistrement du prix impossible")
    logger.info("pricing.views override saved by=%s product_id=%s variant_id=%s price=%s active=%s",
                admin.get("id"), payload.product_id, payload.variant_id, payload.price, payload.is_active)
    return {"status": "ok", "override": row}
