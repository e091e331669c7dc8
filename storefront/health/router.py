from fastapi import APIRouter, Request
from storefront.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root(request: Request):
    storage = getattr(request.app.state, "cart_storage", None)
    return {"ok": True, "cart_storage": type(storage).__name__ if storage is not None else None}

@router.get("/rate-limit")
def health_rate_limit(request: Request):
    return rate_limit_health_info(request)
