"""
Gestionnaires d'exceptions.
- StorefrontError: JSON {"detail", "code", "retryable"[, "details"]} avec le statut HTTP de l'erreur.
- HTTPException (401/403 compris): gestionnaire JSON par défaut de FastAPI, sans redirection.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.errors import StorefrontError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error("%s %s failed code=%s detail=%s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
