# module storefront.app
from fastapi import FastAPI

from storefront.app_setup.lifespan import lifespan
from storefront.app_setup.middlewares import register_basic_middlewares, register_security_middleware
from storefront.app_setup.exceptions import register_exception_handlers
from storefront.app_setup.routers import register_routers

def create_app() -> FastAPI:
    """
    Crée et configure l'instance FastAPI.
    Étapes et ordre:
      1) register_basic_middlewares: session, CORS, TrustedHost.
      2) register_security_middleware: CSRF + en-têtes de sécurité + CSP.
      3) register_exception_handlers: StorefrontError -> JSON typé, 401/403 HTML -> /auth.
      4) register_routers: cart, checkout, pricing, payments, admin, health.
    Le stockage du panier est créé par le lifespan (app.state.cart_storage), sauf s'il est déjà fourni.
    """
    app = FastAPI(title="Storefront Checkout API", lifespan=lifespan)
    app.state.cart_storage = None
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    return app

# App globale
app = create_app()
