import secrets
from fastapi import Request, FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.middleware.sessions import SessionMiddleware
from storefront.config import SUPABASE_URL, COOKIE_SECURE, CORS_ORIGINS, ALLOWED_HOSTS, SESSION_SECRET_KEY
from storefront.utils.security import COOKIE_NAME

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_EXEMPT_PATHS = {
    "/api/v1/payments/webhook",
}

"""
Middlewares transverses de l'application.
- register_basic_middlewares: session, CORS et TrustedHost.
- register_security_middleware: en-têtes de sécurité, CSP, et protection CSRF (cookie + header).
Notes:
- Le webhook Stripe est exempté du CSRF (authentifié par sa signature, corps brut intact).
"""
def register_basic_middlewares(app: FastAPI) -> None:
    app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET_KEY)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=ALLOWED_HOSTS + ["*"] if "*" in CORS_ORIGINS else ALLOWED_HOSTS,
    )

def register_security_middleware(app: FastAPI) -> None:
    """
    Middleware de sécurité:
    - CSRF: pour un utilisateur connecté, vérifie X-CSRF-Token contre le cookie csrf_token
      sur les requêtes mutatives (hors webhook).
    - En-têtes: X-Frame-Options, X-Content-Type-Options, Referrer-Policy, HSTS (si secure), CSP.
    - Dépose un cookie CSRF si manquant (httponly=False pour que le front lise la valeur).
    """
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        method = request.method.upper()
        path = request.url.path
        has_session = bool(request.cookies.get(COOKIE_NAME))
        is_state_changing = method in ("POST", "PUT", "PATCH", "DELETE")
        set_csrf_cookie_value: str | None = None

        csrf_cookie = request.cookies.get(CSRF_COOKIE_NAME)
        if not csrf_cookie:
            set_csrf_cookie_value = secrets.token_urlsafe(32)

        if is_state_changing and has_session and path not in CSRF_EXEMPT_PATHS:
            header_token = request.headers.get(CSRF_HEADER_NAME, "")
            cookie_token = csrf_cookie or ""
            if not cookie_token or not header_token or not secrets.compare_digest(header_token, cookie_token):
                return JSONResponse(status_code=403, content={"detail": "CSRF verification failed"})

        response = await call_next(request)
        if "X-Frame-Options" not in response.headers:
            response.headers["X-Frame-Options"] = "DENY"
        if "X-Content-Type-Options" not in response.headers:
            response.headers["X-Content-Type-Options"] = "nosniff"
        if "Referrer-Policy" not in response.headers:
            response.headers["Referrer-Policy"] = "no-referrer"
        if COOKIE_SECURE and "Strict-Transport-Security" not in response.headers:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains; preload"

        csp_connect = ["'self'"]
        if SUPABASE_URL:
            csp_connect.append(SUPABASE_URL.rstrip("/"))
        # Swagger UI (/docs) charge ses assets depuis jsdelivr
        swagger_cdn = "https://cdn.jsdelivr.net"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "base-uri 'self'; object-src 'none'; frame-ancestors 'none'; "
            f"img-src 'self' data: https://fastapi.tiangolo.com; "
            f"style-src 'self' 'unsafe-inline' {swagger_cdn}; "
            f"script-src 'self' 'unsafe-inline' {swagger_cdn}; "
            f"connect-src {' '.join(csp_connect)}"
        )

        if set_csrf_cookie_value:
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=set_csrf_cookie_value,
                httponly=False,
                secure=COOKIE_SECURE,
                samesite="Lax",
                max_age=60 * 60,
                path="/",
            )
        return response
