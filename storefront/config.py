# storefront.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale de la boutique.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe), sécurité cookies, CORS/hosts
- Paramètres du pipeline panier -> commande -> paiement (devise, supplément adaptateur,
  stockage du panier, verrou de soumission, balayage des commandes abandonnées)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

# Supabase: URL et clés (anon/service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
SESSION_SECRET_KEY = os.getenv("SESSION_SECRET_KEY", "replace_me_with_a_long_random_secret")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Stripe: clés et secret webhook
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")

# Redirections du checkout hébergé ({CHECKOUT_SESSION_ID} est substitué par Stripe)
CHECKOUT_SUCCESS_URL = _clean_env(
    os.getenv("CHECKOUT_SUCCESS_URL") or f"{BASE_URL}/order-success?session_id={{CHECKOUT_SESSION_ID}}"
)
CHECKOUT_CANCEL_URL = _clean_env(os.getenv("CHECKOUT_CANCEL_URL") or f"{BASE_URL}/checkout")
ALLOWED_SHIPPING_COUNTRIES = [
    c.strip().upper() for c in os.getenv("ALLOWED_SHIPPING_COUNTRIES", "CZ,SK,DE,AT,PL,HU").split(",") if c.strip()
]

# Prix
STORE_CURRENCY = _clean_env(os.getenv("STORE_CURRENCY") or "CZK").upper()
ACCESSORY_SURCHARGE = _int_env("ACCESSORY_SURCHARGE", 200)
BASE_VARIANT_LENGTH = _int_env("BASE_VARIANT_LENGTH", 5)

# Stockage du panier (redis | memory)
CART_STORAGE = _clean_env(os.getenv("CART_STORAGE") or "redis").lower()
CART_REDIS_URL = _clean_env(os.getenv("CART_REDIS_URL") or os.getenv("RATE_LIMIT_REDIS_URL") or "redis://127.0.0.1:6379/1")
CART_TTL_SECONDS = _int_env("CART_TTL_SECONDS", 60 * 60 * 24 * 30)
CART_COOKIE_NAME = "cart_id"
CHECKOUT_LOCK_SECONDS = _int_env("CHECKOUT_LOCK_SECONDS", 120)

# Commandes abandonnées (0 = balayage en tâche de fond désactivé)
ABANDONED_ORDER_MINUTES = _int_env("ABANDONED_ORDER_MINUTES", 24 * 60)
ABANDONED_SWEEP_INTERVAL_SECONDS = _int_env("ABANDONED_SWEEP_INTERVAL_SECONDS", 0)
