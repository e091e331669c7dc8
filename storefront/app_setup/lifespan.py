"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Construit le stockage du panier (Redis, sinon mémoire) partagé par toutes les requêtes.
- Lance le balayage périodique des commandes abandonnées si ABANDONED_SWEEP_INTERVAL_SECONDS > 0.
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis pour le rate limiting (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
  - CART_STORAGE=redis|fakeredis|memory
"""
import asyncio
import contextlib
import os
import logging
import redis
import redis.asyncio as aioredis
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from storefront.config import (
    CART_STORAGE,
    CART_REDIS_URL,
    CART_TTL_SECONDS,
    ABANDONED_ORDER_MINUTES,
    ABANDONED_SWEEP_INTERVAL_SECONDS,
)
from storefront.cart.storage import MemoryStorage, RedisStorage
from storefront.orders.sweep import run_periodic_sweep

try:
    import fakeredis  # tests only
    from fakeredis.aioredis import FakeRedis
except ImportError:
    fakeredis = None
    FakeRedis = None

logger = logging.getLogger("uvicorn.error")

async def init_rate_limiter(app: FastAPI) -> None:
    """
    Configure le rate limiting et gère les fallbacks.
    - En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    - Les logs indiquent l'état effectif (enabled/disabled) pour observabilité.
    """
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            if not FakeRedis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_enabled = False
            logger.warning(f"Rate limiting disabled due to init error: {e}")

def build_cart_storage(kind: str = CART_STORAGE):
    """
    redis: stockage partagé entre workers (TTL + pub/sub); repli mémoire si Redis est injoignable.
    fakeredis: même code Redis en process (tests).
    memory: un seul process.
    """
    if kind == "memory":
        logger.info("Cart storage: memory")
        return MemoryStorage()
    if kind == "fakeredis":
        if fakeredis is None:
            raise RuntimeError("CART_STORAGE=fakeredis mais fakeredis n'est pas installé.")
        logger.info("Cart storage: fakeredis")
        return RedisStorage(fakeredis.FakeRedis(decode_responses=True), ttl=CART_TTL_SECONDS)
    try:
        client = redis.Redis.from_url(CART_REDIS_URL, decode_responses=True)
        client.ping()
        logger.info("Cart storage: redis")
        return RedisStorage(client, ttl=CART_TTL_SECONDS)
    except redis.RedisError as e:
        logger.warning(f"Cart storage falling back to memory (single process) due to redis error: {e}")
        return MemoryStorage()

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_rate_limiter(app)
    if getattr(app.state, "cart_storage", None) is None:
        app.state.cart_storage = build_cart_storage()

    sweep_task = None
    if ABANDONED_SWEEP_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(
            run_periodic_sweep(ABANDONED_SWEEP_INTERVAL_SECONDS, ABANDONED_ORDER_MINUTES)
        )
        logger.info("Abandoned order sweep every %ss (older than %s min)",
                    ABANDONED_SWEEP_INTERVAL_SECONDS, ABANDONED_ORDER_MINUTES)
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task
        app.state.cart_storage.close()
