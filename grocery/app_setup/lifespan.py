"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Construit les services (Supabase, Paystack, moteur) une seule fois, sauf si app.state.services est déjà posé (tests).
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Lance la tâche de balayage (expiration + reprise des effets de bord) si SWEEP_INTERVAL_SECONDS > 0.
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
"""
import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from grocery import config
from grocery.infra.container import build_services, is_configured
from grocery.orders.sweeper import sweep_forever

logger = logging.getLogger("uvicorn.error")


async def init_rate_limiter(app: FastAPI) -> None:
    """En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement."""
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        app.state.rate_limit_enabled = os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1"
        if app.state.rate_limit_enabled:
            logger.warning("Rate limiting falling back to local in-memory due to init error: %s", e)
        else:
            logger.warning("Rate limiting disabled due to init error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_rate_limiter(app)

    owns_services = False
    if getattr(app.state, "services", None) is None:
        if is_configured():
            app.state.services = build_services()
            owns_services = True
            logger.info("Services built (Supabase + Paystack)")
        else:
            app.state.services = None
            logger.warning("SUPABASE_URL/keys missing: order endpoints will answer 503")

    sweep_task = None
    if app.state.services is not None and config.SWEEP_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(
            sweep_forever(app.state.services, config.SWEEP_INTERVAL_SECONDS, config.SIDE_EFFECT_RETRY_GRACE_SECONDS)
        )

    yield

    if sweep_task:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    if owns_services:
        app.state.services.close()
