"""
Limitation de débit optionnelle (checkout, verify).
- fastapi-limiter (Redis) quand le lifespan l'a initialisé
- LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire (dev, mono-process)
- Désactivée proprement si Redis est indisponible (app.state.rate_limit_enabled = False)
"""
import hashlib
import logging
import os
import time
from typing import Any, Dict
from urllib.parse import urlparse

from fastapi import HTTPException, Request, Response
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter

from grocery.utils.security import extract_token

logger = logging.getLogger(__name__)


def client_key(request: Request) -> str:
    """Clé de quota: token (haché) de l'utilisateur, sinon IP, suffixée par le chemin."""
    token = extract_token(request)
    path = request.url.path
    if token:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{digest}:{path}"
    ip = request.client.host if request.client else "local"
    return f"ip:{ip}:{path}"


def _local_hit(request: Request, times: int, seconds: int) -> None:
    now = time.time()
    key = client_key(request)
    store = getattr(request.app.state, "_rl_store", {})
    hits = [t for t in store.get(key, []) if now - t < seconds]
    if len(hits) >= times:
        raise HTTPException(status_code=429, detail="Too Many Requests")
    hits.append(now)
    store[key] = hits
    request.app.state._rl_store = store


def optional_rate_limit(times: int, seconds: int):
    async def _identifier(req: Request) -> str:
        return client_key(req)

    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            _local_hit(request, times, seconds)
            return
        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return
        if getattr(FastAPILimiter, "redis", None) is None:
            return
        await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request, response)

    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    ready = getattr(FastAPILimiter, "redis", None) is not None
    info: Dict[str, Any] = {
        "enabled": bool(enabled) if enabled is not None else None,
        "ready": ready,
        "backend": "redis" if ready else None,
    }
    redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
    if ready and redis_url:
        p = urlparse(redis_url)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}
    return info
