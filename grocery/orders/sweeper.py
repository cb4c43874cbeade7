"""
Balayage périodique (tâche asyncio lancée par le lifespan):
1) expire les pending orders 'initialized' au-delà du TTL
2) reprend les effets de bord (stock, facture, notification) restés pending/failed

Idempotent avec confirm(): une confirmation tardive d'une pending order expirée commit quand même.
"""
import asyncio
import logging
from typing import Dict

from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


def run_sweep(services, retry_grace_seconds: int = 120) -> Dict[str, int]:
    expired = services.engine.expire_stale()
    retried = services.fulfillment.retry_outstanding(grace_seconds=retry_grace_seconds)
    return {"expired": expired, "retried": retried}


async def sweep_forever(services, interval_seconds: int, retry_grace_seconds: int = 120) -> None:
    """Boucle jusqu'à annulation de la tâche; une erreur de balayage est loggée puis retentée au tour suivant."""
    while True:
        try:
            result = await run_in_threadpool(run_sweep, services, retry_grace_seconds)
            if result["expired"] or result["retried"]:
                logger.info("sweeper expired=%s retried=%s", result["expired"], result["retried"])
        except Exception:
            logger.exception("sweeper iteration failed")
        await asyncio.sleep(interval_seconds)
