"""
Envoltorio para las operaciones contra Mongo.

Cada llamada lleva un timeout acotado y un número pequeño de reintentos ante
fallos de red; si se agotan se lanza TransientStoreError en vez de colgarse.
"""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from pymongo.errors import ConnectionFailure, ExecutionTimeout

from ..config import get_settings
from ..errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (ConnectionFailure, ExecutionTimeout, asyncio.TimeoutError)


async def run(op: Callable[[], Awaitable[T]], what: str = "store op") -> T:
    """Ejecuta `op()` con timeout y reintentos. `op` debe ser idempotente."""
    settings = get_settings()
    attempts = max(1, settings.store_max_retries + 1)
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(op(), timeout=settings.store_timeout_seconds)
        except TRANSIENT_ERRORS as e:
            if attempt == attempts:
                logger.error(f"{what}: fallo transitorio tras {attempt} intentos: {e!r}")
                raise TransientStoreError() from e
            logger.warning(f"{what}: fallo transitorio (intento {attempt}/{attempts}): {e!r}")
            await asyncio.sleep(settings.store_retry_backoff_seconds * attempt)
    raise TransientStoreError()  # pragma: no cover
