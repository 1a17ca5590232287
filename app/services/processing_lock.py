import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from app.core.cache import CacheService

logger = logging.getLogger(__name__)


class ProcessingLockManager:
    """Named, non-blocking mutual exclusion.

    Redis ``SET NX EX`` is used when a cache is available so that several
    worker processes share one lock per name.  Without Redis (or when it
    stops answering) the manager falls back to process-local
    ``asyncio.Lock`` objects, which still serialise coroutines within a
    single worker.  Local locks are dropped again once released.

    Long holders call :meth:`refresh` to push the Redis expiry out so the
    key cannot lapse while they are still working.

    Usage::

        async with locks.hold(f"queue:process:{client_id}") as acquired:
            if not acquired:
                return  # someone else is working on it
            ...
    """

    def __init__(self, cache: Optional[CacheService] = None, ttl: int = 900) -> None:
        self._cache = cache
        self._ttl = ttl
        self._local: Dict[str, asyncio.Lock] = {}
        self._tokens: Dict[str, str] = {}

    def is_locked(self, name: str) -> bool:
        """Local view only; used for diagnostics."""
        lock = self._local.get(name)
        return bool(lock and lock.locked())

    async def refresh(self, name: str) -> bool:
        """Extend a held Redis lock by the full TTL.

        Returns ``False`` only when Redis reports the lock now belongs to
        someone else.  Local locks cannot expire and always refresh.
        """
        token = self._tokens.get(name)
        if token is None or self._cache is None:
            return True
        extended = await self._cache.extend_lock(f"lock:{name}", token, self._ttl)
        if extended is False:
            logger.warning("Lock %s expired while held", name)
            return False
        return True

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[bool]:
        token = uuid.uuid4().hex
        acquired = None
        if self._cache is not None:
            acquired = await self._cache.acquire_lock(f"lock:{name}", token, self._ttl)

        if acquired is not None:
            if not acquired:
                logger.info("Lock %s is held elsewhere", name)
                yield False
                return
            self._tokens[name] = token
            try:
                yield True
            finally:
                self._tokens.pop(name, None)
                await self._cache.release_lock(f"lock:{name}", token)
            return

        lock = self._local.setdefault(name, asyncio.Lock())
        if lock.locked():
            logger.info("Lock %s is held by another task", name)
            yield False
            return
        try:
            async with lock:
                yield True
        finally:
            # Drop released local locks
            if self._local.get(name) is lock and not lock.locked():
                del self._local[name]
