import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Deletes the key only while it still holds the caller's token, so a lock
# that expired and was re-acquired elsewhere is never released by mistake.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Pushes the expiry out only while the key still holds the caller's token
_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


def queue_stats_key(client_id: str) -> str:
    return f"queue:stats:{client_id}"


class CacheService:
    """Redis access for queue statistics and processing locks.

    If *redis_client* is ``None`` (Redis unavailable) every read misses
    and every write is dropped, so callers never branch on availability.
    Redis errors are logged and treated the same way.
    """

    def __init__(self, redis_client: Optional[Redis] = None) -> None:
        self._redis: Optional[Redis] = redis_client

    @property
    def is_available(self) -> bool:
        return self._redis is not None

    async def _run(
        self, op: str, key: str, command: Callable[[Redis], Awaitable[Any]]
    ) -> Any:
        if self._redis is None:
            return None
        try:
            return await command(self._redis)
        except Exception:
            logger.warning("Redis %s failed for key %s", op, key)
            return None

    # ------------------------------------------------------------------
    # Key / value
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        return await self._run("GET", key, lambda r: r.get(key))

    async def delete(self, key: str) -> None:
        await self._run("DELETE", key, lambda r: r.delete(key))

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding invalid JSON cached under %s", key)
            return None

    async def set_json(
        self, key: str, data: Dict[str, Any], ttl: int | None = None
    ) -> None:
        try:
            payload = json.dumps(data, default=str)
        except (TypeError, ValueError):
            logger.warning("Could not serialise value for cache key %s", key)
            return
        if ttl:
            await self._run("SETEX", key, lambda r: r.setex(key, ttl, payload))
        else:
            await self._run("SET", key, lambda r: r.set(key, payload))

    # ------------------------------------------------------------------
    # Queue statistics
    # ------------------------------------------------------------------

    async def get_queue_stats(self, client_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_json(queue_stats_key(client_id))

    async def set_queue_stats(
        self, client_id: str, stats: Dict[str, Any], ttl: int
    ) -> None:
        await self.set_json(queue_stats_key(client_id), stats, ttl=ttl)

    async def invalidate_queue_stats(self, client_id: str) -> None:
        await self.delete(queue_stats_key(client_id))

    # ------------------------------------------------------------------
    # Processing locks
    # ------------------------------------------------------------------

    async def acquire_lock(self, key: str, token: str, ttl: int) -> Optional[bool]:
        """Try ``SET key token NX EX ttl``.

        Returns ``True``/``False`` for acquired/held elsewhere, or ``None``
        when Redis cannot answer so the caller can fall back to a local lock.
        """
        if self._redis is None:
            return None
        try:
            return bool(await self._redis.set(key, token, nx=True, ex=ttl))
        except Exception:
            logger.warning("Redis lock acquire failed for key %s", key)
            return None

    async def extend_lock(self, key: str, token: str, ttl: int) -> Optional[bool]:
        """Reset the expiry of a lock we still own to *ttl* seconds.

        ``False`` means the key expired or now carries another token.
        """
        result = await self._run(
            "EVAL",
            key,
            lambda r: r.eval(_EXTEND_SCRIPT, 1, key, token, ttl * 1000),
        )
        return None if result is None else bool(result)

    async def release_lock(self, key: str, token: str) -> None:
        await self._run(
            "EVAL", key, lambda r: r.eval(_RELEASE_SCRIPT, 1, key, token)
        )
