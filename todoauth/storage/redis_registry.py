from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Iterable, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from todoauth.logging import get_logger
from todoauth.storage.errors import StoreUnavailable

logger = get_logger(__name__)


class RedisRegistry:
    """Credential registry on Redis.

    Plain reads and writes go straight to the client; rotation and family
    revocation are Lua scripts so the read and the rewrite happen in one
    server-side step. Every call is bounded by ``operation_timeout``.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # KEYS[1] family key; ARGV: bound prefix, family id, new bound id, ttl
    _REBIND_SCRIPT = """
local previous = redis.call('GET', KEYS[1])
if not previous then
  return false
end
redis.call('DEL', ARGV[1] .. previous)
redis.call('SET', ARGV[1] .. ARGV[3], ARGV[2], 'EX', tonumber(ARGV[4]))
redis.call('SET', KEYS[1], ARGV[3], 'KEEPTTL')
return previous
"""

    # KEYS[1] family key; ARGV[1] bound prefix
    _UNBIND_SCRIPT = """
local previous = redis.call('GET', KEYS[1])
if not previous then
  return false
end
redis.call('DEL', KEYS[1], ARGV[1] .. previous)
return previous
"""

    def __init__(
        self,
        redis_url: str,
        *,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Any = None,
    ) -> None:
        self.redis_url = redis_url
        self.operation_timeout = operation_timeout
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=operation_timeout,
            socket_connect_timeout=operation_timeout,
        )
        self._rebind = self.client.register_script(self._REBIND_SCRIPT)
        self._unbind = self.client.register_script(self._UNBIND_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        from redis import Redis

        # short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def _run(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("registry_timeout", operation=operation)
            raise StoreUnavailable(
                "registry operation timed out", operation=operation, timed_out=True
            ) from exc
        except RedisError as exc:
            logger.warning("registry_unavailable", operation=operation, error=str(exc))
            raise StoreUnavailable(
                "registry unavailable", operation=operation
            ) from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._run("get", self.client.get(key))

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._run("set", self.client.set(key, value, ex=max(1, int(ttl))))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._run("delete", self.client.delete(*keys))

    async def set_many(self, entries: Iterable[Tuple[str, str, int]]) -> None:
        pipe = self.client.pipeline(transaction=True)
        for key, value, ttl in entries:
            pipe.set(key, value, ex=max(1, int(ttl)))
        await self._run("set_many", pipe.execute())

    async def rebind(
        self,
        family_key: str,
        bound_prefix: str,
        family_id: str,
        new_bound_id: str,
        ttl: int,
    ) -> Optional[str]:
        return await self._run(
            "rebind",
            self._rebind(
                keys=[family_key],
                args=[bound_prefix, family_id, new_bound_id, max(1, int(ttl))],
            ),
        )

    async def unbind(self, family_key: str, bound_prefix: str) -> Optional[str]:
        return await self._run(
            "unbind", self._unbind(keys=[family_key], args=[bound_prefix])
        )

    async def close(self) -> None:
        await self.client.aclose()
