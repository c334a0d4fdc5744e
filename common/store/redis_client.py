"""Redis client for the filter backend."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from common.errors import BackendUnavailable, TransientOperationError

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client shared by all filter handles of a run."""

    def __init__(
        self,
        url: str = "redis://127.0.0.1:6379",
        max_connections: int = 10,
    ):
        self.url = url
        self.max_connections = max_connections
        self._redis: Optional[redis.Redis] = None
        self._scripts: dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is not None:
            return

        logger.info(f"Connecting to Redis at {self.url}")
        self._redis = redis.from_url(
            self.url,
            max_connections=self.max_connections,
        )

        # Test connection
        try:
            await self._redis.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            await self._redis.aclose()
            self._redis = None
            raise BackendUnavailable(f"Cannot reach Redis at {self.url}: {e}") from e
        logger.info("Connected to Redis successfully")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._scripts.clear()

        logger.info("Disconnected from Redis")

    def _client(self) -> redis.Redis:
        if not self._redis:
            raise RuntimeError("Not connected to Redis")
        return self._redis

    async def _call(self, command: str, coro) -> Any:
        """Await a Redis command, mapping driver errors onto the harness taxonomy."""
        try:
            return await coro
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise BackendUnavailable(f"Redis {command} failed: {e}") from e
        except RedisError as e:
            raise TransientOperationError(f"Redis {command} failed: {e}") from e

    async def ping(self) -> bool:
        """Check the connection."""
        return await self._call("PING", self._client().ping())

    async def flush_all(self) -> None:
        """Drop all keys on the server."""
        await self._call("FLUSHALL", self._client().flushall())
        logger.debug("Flushed all Redis state")

    # Convenience methods for the filter handles

    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        return await self._call("GET", self._client().get(key))

    async def delete(self, *keys: str) -> int:
        """Delete keys."""
        return await self._call("DEL", self._client().delete(*keys))

    async def zadd_gt(self, name: str, member: str, score: float) -> int:
        """Add a member, only raising the score of an existing one."""
        return await self._call(
            "ZADD", self._client().zadd(name, {member: score}, gt=True)
        )

    async def zscore(self, name: str, member: str) -> Optional[float]:
        """Get a member's score."""
        return await self._call("ZSCORE", self._client().zscore(name, member))

    async def zremrangebyscore(self, name: str, min_score: float, max_score: float) -> int:
        """Remove members with scores in a range."""
        return await self._call(
            "ZREMRANGEBYSCORE",
            self._client().zremrangebyscore(name, min_score, max_score),
        )

    async def run_script(self, source: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """Run a Lua script, registering it on first use."""
        script = self._scripts.get(source)
        if script is None:
            script = self._client().register_script(source)
            self._scripts[source] = script
        return await self._call("EVALSHA", script(keys=list(keys), args=list(args)))
