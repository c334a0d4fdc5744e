"""Backing store access."""

from common.store.redis_client import RedisClient

__all__ = ["RedisClient"]
