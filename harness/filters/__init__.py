"""Filter handles the harness drives."""

from harness.filters.base import FilterConfig, FilterHandle
from harness.filters.expiring import (
    ExpiringFilter,
    MemoryQueueFilter,
    RedisQueueFilter,
    create_filter,
)

__all__ = [
    "FilterConfig",
    "FilterHandle",
    "ExpiringFilter",
    "MemoryQueueFilter",
    "RedisQueueFilter",
    "create_filter",
]
