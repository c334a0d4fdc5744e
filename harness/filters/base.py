"""Filter handle interface used by the load harness."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Optional
from pydantic import BaseModel, Field


class FilterConfig(BaseModel):
    """Sizing and naming of one expiring filter."""
    name: str = Field(..., description="Key prefix of the filter in the backing store")
    expected_insertions: int = Field(default=100_000, gt=0)
    false_positive_rate: float = Field(default=0.01, gt=0, lt=1)
    bit_size: Optional[int] = Field(default=None, gt=0, description="Overrides the derived size")
    hash_functions: Optional[int] = Field(default=None, gt=0, description="Overrides the derived count")
    expiry_poll_interval_s: float = Field(default=0.05, gt=0)

    @property
    def size(self) -> int:
        """Number of bits, derived from insertions and error rate unless set."""
        if self.bit_size is not None:
            return self.bit_size
        n = self.expected_insertions
        return max(1, math.ceil(-n * math.log(self.false_positive_rate) / (math.log(2) ** 2)))

    @property
    def hashes(self) -> int:
        if self.hash_functions is not None:
            return self.hash_functions
        return max(1, round(self.size / self.expected_insertions * math.log(2)))

    def named(self, name: str) -> "FilterConfig":
        return self.model_copy(update={"name": name})


class FilterHandle(ABC):
    """Operations the harness issues against one filter instance.

    Every call may block on network I/O.
    """

    def __init__(self, config: FilterConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    async def start(self) -> None:
        """Start any background work the filter needs."""

    @abstractmethod
    async def clear(self) -> None:
        """Reset the filter to empty. Idempotent."""

    @abstractmethod
    async def report_read(self, item: str, ttl_ms: int) -> None:
        """Record a read of ``item`` that stays cached for ``ttl_ms``."""

    @abstractmethod
    async def report_write(self, item: str) -> None:
        """Record that ``item`` changed now."""

    @abstractmethod
    async def membership_snapshot(self) -> frozenset[int]:
        """Current set positions of the filter; empty once everything expired."""

    async def close(self) -> None:
        """Stop background work, keeping the filter's state."""

    async def remove(self) -> None:
        """Clear the filter and stop its background work."""
        await self.close()
        await self.clear()

    async def is_empty(self) -> bool:
        return not await self.membership_snapshot()
