"""Waits for filters to drain back to empty after load stops."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Sequence

from common.errors import ConvergenceTimeout
from harness.filters.base import FilterHandle

logger = logging.getLogger(__name__)


class ConvergenceMonitor:
    """Polls filter snapshots until every one of them is empty."""

    def __init__(self, poll_interval_s: float = 0.5, timeout_s: Optional[float] = None):
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self.polls = 0

    async def check(self, filters: Sequence[FilterHandle]) -> bool:
        """True if all filters report an empty snapshot right now."""
        results = await asyncio.gather(
            *(f.membership_snapshot() for f in filters),
            return_exceptions=True,
        )
        all_empty = True
        for handle, result in zip(filters, results):
            if isinstance(result, Exception):
                # Unknown state is not empty
                logger.warning(f"Snapshot of {handle.name} failed: {result}")
                all_empty = False
            elif result:
                all_empty = False
        return all_empty

    async def wait_until_empty(self, filters: Sequence[FilterHandle]) -> bool:
        """Return once every filter is empty, or raise ConvergenceTimeout."""
        started = time.monotonic()
        self.polls = 0
        while True:
            self.polls += 1
            if await self.check(filters):
                logger.info(
                    f"All {len(filters)} filters empty after {self.polls} polls "
                    f"({time.monotonic() - started:.1f}s)"
                )
                return True

            elapsed = time.monotonic() - started
            if self.timeout_s is not None and elapsed + self.poll_interval_s > self.timeout_s:
                raise ConvergenceTimeout(
                    f"Filters still not empty after {elapsed:.1f}s ({self.polls} polls)",
                    phase="convergence",
                )
            await asyncio.sleep(self.poll_interval_s)
