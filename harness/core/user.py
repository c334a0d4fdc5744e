"""Simulated users issuing periodic writes and reads against one filter."""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Callable, Optional

from common.errors import BackendUnavailable, HarnessError
from common.models.scenario import Topology
from common.utils import Timer
from harness.core.recorder import LatencyRecorder
from harness.core.scheduler import ScheduledAction
from harness.filters.base import FilterHandle

logger = logging.getLogger(__name__)

FatalCallback = Callable[["UserSimulator", HarnessError], None]


class UserState(str, Enum):
    """Lifecycle of a simulated user."""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    CANCELLED = "cancelled"


class ItemSource:
    """Uniform draws from a fixed integer keyspace."""

    def __init__(self, items: int, seed):
        self.items = items
        self._rng = random.Random(seed)

    @classmethod
    def for_worker(cls, items: int, master_seed: int, index: int) -> "ItemSource":
        """Independent generator derived from the master seed and a worker index."""
        return cls(items, f"{master_seed}:{index}")

    def next_item(self) -> str:
        return str(self._rng.randrange(self.items))


class UserSimulator:
    """One synthetic client attached to one filter instance."""

    def __init__(
        self,
        user_id: str,
        server: FilterHandle,
        topology: Topology,
        items: ItemSource,
        write_recorder: LatencyRecorder,
        read_recorder: LatencyRecorder,
        initial_delay_s: float = 0.0,
        on_fatal: Optional[FatalCallback] = None,
        max_consecutive_failures: int = 50,
    ):
        self.user_id = user_id
        self.server = server
        self.topology = topology
        self.items = items
        self.write_recorder = write_recorder
        self.read_recorder = read_recorder
        self.initial_delay_s = initial_delay_s
        self.on_fatal = on_fatal
        self.max_consecutive_failures = max_consecutive_failures

        self.write_action = ScheduledAction(
            f"{user_id}:write",
            self._write_cycle,
            period=topology.write_period_ms / 1000,
            initial_delay=initial_delay_s,
        )
        self.read_action = ScheduledAction(
            f"{user_id}:read",
            self._read_cycle,
            period=topology.read_period_ms / 1000,
            initial_delay=initial_delay_s,
        )

        self.failures = 0
        self._streaks = {"write": 0, "read": 0}
        self._fatal_reported = False
        self._started = False

    @property
    def actions(self) -> list[ScheduledAction]:
        return [self.write_action, self.read_action]

    @property
    def state(self) -> UserState:
        if self.write_action.cancelled and self.read_action.cancelled:
            return UserState.CANCELLED
        if not self._started:
            return UserState.IDLE
        if self.write_action.fired or self.read_action.fired:
            return UserState.RUNNING
        return UserState.SCHEDULED

    def start(self) -> list[ScheduledAction]:
        """Schedule both cycles at the user's initial phase."""
        self._started = True
        for action in self.actions:
            action.start()
        return self.actions

    def cancel(self) -> None:
        for action in self.actions:
            action.cancel()

    async def _write_cycle(self) -> None:
        """Read-before-write against one random item."""
        item = self.items.next_item()
        try:
            with Timer() as timer:
                await self.server.report_read(item, self.topology.read_ttl_ms)
                await self.server.report_write(item)
        except HarnessError as e:
            self._failed("write", e)
            return
        self.write_recorder.record(timer.elapsed_ns)
        self._streaks["write"] = 0

    async def _read_cycle(self) -> None:
        try:
            with Timer() as timer:
                await self.server.membership_snapshot()
        except HarnessError as e:
            self._failed("read", e)
            return
        self.read_recorder.record(timer.elapsed_ns)
        self._streaks["read"] = 0

    def _failed(self, cycle: str, error: HarnessError) -> None:
        """Drop the firing's sample; escalate a persistent outage."""
        self.failures += 1
        if not isinstance(error, BackendUnavailable):
            logger.debug(f"{self.user_id} {cycle} failed: {error}")
            return

        self._streaks[cycle] += 1
        streak = self._streaks[cycle]
        if streak == 1:
            logger.warning(f"{self.user_id} {cycle} lost the backend: {error}")
        if streak >= self.max_consecutive_failures and not self._fatal_reported:
            self._fatal_reported = True
            logger.error(
                f"{self.user_id} {cycle} failed {streak} times in a row, giving up"
            )
            if self.on_fatal:
                self.on_fatal(self, error)
