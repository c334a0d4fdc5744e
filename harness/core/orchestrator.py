"""Workload orchestration: topology setup, timed load, shutdown."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, Optional

from common.errors import BackendUnavailable, HarnessError
from common.models.scenario import Topology
from harness.core.convergence import ConvergenceMonitor
from harness.core.recorder import LatencyRecorder
from harness.core.scheduler import ActionGroup
from harness.core.user import ItemSource, UserSimulator
from harness.filters.base import FilterHandle

logger = logging.getLogger(__name__)

FilterFactory = Callable[[int], FilterHandle]


class ServerGroup:
    """Independently created filters, each with its own population of users."""

    def __init__(self, filters: list[FilterHandle]):
        self.filters = filters
        self.users: list[UserSimulator] = []

    @classmethod
    async def create(cls, count: int, factory: FilterFactory) -> "ServerGroup":
        """Create ``count`` filters, clearing each before use."""
        filters = []
        try:
            for index in range(count):
                handle = factory(index)
                await handle.clear()
                await handle.start()
                filters.append(handle)
        except HarnessError:
            await cls(filters).close()
            raise
        logger.info(f"Created {count} filters")
        return cls(filters)

    def start_users(
        self,
        topology: Topology,
        write_recorder: LatencyRecorder,
        read_recorder: LatencyRecorder,
        on_fatal=None,
        max_consecutive_failures: int = 50,
    ) -> ActionGroup:
        """Start every user and collect their scheduled actions."""
        jitter = random.Random(topology.seed)
        actions = ActionGroup()
        for server_index, handle in enumerate(self.filters):
            for user_index in range(topology.users_per_server):
                worker = server_index * topology.users_per_server + user_index
                user = UserSimulator(
                    user_id=f"user-{server_index}-{user_index}",
                    server=handle,
                    topology=topology,
                    items=ItemSource.for_worker(topology.items, topology.seed, worker),
                    write_recorder=write_recorder,
                    read_recorder=read_recorder,
                    initial_delay_s=jitter.randrange(topology.write_period_ms) / 1000,
                    on_fatal=on_fatal,
                    max_consecutive_failures=max_consecutive_failures,
                )
                for action in user.start():
                    actions.add(action)
                self.users.append(user)
        logger.info(f"Started {len(self.users)} users ({len(actions)} scheduled actions)")
        return actions

    @property
    def failed_firings(self) -> int:
        return sum(user.failures for user in self.users)

    async def close(self, remove: bool = False) -> None:
        """Stop the filters' background work, optionally deleting their state."""
        for handle in self.filters:
            try:
                if remove:
                    await handle.remove()
                else:
                    await handle.close()
            except HarnessError as e:
                logger.warning(f"Failed to close filter {handle.name}: {e}")


class WorkloadOrchestrator:
    """Runs one timed load phase, then waits for the filters to drain."""

    def __init__(
        self,
        factory: FilterFactory,
        write_recorder: LatencyRecorder,
        read_recorder: LatencyRecorder,
        monitor: Optional[ConvergenceMonitor] = None,
        drain_timeout_s: float = 10.0,
        grace_period_s: float = 0.0,
        max_consecutive_failures: int = 50,
        remove_filters: bool = False,
    ):
        self.factory = factory
        self.write_recorder = write_recorder
        self.read_recorder = read_recorder
        self.monitor = monitor or ConvergenceMonitor()
        self.drain_timeout_s = drain_timeout_s
        self.grace_period_s = grace_period_s
        self.max_consecutive_failures = max_consecutive_failures
        self.remove_filters = remove_filters

        self.group: Optional[ServerGroup] = None
        self.actions: Optional[ActionGroup] = None
        self.runtime_ms = 0
        self.cleanup_seconds: Optional[float] = None
        self._fatal: Optional[asyncio.Future] = None

    async def run(self, topology: Topology) -> bool:
        """Run the load phase and resolve once every filter is empty."""
        topology.check()

        try:
            self.group = await ServerGroup.create(topology.servers, self.factory)
        except HarnessError as e:
            raise e.with_phase("setup")

        try:
            await self._run_load(topology)
            return await self._converge()
        finally:
            await self.group.close(remove=self.remove_filters)

    async def _run_load(self, topology: Topology) -> None:
        loop = asyncio.get_running_loop()
        self._fatal = loop.create_future()
        start = time.monotonic()

        self.actions = self.group.start_users(
            topology,
            self.write_recorder,
            self.read_recorder,
            on_fatal=self._on_fatal,
            max_consecutive_failures=self.max_consecutive_failures,
        )
        countdown = asyncio.create_task(
            asyncio.sleep(topology.run_duration_s), name="run-countdown"
        )
        try:
            await asyncio.wait([countdown, self._fatal], return_when=asyncio.FIRST_COMPLETED)
        finally:
            countdown.cancel()
            await self._stop_load(start)

        if self._fatal.done():
            error = self._fatal.result()
            raise BackendUnavailable(
                f"Load aborted, backend unavailable: {error}", phase="load"
            )

    async def _stop_load(self, start: float) -> None:
        """Cancel every action and wait for in-flight firings to finish."""
        self.runtime_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Ending Test (Runtime: {self.runtime_ms}ms)")

        self.actions.cancel_all()
        if not await self.actions.drain(self.drain_timeout_s):
            logger.warning(
                f"Scheduled actions still in flight after {self.drain_timeout_s}s"
            )
        if self.grace_period_s > 0:
            await asyncio.sleep(self.grace_period_s)

        logger.info(
            f"Processes canceled (Runtime: {int((time.monotonic() - start) * 1000)}ms)"
        )

    async def _converge(self) -> bool:
        started = time.monotonic()
        try:
            result = await self.monitor.wait_until_empty(self.group.filters)
        except HarnessError as e:
            raise e.with_phase("convergence")
        self.cleanup_seconds = time.monotonic() - started
        logger.info(f"Bloom filter cleanup time: {self.cleanup_seconds:.3f}s")
        return result

    def _on_fatal(self, user: UserSimulator, error: HarnessError) -> None:
        if self._fatal is not None and not self._fatal.done():
            self._fatal.set_result(error)

    @property
    def failed_firings(self) -> int:
        return self.group.failed_firings if self.group else 0
