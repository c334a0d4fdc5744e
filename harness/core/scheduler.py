"""Fixed-rate periodic actions on the asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledAction:
    """A cancellable unit of work firing at a fixed rate after an initial delay.

    Firing ``n`` is due at ``start + delay + n * period``. A firing that
    overruns its period delays the next one, which then fires immediately;
    firings of the same action never overlap. Cancelling stops future
    firings without interrupting one that is already running.
    """

    def __init__(
        self,
        name: str,
        action: Callable[[], Awaitable[None]],
        period: float,
        initial_delay: float = 0.0,
    ):
        self.name = name
        self.action = action
        self.period = period
        self.initial_delay = initial_delay

        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._in_flight = False
        self.fired = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        """Schedule the action on the running loop."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        """Prevent future firings. Never blocks."""
        self._cancelled = True
        if self._task is not None and not self._in_flight:
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for an in-flight firing (if any) to finish after cancellation."""
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        due = loop.time() + self.initial_delay
        while not self._cancelled:
            delay = due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if self._cancelled:
                break

            self._in_flight = True
            try:
                await self.action()
            except Exception as e:
                # Actions contain their own failures; this only guards the schedule.
                logger.error(f"Unhandled error in {self.name}: {e}")
            finally:
                self._in_flight = False
            self.fired += 1
            due += self.period


class ActionGroup:
    """All scheduled actions of one run, cancelled together."""

    def __init__(self):
        self._actions: list[ScheduledAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self):
        return iter(self._actions)

    def add(self, action: ScheduledAction) -> ScheduledAction:
        self._actions.append(action)
        return action

    def start_all(self) -> None:
        for action in self._actions:
            action.start()

    def cancel_all(self) -> None:
        """Stop every action from firing again."""
        for action in self._actions:
            action.cancel()

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until no action has a firing in flight.

        Returns False if the timeout expired first.
        """
        if not self._actions:
            return True
        waiters = [asyncio.ensure_future(action.wait()) for action in self._actions]
        done, pending = await asyncio.wait(waiters, timeout=timeout)
        for waiter in pending:
            waiter.cancel()
        return not pending
