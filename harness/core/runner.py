"""Sequences named test runs and reports their latencies."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Sequence

from common.errors import HarnessError
from common.models.metrics import LatencySummary, RunReport
from common.models.scenario import Scenario, Topology
from common.store.redis_client import RedisClient
from common.utils import append_jsonl
from harness.config import HarnessSettings
from harness.core.convergence import ConvergenceMonitor
from harness.core.orchestrator import WorkloadOrchestrator
from harness.core.recorder import LatencyRecorder
from harness.filters.base import FilterHandle
from harness.filters.expiring import create_filter

logger = logging.getLogger(__name__)

FilterBuilder = Callable[[Scenario, int], FilterHandle]


def redis_filter_builder(client: RedisClient, settings: HarnessSettings) -> FilterBuilder:
    """Build each scenario's filters on ``client`` with its queue strategy."""
    def build(scenario: Scenario, index: int) -> FilterHandle:
        return create_filter(scenario.queue, settings.filter_config(index), client)
    return build


class Backend(Protocol):
    async def flush_all(self) -> None: ...


class TestRun:
    """Recorders and results of one isolated run."""

    __test__ = False

    def __init__(self, scenario: Scenario, topology: Topology):
        self.scenario = scenario
        self.topology = topology
        self.read_recorder = LatencyRecorder("reads")
        self.write_recorder = LatencyRecorder("writes")

    @property
    def name(self) -> str:
        return self.scenario.name

    def report(self, orchestrator: WorkloadOrchestrator) -> RunReport:
        return RunReport(
            name=self.name,
            queue=self.scenario.queue.value,
            reads=LatencySummary.from_snapshot(self.read_recorder.snapshot()),
            writes=LatencySummary.from_snapshot(self.write_recorder.snapshot()),
            expected_writes=self.topology.expected_writes,
            runtime_ms=orchestrator.runtime_ms,
            cleanup_seconds=orchestrator.cleanup_seconds,
            failed_firings=orchestrator.failed_firings,
        )


class RunController:
    """Runs scenarios one after another against a freshly flushed backend."""

    def __init__(
        self,
        backend: Backend,
        settings: HarnessSettings,
        filter_builder: FilterBuilder,
        output: Callable[[str], None] = print,
    ):
        self.backend = backend
        self.settings = settings
        self.filter_builder = filter_builder
        self.output = output

    def _orchestrator(self, scenario: Scenario, test_run: TestRun) -> WorkloadOrchestrator:
        return WorkloadOrchestrator(
            factory=lambda index: self.filter_builder(scenario, index),
            write_recorder=test_run.write_recorder,
            read_recorder=test_run.read_recorder,
            monitor=ConvergenceMonitor(
                poll_interval_s=self.settings.convergence_poll_interval_s,
                timeout_s=self.settings.convergence_timeout_s,
            ),
            drain_timeout_s=self.settings.drain_timeout_s,
            grace_period_s=self.settings.grace_period_s,
            max_consecutive_failures=self.settings.max_consecutive_failures,
            remove_filters=self.settings.remove_filters,
        )

    async def run_scenario(self, scenario: Scenario, topology: Optional[Topology] = None) -> RunReport:
        """Flush the backend, run one scenario and print its report."""
        topology = scenario.topology or topology or self.settings.topology()
        self.output(f"-------------- {scenario.name} --------------")
        logger.info(
            f"Starting run '{scenario.name}': {topology.servers} servers x "
            f"{topology.users_per_server} users, {topology.run_duration_s}s, "
            f"{scenario.queue.value} queue"
        )

        try:
            await self.backend.flush_all()
        except HarnessError as e:
            raise e.with_phase("setup")

        test_run = TestRun(scenario, topology)
        orchestrator = self._orchestrator(scenario, test_run)
        await orchestrator.run(topology)

        report = test_run.report(orchestrator)
        for line in report.report_lines():
            self.output(line)
        self.output(f"Bloom filter cleanup time: {report.cleanup_seconds:.3f}s")

        if self.settings.results_path:
            append_jsonl(self.settings.results_path, report.to_jsonl())
        return report

    async def run_all(
        self,
        scenarios: Sequence[Scenario],
        topology: Optional[Topology] = None,
    ) -> list[RunReport]:
        """Run scenarios strictly in sequence."""
        reports = []
        for scenario in scenarios:
            try:
                reports.append(await self.run_scenario(scenario, topology))
            except HarnessError as e:
                logger.error(
                    f"Run '{scenario.name}' failed during {e.phase or 'setup'}: {e.message}"
                )
                raise
        logger.info(f"Completed {len(reports)} runs")
        return reports
