"""Unit tests for workload orchestration."""

import asyncio
import time

import pytest

from common.errors import BackendUnavailable, ConfigurationError, HarnessError
from common.models.scenario import Topology
from harness.core.convergence import ConvergenceMonitor
from harness.core.orchestrator import ServerGroup, WorkloadOrchestrator
from harness.core.recorder import LatencyRecorder

from fakes import InMemoryFilter


class FilterFactory:
    """Builds in-process filters and remembers them."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created: list[InMemoryFilter] = []

    def __call__(self, index: int) -> InMemoryFilter:
        handle = InMemoryFilter(name=f"mem:{index}", **self.kwargs)
        self.created.append(handle)
        return handle


def make_orchestrator(factory, **kwargs) -> WorkloadOrchestrator:
    return WorkloadOrchestrator(
        factory=factory,
        write_recorder=LatencyRecorder("writes"),
        read_recorder=LatencyRecorder("reads"),
        monitor=ConvergenceMonitor(poll_interval_s=0.05, timeout_s=5.0),
        drain_timeout_s=2.0,
        **kwargs,
    )


@pytest.mark.asyncio
class TestServerGroup:
    """Tests for filter setup and user wiring."""

    async def test_create_clears_and_starts(self):
        """Test every filter is cleared and started before use."""
        factory = FilterFactory()

        group = await ServerGroup.create(3, factory)

        assert [f.name for f in group.filters] == ["mem:0", "mem:1", "mem:2"]
        assert all(f.clears == 1 and f.started for f in factory.created)

    async def test_failed_setup_closes_created_filters(self):
        """Test filters created before a failure are closed again."""
        created = []

        def factory(index):
            if index == 2:
                raise BackendUnavailable("down")
            handle = InMemoryFilter(name=f"mem:{index}")
            created.append(handle)
            return handle

        with pytest.raises(BackendUnavailable):
            await ServerGroup.create(3, factory)

        assert len(created) == 2
        assert all(f.closed for f in created)

    async def test_start_users(self, small_topology):
        """Test users are spread over filters with jittered starts."""
        topology = small_topology.model_copy(update={"servers": 2, "users_per_server": 3})
        group = await ServerGroup.create(2, FilterFactory())

        actions = group.start_users(
            topology, LatencyRecorder("writes"), LatencyRecorder("reads")
        )
        actions.cancel_all()
        await actions.drain(1.0)

        assert len(group.users) == 6
        assert len(actions) == 12
        assert group.users[4].user_id == "user-1-1"
        assert group.users[4].server is group.filters[1]
        assert all(0 <= u.initial_delay_s < 0.1 for u in group.users)


@pytest.mark.asyncio
class TestWorkloadOrchestrator:
    """Tests for timed load and shutdown."""

    async def test_single_user_run(self, small_topology):
        """Test one user at 100ms periods for 1s fires about ten times each."""
        factory = FilterFactory()
        orchestrator = make_orchestrator(factory)

        assert await orchestrator.run(small_topology) is True

        assert 9 <= orchestrator.write_recorder.count <= 11
        assert 9 <= orchestrator.read_recorder.count <= 11
        assert 900 <= orchestrator.runtime_ms < 1500
        assert orchestrator.cleanup_seconds is not None
        assert orchestrator.failed_firings == 0

    async def test_counts_stable_after_cancellation(self, small_topology):
        """Test no samples are recorded once the run has returned."""
        orchestrator = make_orchestrator(FilterFactory())
        await orchestrator.run(small_topology)
        writes = orchestrator.write_recorder.count
        reads = orchestrator.read_recorder.count

        await asyncio.sleep(0.3)

        assert orchestrator.write_recorder.count == writes
        assert orchestrator.read_recorder.count == reads

    async def test_invalid_topology_rejected_before_setup(self, small_topology):
        """Test a zero-server topology fails before any filter is created."""
        factory = FilterFactory()
        orchestrator = make_orchestrator(factory)

        with pytest.raises(ConfigurationError):
            await orchestrator.run(small_topology.model_copy(update={"servers": 0}))

        assert factory.created == []

    async def test_setup_failure_phase(self, small_topology):
        """Test errors while creating filters are tagged as setup."""
        def factory(index):
            raise BackendUnavailable("down")

        with pytest.raises(HarnessError) as exc_info:
            await make_orchestrator(factory).run(small_topology)

        assert exc_info.value.phase == "setup"

    async def test_backend_outage_aborts_load(self):
        """Test a persistent outage ends the load phase early."""
        topology = Topology(
            servers=1, users_per_server=2, write_period_ms=50, read_period_ms=50,
            run_duration_s=5.0, items=100, read_ttl_ms=100, seed=1,
        )
        factory = FilterFactory(error=BackendUnavailable("down"))
        orchestrator = make_orchestrator(factory, max_consecutive_failures=3)

        started = time.monotonic()
        with pytest.raises(BackendUnavailable) as exc_info:
            await orchestrator.run(topology)

        assert exc_info.value.phase == "load"
        assert time.monotonic() - started < 2.0
        assert orchestrator.failed_firings >= 3
        assert all(f.closed for f in factory.created)

    async def test_filters_closed_after_run(self, small_topology):
        """Test filters are closed but keep their state by default."""
        factory = FilterFactory()
        await make_orchestrator(factory).run(small_topology)

        assert factory.created[0].closed
        assert not factory.created[0].removed

    async def test_remove_filters(self, small_topology):
        """Test filters are removed after the run when asked to."""
        factory = FilterFactory()
        await make_orchestrator(factory, remove_filters=True).run(small_topology)

        assert factory.created[0].removed
        assert factory.created[0].clears == 2

    async def test_convergence_timeout_phase(self, small_topology):
        """Test a filter that never drains fails the convergence phase."""
        factory = FilterFactory(never_empty=True)
        orchestrator = WorkloadOrchestrator(
            factory=factory,
            write_recorder=LatencyRecorder("writes"),
            read_recorder=LatencyRecorder("reads"),
            monitor=ConvergenceMonitor(poll_interval_s=0.05, timeout_s=0.2),
        )

        with pytest.raises(HarnessError) as exc_info:
            await orchestrator.run(small_topology.model_copy(update={"run_duration_s": 0.3}))

        assert exc_info.value.phase == "convergence"
