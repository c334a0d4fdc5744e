"""Pytest configuration and shared fixtures."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from common.models.scenario import Topology
from common.store.redis_client import RedisClient
from harness.config import HarnessSettings

from fakes import InMemoryFilter


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def memory_filter() -> InMemoryFilter:
    """A fresh in-process filter."""
    return InMemoryFilter()


@pytest.fixture
def mock_redis_client() -> MagicMock:
    """Create a mock Redis client."""
    mock = MagicMock(spec=RedisClient)
    mock.connect = AsyncMock()
    mock.disconnect = AsyncMock()
    mock.ping = AsyncMock(return_value=True)
    mock.flush_all = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    mock.delete = AsyncMock(return_value=1)
    mock.zadd_gt = AsyncMock(return_value=1)
    mock.zscore = AsyncMock(return_value=None)
    mock.zremrangebyscore = AsyncMock(return_value=0)
    mock.run_script = AsyncMock(return_value=0)
    return mock


@pytest.fixture
def small_topology() -> Topology:
    """One filter, one user, fast periods."""
    return Topology(
        servers=1,
        users_per_server=1,
        write_period_ms=100,
        read_period_ms=100,
        run_duration_s=1.0,
        items=1000,
        read_ttl_ms=200,
        seed=42,
    )


@pytest.fixture
def fast_settings(temp_dir: Path) -> HarnessSettings:
    """Settings with short runs and quick convergence polling."""
    return HarnessSettings(
        servers=2,
        users_per_server=3,
        write_period_ms=50,
        read_period_ms=50,
        run_duration_s=0.5,
        items=1000,
        read_ttl_ms=100,
        seed=7,
        convergence_poll_interval_s=0.05,
        convergence_timeout_s=5.0,
        drain_timeout_s=2.0,
    )
