"""Topology and scenario models for load test runs."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from common.errors import ConfigurationError
from common.utils import load_yaml


class FilterQueue(str, Enum):
    """Where a filter keeps its expiry queue."""
    REDIS = "redis"
    MEMORY = "memory"


class Topology(BaseModel):
    """Shape and pacing of the simulated load."""
    servers: int = Field(default=10, description="Filter instances per run")
    users_per_server: int = Field(default=100, description="Simulated users per filter")
    write_period_ms: int = Field(default=100, description="Write cycle period")
    read_period_ms: int = Field(default=100, description="Read cycle period")
    run_duration_s: float = Field(default=20, description="Load phase duration")
    items: int = Field(default=100_000_000, description="Size of the item keyspace")
    read_ttl_ms: int = Field(default=500, description="Expiry hint sent with each read report")
    seed: int = Field(default=214576, description="Master pseudo-random seed")

    @property
    def total_users(self) -> int:
        return self.servers * self.users_per_server

    @property
    def expected_writes(self) -> int:
        """Write firings a perfectly paced run would issue."""
        return int(1000 * self.run_duration_s * self.total_users / self.write_period_ms)

    def check(self) -> None:
        """Raise ConfigurationError if the topology cannot be scheduled."""
        problems = []
        if self.servers <= 0:
            problems.append(f"servers must be positive, got {self.servers}")
        if self.users_per_server <= 0:
            problems.append(f"users_per_server must be positive, got {self.users_per_server}")
        if self.write_period_ms <= 0:
            problems.append(f"write_period_ms must be positive, got {self.write_period_ms}")
        if self.read_period_ms <= 0:
            problems.append(f"read_period_ms must be positive, got {self.read_period_ms}")
        if self.run_duration_s <= 0:
            problems.append(f"run_duration_s must be positive, got {self.run_duration_s}")
        if self.items <= 0:
            problems.append(f"items must be positive, got {self.items}")
        if self.read_ttl_ms < 0:
            problems.append(f"read_ttl_ms must not be negative, got {self.read_ttl_ms}")
        if problems:
            raise ConfigurationError("Invalid topology: " + "; ".join(problems))


class Scenario(BaseModel):
    """One named run in a test sequence."""
    name: str = Field(..., description="Human-readable run name")
    queue: FilterQueue = Field(default=FilterQueue.REDIS, description="Filter strategy")
    topology: Optional[Topology] = Field(default=None, description="Per-run topology override")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        """Names label report lines, so they must not be blank."""
        if not v.strip():
            raise ValueError("Scenario name must not be empty")
        return v.strip()


def default_scenarios() -> list[Scenario]:
    """Alternate both filter strategies, two repetitions each."""
    return [
        Scenario(name="Redis Queue 1", queue=FilterQueue.REDIS),
        Scenario(name="Memory Queue 1", queue=FilterQueue.MEMORY),
        Scenario(name="Redis Queue 2", queue=FilterQueue.REDIS),
        Scenario(name="Memory Queue 2", queue=FilterQueue.MEMORY),
    ]


def load_scenario_file(path: str | Path) -> tuple[list[Scenario], Optional[Topology]]:
    """Load scenarios and an optional shared topology from a YAML file.

    The file holds a ``scenarios`` list and may hold a top-level ``topology``
    applied to every scenario without its own.
    """
    try:
        data = load_yaml(path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read scenario file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid scenario file {path}: expected a mapping at the top level")

    try:
        scenarios = [Scenario(**entry) for entry in data.get("scenarios", [])]
        topology = Topology(**data["topology"]) if data.get("topology") else None
    except (ValidationError, TypeError) as e:
        raise ConfigurationError(f"Invalid scenario file {path}: {e}") from e

    if not scenarios:
        raise ConfigurationError(f"No scenarios defined in {path}")
    return scenarios, topology
