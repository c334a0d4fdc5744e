"""Data models for load test runs."""

from common.models.scenario import (
    Topology,
    Scenario,
    FilterQueue,
    default_scenarios,
    load_scenario_file,
)
from common.models.metrics import LatencySummary, RunReport

__all__ = [
    "Topology",
    "Scenario",
    "FilterQueue",
    "default_scenarios",
    "load_scenario_file",
    "LatencySummary",
    "RunReport",
]
