"""Common models, errors and backend access shared by the harness."""

from common.errors import (
    HarnessError,
    BackendUnavailable,
    TransientOperationError,
    ConfigurationError,
    ConvergenceTimeout,
)
from common.models.scenario import Topology, Scenario, FilterQueue
from common.models.metrics import LatencySummary, RunReport

__all__ = [
    "HarnessError",
    "BackendUnavailable",
    "TransientOperationError",
    "ConfigurationError",
    "ConvergenceTimeout",
    "Topology",
    "Scenario",
    "FilterQueue",
    "LatencySummary",
    "RunReport",
]
