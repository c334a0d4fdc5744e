"""Error taxonomy for load test runs."""

from __future__ import annotations

from typing import Optional


class HarnessError(Exception):
    """Base error for the load harness.

    ``phase`` names the part of a run that failed (setup, load, convergence)
    when the error escapes a run.
    """

    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.phase = phase

    def with_phase(self, phase: str) -> "HarnessError":
        """Tag the error with a run phase unless it already carries one."""
        if self.phase is None:
            self.phase = phase
        return self


class BackendUnavailable(HarnessError):
    """The backing store cannot be reached or the connection was lost."""


class TransientOperationError(HarnessError):
    """A single backend call failed."""


class ConfigurationError(HarnessError):
    """Invalid topology or settings."""


class ConvergenceTimeout(HarnessError):
    """Filters did not drain to empty within the configured bound."""
