"""Latency report models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

NANOS_PER_MS = 1e6


class LatencySummary(BaseModel):
    """Latency quantiles in milliseconds."""
    count: int = Field(default=0, description="Samples recorded")
    min: float = Field(default=0, description="Minimum latency")
    p25: float = Field(default=0, description="25th percentile")
    median: float = Field(default=0, description="50th percentile")
    p75: float = Field(default=0, description="75th percentile")
    max: float = Field(default=0, description="Maximum latency")

    @classmethod
    def from_snapshot(cls, snapshot) -> "LatencySummary":
        """Convert a nanosecond recorder snapshot to milliseconds."""
        return cls(
            count=snapshot.count,
            min=snapshot.min / NANOS_PER_MS,
            p25=snapshot.p25 / NANOS_PER_MS,
            median=snapshot.median / NANOS_PER_MS,
            p75=snapshot.p75 / NANOS_PER_MS,
            max=snapshot.max / NANOS_PER_MS,
        )

    def to_line(self, label: str) -> str:
        """Format as a report tuple line."""
        return (
            f"('{label}', {self.min:.4f}, {self.p25:.4f}, "
            f"{self.median:.4f}, {self.p75:.4f}, {self.max:.4f}),"
        )


class RunReport(BaseModel):
    """Results of a single test run."""
    name: str
    queue: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    reads: LatencySummary = Field(default_factory=LatencySummary)
    writes: LatencySummary = Field(default_factory=LatencySummary)

    expected_writes: int = 0
    runtime_ms: int = Field(default=0, description="Load phase runtime at cancellation")
    cleanup_seconds: Optional[float] = Field(default=None, description="Time to converge to empty")
    failed_firings: int = 0

    @property
    def write_throughput(self) -> int:
        """Writes per second over the load phase."""
        seconds = self.runtime_ms // 1000
        if seconds <= 0:
            return self.writes.count
        return self.writes.count // seconds

    def report_lines(self) -> list[str]:
        return [
            f"Writes: {self.writes.count}/{self.expected_writes}, "
            f"Throughput: {self.write_throughput}/s",
            self.reads.to_line(f"{self.name} Reads"),
            self.writes.to_line(f"{self.name} Writes"),
        ]

    def to_jsonl(self) -> dict:
        """Convert to JSON Lines format (compact)."""
        return {
            "ts": self.timestamp.isoformat(),
            "name": self.name,
            "queue": self.queue,
            "reads_ms": self.reads.model_dump(),
            "writes_ms": self.writes.model_dump(),
            "expected_writes": self.expected_writes,
            "runtime_ms": self.runtime_ms,
            "cleanup_s": self.cleanup_seconds,
            "failed": self.failed_firings,
        }
