"""Harness configuration settings."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from common.models.scenario import Topology
from harness.filters.base import FilterConfig


class HarnessSettings(BaseSettings):
    """Harness settings loaded from environment variables."""

    # Redis
    redis_url: str = "redis://127.0.0.1:6379"
    redis_max_connections: int = 10

    # Topology
    servers: int = 10
    users_per_server: int = 100
    write_period_ms: int = 100
    read_period_ms: int = 100
    run_duration_s: float = 20
    items: int = 100_000_000
    read_ttl_ms: int = 500
    seed: int = 214576

    # Filter sizing
    filter_prefix: str = "purity"
    expected_insertions: int = 100_000
    false_positive_rate: float = 0.01
    bit_size: Optional[int] = 100_000
    hash_functions: Optional[int] = 10
    expiry_poll_interval_s: float = 0.05

    # Shutdown
    convergence_poll_interval_s: float = 0.5
    convergence_timeout_s: Optional[float] = None  # None waits forever
    drain_timeout_s: float = 10.0
    grace_period_s: float = 0.0
    max_consecutive_failures: int = 50
    remove_filters: bool = False

    # Output
    results_path: Optional[Path] = Field(default=None)

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_prefix = "BLOOMLOAD_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def topology(self) -> Topology:
        return Topology(
            servers=self.servers,
            users_per_server=self.users_per_server,
            write_period_ms=self.write_period_ms,
            read_period_ms=self.read_period_ms,
            run_duration_s=self.run_duration_s,
            items=self.items,
            read_ttl_ms=self.read_ttl_ms,
            seed=self.seed,
        )

    def filter_config(self, index: int) -> FilterConfig:
        return FilterConfig(
            name=f"{self.filter_prefix}:{index}",
            expected_insertions=self.expected_insertions,
            false_positive_rate=self.false_positive_rate,
            bit_size=self.bit_size,
            hash_functions=self.hash_functions,
            expiry_poll_interval_s=self.expiry_poll_interval_s,
        )
