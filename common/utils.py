"""Common utility functions."""

from __future__ import annotations

import json
import time
from pathlib import Path

import yaml


def format_duration(seconds: float) -> str:
    """Format seconds to human-readable duration."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs}s"


def load_yaml(path: str | Path) -> dict:
    """Load a YAML file."""
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def ensure_dir(path: str | Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def append_jsonl(path: str | Path, record: dict) -> None:
    """Append one record to a JSON Lines file."""
    path = Path(path)
    ensure_dir(path.parent)
    with open(path, 'a') as f:
        f.write(json.dumps(record) + "\n")


class Timer:
    """Simple context manager for timing code blocks."""

    def __init__(self):
        self.start_ns: int | None = None
        self.end_ns: int | None = None

    def __enter__(self):
        self.start_ns = time.perf_counter_ns()
        return self

    def __exit__(self, *args):
        self.end_ns = time.perf_counter_ns()

    @property
    def elapsed_ns(self) -> int:
        if self.start_ns is None:
            return 0
        end = self.end_ns or time.perf_counter_ns()
        return end - self.start_ns
