"""Workload orchestration and measurement."""
