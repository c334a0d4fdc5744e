"""Load harness for Redis-backed expiring Bloom filters."""
