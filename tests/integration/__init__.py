"""Integration tests spanning the permission gate, prompt queue and backends."""
