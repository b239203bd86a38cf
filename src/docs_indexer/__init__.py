"""Incremental documentation indexer with a SQLite-backed cache and per-source leases."""

__version__ = "0.1.0"
