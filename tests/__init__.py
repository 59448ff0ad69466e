"""
pg_compute Test Suite.

This package contains:
- unit/: Unit tests (in-memory data store, no external dependencies)
- integration/: Integration tests (PostgreSQL with plv8)
"""
