"""
EntDB Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (SQLite, in-memory WAL)
- e2e/: End-to-end tests (full stack with Docker)
"""
