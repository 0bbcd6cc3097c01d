"""
Consent Store Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies, in-memory adapter)
- integration/: Integration tests (SQLite adapter, migrations, registries)
"""
