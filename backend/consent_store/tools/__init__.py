"""
CLI tools for consent store administration.

This module provides command-line tools for:
- migrate: Plan, generate and apply schema migrations

Invariants:
    - Tools work offline (no running service required)
    - Applying a migration twice is a no-op
"""
