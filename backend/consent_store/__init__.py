"""
Consent Store - schema, storage and migration core of a consent platform.

This package implements the storage layer behind consent records:
- A backend-agnostic field/table descriptor format with extension merging
- One CRUD + transaction adapter contract over memory and SQLite backends
- A hook pipeline that every write passes through, with output validation
- A schema differ and migration compiler producing dialect SQL

Architecture:
    StoreOptions ──▶ assemble_schema() ──▶ Schema
                                            │
                   ┌────────────────────────┼─────────────────────┐
                   ▼                        ▼                     ▼
             HookPipeline             plan_migration()      validate_output()
                   │                        │
                   ▼                        ▼
         Adapter (memory / sqlite)   compile_migration() ──▶ SQL + rollback

Invariants:
    - The schema is derived from options on demand and never mutated
    - Adapters never generate IDs or timestamps; the pipeline does
    - Migrations are additive: tables and columns are only ever created

How to change safely:
    - New built-in fields must be optional or carry a literal default
    - Never drop or rename a column in generated migrations
"""

from ._version import __version__
