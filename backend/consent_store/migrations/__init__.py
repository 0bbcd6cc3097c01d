"""
Schema migrations for SQL backends.

This package provides:
- Column type mapping per dialect
- The schema differ producing additive migration plans
- The compiler producing dialect SQL and rollback scripts
- The runner applying migrations through a SQL adapter
"""

from .compiler import CompiledMigration, compile_migration, render_migration_file
from .differ import ColumnsToAdd, LiveColumn, LiveTable, MigrationPlan, plan_migration
from .runner import MigrationResult, get_migrations, run_migrations, write_migration_file
from .type_mapping import get_column_type, keyed_fields, match_type

__all__ = [
    "ColumnsToAdd",
    "CompiledMigration",
    "LiveColumn",
    "LiveTable",
    "MigrationPlan",
    "MigrationResult",
    "compile_migration",
    "get_column_type",
    "get_migrations",
    "keyed_fields",
    "match_type",
    "plan_migration",
    "render_migration_file",
    "run_migrations",
    "write_migration_file",
]
