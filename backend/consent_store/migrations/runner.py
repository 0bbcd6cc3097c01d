"""
Migration runner.

Ties introspection, planning and compilation together for adapters that
can execute SQL (adapter id "sql-builder").

Invariants:
    - Only SQL-building adapters are migrated; others raise MigrationError
    - Statements run in one transaction; on failure nothing is applied
    - Generated files never overwrite an existing file
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..config import Dialect
from ..errors import AdapterError, MigrationError
from .compiler import CompiledMigration, compile_migration, migration_filename, render_migration_file
from .differ import MigrationPlan, plan_migration

if TYPE_CHECKING:
    from ..schema.registry import Schema

logger = logging.getLogger(__name__)

SQL_ADAPTER_ID = "sql-builder"


@dataclass
class MigrationResult:
    """Outcome of a migration run.

    Attributes:
        plan: What was planned
        compiled: SQL that was (or would have been) executed
        applied: Whether any statement ran
    """

    plan: MigrationPlan
    compiled: CompiledMigration
    applied: bool = False


def _require_sql_adapter(adapter: Any) -> None:
    if getattr(adapter, "id", None) != SQL_ADAPTER_ID:
        raise MigrationError(
            f"Migrations require the {SQL_ADAPTER_ID} adapter, got {getattr(adapter, 'id', None)!r}",
            details={"adapter": getattr(adapter, "id", None)},
        )


async def get_migrations(
    adapter: Any,
    schema: Schema,
    dialect: Dialect | None = None,
    log: logging.Logger | None = None,
) -> tuple[MigrationPlan, CompiledMigration]:
    """Introspect the database and compile the pending migration.

    Args:
        adapter: A SQL-building adapter exposing introspect()
        schema: Assembled schema
        dialect: Output dialect (defaults to the adapter's dialect)
        log: Logger for planning diagnostics

    Returns:
        (plan, compiled) for the pending changes

    Raises:
        MigrationError: If the adapter cannot be migrated or introspection fails
    """
    _require_sql_adapter(adapter)
    dialect = dialect or adapter.dialect
    try:
        live = await adapter.introspect()
    except AdapterError as e:
        raise MigrationError(f"Introspection failed: {e.message}") from e
    plan = plan_migration(schema, live, dialect, log=log)
    return plan, compile_migration(plan, dialect)


async def run_migrations(
    adapter: Any,
    schema: Schema,
    log: logging.Logger | None = None,
) -> MigrationResult:
    """Plan and apply pending migrations against the adapter's database.

    Raises:
        MigrationError: If planning or any statement fails; nothing is applied
    """
    log = log or logger
    plan, compiled = await get_migrations(adapter, schema, log=log)
    if compiled.is_empty:
        log.info("Database schema is up to date")
        return MigrationResult(plan=plan, compiled=compiled, applied=False)

    log.info(f"Applying migration: {compiled.description}")
    try:
        await adapter.execute_script(compiled.statements)
    except AdapterError as e:
        log.error(f"Migration failed and was rolled back: {e.message}")
        raise MigrationError(
            f"Migration failed: {e.message}",
            details={"description": compiled.description},
        ) from e
    return MigrationResult(plan=plan, compiled=compiled, applied=True)


def write_migration_file(
    compiled: CompiledMigration,
    directory: str | Path,
    timestamp: datetime | None = None,
) -> Path:
    """Write a rendered migration into directory.

    Returns:
        Path of the written file

    Raises:
        MigrationError: If a file with the generated name already exists
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / migration_filename(timestamp)
    if path.exists():
        raise MigrationError(f"Migration file already exists: {path}")
    path.write_text(render_migration_file(compiled, timestamp))
    logger.info(f"Wrote migration to {path}")
    return path
