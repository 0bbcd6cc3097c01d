"""
Migration compiler.

compile_migration() turns a MigrationPlan into dialect-specific SQL:
- CREATE TABLE for each new table (id primary key first, then every field)
- CREATE INDEX for declared indexes and indexed fields
- ALTER TABLE ... ADD COLUMN for each missing column
- a rollback list undoing the above in reverse order

render_migration_file() lays the statements out as a reviewable .sql file
with a header, a transaction wrapper where the dialect supports one and a
commented-out rollback block.

Invariants:
    - An empty plan compiles to an empty forward script
    - Statements follow plan order, so referenced tables are created first
    - Added columns only get NOT NULL when a literal default backs them
    - Rollback statements are the exact reverse of forward statements

How to change safely:
    - Keep output deterministic for a given plan and dialect; generated
      files are committed and diffed
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..config import Dialect
from ..schema.types import PRIMARY_KEY, FieldDef, TableDef
from .differ import MigrationPlan
from .type_mapping import get_column_type, keyed_fields, primary_key_type

logger = logging.getLogger(__name__)

GENERATOR = "consent-store"


def quote_identifier(name: str, dialect: Dialect) -> str:
    """Quote an identifier for a dialect."""
    if dialect == Dialect.MYSQL:
        return "`" + name.replace("`", "``") + "`"
    if dialect == Dialect.MSSQL:
        return "[" + name.replace("]", "]]") + "]"
    return '"' + name.replace('"', '""') + '"'


def render_literal(value: Any, dialect: Dialect) -> str:
    """Render a literal default value as SQL."""
    if isinstance(value, bool):
        if dialect in (Dialect.POSTGRES, Dialect.MYSQL):
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if not isinstance(value, str):
        value = json.dumps(value)
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class CompiledMigration:
    """SQL produced from a migration plan.

    Attributes:
        dialect: Target dialect
        statements: Forward statements, each without a trailing semicolon
        rollback_statements: Statements undoing the forward ones, in reverse order
        description: Human-readable summary
    """

    dialect: Dialect
    statements: tuple[str, ...] = ()
    rollback_statements: tuple[str, ...] = ()
    description: str = "No changes"

    @property
    def is_empty(self) -> bool:
        return not self.statements

    @property
    def forward_sql(self) -> str:
        """Forward statements, wrapped in a transaction where supported."""
        return _wrap(self.statements, self.dialect)

    @property
    def rollback_sql(self) -> str:
        return _wrap(self.rollback_statements, self.dialect)


def _transaction_markers(dialect: Dialect) -> tuple[str, str] | None:
    if not dialect.supports_transactions:
        return None
    if dialect == Dialect.MYSQL:
        return "START TRANSACTION;", "COMMIT;"
    if dialect == Dialect.MSSQL:
        return "BEGIN TRANSACTION;", "COMMIT TRANSACTION;"
    return "BEGIN;", "COMMIT;"


def _wrap(statements: tuple[str, ...], dialect: Dialect) -> str:
    if not statements:
        return ""
    body = [f"{s};" for s in statements]
    markers = _transaction_markers(dialect)
    if markers is None:
        return "\n".join(body) + "\n"
    begin, commit = markers
    return "\n".join([begin, *body, commit]) + "\n"


class _Compiler:
    """Builds statements for one plan and dialect."""

    def __init__(self, plan: MigrationPlan, dialect: Dialect) -> None:
        self.plan = plan
        self.dialect = dialect
        self.forward: list[str] = []
        self.rollback: list[str] = []

    def q(self, name: str) -> str:
        return quote_identifier(name, self.dialect)

    def _reference_clause(self, table: TableDef, name: str, definition: FieldDef) -> str:
        ref = definition.reference
        if ref is None:
            return ""
        resolved = self.plan.schema.resolve_reference(table, name)
        if resolved is None:
            logger.warning(f"Skipping unresolved reference on {table.key}.{name} -> {ref.entity}")
            return ""
        target_table, target_column = resolved
        clause = f" REFERENCES {self.q(target_table)} ({self.q(target_column)})"
        if ref.on_delete is not None:
            clause += f" ON DELETE {ref.on_delete.value.upper()}"
        return clause

    def _column(self, table: TableDef, name: str, definition: FieldDef, adding: bool) -> str:
        column = definition.column_name(name)
        keyed = name in keyed_fields(table)
        parts = [self.q(column), get_column_type(definition, self.dialect, keyed=keyed)]
        if adding:
            if definition.has_literal_default:
                parts.append(f"DEFAULT {render_literal(definition.default, self.dialect)}")
                if definition.required:
                    parts.append("NOT NULL")
            elif definition.required:
                logger.warning(
                    f"Adding required column {table.entity_name}.{column} as nullable, "
                    "it has no literal default for existing rows"
                )
        elif definition.required:
            parts.append("NOT NULL")
        # Added unique columns get a unique index instead; SQLite rejects ADD COLUMN ... UNIQUE
        if definition.unique and not adding:
            parts.append("UNIQUE")
        return " ".join(parts) + self._reference_clause(table, name, definition)

    def _create_table_prefix(self, table: TableDef) -> str:
        if self.dialect == Dialect.MSSQL:
            return (
                f"IF OBJECT_ID(N'{table.entity_name}', N'U') IS NULL "
                f"CREATE TABLE {self.q(table.entity_name)}"
            )
        return f"CREATE TABLE IF NOT EXISTS {self.q(table.entity_name)}"

    def _drop_table(self, table: TableDef) -> str:
        return f"DROP TABLE IF EXISTS {self.q(table.entity_name)}"

    def _create_index(self, table: TableDef, name: str, columns: list[str], unique: bool) -> str:
        kind = "UNIQUE INDEX" if unique else "INDEX"
        cols = ", ".join(self.q(c) for c in columns)
        if self.dialect in (Dialect.MYSQL, Dialect.MSSQL):
            return f"CREATE {kind} {self.q(name)} ON {self.q(table.entity_name)} ({cols})"
        return f"CREATE {kind} IF NOT EXISTS {self.q(name)} ON {self.q(table.entity_name)} ({cols})"

    def _drop_index(self, table: TableDef, name: str) -> str:
        if self.dialect == Dialect.MYSQL:
            return f"DROP INDEX {self.q(name)} ON {self.q(table.entity_name)}"
        if self.dialect == Dialect.MSSQL:
            return f"DROP INDEX IF EXISTS {self.q(name)} ON {self.q(table.entity_name)}"
        return f"DROP INDEX IF EXISTS {self.q(name)}"

    def _indexes(self, table: TableDef, only: set[str] | None = None) -> None:
        for name, definition in table.fields.items():
            if only is not None and name not in only:
                continue
            column = definition.column_name(name)
            if only is not None and definition.unique:
                index_name = f"uq_{table.entity_name}_{column}"
                self.forward.append(self._create_index(table, index_name, [column], True))
                self.rollback.append(self._drop_index(table, index_name))
            elif definition.indexed and not definition.unique:
                index_name = f"idx_{table.entity_name}_{column}"
                self.forward.append(self._create_index(table, index_name, [column], False))
                self.rollback.append(self._drop_index(table, index_name))
        if only is not None:
            return
        for index in table.indexes:
            columns = [table.column(f) for f in index.fields]
            self.forward.append(self._create_index(table, index.name, columns, index.unique))
            self.rollback.append(self._drop_index(table, index.name))

    def create_table(self, table: TableDef) -> None:
        lines = [f"{self.q(PRIMARY_KEY)} {primary_key_type(self.dialect)} PRIMARY KEY NOT NULL"]
        for name, definition in table.fields.items():
            lines.append(self._column(table, name, definition, adding=False))
        for constraint in table.unique_constraints:
            columns = ", ".join(self.q(table.column(f)) for f in constraint.fields)
            lines.append(f"CONSTRAINT {self.q(constraint.name)} UNIQUE ({columns})")
        body = ",\n  ".join(lines)
        self.forward.append(f"{self._create_table_prefix(table)} (\n  {body}\n)")
        self.rollback.append(self._drop_table(table))
        self._indexes(table)

    def add_columns(self, table: TableDef, fields: tuple[str, ...]) -> None:
        add = "ADD" if self.dialect == Dialect.MSSQL else "ADD COLUMN"
        for name in fields:
            definition = table.fields[name]
            self.forward.append(
                f"ALTER TABLE {self.q(table.entity_name)} {add} "
                f"{self._column(table, name, definition, adding=True)}"
            )
            self.rollback.append(
                f"ALTER TABLE {self.q(table.entity_name)} DROP COLUMN "
                f"{self.q(definition.column_name(name))}"
            )
        self._indexes(table, only=set(fields))

    def compile(self) -> CompiledMigration:
        for table in self.plan.to_be_created:
            self.create_table(table)
        for addition in self.plan.to_be_added:
            self.add_columns(addition.table, addition.fields)

        created = len(self.plan.to_be_created)
        added = sum(len(a.fields) for a in self.plan.to_be_added)
        description = (
            f"Create {created} table(s), add {added} column(s)" if created or added else "No changes"
        )
        return CompiledMigration(
            dialect=self.dialect,
            statements=tuple(self.forward),
            rollback_statements=tuple(reversed(self.rollback)),
            description=description,
        )


def compile_migration(plan: MigrationPlan, dialect: Dialect = Dialect.SQLITE) -> CompiledMigration:
    """Compile a migration plan to SQL.

    Args:
        plan: Plan from plan_migration()
        dialect: Target dialect

    Returns:
        CompiledMigration; empty when the plan is empty

    Example:
        >>> compiled = compile_migration(plan_migration(schema, []), Dialect.POSTGRES)
        >>> compiled.statements[0].startswith('CREATE TABLE IF NOT EXISTS "subject"')
        True
    """
    return _Compiler(plan, dialect).compile()


def render_migration_file(
    compiled: CompiledMigration,
    timestamp: datetime | None = None,
) -> str:
    """Render a migration as the contents of a .sql file.

    Args:
        compiled: Compiled migration
        timestamp: Generation time for the header (defaults to now, UTC)

    Returns:
        File contents
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    dialect = compiled.dialect
    lines = [
        f"-- Migration generated by {GENERATOR} ({timestamp.isoformat()})",
        f"-- Database type: {dialect.value}",
        f"-- Description: {compiled.description}",
    ]
    if compiled.is_empty:
        lines.append("-- Schema is up to date; nothing to apply.")
        return "\n".join(lines) + "\n"

    if dialect.supports_transactions:
        lines.append("-- Wrapped in a transaction so the migration applies atomically.")
    else:
        lines.append(f"-- {dialect.value} does not support transactions in migration scripts.")

    lines.extend(["", "-- MIGRATION", compiled.forward_sql.rstrip("\n"), ""])
    lines.extend(["-- ROLLBACK", "/*", compiled.rollback_sql.rstrip("\n"), "*/"])
    return "\n".join(lines) + "\n"


def migration_filename(timestamp: datetime | None = None) -> str:
    timestamp = timestamp or datetime.now(timezone.utc)
    return f"{timestamp.strftime('%Y%m%d%H%M%S')}_consent_store.sql"
