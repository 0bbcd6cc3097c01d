"""
Schema differ.

plan_migration() compares the assembled schema with what live
introspection reports and produces an additive MigrationPlan:
- tables missing from the database are created whole
- columns missing from an existing table are added

Invariants:
    - Additive only: nothing is dropped, renamed or altered
    - Tables are planned in ascending order, stable on schema order
    - A column that already exists is never planned again, whatever its type
    - Type mismatches are reported as warnings only
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..config import Dialect
from ..schema.registry import Schema
from ..schema.types import TableDef
from .type_mapping import match_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveColumn:
    """A column as reported by database introspection."""

    name: str
    data_type: str


@dataclass(frozen=True)
class LiveTable:
    """A table as reported by database introspection."""

    name: str
    columns: tuple[LiveColumn, ...] = ()

    def column_names(self) -> set[str]:
        return {c.name for c in self.columns}

    def get_column(self, name: str) -> LiveColumn | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


@dataclass(frozen=True)
class ColumnsToAdd:
    """Logical fields of an existing table that need a column."""

    table: TableDef
    fields: tuple[str, ...]


@dataclass
class MigrationPlan:
    """Declarative description of the schema changes to apply.

    Attributes:
        schema: Schema the plan was computed from (for reference resolution)
        to_be_created: Tables to create, in creation order
        to_be_added: Columns to add to existing tables
    """

    schema: Schema
    to_be_created: list[TableDef] = field(default_factory=list)
    to_be_added: list[ColumnsToAdd] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_be_created and not self.to_be_added

    def summary(self) -> dict[str, object]:
        return {
            "create": [t.entity_name for t in self.to_be_created],
            "add": {a.table.entity_name: list(a.fields) for a in self.to_be_added},
        }


def plan_migration(
    schema: Schema,
    live_tables: list[LiveTable],
    dialect: Dialect = Dialect.SQLITE,
    log: logging.Logger | None = None,
) -> MigrationPlan:
    """Compute the additive changes that bring the database up to the schema.

    Args:
        schema: Assembled schema
        live_tables: Introspected tables
        dialect: Dialect used to judge type mismatches
        log: Logger for mismatch warnings

    Returns:
        MigrationPlan, empty if the database is up to date

    Example:
        >>> plan = plan_migration(schema, [])
        >>> [t.key for t in plan.to_be_created][:1]
        ['subject']
    """
    log = log or logger
    live = {t.name: t for t in live_tables}
    plan = MigrationPlan(schema=schema)

    for table in schema.tables_in_order():
        existing = live.get(table.entity_name)
        if existing is None:
            plan.to_be_created.append(table)
            continue

        missing: list[str] = []
        for name, definition in table.fields.items():
            column = definition.column_name(name)
            live_column = existing.get_column(column)
            if live_column is None:
                missing.append(name)
                continue
            if not match_type(live_column.data_type, definition.kind, dialect):
                log.warning(
                    f"Column {table.entity_name}.{column} has type '{live_column.data_type}', "
                    f"expected a {definition.kind.value} type; leaving it unchanged",
                    extra={"table": table.entity_name, "column": column},
                )
        if missing:
            plan.to_be_added.append(ColumnsToAdd(table=table, fields=tuple(missing)))

    log.debug(f"Planned migration: {plan.summary()}")
    return plan
