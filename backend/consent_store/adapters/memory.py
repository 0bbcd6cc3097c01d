"""
In-memory adapter for testing and development.

This adapter keeps every table as a list of physical rows in process
memory. It is useful for:
- Unit testing without SQLite files
- Local development and examples
- Exercising hook pipelines in isolation

Invariants:
    - Not durable: data is lost when the process exits
    - Writes and transactions are serialised by one asyncio.Lock
    - A transaction works on a private copy of the tables that replaces
      the shared tables only on commit, so readers never see uncommitted rows
    - Unique fields and unique constraints are enforced like a database would
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from ..errors import UniqueViolationError
from ..schema.types import TableDef
from .base import (
    Operator,
    RecordMapper,
    SortBy,
    WhereCondition,
    WhereInput,
    is_json_field,
    iter_unique_groups,
    json_contains,
    like_to_regex,
    normalize_where,
)

if TYPE_CHECKING:
    from ..schema.registry import Schema

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _MemoryState:
    """Storage shared by an adapter and its transaction views."""

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class InMemoryAdapter:
    """In-memory implementation of the Adapter protocol.

    Example:
        >>> adapter = InMemoryAdapter(assemble_schema(StoreOptions()))
        >>> await adapter.create("domain", {"id": "dom_1", "name": "example.com", ...})
        >>> await adapter.count("domain")
        1
    """

    id = "memory"

    def __init__(
        self,
        schema: Schema,
        _state: _MemoryState | None = None,
        _in_transaction: bool = False,
    ) -> None:
        self.schema = schema
        self._state = _state or _MemoryState()
        self._in_transaction = _in_transaction
        self._mapper = RecordMapper(schema, adapter_id=self.id)

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _rows(self, table: TableDef) -> list[dict[str, Any]]:
        return self._state.tables.setdefault(table.entity_name, [])

    @asynccontextmanager
    async def _write_guard(self) -> AsyncIterator[None]:
        if self._in_transaction:
            yield
        else:
            async with self._state.lock:
                yield

    def _matches(self, table: TableDef, row: dict[str, Any], condition: WhereCondition) -> bool:
        column = self._mapper.column(table, condition.field)
        actual = row.get(column)
        op = condition.operator

        if op == Operator.IN:
            values = [self._mapper.encode_value(table, condition.field, v) for v in condition.value]
            return actual in values
        if op == Operator.CONTAINS and is_json_field(table, condition.field):
            return actual is not None and json_contains(actual, condition.value)

        expected = self._mapper.encode_value(table, condition.field, condition.value)
        if op == Operator.EQ:
            return actual == expected
        if op == Operator.NE:
            # NULL never compares unequal to a value
            if expected is None:
                return actual is not None
            return actual is not None and actual != expected
        if actual is None or expected is None:
            return False
        if op == Operator.LT:
            return actual < expected
        if op == Operator.LTE:
            return actual <= expected
        if op == Operator.GT:
            return actual > expected
        if op == Operator.GTE:
            return actual >= expected

        text, needle = str(actual), str(expected)
        if op == Operator.CONTAINS:
            return needle in text
        if op == Operator.STARTS_WITH:
            return text.startswith(needle)
        if op == Operator.ENDS_WITH:
            return text.endswith(needle)
        if op == Operator.ILIKE:
            return like_to_regex(needle, case_insensitive=True).match(text) is not None
        raise ValueError(f"Unsupported operator: {op}")

    def _select(self, table: TableDef, where: WhereInput) -> list[dict[str, Any]]:
        conditions = normalize_where(where)
        # Unknown fields fail even when the table is empty
        for condition in conditions:
            self._mapper.column(table, condition.field)
        return [
            row
            for row in self._rows(table)
            if all(self._matches(table, row, c) for c in conditions)
        ]

    def _sorted(
        self,
        table: TableDef,
        rows: list[dict[str, Any]],
        sort_by: SortBy | None,
    ) -> list[dict[str, Any]]:
        if sort_by is None:
            return rows
        column = self._mapper.column(table, sort_by.field)
        present = [r for r in rows if r.get(column) is not None]
        missing = [r for r in rows if r.get(column) is None]
        present.sort(key=lambda r: r[column], reverse=sort_by.direction == "desc")
        return present + missing

    def _check_unique(
        self,
        table: TableDef,
        candidate: dict[str, Any],
        ignore: dict[str, Any] | None = None,
    ) -> None:
        for group in iter_unique_groups(table):
            columns = [table.column(name) for name in group]
            key = [candidate.get(c) for c in columns]
            if any(v is None for v in key):
                continue
            for row in self._rows(table):
                if row is ignore:
                    continue
                if [row.get(c) for c in columns] == key:
                    raise UniqueViolationError(
                        f"Unique constraint failed: {table.entity_name}({', '.join(columns)})",
                        adapter=self.id,
                    )

    def _out(self, table: TableDef, row: dict[str, Any]) -> dict[str, Any]:
        return self._mapper.from_storage(table, copy.deepcopy(row))

    async def find_one(
        self,
        model: str,
        where: WhereInput,
        sort_by: SortBy | None = None,
    ) -> dict[str, Any] | None:
        table = self._mapper.table(model)
        rows = self._sorted(table, self._select(table, where), sort_by)
        return self._out(table, rows[0]) if rows else None

    async def find_many(
        self,
        model: str,
        where: WhereInput = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        table = self._mapper.table(model)
        rows = self._sorted(table, self._select(table, where), sort_by)
        start = offset or 0
        end = start + limit if limit is not None else None
        return [self._out(table, row) for row in rows[start:end]]

    async def count(self, model: str, where: WhereInput = None) -> int:
        table = self._mapper.table(model)
        return len(self._select(table, where))

    async def create(self, model: str, data: dict[str, Any]) -> dict[str, Any] | None:
        table = self._mapper.table(model)
        row = self._mapper.to_storage(table, copy.deepcopy(data))
        async with self._write_guard():
            self._check_unique(table, row)
            self._rows(table).append(row)
        return self._out(table, row)

    async def update(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> dict[str, Any] | None:
        table = self._mapper.table(model)
        changes = self._mapper.to_storage(table, copy.deepcopy(data))
        async with self._write_guard():
            matches = self._select(table, where)
            if not matches:
                return None
            row = matches[0]
            self._check_unique(table, {**row, **changes}, ignore=row)
            row.update(changes)
        return self._out(table, row)

    async def update_many(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> list[dict[str, Any]]:
        table = self._mapper.table(model)
        changes = self._mapper.to_storage(table, copy.deepcopy(data))
        async with self._write_guard():
            matches = self._select(table, where)
            for row in matches:
                self._check_unique(table, {**row, **changes}, ignore=row)
            for row in matches:
                row.update(copy.deepcopy(changes))
        return [self._out(table, row) for row in matches]

    async def delete(self, model: str, where: WhereInput) -> None:
        await self.delete_many(model, where)

    async def delete_many(self, model: str, where: WhereInput) -> int:
        table = self._mapper.table(model)
        async with self._write_guard():
            doomed = {id(row) for row in self._select(table, where)}
            rows = self._rows(table)
            rows[:] = [row for row in rows if id(row) not in doomed]
        return len(doomed)

    async def transaction(self, callback: Callable[[InMemoryAdapter], Awaitable[T]]) -> T:
        """Run callback under the adapter lock against a working copy.

        The copy replaces the shared tables when the callback returns and is
        discarded when it raises. Nested calls on a transaction view join the
        outer transaction.
        """
        if self._in_transaction:
            return await callback(self)

        async with self._state.lock:
            working = _MemoryState(tables=copy.deepcopy(self._state.tables), lock=self._state.lock)
            view = InMemoryAdapter(self.schema, working, _in_transaction=True)
            try:
                result = await callback(view)
            except Exception:
                logger.debug("Rolled back in-memory transaction")
                raise
            self._state.tables = working.tables
            return result

    def clear(self) -> None:
        """Drop all rows (for testing)."""
        self._state.tables.clear()

    def dump(self) -> dict[str, list[dict[str, Any]]]:
        """Physical rows per table name (for testing)."""
        return copy.deepcopy(self._state.tables)

    def __repr__(self) -> str:
        total = sum(len(rows) for rows in self._state.tables.values())
        return (
            f"InMemoryAdapter(tables={len(self._state.tables)}, rows={total}, "
            f"in_transaction={self._in_transaction})"
        )
