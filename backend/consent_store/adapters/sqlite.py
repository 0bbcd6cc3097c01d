"""
SQLite adapter for the consent store.

This adapter builds parameterised SQL for every Adapter operation and runs
it on a single sqlite3 connection. It also exposes the two hooks the
migration runner needs:
- introspect(): live tables and columns via PRAGMA table_info
- execute_script(): run DDL statements in one transaction

Value encoding:
    boolean -> INTEGER 1/0
    date    -> ISO-8601 TEXT (decoded by output validation)
    json    -> TEXT (json.dumps unless already a string)

Invariants:
    - All statements use bound parameters; identifiers are quoted
    - One asyncio.Lock serialises access to the connection
    - transaction() uses BEGIN IMMEDIATE and rolls back on any exception
    - sqlite3 errors surface as AdapterError / UniqueViolationError

How to change safely:
    - Keep the encoding symmetric with _decode(); stored data outlives code
    - Test with a file database as well as ":memory:"
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from ..config import Dialect
from ..errors import AdapterError, UniqueViolationError
from ..migrations.differ import LiveColumn, LiveTable
from ..schema.types import PRIMARY_KEY, FieldDef, FieldKind, TableDef
from .base import (
    Operator,
    RecordMapper,
    SortBy,
    WhereInput,
    is_json_field,
    normalize_where,
)

if TYPE_CHECKING:
    from ..schema.registry import Schema

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COMPARISONS = {
    Operator.EQ: "=",
    Operator.NE: "!=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.GT: ">",
    Operator.GTE: ">=",
}


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _transform_owns_text(definition: FieldDef) -> bool:
    transform = definition.transform
    return transform is not None and transform.to_storage is not None


def _encode(definition: FieldDef, value: Any) -> Any:
    kind = definition.kind
    if kind == FieldKind.BOOLEAN:
        return 1 if value else 0
    if kind == FieldKind.DATE and isinstance(value, (datetime, date)):
        return value.isoformat()
    if kind == FieldKind.JSON:
        # Text produced by a transform is already the stored form
        if isinstance(value, str) and _transform_owns_text(definition):
            return value
        return json.dumps(value)
    return value


def _decode(definition: FieldDef, value: Any) -> Any:
    kind = definition.kind
    if kind == FieldKind.BOOLEAN and isinstance(value, int):
        return bool(value)
    if kind == FieldKind.JSON and isinstance(value, str):
        if _transform_owns_text(definition):
            return value
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


@dataclass
class _Connection:
    """Connection and lock shared by an adapter and its transaction views."""

    conn: sqlite3.Connection | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SqliteAdapter:
    """SQLite implementation of the Adapter protocol.

    Example:
        >>> adapter = SqliteAdapter(schema, db_path="/var/lib/consent/consent.db")
        >>> await adapter.connect()
        >>> await run_migrations(adapter, schema)
        >>> await adapter.find_many("domain", sort_by=SortBy("name"))
    """

    id = "sql-builder"
    dialect = Dialect.SQLITE

    def __init__(
        self,
        schema: Schema,
        db_path: str = ":memory:",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        _shared: _Connection | None = None,
        _in_transaction: bool = False,
    ) -> None:
        """Initialize the adapter.

        Args:
            schema: Assembled schema
            db_path: SQLite database file, or ":memory:"
            wal_mode: Enable WAL journal mode for file databases
            busy_timeout_ms: SQLite busy timeout
        """
        self.schema = schema
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._shared = _shared or _Connection()
        self._in_transaction = _in_transaction
        self._mapper = RecordMapper(schema, encode=_encode, decode=_decode, adapter_id=self.id)

    async def connect(self) -> None:
        """Open the connection. Idempotent."""
        if self._shared.conn is not None:
            return
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.wal_mode and self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        self._shared.conn = conn
        logger.info(f"Connected to SQLite database: {self.db_path}")

    async def close(self) -> None:
        if self._shared.conn is not None:
            self._shared.conn.close()
            self._shared.conn = None
            logger.info(f"Closed SQLite database: {self.db_path}")

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _conn(self) -> sqlite3.Connection:
        if self._shared.conn is None:
            raise AdapterError("SQLite adapter is not connected", adapter=self.id)
        return self._shared.conn

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[sqlite3.Connection]:
        """Serialise access to the connection; views inside a transaction already hold it."""
        if self._in_transaction:
            yield self._conn()
        else:
            async with self._shared.lock:
                yield self._conn()

    @contextmanager
    def _atomic(self, conn: sqlite3.Connection) -> Iterator[None]:
        """Wrap multi-statement operations in a transaction unless one is open."""
        if self._in_transaction:
            yield
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _translate(self, exc: sqlite3.Error) -> AdapterError:
        if isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc):
            return UniqueViolationError(str(exc), adapter=self.id)
        return AdapterError(f"SQLite error: {exc}", adapter=self.id)

    def _where_sql(self, table: TableDef, where: WhereInput) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        for condition in normalize_where(where):
            column = quote(self._mapper.column(table, condition.field))
            op = condition.operator
            value = condition.value

            if op == Operator.IN:
                values = [self._mapper.encode_value(table, condition.field, v) for v in value]
                if not values:
                    clauses.append("0 = 1")
                else:
                    clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                    params.extend(values)
            elif op == Operator.EQ and value is None:
                clauses.append(f"{column} IS NULL")
            elif op == Operator.NE and value is None:
                clauses.append(f"{column} IS NOT NULL")
            elif op in _COMPARISONS:
                clauses.append(f"{column} {_COMPARISONS[op]} ?")
                params.append(self._mapper.encode_value(table, condition.field, value))
            elif op == Operator.CONTAINS and is_json_field(table, condition.field):
                members = value if isinstance(value, list) else [value]
                for member in members:
                    clauses.append(
                        f"EXISTS (SELECT 1 FROM json_each({column}) WHERE json_each.value = ?)"
                    )
                    params.append(member)
            elif op == Operator.CONTAINS:
                clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(str(value))}%")
            elif op == Operator.STARTS_WITH:
                clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(f"{_escape_like(str(value))}%")
            elif op == Operator.ENDS_WITH:
                clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(str(value))}")
            elif op == Operator.ILIKE:
                clauses.append(f"lower({column}) LIKE lower(?)")
                params.append(str(value))
            else:
                raise ValueError(f"Unsupported operator: {op}")

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _order_sql(self, table: TableDef, sort_by: SortBy | None) -> str:
        if sort_by is None:
            return ""
        column = quote(self._mapper.column(table, sort_by.field))
        return f" ORDER BY {column} IS NULL, {column} {sort_by.direction.upper()}"

    def _select(
        self,
        conn: sqlite3.Connection,
        table: TableDef,
        where: WhereInput,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = self._where_sql(table, where)
        sql = f"SELECT * FROM {quote(table.entity_name)}{where_sql}{self._order_sql(table, sort_by)}"
        if limit is not None or offset is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit if limit is not None else -1, offset or 0])
        rows = conn.execute(sql, params).fetchall()
        return [self._mapper.from_storage(table, dict(row)) for row in rows]

    def _get_by_id(self, conn: sqlite3.Connection, table: TableDef, record_id: str) -> dict[str, Any] | None:
        row = conn.execute(
            f"SELECT * FROM {quote(table.entity_name)} WHERE {quote(PRIMARY_KEY)} = ?",
            (record_id,),
        ).fetchone()
        return self._mapper.from_storage(table, dict(row)) if row else None

    def _set_rows(
        self,
        conn: sqlite3.Connection,
        table: TableDef,
        ids: Sequence[str],
        data: dict[str, Any],
    ) -> None:
        values = self._mapper.to_storage(table, data)
        if not values or not ids:
            return
        assignments = ", ".join(f"{quote(column)} = ?" for column in values)
        placeholders = ", ".join("?" for _ in ids)
        conn.execute(
            f"UPDATE {quote(table.entity_name)} SET {assignments} "
            f"WHERE {quote(PRIMARY_KEY)} IN ({placeholders})",
            [*values.values(), *ids],
        )

    async def find_one(
        self,
        model: str,
        where: WhereInput,
        sort_by: SortBy | None = None,
    ) -> dict[str, Any] | None:
        table = self._mapper.table(model)
        async with self._guard() as conn:
            try:
                rows = self._select(conn, table, where, sort_by, limit=1)
            except sqlite3.Error as e:
                raise self._translate(e) from e
        return rows[0] if rows else None

    async def find_many(
        self,
        model: str,
        where: WhereInput = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        table = self._mapper.table(model)
        async with self._guard() as conn:
            try:
                return self._select(conn, table, where, sort_by, limit, offset)
            except sqlite3.Error as e:
                raise self._translate(e) from e

    async def count(self, model: str, where: WhereInput = None) -> int:
        table = self._mapper.table(model)
        where_sql, params = self._where_sql(table, where)
        async with self._guard() as conn:
            try:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM {quote(table.entity_name)}{where_sql}", params
                ).fetchone()
            except sqlite3.Error as e:
                raise self._translate(e) from e
        return int(row[0])

    async def create(self, model: str, data: dict[str, Any]) -> dict[str, Any] | None:
        table = self._mapper.table(model)
        values = self._mapper.to_storage(table, data)
        columns = ", ".join(quote(c) for c in values)
        placeholders = ", ".join("?" for _ in values)
        async with self._guard() as conn:
            try:
                with self._atomic(conn):
                    conn.execute(
                        f"INSERT INTO {quote(table.entity_name)} ({columns}) VALUES ({placeholders})",
                        list(values.values()),
                    )
                    return self._get_by_id(conn, table, data[PRIMARY_KEY])
            except sqlite3.Error as e:
                raise self._translate(e) from e

    async def update(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> dict[str, Any] | None:
        table = self._mapper.table(model)
        async with self._guard() as conn:
            try:
                with self._atomic(conn):
                    matches = self._select(conn, table, where, limit=1)
                    if not matches:
                        return None
                    record_id = matches[0][PRIMARY_KEY]
                    self._set_rows(conn, table, [record_id], data)
                    return self._get_by_id(conn, table, data.get(PRIMARY_KEY, record_id))
            except sqlite3.Error as e:
                raise self._translate(e) from e

    async def update_many(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> list[dict[str, Any]]:
        table = self._mapper.table(model)
        async with self._guard() as conn:
            try:
                with self._atomic(conn):
                    ids = [row[PRIMARY_KEY] for row in self._select(conn, table, where)]
                    self._set_rows(conn, table, ids, data)
                    return self._select(conn, table, [{"field": PRIMARY_KEY, "value": ids, "operator": "in"}])
            except sqlite3.Error as e:
                raise self._translate(e) from e

    async def delete(self, model: str, where: WhereInput) -> None:
        await self.delete_many(model, where)

    async def delete_many(self, model: str, where: WhereInput) -> int:
        table = self._mapper.table(model)
        where_sql, params = self._where_sql(table, where)
        async with self._guard() as conn:
            try:
                cursor = conn.execute(f"DELETE FROM {quote(table.entity_name)}{where_sql}", params)
            except sqlite3.Error as e:
                raise self._translate(e) from e
        return cursor.rowcount

    async def transaction(self, callback: Callable[[SqliteAdapter], Awaitable[T]]) -> T:
        """Run callback inside BEGIN IMMEDIATE ... COMMIT.

        Nested calls on a transaction view join the outer transaction.
        """
        if self._in_transaction:
            return await callback(self)

        async with self._shared.lock:
            conn = self._conn()
            view = SqliteAdapter(
                self.schema,
                db_path=self.db_path,
                wal_mode=self.wal_mode,
                busy_timeout_ms=self.busy_timeout_ms,
                _shared=self._shared,
                _in_transaction=True,
            )
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise self._translate(e) from e
            try:
                result = await callback(view)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise self._translate(e) from e
            except Exception:
                conn.execute("ROLLBACK")
                logger.debug("Rolled back SQLite transaction")
                raise
            return result

    async def introspect(self) -> list[LiveTable]:
        """List user tables and their columns."""
        async with self._guard() as conn:
            try:
                names = [
                    row["name"]
                    for row in conn.execute(
                        "SELECT name FROM sqlite_master "
                        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
                    ).fetchall()
                ]
                tables = []
                for name in names:
                    columns = conn.execute(f"PRAGMA table_info({quote(name)})").fetchall()
                    tables.append(
                        LiveTable(
                            name=name,
                            columns=tuple(LiveColumn(c["name"], c["type"]) for c in columns),
                        )
                    )
            except sqlite3.Error as e:
                raise self._translate(e) from e
        return tables

    async def execute_script(self, statements: Sequence[str]) -> None:
        """Execute DDL statements atomically.

        Raises:
            AdapterError: If any statement fails; nothing is applied
        """
        async with self._guard() as conn:
            try:
                with self._atomic(conn):
                    for statement in statements:
                        conn.execute(statement)
            except sqlite3.Error as e:
                raise self._translate(e) from e
        logger.info(f"Executed {len(statements)} statement(s) on {self.db_path}")

    def __repr__(self) -> str:
        return f"SqliteAdapter(db_path={self.db_path!r}, in_transaction={self._in_transaction})"
