"""
Adapter contract for consent store backends.

Every backend exposes the same CRUD + transaction surface, expressed in
logical entity keys and logical field names. Adapters own the translation
to physical table and column names, field transforms, and per-backend
value encoding.

Invariants:
    - Adapters never generate IDs or timestamps; the hook pipeline does
    - Where conditions in one call are ANDed
    - transaction() commits only if the callback returns normally
    - Backend failures surface as AdapterError, never retried here

How to change safely:
    - New operators must be implemented by every adapter before use
    - Keep RecordMapper the only place logical and physical names meet
"""

from __future__ import annotations

import re
from abc import abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, Union, runtime_checkable

from ..errors import AdapterError
from ..schema.types import PRIMARY_KEY, FieldDef, FieldKind, TableDef

if TYPE_CHECKING:
    from ..config import StorageConfig
    from ..schema.registry import Schema

T = TypeVar("T")


class Operator(Enum):
    """Comparison operators accepted in where conditions."""

    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    CONTAINS = "contains"  # substring on strings, membership on json
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    ILIKE = "ilike"  # case-insensitive LIKE pattern

    @classmethod
    def from_str(cls, value: str) -> Operator:
        for op in cls:
            if op.value == value:
                return op
        valid = [op.value for op in cls]
        raise ValueError(f"Invalid operator '{value}'. Valid operators: {valid}")


@dataclass(frozen=True)
class WhereCondition:
    """A single filter on a logical field.

    Attributes:
        field: Logical field name (or "id")
        value: Comparison value; a sequence for IN
        operator: Comparison operator
    """

    field: str
    value: Any
    operator: Operator = Operator.EQ

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WhereCondition:
        op = data.get("operator", Operator.EQ)
        return cls(
            field=data["field"],
            value=data.get("value"),
            operator=op if isinstance(op, Operator) else Operator.from_str(op),
        )


@dataclass(frozen=True)
class SortBy:
    field: str
    direction: str = "asc"

    def __post_init__(self) -> None:
        if self.direction not in ("asc", "desc"):
            raise ValueError(f"Sort direction must be 'asc' or 'desc', got '{self.direction}'")


WhereInput = Union[Sequence[Union[WhereCondition, Mapping[str, Any]]], None]


def normalize_where(where: WhereInput) -> list[WhereCondition]:
    """Accept condition objects or plain dicts and return condition objects."""
    if not where:
        return []
    return [c if isinstance(c, WhereCondition) else WhereCondition.from_dict(c) for c in where]


def eq(field: str, value: Any) -> WhereCondition:
    """Shorthand for an equality condition."""
    return WhereCondition(field=field, value=value)


@runtime_checkable
class Adapter(Protocol):
    """Protocol for consent store backends.

    All operations take a logical entity key ("consent", "domain", ...) and
    logical field names, and return records keyed by logical field names.

    Example:
        >>> adapter = InMemoryAdapter(schema)
        >>> row = await adapter.create("domain", {"id": "dom_1", "name": "example.com"})
        >>> await adapter.find_one("domain", [eq("name", "example.com")])
    """

    id: str
    schema: Schema

    @abstractmethod
    async def find_one(
        self,
        model: str,
        where: WhereInput,
        sort_by: SortBy | None = None,
    ) -> dict[str, Any] | None:
        """Return the first matching record or None."""
        ...

    @abstractmethod
    async def find_many(
        self,
        model: str,
        where: WhereInput = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return all matching records."""
        ...

    @abstractmethod
    async def count(self, model: str, where: WhereInput = None) -> int:
        ...

    @abstractmethod
    async def create(self, model: str, data: dict[str, Any]) -> dict[str, Any] | None:
        """Insert a record. data must already carry its id."""
        ...

    @abstractmethod
    async def update(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update the first matching record and return it, or None if none matched."""
        ...

    @abstractmethod
    async def update_many(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def delete(self, model: str, where: WhereInput) -> None:
        ...

    @abstractmethod
    async def delete_many(self, model: str, where: WhereInput) -> int:
        ...

    @abstractmethod
    async def transaction(self, callback: Callable[[Adapter], Awaitable[T]]) -> T:
        """Run callback with a transaction-scoped adapter.

        Commits when the callback returns, rolls back when it raises.
        """
        ...


class RecordMapper:
    """Translate records between logical and physical shape for one schema.

    Value encoding is backend specific and supplied by the adapter as an
    (encode, decode) pair working on (FieldDef, value).
    """

    def __init__(
        self,
        schema: Schema,
        encode: Callable[[FieldDef, Any], Any] | None = None,
        decode: Callable[[FieldDef, Any], Any] | None = None,
        adapter_id: str = "",
    ) -> None:
        self.schema = schema
        self._encode = encode
        self._decode = decode
        self._adapter_id = adapter_id

    def table(self, model: str) -> TableDef:
        return self.schema.table(model)

    def column(self, table: TableDef, name: str) -> str:
        if not table.has_field(name):
            raise AdapterError(
                f"Unknown field '{name}' on '{table.key}'",
                adapter=self._adapter_id,
                details={"entity": table.key, "field": name},
            )
        return table.column(name)

    def encode_value(self, table: TableDef, name: str, value: Any) -> Any:
        """Apply transform and backend encoding to a single value."""
        definition = table.fields.get(name)
        if definition is None:
            return value
        if definition.transform is not None:
            value = definition.transform.encode(value)
        if self._encode is not None and value is not None:
            value = self._encode(definition, value)
        return value

    def to_storage(self, table: TableDef, data: Mapping[str, Any]) -> dict[str, Any]:
        """Logical record to physical column values."""
        return {
            self.column(table, name): self.encode_value(table, name, value)
            for name, value in data.items()
        }

    def from_storage(self, table: TableDef, row: Mapping[str, Any]) -> dict[str, Any]:
        """Physical row to logical record. Columns the schema does not know are dropped."""
        record: dict[str, Any] = {PRIMARY_KEY: row.get(PRIMARY_KEY)}
        for name, definition in table.fields.items():
            column = definition.column_name(name)
            if column not in row:
                continue
            value = row[column]
            if self._decode is not None and value is not None:
                value = self._decode(definition, value)
            if definition.transform is not None:
                value = definition.transform.decode(value)
            record[name] = value
        return record


def like_to_regex(pattern: str, case_insensitive: bool = False) -> re.Pattern[str]:
    """Compile a SQL LIKE pattern (% and _ wildcards) into a regex."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL | (re.IGNORECASE if case_insensitive else 0))


def json_contains(container: Any, value: Any) -> bool:
    """JSON containment: list membership or sub-dict match."""
    if isinstance(container, list):
        if isinstance(value, list):
            return all(v in container for v in value)
        return value in container
    if isinstance(container, dict) and isinstance(value, Mapping):
        return all(container.get(k) == v for k, v in value.items())
    return container == value


def is_json_field(table: TableDef, name: str) -> bool:
    definition = table.fields.get(name)
    return definition is not None and definition.kind == FieldKind.JSON


def create_adapter(
    kind: str,
    schema: Schema,
    storage: StorageConfig | None = None,
) -> Adapter:
    """Create an adapter by backend name.

    Args:
        kind: "memory" or "sqlite"
        schema: Assembled schema
        storage: SQLite settings when kind is "sqlite"

    Returns:
        Adapter instance (not yet connected for SQLite)

    Raises:
        ValueError: If kind is not supported
    """
    if kind == "memory":
        from .memory import InMemoryAdapter

        return InMemoryAdapter(schema)
    if kind == "sqlite":
        from .sqlite import SqliteAdapter

        if storage is None:
            return SqliteAdapter(schema)
        return SqliteAdapter(
            schema,
            db_path=storage.db_path,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
        )
    raise ValueError(f"Unsupported adapter: {kind}. Valid adapters: ['memory', 'sqlite']")


def iter_unique_groups(table: TableDef) -> Iterable[tuple[str, ...]]:
    """Logical field groups that must be unique together, including the primary key."""
    yield (PRIMARY_KEY,)
    for name, definition in table.fields.items():
        if definition.unique:
            yield (name,)
    for constraint in table.unique_constraints:
        yield constraint.fields
    for index in table.indexes:
        if index.unique:
            yield index.fields
