"""
Column type mapping per SQL dialect.

get_column_type() picks the DDL type for a field. match_type() decides
whether a type reported by live introspection is an acceptable storage
type for a field kind. Introspected names vary by driver (e.g. "int4" vs
"integer"), so matching uses per-dialect synonym lists.

Invariants:
    - D1 shares SQLite's column types
    - String columns that are keys on MySQL/MSSQL (ids, references, unique
      or indexed fields, members of table indexes and unique constraints)
      are bounded varchars so they can be indexed
    - Key columns are wide enough for any entity prefix
"""

from __future__ import annotations

from ..config import Dialect
from ..schema.types import FieldDef, FieldKind, TableDef

# Bounded string type for indexable columns
_KEY_TYPES = {
    Dialect.MYSQL: "varchar(255)",
    Dialect.MSSQL: "nvarchar(255)",
}

_STRING_TYPES = {
    Dialect.SQLITE: "text",
    Dialect.POSTGRES: "text",
}

_BOOLEAN_TYPES = {
    Dialect.SQLITE: "integer",
    Dialect.POSTGRES: "boolean",
    Dialect.MYSQL: "boolean",
    Dialect.MSSQL: "smallint",
}

_DATE_TYPES = {
    Dialect.SQLITE: "date",
    Dialect.POSTGRES: "timestamp",
    Dialect.MYSQL: "datetime",
    Dialect.MSSQL: "datetime",
}

_TIMEZONE_TYPES = {
    Dialect.SQLITE: "text",
    Dialect.POSTGRES: "text",
    Dialect.MYSQL: "varchar(50)",
    Dialect.MSSQL: "nvarchar(50)",
}

_JSON_TYPES = {
    Dialect.SQLITE: "text",
    Dialect.POSTGRES: "jsonb",
    Dialect.MYSQL: "json",
    Dialect.MSSQL: "nvarchar(max)",
}

# Types introspection may report for each kind
_MATCHING_TYPES: dict[Dialect, dict[FieldKind, tuple[str, ...]]] = {
    Dialect.POSTGRES: {
        FieldKind.STRING: ("character varying", "varchar", "text"),
        FieldKind.NUMBER: (
            "int4",
            "integer",
            "bigint",
            "smallint",
            "numeric",
            "real",
            "double precision",
        ),
        FieldKind.BOOLEAN: ("bool", "boolean"),
        FieldKind.DATE: ("timestamp", "timestamp without time zone", "timestamptz", "date"),
        FieldKind.JSON: ("json", "jsonb"),
        FieldKind.TIMEZONE: ("text", "character varying"),
    },
    Dialect.MYSQL: {
        FieldKind.STRING: ("varchar(255)", "varchar", "text"),
        FieldKind.NUMBER: ("integer", "int", "bigint", "smallint", "decimal", "float", "double"),
        FieldKind.BOOLEAN: ("boolean", "tinyint"),
        FieldKind.DATE: ("timestamp", "datetime", "date"),
        FieldKind.JSON: ("json",),
        FieldKind.TIMEZONE: ("varchar(50)", "varchar"),
    },
    Dialect.SQLITE: {
        FieldKind.STRING: ("text",),
        FieldKind.NUMBER: ("integer", "real", "bigint"),
        FieldKind.BOOLEAN: ("integer", "boolean"),
        FieldKind.DATE: ("date", "integer"),
        FieldKind.JSON: ("text",),
        FieldKind.TIMEZONE: ("text",),
    },
    Dialect.MSSQL: {
        FieldKind.STRING: ("text", "varchar", "nvarchar"),
        FieldKind.NUMBER: ("int", "bigint", "smallint", "decimal", "float(53)", "float(24)", "float"),
        FieldKind.BOOLEAN: ("bit", "smallint"),
        FieldKind.DATE: ("datetime", "datetime2", "date"),
        FieldKind.JSON: ("nvarchar(max)", "nvarchar"),
        FieldKind.TIMEZONE: ("varchar", "nvarchar", "text"),
    },
}


def primary_key_type(dialect: Dialect) -> str:
    """Column type of the implicit id primary key."""
    return _KEY_TYPES.get(dialect.type_family, "text")


def keyed_fields(table: TableDef) -> set[str]:
    """Fields named by the table's composite indexes and unique constraints."""
    names: set[str] = set()
    for index in table.indexes:
        names.update(index.fields)
    for constraint in table.unique_constraints:
        names.update(constraint.fields)
    return names


def get_column_type(definition: FieldDef, dialect: Dialect, keyed: bool = False) -> str:
    """DDL column type for a field.

    Args:
        definition: Field definition
        dialect: Target dialect
        keyed: The field is part of a table-level index or unique constraint

    Returns:
        Lowercase SQL type
    """
    family = dialect.type_family
    kind = definition.kind

    if kind == FieldKind.STRING:
        if family in _STRING_TYPES:
            return _STRING_TYPES[family]
        if keyed or definition.unique or definition.indexed or definition.reference is not None:
            return _KEY_TYPES[family]
        return "text"
    if kind == FieldKind.NUMBER:
        return "bigint" if definition.bigint else "integer"
    if kind == FieldKind.BOOLEAN:
        return _BOOLEAN_TYPES[family]
    if kind == FieldKind.DATE:
        return _DATE_TYPES[family]
    if kind == FieldKind.TIMEZONE:
        return _TIMEZONE_TYPES[family]
    if kind == FieldKind.JSON:
        return _JSON_TYPES[family]
    raise ValueError(f"No column type for kind {kind}")


def match_type(column_type: str, kind: FieldKind, dialect: Dialect) -> bool:
    """Whether an introspected column type is acceptable for a field kind.

    Comparison ignores case. A parameterised type also matches on its
    base name, so "VARCHAR(120)" matches a "varchar" entry.
    """
    accepted = _MATCHING_TYPES[dialect.type_family][kind]
    normalized = column_type.strip().lower()
    if normalized in accepted:
        return True
    base = normalized.split("(", 1)[0].strip()
    return base in {a.split("(", 1)[0] for a in accepted}
