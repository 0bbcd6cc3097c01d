"""
Core type definitions for the consent store schema system.

This module defines the backend-agnostic descriptor format:
- FieldKind: Scalar kinds a field can hold
- FieldRef: Lookup pointer from a field to another entity's field
- FieldTransform: Value conversion applied on the way into and out of storage
- FieldDef: A single field within a table
- IndexDef / UniqueConstraintDef: Table-level index and uniqueness declarations
- TableDef: A fully merged entity definition

Invariants:
    - Every field has exactly one kind
    - bigint is only meaningful on number fields
    - The implicit primary key "id" is never declared as a field
    - physical_name is the name storage sees; logical names are what callers use

How to change safely:
    - Add new kinds at the end of FieldKind and teach every dialect about them
    - New FieldDef attributes must default to the current behavior
    - Keep to_dict() deterministic, the schema fingerprint is derived from it

Example:
    >>> from backend.consent_store.schema.types import TableDef, field
    >>> Domain = TableDef(
    ...     key="domain",
    ...     entity_name="domain",
    ...     entity_prefix="dom",
    ...     order=1,
    ...     fields={
    ...         "name": field("string", required=True, unique=True),
    ...         "isActive": field("boolean", required=True, default=True),
    ...     },
    ... )
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

PRIMARY_KEY = "id"


class FieldKind(Enum):
    """Supported field kinds.

    These map to a column type per SQL dialect and to a Python type
    during output validation.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"
    TIMEZONE = "timezone"  # IANA zone name, stored as short text

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Args:
            value: String name of the field kind

        Returns:
            Corresponding FieldKind enum value

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")


class OnDelete(Enum):
    """Referential action applied when the referenced row is deleted."""

    CASCADE = "cascade"
    SET_NULL = "set null"
    RESTRICT = "restrict"
    NO_ACTION = "no action"

    @classmethod
    def from_str(cls, value: str) -> OnDelete:
        """Convert string representation to OnDelete, case-insensitively."""
        normalized = value.strip().lower().replace("_", " ")
        for action in cls:
            if action.value == normalized:
                return action
        valid = [a.value for a in cls]
        raise ValueError(f"Invalid on_delete action '{value}'. Valid actions: {valid}")


@dataclass(frozen=True)
class FieldRef:
    """Lookup pointer to a field of another entity.

    Attributes:
        entity: Schema key of the referenced entity (not its table name)
        field: Logical name of the referenced field
        on_delete: Optional referential action
    """

    entity: str
    field: str = PRIMARY_KEY
    on_delete: OnDelete | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {"entity": self.entity, "field": self.field}
        if self.on_delete is not None:
            result["on_delete"] = self.on_delete.value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldRef:
        """Create from dictionary representation.

        Accepts "model" as an alias of "entity".
        """
        on_delete = data.get("on_delete") or data.get("onDelete")
        return cls(
            entity=data.get("entity") or data["model"],
            field=data.get("field", PRIMARY_KEY),
            on_delete=OnDelete.from_str(on_delete) if on_delete else None,
        )


@dataclass(frozen=True)
class FieldTransform:
    """Value conversion between the caller's shape and the stored shape.

    Attributes:
        to_storage: Applied to a value before it is written
        from_storage: Applied to a value after it is read
    """

    to_storage: Callable[[Any], Any] | None = None
    from_storage: Callable[[Any], Any] | None = None

    def encode(self, value: Any) -> Any:
        if value is None or self.to_storage is None:
            return value
        return self.to_storage(value)

    def decode(self, value: Any) -> Any:
        if value is None or self.from_storage is None:
            return value
        return self.from_storage(value)


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field within a table.

    Attributes:
        kind: The data kind of the field
        required: Whether the field must be present on every record
        unique: Whether values must be unique across the table
        indexed: Whether to create a single-column index
        default: Literal value or zero-argument callable used on create
        physical_name: Column name in storage (None means the logical name)
        reference: Optional pointer to another entity's field
        transform: Optional value conversion on write and read
        bigint: Use a 64-bit integer column (number fields only)
        description: Human-readable description

    Invariants:
        - Callable defaults run at write time, never during schema assembly
        - A reference names an entity key, resolved to a table name at compile time

    Example:
        >>> created_at = FieldDef(kind=FieldKind.DATE, required=True, default=utc_now)
    """

    kind: FieldKind
    required: bool = False
    unique: bool = False
    indexed: bool = False
    default: Any = None
    physical_name: str | None = None
    reference: FieldRef | None = None
    transform: FieldTransform | None = None
    bigint: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not isinstance(self.kind, FieldKind):
            raise ValueError(f"kind must be a FieldKind, got {self.kind!r}")
        if self.bigint and self.kind != FieldKind.NUMBER:
            raise ValueError(f"bigint is only valid on number fields, got {self.kind.value}")
        if self.physical_name is not None and not self.physical_name:
            raise ValueError("physical_name cannot be empty")

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def has_literal_default(self) -> bool:
        return self.default is not None and not callable(self.default)

    def resolve_default(self) -> Any:
        """Produce the default value for a new record.

        Callables are invoked; literals are deep-copied so mutable
        defaults (lists, dicts) are never shared between records.
        """
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    def column_name(self, logical_name: str) -> str:
        """Return the storage column name for this field."""
        return self.physical_name or logical_name

    def with_physical_name(self, physical_name: str) -> FieldDef:
        return replace(self, physical_name=physical_name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"kind": self.kind.value}
        if self.required:
            result["required"] = True
        if self.unique:
            result["unique"] = True
        if self.indexed:
            result["indexed"] = True
        if callable(self.default):
            name = getattr(self.default, "__name__", type(self.default).__name__)
            result["default"] = {"generated": name}
        elif self.default is not None:
            result["default"] = self.default
        if self.physical_name is not None:
            result["physical_name"] = self.physical_name
        if self.reference is not None:
            result["reference"] = self.reference.to_dict()
        if self.transform is not None:
            result["transform"] = True
        if self.bigint:
            result["bigint"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation.

        Accepts the option-file spellings "type" for kind, "field_name" or
        "fieldName" for physical_name and "references" for reference.
        """
        kind = data.get("kind") or data["type"]
        reference = data.get("reference") or data.get("references")
        return cls(
            kind=FieldKind.from_str(kind),
            required=data.get("required", False),
            unique=data.get("unique", False),
            indexed=data.get("indexed", False),
            default=data.get("default"),
            physical_name=(
                data.get("physical_name") or data.get("field_name") or data.get("fieldName")
            ),
            reference=FieldRef.from_dict(reference) if reference else None,
            bigint=data.get("bigint", False),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class IndexDef:
    """Secondary index over one or more logical fields."""

    name: str
    fields: tuple[str, ...]
    unique: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Index name cannot be empty")
        if not self.fields:
            raise ValueError(f"Index '{self.name}' must cover at least one field")

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "fields": list(self.fields), "unique": self.unique}


@dataclass(frozen=True)
class UniqueConstraintDef:
    """Table-level uniqueness over a combination of logical fields."""

    name: str
    fields: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.fields) < 2:
            raise ValueError(
                f"Unique constraint '{self.name}' needs two or more fields, "
                "use FieldDef.unique for a single column"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "fields": list(self.fields)}


@dataclass(frozen=True)
class TableDef:
    """Fully merged definition of one entity.

    Attributes:
        key: Entity key in the schema map (e.g. "consentPurpose")
        entity_name: Physical table name
        entity_prefix: Prefix for generated record IDs
        fields: Ordered mapping of logical field name to FieldDef
        order: Creation order; referenced entities have a lower order
        indexes: Secondary indexes
        unique_constraints: Multi-column uniqueness constraints
        provenance: Per field, the sources that defined or altered it

    Invariants:
        - fields never contains the primary key
        - Every physical column name is distinct within the table
    """

    key: str
    entity_name: str
    entity_prefix: str
    fields: dict[str, FieldDef] = dataclass_field(default_factory=dict)
    order: int = 0
    indexes: tuple[IndexDef, ...] = ()
    unique_constraints: tuple[UniqueConstraintDef, ...] = ()
    provenance: dict[str, tuple[str, ...]] = dataclass_field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        """Validate table definition."""
        if not self.key:
            raise ValueError("Table key cannot be empty")
        if not self.entity_name:
            raise ValueError(f"entity_name cannot be empty for '{self.key}'")
        if not self.entity_prefix:
            raise ValueError(f"entity_prefix cannot be empty for '{self.key}'")
        if PRIMARY_KEY in self.fields:
            raise ValueError(f"'{self.key}' must not declare the implicit '{PRIMARY_KEY}' field")
        for constraint in (*self.indexes, *self.unique_constraints):
            missing = [name for name in constraint.fields if name not in self.fields]
            if missing:
                raise ValueError(
                    f"'{constraint.name}' on '{self.key}' names unknown fields: {missing}"
                )

    def get_field(self, name: str) -> FieldDef | None:
        return self.fields.get(name)

    def has_field(self, name: str) -> bool:
        return name == PRIMARY_KEY or name in self.fields

    def column(self, name: str) -> str:
        """Map a logical field name to its physical column name.

        Raises:
            KeyError: If the field is not declared on this table
        """
        if name == PRIMARY_KEY:
            return PRIMARY_KEY
        return self.fields[name].column_name(name)

    def references(self) -> list[tuple[str, FieldRef]]:
        """List (field name, reference) pairs in declaration order."""
        return [(name, f.reference) for name, f in self.fields.items() if f.reference]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "key": self.key,
            "entity_name": self.entity_name,
            "entity_prefix": self.entity_prefix,
            "order": self.order,
            "fields": {name: f.to_dict() for name, f in self.fields.items()},
        }
        if self.indexes:
            result["indexes"] = [i.to_dict() for i in self.indexes]
        if self.unique_constraints:
            result["unique_constraints"] = [u.to_dict() for u in self.unique_constraints]
        return result


def field(
    kind: str | FieldKind,
    *,
    required: bool = False,
    unique: bool = False,
    indexed: bool = False,
    default: Any = None,
    physical_name: str | None = None,
    references: str | FieldRef | None = None,
    on_delete: str | OnDelete | None = None,
    transform: FieldTransform | None = None,
    bigint: bool = False,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    This is the preferred way to declare fields in entity catalogs.

    Args:
        kind: Field kind (string or FieldKind enum)
        required: Whether field is required
        unique: Whether values are unique
        indexed: Whether to create an index
        default: Literal default or zero-argument callable
        physical_name: Storage column name
        references: Entity key (pointing at its "id") or a FieldRef
        on_delete: Referential action when references is an entity key
        transform: Value conversion on write and read
        bigint: Use a 64-bit integer column
        description: Human-readable description

    Returns:
        FieldDef instance

    Example:
        >>> subject_id = field("string", required=True, references="subject")
        >>> zones = field("json", default=list)
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    if isinstance(on_delete, str):
        on_delete = OnDelete.from_str(on_delete)
    if isinstance(references, str):
        references = FieldRef(entity=references, on_delete=on_delete)
    return FieldDef(
        kind=kind,
        required=required,
        unique=unique,
        indexed=indexed,
        default=default,
        physical_name=physical_name,
        reference=references,
        transform=transform,
        bigint=bigint,
        description=description,
    )
