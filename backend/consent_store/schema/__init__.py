"""
Schema system for the consent store.

This package provides:
- Field and table descriptor types
- The built-in entity catalog
- Three-tier field merging with provenance
- Schema assembly and the immutable Schema map
- Output validation of stored records
"""

from .assembly import assemble_schema
from .catalog import BUILTIN_ENTITIES, BUILTIN_KEYS, build_table, utc_now
from .merge import ConflictStrategy, FieldTier, merge_fields
from .registry import Schema
from .types import (
    PRIMARY_KEY,
    FieldDef,
    FieldKind,
    FieldRef,
    FieldTransform,
    IndexDef,
    OnDelete,
    TableDef,
    UniqueConstraintDef,
    field,
)
from .validation import validate_output

__all__ = [
    "BUILTIN_ENTITIES",
    "BUILTIN_KEYS",
    "PRIMARY_KEY",
    "ConflictStrategy",
    "FieldDef",
    "FieldKind",
    "FieldRef",
    "FieldTier",
    "FieldTransform",
    "IndexDef",
    "OnDelete",
    "Schema",
    "TableDef",
    "UniqueConstraintDef",
    "assemble_schema",
    "build_table",
    "field",
    "merge_fields",
    "utc_now",
    "validate_output",
]
