"""
Assembled schema map.

A Schema is the immutable result of schema assembly: entity key to merged
TableDef. It provides:
- Lookup by entity key or physical table name
- Creation-order iteration for migrations
- Reference checking (soft: logged, not raised)
- Schema fingerprinting for consistency checks

Invariants:
    - A Schema is never mutated after construction
    - Equal options produce equal fingerprints
    - Unknown entity lookups raise UnknownEntityError

How to change safely:
    - Anything that affects storage must be reflected in TableDef.to_dict(),
      otherwise two different schemas could share a fingerprint
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from ..errors import UnknownEntityError
from .types import TableDef

logger = logging.getLogger(__name__)


class Schema(Mapping[str, TableDef]):
    """Immutable mapping of entity key to TableDef.

    Attributes:
        fingerprint: SHA-256 hash of the canonical schema representation

    Example:
        >>> schema = assemble_schema(StoreOptions())
        >>> schema["domain"].entity_prefix
        'dom'
        >>> schema.fingerprint
        'sha256:abc123...'
    """

    def __init__(self, tables: Mapping[str, TableDef], log: logging.Logger | None = None) -> None:
        self._tables: dict[str, TableDef] = dict(tables)
        self._by_name = {t.entity_name: t for t in self._tables.values()}
        if len(self._by_name) != len(self._tables):
            names = [t.entity_name for t in self._tables.values()]
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate table names in schema: {duplicates}")
        self._log = log or logger
        self._fingerprint = self._compute_fingerprint()
        # Per-schema cache for derived validators, dropped with the schema
        self.validator_cache: dict[str, Any] = {}

    def __getitem__(self, key: str) -> TableDef:
        return self._tables[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schema):
            return NotImplemented
        return self._fingerprint == other._fingerprint

    def __hash__(self) -> int:
        return hash(self._fingerprint)

    def __repr__(self) -> str:
        return f"Schema({len(self)} tables, fingerprint={self._fingerprint})"

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    def table(self, key: str) -> TableDef:
        """Get a table by entity key.

        Raises:
            UnknownEntityError: If the key is not part of this schema
        """
        try:
            return self._tables[key]
        except KeyError:
            raise UnknownEntityError(key) from None

    def by_entity_name(self, entity_name: str) -> TableDef | None:
        """Get a table by its physical table name."""
        return self._by_name.get(entity_name)

    def tables_in_order(self) -> list[TableDef]:
        """Tables sorted by creation order, stable on declaration order."""
        return sorted(self._tables.values(), key=lambda t: t.order)

    def resolve_reference(self, table: TableDef, field_name: str) -> tuple[str, str] | None:
        """Resolve a reference field to (target table name, target column).

        Returns:
            None if the field has no reference or the target is unknown
        """
        definition = table.fields.get(field_name)
        if definition is None or definition.reference is None:
            return None
        target = self._tables.get(definition.reference.entity)
        if target is None or not target.has_field(definition.reference.field):
            return None
        return target.entity_name, target.column(definition.reference.field)

    def validate_all(self) -> list[str]:
        """Check references across the whole schema.

        Returns:
            List of problems, empty if the schema is consistent
        """
        errors: list[str] = []
        for table in self._tables.values():
            for name, ref in table.references():
                target = self._tables.get(ref.entity)
                if target is None:
                    errors.append(f"{table.key}.{name} references unknown entity '{ref.entity}'")
                    continue
                if not target.has_field(ref.field):
                    errors.append(
                        f"{table.key}.{name} references unknown field '{ref.entity}.{ref.field}'"
                    )
                if target.order >= table.order and target.key != table.key:
                    errors.append(
                        f"{table.key} (order {table.order}) references "
                        f"{target.key} (order {target.order})"
                    )
        return errors

    def warn_on_problems(self) -> None:
        for problem in self.validate_all():
            self._log.warning(f"Schema reference problem: {problem}")

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the schema.

        Returns:
            Fingerprint string in format 'sha256:<hash>'
        """
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict[str, Any]:
        """Export the schema as a JSON-serializable dictionary."""
        return {key: table.to_dict() for key, table in self._tables.items()}

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, default=str)
