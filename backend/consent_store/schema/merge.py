"""
Conflict-aware field merging with provenance tracking.

A table's fields come from up to four tiers, applied in increasing
precedence:
    1. builtin          - the entity's catalog fields
    2. extension:<id>   - fields contributed by each extension, in order
    3. config           - additional_fields from deployment configuration
    4. override         - physical-name remaps from deployment configuration

Tiers 1-3 replace whole fields keyed by logical name. Tier 4 only changes
where a field lives in storage.

Invariants:
    - Every merged field records the ordered tuple of sources that touched it
    - After merging, no two logical fields share a physical column name
    - The implicit primary key column is reserved

How to change safely:
    - New tiers must slot into TIER_RANK so precedence stays total
    - Keep collision resolution independent of dict ordering within a tier
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from ..errors import FieldConflictError
from .types import PRIMARY_KEY, FieldDef

logger = logging.getLogger(__name__)

BUILTIN = "builtin"
CONFIG = "config"
OVERRIDE = "override"


class ConflictStrategy(Enum):
    """What to do when two fields resolve to the same physical column."""

    ERROR = "error"
    WARN = "warn"
    SILENT = "silent"

    @classmethod
    def from_str(cls, value: str) -> ConflictStrategy:
        for strategy in cls:
            if strategy.value == value:
                return strategy
        valid = [s.value for s in cls]
        raise ValueError(f"Invalid conflict strategy '{value}'. Valid strategies: {valid}")


def extension_source(extension_id: str) -> str:
    return f"extension:{extension_id}"


@dataclass(frozen=True)
class FieldTier:
    """One source of field definitions for a table."""

    source: str
    fields: Mapping[str, FieldDef]


@dataclass
class MergeResult:
    fields: dict[str, FieldDef]
    provenance: dict[str, tuple[str, ...]]


def merge_fields(
    entity: str,
    tiers: Iterable[FieldTier],
    overrides: Mapping[str, str] | None = None,
    strategy: ConflictStrategy = ConflictStrategy.ERROR,
    log: logging.Logger | None = None,
) -> MergeResult:
    """Merge field tiers for one entity.

    Args:
        entity: Entity key, used in diagnostics
        tiers: Field sources in increasing precedence
        overrides: Logical field name to physical column name
        strategy: Collision handling
        log: Logger for collision and redefinition diagnostics

    Returns:
        MergeResult with fields in first-declaration order

    Raises:
        FieldConflictError: On a physical-name collision under ConflictStrategy.ERROR
    """
    log = log or logger
    fields: dict[str, FieldDef] = {}
    provenance: dict[str, tuple[str, ...]] = {}
    # Precedence of the tier that last wrote each field
    rank: dict[str, int] = {}

    for position, tier in enumerate(tiers):
        for name, definition in tier.fields.items():
            if name == PRIMARY_KEY:
                raise ValueError(
                    f"{tier.source} cannot redefine the primary key of '{entity}'"
                )
            if name in fields:
                log.debug(
                    f"Field '{entity}.{name}' redefined by {tier.source}",
                    extra={"entity": entity, "field": name, "previous": provenance[name]},
                )
                provenance[name] = (*provenance[name], tier.source)
            else:
                provenance[name] = (tier.source,)
            fields[name] = definition
            rank[name] = position

    for name, physical in (overrides or {}).items():
        if name == PRIMARY_KEY:
            continue
        if name not in fields:
            log.warning(f"Ignoring column override for unknown field '{entity}.{name}'")
            continue
        if physical == fields[name].column_name(name):
            continue
        fields[name] = fields[name].with_physical_name(physical)
        provenance[name] = (*provenance[name], OVERRIDE)

    _resolve_collisions(entity, fields, provenance, rank, strategy, log)

    return MergeResult(
        fields={name: f.with_physical_name(f.column_name(name)) for name, f in fields.items()},
        provenance=provenance,
    )


def _resolve_collisions(
    entity: str,
    fields: dict[str, FieldDef],
    provenance: dict[str, tuple[str, ...]],
    rank: dict[str, int],
    strategy: ConflictStrategy,
    log: logging.Logger,
) -> None:
    by_column: dict[str, list[str]] = {}
    for name, definition in fields.items():
        by_column.setdefault(definition.column_name(name), []).append(name)

    for column, names in by_column.items():
        if column == PRIMARY_KEY:
            # Nothing outranks the primary key
            _report(entity, column, names, provenance, strategy, log)
            for name in names:
                del fields[name]
                del provenance[name]
            continue
        if len(names) < 2:
            continue

        _report(entity, column, names, provenance, strategy, log)
        # Highest tier wins; ties go to the later declaration
        winner = max(names, key=lambda n: (rank[n], names.index(n)))
        for name in names:
            if name != winner:
                del fields[name]
                del provenance[name]


def _report(
    entity: str,
    column: str,
    names: list[str],
    provenance: dict[str, tuple[str, ...]],
    strategy: ConflictStrategy,
    log: logging.Logger,
) -> None:
    sources = [provenance[name][-1] for name in names]
    if strategy == ConflictStrategy.ERROR:
        raise FieldConflictError(entity, column, list(names), sources)
    if strategy == ConflictStrategy.WARN:
        log.warning(
            f"Fields {names} of '{entity}' collide on column '{column}', keeping the last",
            extra={"entity": entity, "column": column, "sources": sources},
        )
