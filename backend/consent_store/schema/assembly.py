"""
Schema assembly.

assemble_schema() turns StoreOptions into a Schema:
    1. every built-in entity is built with its extension contributions
       merged in extension registration order
    2. entities that only extensions declare are appended, ordered after the
       built-ins unless they state an order

Invariants:
    - Assembly is a pure function of the options; no clock, no randomness
    - The schema is rebuilt on every call and never cached across options
    - Reference problems are logged, not raised

How to change safely:
    - New built-in entities belong in catalog.BUILTIN_ENTITIES, not here
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from .catalog import BUILTIN_ENTITIES, build_table
from .merge import FieldTier, extension_source, merge_fields
from .registry import Schema
from .types import TableDef

if TYPE_CHECKING:
    from ..config import ExtensionTable, StoreOptions

logger = logging.getLogger(__name__)


def assemble_schema(options: StoreOptions) -> Schema:
    """Build the full schema map from options.

    Args:
        options: Store options

    Returns:
        Immutable Schema keyed by entity key

    Raises:
        FieldConflictError: On a column collision under the error strategy

    Example:
        >>> schema = assemble_schema(StoreOptions())
        >>> [t.key for t in schema.tables_in_order()][:2]
        ['subject', 'consentPurpose']
    """
    log = options.logger or logger
    tables: dict[str, TableDef] = {}

    for builtin in BUILTIN_ENTITIES:
        contributions = _contributions(options, builtin.key)
        table = build_table(
            builtin.key,
            options,
            [FieldTier(extension_source(ext_id), frag.fields) for ext_id, frag in contributions],
        )
        extra_indexes = tuple(i for _, frag in contributions for i in frag.indexes)
        extra_unique = tuple(u for _, frag in contributions for u in frag.unique_constraints)
        if extra_indexes or extra_unique:
            table = replace(
                table,
                indexes=table.indexes + extra_indexes,
                unique_constraints=table.unique_constraints + extra_unique,
            )
        tables[builtin.key] = table

    last_order = max((t.order for t in tables.values()), default=0)
    for key in _extension_only_keys(options, tables):
        tables[key] = _build_extension_table(key, options, last_order + 1, log)

    schema = Schema(tables, log=log)
    schema.warn_on_problems()
    log.debug(f"Assembled schema with {len(schema)} tables, fingerprint={schema.fingerprint}")
    return schema


def _contributions(options: StoreOptions, key: str) -> list[tuple[str, ExtensionTable]]:
    return [(ext.id, ext.schema[key]) for ext in options.extensions if key in ext.schema]


def _extension_only_keys(options: StoreOptions, known: dict[str, TableDef]) -> list[str]:
    keys: list[str] = []
    for extension in options.extensions:
        for key in extension.schema:
            if key not in known and key not in keys:
                keys.append(key)
    return keys


def _build_extension_table(
    key: str,
    options: StoreOptions,
    default_order: int,
    log: logging.Logger,
) -> TableDef:
    """Build an entity declared only by extensions.

    The first declaring extension supplies the table name, prefix and order;
    later extensions only add fields, indexes and constraints.
    """
    contributions = _contributions(options, key)
    _, first = contributions[0]
    entity_config = options.entity(key)

    tiers = [FieldTier(extension_source(ext_id), frag.fields) for ext_id, frag in contributions]
    if entity_config.additional_fields:
        tiers.append(FieldTier("config", entity_config.additional_fields))
    merged = merge_fields(
        key,
        tiers,
        overrides=entity_config.fields,
        strategy=options.conflict_strategy,
        log=log,
    )

    return TableDef(
        key=key,
        entity_name=entity_config.entity_name or first.entity_name or key,
        entity_prefix=entity_config.entity_prefix or first.entity_prefix or key[:3].lower(),
        fields=merged.fields,
        order=first.order if first.order is not None else default_order,
        indexes=tuple(i for _, frag in contributions for i in frag.indexes),
        unique_constraints=tuple(u for _, frag in contributions for u in frag.unique_constraints),
        provenance=merged.provenance,
    )
