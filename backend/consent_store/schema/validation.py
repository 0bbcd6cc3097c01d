"""
Output validation for records read back from an adapter.

Every record returned through the hook pipeline is checked against a
pydantic model derived from its TableDef. Date fields arrive in whatever
shape the backend stored (ISO text, datetime) and leave as datetime.

Invariants:
    - Validation failures raise EntityValidationError, never a warning
    - Unknown columns pass through untouched
    - Validator models are cached per Schema instance only
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from ..errors import EntityValidationError
from .registry import Schema
from .types import PRIMARY_KEY, FieldKind, TableDef

logger = logging.getLogger(__name__)

_PYTHON_TYPES: dict[FieldKind, Any] = {
    FieldKind.STRING: str,
    FieldKind.NUMBER: Union[int, float],
    FieldKind.BOOLEAN: bool,
    FieldKind.DATE: datetime,
    FieldKind.JSON: Any,
    FieldKind.TIMEZONE: str,
}


def build_model(table: TableDef) -> type[BaseModel]:
    """Derive a pydantic model from a table definition."""
    definitions: dict[str, Any] = {PRIMARY_KEY: (str, ...)}
    for name, definition in table.fields.items():
        python_type = _PYTHON_TYPES[definition.kind]
        if definition.required and definition.kind != FieldKind.JSON:
            definitions[name] = (python_type, ...)
        else:
            definitions[name] = (Optional[python_type], None)
    return create_model(
        f"{table.key[:1].upper()}{table.key[1:]}Record",
        __config__=ConfigDict(extra="allow"),
        **definitions,
    )


def _model_for(schema: Schema, table: TableDef) -> type[BaseModel]:
    model = schema.validator_cache.get(table.key)
    if model is None:
        model = build_model(table)
        schema.validator_cache[table.key] = model
    return model


def coerce_dates(table: TableDef, raw: dict[str, Any]) -> dict[str, Any]:
    """Convert ISO strings in date fields to datetime."""
    result = dict(raw)
    for name, definition in table.fields.items():
        value = result.get(name)
        if definition.kind == FieldKind.DATE and isinstance(value, str):
            try:
                result[name] = datetime.fromisoformat(value)
            except ValueError:
                # Leave it to the model to report the field
                pass
    return result


def validate_output(entity: str, raw: dict[str, Any], schema: Schema) -> dict[str, Any]:
    """Validate and normalise a record returned by an adapter.

    Args:
        entity: Entity key
        raw: Record with logical field names
        schema: Assembled schema

    Returns:
        The validated record, dates as datetime

    Raises:
        UnknownEntityError: If entity is not in the schema
        EntityValidationError: If the record does not match the table
    """
    table = schema.table(entity)
    model = _model_for(schema, table)
    try:
        parsed = model.model_validate(coerce_dates(table, raw))
    except ValidationError as e:
        issues = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in e.errors()
        ]
        logger.error(
            f"Validation failed for {entity} record {raw.get(PRIMARY_KEY)}",
            extra={"entity": entity, "issues": issues},
        )
        raise EntityValidationError(
            f"Invalid {entity} record: {len(issues)} issue(s)",
            entity=entity,
            issues=issues,
        ) from e
    return parsed.model_dump()
