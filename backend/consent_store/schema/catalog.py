"""
Built-in entity catalog.

Each built-in entity is described once here: its default table name, ID
prefix, creation order and field set. build_table() turns a catalog entry
plus deployment options plus extension contributions into a TableDef.

Creation order:
    1: subject, consentPurpose, domain, geoLocation
    2: consentPolicy
    3: consent
    4: consentPurposeJunction, consentRecord, consentGeoLocation, consentWithdrawal
    5: auditLog

Invariants:
    - An entity only references entities with a strictly lower order
    - Field factories return fresh dicts; catalog state is never mutated
    - Date defaults are generators resolved at write time

How to change safely:
    - New built-in fields should be optional or carry a literal default so
      ALTER TABLE ADD COLUMN works against populated tables
    - Never change an entity's order without re-checking its references
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .merge import BUILTIN, CONFIG, ConflictStrategy, FieldTier, merge_fields
from .types import FieldDef, FieldTransform, IndexDef, TableDef, UniqueConstraintDef, field

if TYPE_CHECKING:
    from ..config import StoreOptions

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _json_list_to_storage(value: Any) -> Any:
    return json.dumps(value) if isinstance(value, list) else value


def _json_list_from_storage(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


REGULATORY_ZONES = FieldTransform(
    to_storage=_json_list_to_storage,
    from_storage=_json_list_from_storage,
)


@dataclass(frozen=True)
class BuiltinEntity:
    """Catalog entry for a built-in entity."""

    key: str
    entity_prefix: str
    order: int
    fields: Callable[[], dict[str, FieldDef]]
    indexes: tuple[IndexDef, ...] = ()
    unique_constraints: tuple[UniqueConstraintDef, ...] = ()
    description: str = dataclass_field(default="", compare=False)

    @property
    def entity_name(self) -> str:
        return self.key


def _subject_fields() -> dict[str, FieldDef]:
    return {
        "isIdentified": field("boolean", required=True, default=False),
        "externalId": field("string", indexed=True),
        "identityProvider": field("string"),
        "lastIpAddress": field("string"),
        "createdAt": field("date", required=True, default=utc_now),
        "updatedAt": field("date", required=True, default=utc_now),
        "subjectTimezone": field("timezone", required=True, default="UTC"),
    }


def _purpose_fields() -> dict[str, FieldDef]:
    return {
        "code": field("string", required=True),
        "name": field("string", required=True),
        "description": field("string", required=True),
        "isEssential": field("boolean", required=True, default=False),
        "dataCategory": field("string"),
        "legalBasis": field("string"),
        "isActive": field("boolean", required=True, default=True),
        "createdAt": field("date", required=True, default=utc_now),
        "updatedAt": field("date", required=True, default=utc_now),
    }


def _policy_fields() -> dict[str, FieldDef]:
    return {
        "version": field("string", required=True),
        "name": field("string", required=True),
        "effectiveDate": field("date", required=True),
        "expirationDate": field("date"),
        "content": field("string", required=True),
        "contentHash": field("string", required=True),
        "isActive": field("boolean", required=True, default=True),
        "createdAt": field("date", required=True, default=utc_now),
    }


def _domain_fields() -> dict[str, FieldDef]:
    return {
        "name": field("string", required=True, unique=True),
        "description": field("string"),
        "allowedOrigins": field("json", default=list),
        "isVerified": field("boolean", required=True, default=True),
        "isActive": field("boolean", required=True, default=True),
        "createdAt": field("date", required=True, default=utc_now),
        "updatedAt": field("date"),
    }


def _consent_fields() -> dict[str, FieldDef]:
    return {
        "subjectId": field("string", required=True, references="subject", indexed=True),
        "domainId": field("string", required=True, references="domain", indexed=True),
        "purposeIds": field("json"),
        "metadata": field("json"),
        "policyId": field("string", references="consentPolicy"),
        "ipAddress": field("string"),
        "userAgent": field("string"),
        "status": field("string", required=True, default="active"),
        "withdrawalReason": field("string"),
        "givenAt": field("date", required=True, default=utc_now),
        "validUntil": field("date"),
        "isActive": field("boolean", required=True, default=True),
    }


def _purpose_junction_fields() -> dict[str, FieldDef]:
    return {
        "consentId": field("string", required=True, references="consent", on_delete="cascade"),
        "purposeId": field("string", required=True, references="consentPurpose"),
        "status": field("string", required=True, default="active"),
        "metadata": field("json"),
        "createdAt": field("date", required=True, default=utc_now),
        "updatedAt": field("date"),
    }


def _record_fields() -> dict[str, FieldDef]:
    return {
        "subjectId": field("string", required=True, references="subject", indexed=True),
        "consentId": field("string", references="consent"),
        "actionType": field("string", required=True),
        "details": field("json"),
        "createdAt": field("date", required=True, default=utc_now),
    }


def _consent_geo_fields() -> dict[str, FieldDef]:
    return {
        "consentId": field("string", required=True, references="consent", on_delete="cascade"),
        "ip": field("string", required=True),
        "country": field("string"),
        "region": field("string"),
        "city": field("string"),
        "latitude": field("number"),
        "longitude": field("number"),
        "timezone": field("string"),
        "createdAt": field("date", required=True, default=utc_now),
    }


def _withdrawal_fields() -> dict[str, FieldDef]:
    return {
        "consentId": field("string", required=True, references="consent", on_delete="cascade"),
        "subjectId": field("string", required=True, references="subject"),
        "withdrawalReason": field("string"),
        "withdrawalMethod": field("string", required=True, default="subject-initiated"),
        "ipAddress": field("string"),
        "userAgent": field("string"),
        "metadata": field("json"),
        "createdAt": field("date", required=True, default=utc_now),
    }


def _audit_log_fields() -> dict[str, FieldDef]:
    return {
        "entityType": field("string", required=True),
        "entityId": field("string", required=True),
        "actionType": field("string", required=True),
        "subjectId": field("string", references="subject"),
        "ipAddress": field("string"),
        "userAgent": field("string"),
        "changes": field("json"),
        "metadata": field("json"),
        "createdAt": field("date", required=True, default=utc_now),
        "eventTimezone": field("timezone", required=True, default="UTC"),
    }


def _geo_location_fields() -> dict[str, FieldDef]:
    return {
        "countryCode": field("string", required=True),
        "countryName": field("string", required=True),
        "regionCode": field("string"),
        "regionName": field("string"),
        "regulatoryZones": field("json", transform=REGULATORY_ZONES),
        "createdAt": field("date", required=True, default=utc_now),
    }


BUILTIN_ENTITIES: tuple[BuiltinEntity, ...] = (
    BuiltinEntity("subject", "sub", 1, _subject_fields),
    BuiltinEntity("consentPurpose", "pur", 1, _purpose_fields),
    BuiltinEntity("consentPolicy", "pol", 2, _policy_fields),
    BuiltinEntity("domain", "dom", 1, _domain_fields),
    BuiltinEntity("consent", "cns", 3, _consent_fields),
    BuiltinEntity(
        "consentPurposeJunction",
        "pjx",
        4,
        _purpose_junction_fields,
        unique_constraints=(
            UniqueConstraintDef("unique_consent_purpose", ("consentId", "purposeId")),
        ),
    ),
    BuiltinEntity("consentRecord", "rec", 4, _record_fields),
    BuiltinEntity("consentGeoLocation", "cgl", 4, _consent_geo_fields),
    BuiltinEntity(
        "consentWithdrawal",
        "wdr",
        4,
        _withdrawal_fields,
        unique_constraints=(
            UniqueConstraintDef("unique_consent_withdrawal", ("consentId", "subjectId")),
        ),
    ),
    BuiltinEntity(
        "auditLog",
        "log",
        5,
        _audit_log_fields,
        indexes=(IndexDef("idx_audit_log_entity", ("entityType", "entityId")),),
    ),
    BuiltinEntity("geoLocation", "geo", 1, _geo_location_fields),
)

BUILTIN_KEYS: tuple[str, ...] = tuple(entity.key for entity in BUILTIN_ENTITIES)


def get_builtin(key: str) -> BuiltinEntity | None:
    for entity in BUILTIN_ENTITIES:
        if entity.key == key:
            return entity
    return None


def build_table(
    key: str,
    options: StoreOptions,
    extension_fields: Iterable[FieldTier] = (),
) -> TableDef:
    """Build the merged TableDef for a built-in entity.

    Args:
        key: Built-in entity key
        options: Store options (table renames, additional fields, overrides)
        extension_fields: Extension contributions in registration order

    Returns:
        The merged table definition

    Raises:
        KeyError: If key is not a built-in entity
        FieldConflictError: On a column collision under the error strategy
    """
    builtin = get_builtin(key)
    if builtin is None:
        raise KeyError(f"'{key}' is not a built-in entity")

    entity_config = options.entity(key)
    tiers = [FieldTier(BUILTIN, builtin.fields()), *extension_fields]
    if entity_config.additional_fields:
        tiers.append(FieldTier(CONFIG, entity_config.additional_fields))

    merged = merge_fields(
        key,
        tiers,
        overrides=entity_config.fields,
        strategy=options.conflict_strategy or ConflictStrategy.ERROR,
        log=options.logger,
    )

    return TableDef(
        key=key,
        entity_name=entity_config.entity_name or builtin.entity_name,
        entity_prefix=entity_config.entity_prefix or builtin.entity_prefix,
        fields=merged.fields,
        order=builtin.order,
        indexes=_surviving(builtin.indexes, merged.fields),
        unique_constraints=_surviving(builtin.unique_constraints, merged.fields),
        provenance=merged.provenance,
    )


def _surviving(constraints: tuple[Any, ...], fields: dict[str, FieldDef]) -> tuple[Any, ...]:
    """Drop constraints whose fields were lost to a collision."""
    kept = []
    for constraint in constraints:
        if all(name in fields for name in constraint.fields):
            kept.append(constraint)
        else:
            logger.warning(f"Dropping '{constraint.name}', a covered field no longer exists")
    return tuple(kept)
