"""
Configuration management for the consent store.

Two kinds of configuration live here:
- Process settings (storage path, migration dialect, logging), read from
  environment variables into frozen dataclasses
- Store options (table renames, extra fields, extensions, hooks), built in
  code or loaded from a YAML/JSON options file

Invariants:
    - All process settings have sensible defaults for local development
    - Store options are plain data; the schema is rebuilt from them on demand
    - Column overrides only rename where a field is stored, never its kind

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - New option keys must be optional in load_options()
    - Document new environment variables in README.md
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from .schema.merge import ConflictStrategy
from .schema.types import FieldDef, IndexDef, UniqueConstraintDef

if TYPE_CHECKING:
    from .hooks import HookSet
    from .schema.types import TableDef

logger = logging.getLogger(__name__)


class Dialect(Enum):
    """Supported SQL dialects for migration output."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MSSQL = "mssql"
    D1 = "d1"  # Cloudflare D1: SQLite types, no transactional scripts

    @classmethod
    def from_str(cls, value: str) -> Dialect:
        normalized = value.strip().lower()
        aliases = {"postgresql": "postgres", "pg": "postgres", "sqlserver": "mssql"}
        normalized = aliases.get(normalized, normalized)
        for dialect in cls:
            if dialect.value == normalized:
                return dialect
        valid = [d.value for d in cls]
        raise ValueError(f"Invalid dialect '{value}'. Must be one of: {valid}")

    @property
    def type_family(self) -> Dialect:
        """Dialect whose column types this one shares."""
        return Dialect.SQLITE if self == Dialect.D1 else self

    @property
    def supports_transactions(self) -> bool:
        return self != Dialect.D1


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        db_path: SQLite database file (":memory:" for a private in-memory database)
        wal_mode: Enable SQLite WAL journal mode
        busy_timeout_ms: SQLite busy timeout
    """

    db_path: str = "consent.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("CONSENT_DB_PATH", "consent.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class MigrationConfig:
    """Migration output configuration.

    Attributes:
        dialect: SQL dialect for generated scripts
        output_dir: Directory generated migration files are written to
    """

    dialect: Dialect = Dialect.SQLITE
    output_dir: str = "migrations"

    @classmethod
    def from_env(cls) -> MigrationConfig:
        """Load configuration from environment variables."""
        return cls(
            dialect=Dialect.from_str(os.getenv("MIGRATION_DIALECT", "sqlite")),
            output_dir=os.getenv("MIGRATION_DIR", "migrations"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json or text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class StoreConfig:
    """Complete process configuration.

    Attributes:
        storage: SQLite storage configuration
        migration: Migration output configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            migration=MigrationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be json or text"
            )
        if self.storage.db_path != ":memory:":
            parent = Path(self.storage.db_path).parent
            if not parent.exists():
                logger.warning(
                    f"Database directory does not exist: {parent}. "
                    "It will be created on first connect."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Store configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "dialect": self.migration.dialect.value,
                "migration_dir": self.migration.output_dir,
                "log_level": self.observability.log_level,
            },
        )


@dataclass
class EntityConfig:
    """Per-deployment customisation of one built-in entity.

    Attributes:
        entity_name: Table name override
        entity_prefix: ID prefix override
        fields: Logical field name to physical column name
        additional_fields: Extra fields appended to the entity
    """

    entity_name: str | None = None
    entity_prefix: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    additional_fields: dict[str, FieldDef] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityConfig:
        additional = data.get("additional_fields") or data.get("additionalFields") or {}
        return cls(
            entity_name=data.get("entity_name") or data.get("entityName"),
            entity_prefix=data.get("entity_prefix") or data.get("entityPrefix"),
            fields=dict(data.get("fields") or {}),
            additional_fields={name: FieldDef.from_dict(d) for name, d in additional.items()},
        )


@dataclass
class ExtensionTable:
    """Fields an extension contributes to one entity.

    For an entity the core already knows, only ``fields`` (and optional
    indexes) are merged. For a new entity, the remaining attributes
    describe the table.
    """

    fields: dict[str, FieldDef] = field(default_factory=dict)
    entity_name: str | None = None
    entity_prefix: str | None = None
    order: int | None = None
    indexes: tuple[IndexDef, ...] = ()
    unique_constraints: tuple[UniqueConstraintDef, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtensionTable:
        return cls(
            fields={name: FieldDef.from_dict(d) for name, d in (data.get("fields") or {}).items()},
            entity_name=data.get("entity_name") or data.get("entityName"),
            entity_prefix=data.get("entity_prefix") or data.get("entityPrefix"),
            order=data.get("order"),
            indexes=tuple(
                IndexDef(
                    name=i["name"],
                    fields=tuple(i["fields"]),
                    unique=i.get("unique", False),
                )
                for i in data.get("indexes") or []
            ),
            unique_constraints=tuple(
                UniqueConstraintDef(name=u["name"], fields=tuple(u["fields"]))
                for u in data.get("unique_constraints") or []
            ),
        )


@dataclass
class Extension:
    """A plugin contributing schema and hooks.

    Attributes:
        id: Stable extension identifier, recorded in field provenance
        schema: Entity key to contributed table fragment
        hooks: Hook sets registered by this extension
    """

    id: str
    schema: dict[str, ExtensionTable] = field(default_factory=dict)
    hooks: list[HookSet] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Extension:
        return cls(
            id=data["id"],
            schema={key: ExtensionTable.from_dict(t) for key, t in (data.get("schema") or {}).items()},
        )


@dataclass
class StoreOptions:
    """Everything that shapes the assembled schema and the write pipeline.

    Attributes:
        tables: Per-entity customisation keyed by entity key
        extensions: Extensions in registration order
        hooks: Application hook sets, run after extension hooks
        conflict_strategy: Handling of physical column collisions
        generate_id: Optional ID generator taking the target table
        logger: Logger for store diagnostics (defaults to module loggers)
    """

    tables: dict[str, EntityConfig] = field(default_factory=dict)
    extensions: list[Extension] = field(default_factory=list)
    hooks: list[HookSet] = field(default_factory=list)
    conflict_strategy: ConflictStrategy = ConflictStrategy.ERROR
    generate_id: Callable[[TableDef], str] | None = None
    logger: logging.Logger | None = None

    def entity(self, key: str) -> EntityConfig:
        return self.tables.get(key) or EntityConfig()

    def all_hook_sets(self) -> list[HookSet]:
        """Extension hook sets in registration order, then application hook sets."""
        result: list[HookSet] = []
        for extension in self.extensions:
            result.extend(extension.hooks)
        result.extend(self.hooks)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreOptions:
        strategy = data.get("conflict_strategy") or data.get("conflictStrategy") or "error"
        return cls(
            tables={key: EntityConfig.from_dict(t or {}) for key, t in (data.get("tables") or {}).items()},
            extensions=[Extension.from_dict(e) for e in data.get("extensions") or []],
            conflict_strategy=ConflictStrategy.from_str(strategy),
        )


def load_options(path: str | Path) -> StoreOptions:
    """Load store options from a YAML or JSON file.

    Hooks and ID generators are code and cannot be expressed in a file;
    attach them to the returned options afterwards.

    Args:
        path: Options file (.yaml, .yml or .json)

    Returns:
        StoreOptions built from the file

    Raises:
        ValueError: If the file is not a mapping or has an unknown extension
    """
    path = Path(path)
    text = path.read_text()
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    elif path.suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unsupported options file type: {path.suffix}")

    if not isinstance(data, dict):
        raise ValueError(f"Options file {path} must contain a mapping")

    logger.debug(f"Loaded store options from {path}")
    return StoreOptions.from_dict(data)
