"""
Migration CLI for the consent store.

Commands:
- schema: Print the assembled schema as JSON
- plan: Show tables and columns that would be created or added
- generate: Write the pending migration to a .sql file
- migrate: Apply the pending migration to a SQLite database

Usage:
    consent-store-migrate schema --options consent.yaml
    consent-store-migrate plan --db consent.db
    consent-store-migrate generate --dialect postgres --output-dir migrations/
    consent-store-migrate migrate --db consent.db --yes

Invariants:
    - Exit code 0 on success, 1 on failure, 2 when the user declines
    - Without --db, plans are computed against an empty database
    - Settings not given on the command line come from the environment

How to change safely:
    - Add new commands, don't change the output of existing ones
    - Keep generated file names sortable by time
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import json_log_formatter

from ..adapters.sqlite import SqliteAdapter
from ..config import Dialect, ObservabilityConfig, StoreConfig, StoreOptions, load_options
from ..errors import StoreError
from ..migrations import (
    CompiledMigration,
    MigrationPlan,
    compile_migration,
    get_migrations,
    plan_migration,
    run_migrations,
    write_migration_file,
)
from ..schema import Schema, assemble_schema

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class MigrateCLI:
    """CLI tool for schema migrations.

    Example:
        >>> cli = MigrateCLI(StoreOptions(), StoreConfig())
        >>> plan, compiled = asyncio.run(cli.pending(Dialect.POSTGRES, db_path=None))
        >>> print(cli.format_plan(plan))
    """

    def __init__(self, options: StoreOptions, config: StoreConfig) -> None:
        self.options = options
        self.config = config
        self.schema: Schema = assemble_schema(options)

    def _adapter(self, db_path: str) -> SqliteAdapter:
        return SqliteAdapter(
            self.schema,
            db_path=db_path,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )

    async def pending(
        self,
        dialect: Dialect,
        db_path: str | None,
    ) -> tuple[MigrationPlan, CompiledMigration]:
        """Compute the pending migration, against a live SQLite file if given."""
        if db_path is None:
            plan = plan_migration(self.schema, [], dialect)
            return plan, compile_migration(plan, dialect)

        adapter = self._adapter(db_path)
        await adapter.connect()
        try:
            return await get_migrations(adapter, self.schema, dialect)
        finally:
            await adapter.close()

    async def migrate(self, db_path: str) -> bool:
        """Apply pending migrations. Returns whether anything ran."""
        adapter = self._adapter(db_path)
        await adapter.connect()
        try:
            result = await run_migrations(adapter, self.schema)
        finally:
            await adapter.close()
        return result.applied

    def format_plan(self, plan: MigrationPlan) -> str:
        if plan.is_empty:
            return "Schema is up to date"
        lines = []
        for table in plan.to_be_created:
            lines.append(f"+ create table {table.entity_name} ({len(table.fields) + 1} columns)")
        for addition in plan.to_be_added:
            columns = ", ".join(addition.table.column(f) for f in addition.fields)
            lines.append(f"+ add to {addition.table.entity_name}: {columns}")
        return "\n".join(lines)


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the migration tool."""
    parser = argparse.ArgumentParser(description="Consent store migration tool")
    parser.add_argument("--options", help="Store options file (.yaml, .yml or .json)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("schema", help="Print the assembled schema as JSON")

    plan_parser = subparsers.add_parser("plan", help="Show pending schema changes")
    plan_parser.add_argument("--db", help="SQLite database to compare against")
    plan_parser.add_argument("--dialect", help="SQL dialect (default: MIGRATION_DIALECT)")

    generate_parser = subparsers.add_parser("generate", help="Write pending changes to a SQL file")
    generate_parser.add_argument("--db", help="SQLite database to compare against")
    generate_parser.add_argument("--dialect", help="SQL dialect (default: MIGRATION_DIALECT)")
    generate_parser.add_argument("--output-dir", "-o", help="Directory (default: MIGRATION_DIR)")

    migrate_parser = subparsers.add_parser("migrate", help="Apply pending changes to SQLite")
    migrate_parser.add_argument("--db", help="SQLite database (default: CONSENT_DB_PATH)")
    migrate_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    args = parser.parse_args(argv)

    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(config.observability)

    try:
        options = load_options(args.options) if args.options else StoreOptions()
        cli = MigrateCLI(options, config)

        if args.command == "schema":
            print(cli.schema.to_json())
            sys.exit(0)

        if args.command in ("plan", "generate"):
            dialect = Dialect.from_str(args.dialect) if args.dialect else config.migration.dialect
            plan, compiled = asyncio.run(cli.pending(dialect, args.db))
            print(cli.format_plan(plan))
            if args.command == "generate":
                if compiled.is_empty:
                    print("Nothing to generate")
                else:
                    path = write_migration_file(
                        compiled, args.output_dir or config.migration.output_dir
                    )
                    print(f"Migration written to {path}")
            sys.exit(0)

        if args.command == "migrate":
            db_path = args.db or config.storage.db_path
            plan, _ = asyncio.run(cli.pending(Dialect.SQLITE, db_path))
            print(cli.format_plan(plan))
            if plan.is_empty:
                sys.exit(0)
            if not args.yes and not _confirm(f"Apply these changes to {db_path}?"):
                print("Aborted")
                sys.exit(2)
            asyncio.run(cli.migrate(db_path))
            print("Migration applied")
            sys.exit(0)

    except (StoreError, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
