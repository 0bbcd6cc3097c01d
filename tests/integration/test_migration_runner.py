"""
Integration tests for the migration runner against SQLite.

Tests cover:
- Fresh database migration
- Re-running is a no-op
- Adding columns to existing tables with data
- Refusing non-SQL adapters
- Failed migrations leave nothing behind
- Writing migration files
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from backend.consent_store.adapters import InMemoryAdapter, SqliteAdapter, eq
from backend.consent_store.config import Dialect, EntityConfig, StoreOptions
from backend.consent_store.errors import MigrationError
from backend.consent_store.migrations import get_migrations, run_migrations, write_migration_file
from backend.consent_store.migrations.compiler import CompiledMigration
from backend.consent_store.pipeline import HookPipeline
from backend.consent_store.schema import assemble_schema, field

TIMESTAMP = datetime(2024, 5, 1, 9, 30, 0, tzinfo=timezone.utc)


class TestRunMigrations:
    """Integration tests for run_migrations."""

    @pytest.fixture
    def db_path(self):
        """Create temporary database file path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield os.path.join(tmpdir, "consent.db")

    @pytest.mark.asyncio
    async def test_fresh_database(self, db_path):
        """All tables are created on an empty database."""
        schema = assemble_schema(StoreOptions())
        adapter = SqliteAdapter(schema, db_path=db_path)
        await adapter.connect()
        try:
            result = await run_migrations(adapter, schema)
            live = {t.name for t in await adapter.introspect()}
        finally:
            await adapter.close()

        assert result.applied
        assert live == {t.entity_name for t in schema.values()}

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, db_path):
        """Migrating an up-to-date database applies nothing."""
        schema = assemble_schema(StoreOptions())
        adapter = SqliteAdapter(schema, db_path=db_path)
        await adapter.connect()
        try:
            await run_migrations(adapter, schema)
            second = await run_migrations(adapter, schema)
        finally:
            await adapter.close()

        assert not second.applied
        assert second.plan.is_empty
        assert second.compiled.is_empty

    @pytest.mark.asyncio
    async def test_add_column_to_populated_table(self, db_path):
        """New fields become columns and existing rows survive."""
        base = assemble_schema(StoreOptions())
        adapter = SqliteAdapter(base, db_path=db_path)
        await adapter.connect()
        try:
            await run_migrations(adapter, base)
            await HookPipeline(adapter, base).create("domain", {"name": "a.com"})
        finally:
            await adapter.close()

        options = StoreOptions(
            tables={
                "domain": EntityConfig(
                    additional_fields={
                        "tier": field("string", required=True, default="free"),
                        "tenantId": field("string", indexed=True),
                    }
                )
            }
        )
        extended = assemble_schema(options)
        adapter = SqliteAdapter(extended, db_path=db_path)
        await adapter.connect()
        try:
            result = await run_migrations(adapter, extended)
            domain = await HookPipeline(adapter, extended).find_one("domain", [eq("name", "a.com")])
            again = await run_migrations(adapter, extended)
        finally:
            await adapter.close()

        assert result.plan.summary() == {"create": [], "add": {"domain": ["tier", "tenantId"]}}
        assert domain["tier"] == "free"
        assert domain["tenantId"] is None
        assert not again.applied

    @pytest.mark.asyncio
    async def test_memory_adapter_refused(self):
        """Only SQL-building adapters can be migrated."""
        schema = assemble_schema(StoreOptions())

        with pytest.raises(MigrationError, match="sql-builder"):
            await run_migrations(InMemoryAdapter(schema), schema)

    @pytest.mark.asyncio
    async def test_failed_migration_rolls_back(self, db_path):
        """A failing statement leaves the database unchanged."""

        class BrokenScript(SqliteAdapter):
            async def execute_script(self, statements):
                await super().execute_script([*statements, "CREATE TABLE broken ("])

        schema = assemble_schema(StoreOptions())
        adapter = BrokenScript(schema, db_path=db_path)
        await adapter.connect()
        try:
            with pytest.raises(MigrationError, match="Migration failed"):
                await run_migrations(adapter, schema)
            live = await adapter.introspect()
        finally:
            await adapter.close()

        assert live == []

    @pytest.mark.asyncio
    async def test_get_migrations_other_dialect(self, db_path):
        """Pending SQL can be compiled for a different dialect."""
        schema = assemble_schema(StoreOptions())
        adapter = SqliteAdapter(schema, db_path=db_path)
        await adapter.connect()
        try:
            plan, compiled = await get_migrations(adapter, schema, Dialect.POSTGRES)
        finally:
            await adapter.close()

        assert len(plan.to_be_created) == len(schema)
        assert compiled.dialect == Dialect.POSTGRES
        assert compiled.forward_sql.startswith("BEGIN;")


class TestWriteMigrationFile:
    """Tests for write_migration_file."""

    @pytest.fixture
    def out_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir) / "migrations"

    def test_writes_file(self, out_dir):
        """The rendered migration is written under a timestamped name."""
        compiled = CompiledMigration(dialect=Dialect.SQLITE, statements=('CREATE TABLE "t" ("id" text)',))

        path = write_migration_file(compiled, out_dir, TIMESTAMP)

        assert path.name == "20240501093000_consent_store.sql"
        assert 'CREATE TABLE "t" ("id" text);' in path.read_text()

    def test_refuses_overwrite(self, out_dir):
        """An existing file with the same name is never replaced."""
        compiled = CompiledMigration(dialect=Dialect.SQLITE)
        write_migration_file(compiled, out_dir, TIMESTAMP)

        with pytest.raises(MigrationError, match="already exists"):
            write_migration_file(compiled, out_dir, TIMESTAMP)
