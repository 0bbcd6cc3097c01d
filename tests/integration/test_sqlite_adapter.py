"""
Integration tests for the SQLite adapter.

Tests cover:
- CRUD through a migrated file database
- Value encoding (booleans, dates, json, transforms)
- Where operators and sorting in SQL
- Unique and foreign key enforcement
- Transaction commit and rollback
"""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from backend.consent_store.adapters import (
    Adapter,
    InMemoryAdapter,
    Operator,
    SortBy,
    SqliteAdapter,
    WhereCondition,
    create_adapter,
    eq,
)
from backend.consent_store.config import EntityConfig, StorageConfig, StoreOptions
from backend.consent_store.errors import AdapterError, UniqueViolationError
from backend.consent_store.migrations import run_migrations
from backend.consent_store.schema import assemble_schema

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def _connect(db_path, options=None):
    schema = assemble_schema(options or StoreOptions())
    adapter = SqliteAdapter(schema, db_path=db_path)
    await adapter.connect()
    await run_migrations(adapter, schema)
    return adapter


def _domain(domain_id, name, **extra):
    record = {
        "id": domain_id,
        "name": name,
        "isVerified": True,
        "isActive": True,
        "createdAt": CREATED,
    }
    record.update(extra)
    return record


async def _seed(adapter):
    await adapter.create("domain", _domain("dom_1", "a.com", allowedOrigins=["https://a.com"]))
    await adapter.create("domain", _domain("dom_2", "b.com", allowedOrigins=["https://b.com"]))
    await adapter.create("domain", _domain("dom_3", "c.org", allowedOrigins=None))


class TestSqliteAdapter:
    """Integration tests for SqliteAdapter."""

    @pytest.fixture
    def db_path(self):
        """Create temporary database file path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield os.path.join(tmpdir, "consent.db")

    def test_satisfies_protocol(self):
        """SqliteAdapter implements the Adapter protocol."""
        adapter = SqliteAdapter(assemble_schema(StoreOptions()))

        assert isinstance(adapter, Adapter)
        assert adapter.id == "sql-builder"

    def test_factory_uses_storage_config(self):
        """create_adapter passes SQLite settings through."""
        adapter = create_adapter(
            "sqlite",
            assemble_schema(StoreOptions()),
            StorageConfig(db_path="/tmp/x.db", wal_mode=False, busy_timeout_ms=100),
        )

        assert isinstance(adapter, SqliteAdapter)
        assert adapter.db_path == "/tmp/x.db"
        assert adapter.busy_timeout_ms == 100

    @pytest.mark.asyncio
    async def test_not_connected(self):
        """Operations before connect() raise AdapterError."""
        adapter = SqliteAdapter(assemble_schema(StoreOptions()))

        with pytest.raises(AdapterError, match="not connected"):
            await adapter.count("domain")

    @pytest.mark.asyncio
    async def test_create_and_decode(self, db_path):
        """Stored values come back in Python types."""
        adapter = await _connect(db_path)
        try:
            await _seed(adapter)
            found = await adapter.find_one("domain", [eq("name", "a.com")])
        finally:
            await adapter.close()

        assert found["id"] == "dom_1"
        assert found["allowedOrigins"] == ["https://a.com"]
        assert found["isActive"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["true", "123", "[1]", "plain text", {"a": "1"}, [1, "2"]])
    async def test_json_values_match_memory_adapter(self, db_path, value):
        """json fields read back the exact value on both backends, strings included."""
        adapter = await _connect(db_path)
        memory = InMemoryAdapter(adapter.schema)
        found = {}
        try:
            for backend in (memory, adapter):
                await backend.create("domain", _domain("dom_1", "a.com", allowedOrigins=value))
                found[backend.id] = (await backend.find_one("domain", [eq("id", "dom_1")]))["allowedOrigins"]
        finally:
            await adapter.close()

        assert found == {"memory": value, "sql-builder": value}

    @pytest.mark.asyncio
    async def test_booleans_and_dates(self, db_path):
        """Booleans round trip as bool, dates as ISO text."""
        adapter = await _connect(db_path)
        given = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
        try:
            await adapter.create(
                "domain",
                {"id": "dom_1", "name": "a.com", "isActive": True, "isVerified": False, "createdAt": given},
            )
            found = await adapter.find_one("domain", [eq("isActive", True)])
        finally:
            await adapter.close()

        assert found["isActive"] is True
        assert found["isVerified"] is False
        assert found["createdAt"] == given.isoformat()

    @pytest.mark.asyncio
    async def test_operators(self, db_path):
        """SQL where clauses match the memory adapter's semantics."""
        adapter = await _connect(db_path)
        try:
            await _seed(adapter)
            in_rows = await adapter.find_many(
                "domain", [WhereCondition("name", ["a.com", "c.org"], Operator.IN)]
            )
            empty_in = await adapter.count("domain", [WhereCondition("name", [], Operator.IN)])
            suffix = await adapter.find_many("domain", [WhereCondition("name", ".com", Operator.ENDS_WITH)])
            ilike = await adapter.find_many("domain", [WhereCondition("name", "C.%", Operator.ILIKE)])
            json_rows = await adapter.find_many(
                "domain", [WhereCondition("allowedOrigins", "https://b.com", Operator.CONTAINS)]
            )
            null_rows = await adapter.find_many("domain", [eq("allowedOrigins", None)])
        finally:
            await adapter.close()

        assert sorted(r["id"] for r in in_rows) == ["dom_1", "dom_3"]
        assert empty_in == 0
        assert sorted(r["id"] for r in suffix) == ["dom_1", "dom_2"]
        assert [r["id"] for r in ilike] == ["dom_3"]
        assert [r["id"] for r in json_rows] == ["dom_2"]
        assert [r["id"] for r in null_rows] == ["dom_3"]

    @pytest.mark.asyncio
    async def test_like_wildcards_escaped(self, db_path):
        """Underscores in starts_with values are literal."""
        adapter = await _connect(db_path)
        try:
            await adapter.create("domain", _domain("dom_1", "a_b.com"))
            await adapter.create("domain", _domain("dom_2", "axb.com"))
            rows = await adapter.find_many("domain", [WhereCondition("name", "a_", Operator.STARTS_WITH)])
        finally:
            await adapter.close()

        assert [r["id"] for r in rows] == ["dom_1"]

    @pytest.mark.asyncio
    async def test_sort_and_paginate(self, db_path):
        """ORDER BY, LIMIT and OFFSET apply."""
        adapter = await _connect(db_path)
        try:
            await _seed(adapter)
            rows = await adapter.find_many("domain", sort_by=SortBy("name", "desc"), limit=2, offset=1)
            nulls = await adapter.find_many("domain", sort_by=SortBy("allowedOrigins"))
        finally:
            await adapter.close()

        assert [r["name"] for r in rows] == ["b.com", "a.com"]
        assert nulls[-1]["id"] == "dom_3"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, db_path):
        """update changes one row, update_many and delete_many report all."""
        adapter = await _connect(db_path)
        try:
            await _seed(adapter)
            one = await adapter.update("domain", [eq("id", "dom_1")], {"description": "first"})
            many = await adapter.update_many(
                "domain", [WhereCondition("name", ".com", Operator.ENDS_WITH)], {"isActive": False}
            )
            removed = await adapter.delete_many("domain", [eq("isActive", False)])
            remaining = await adapter.count("domain")
        finally:
            await adapter.close()

        assert one["description"] == "first"
        assert len(many) == 2
        assert removed == 2
        assert remaining == 1

    @pytest.mark.asyncio
    async def test_unique_violation(self, db_path):
        """Duplicate unique values raise UniqueViolationError."""
        adapter = await _connect(db_path)
        try:
            await adapter.create("domain", _domain("dom_1", "a.com"))
            with pytest.raises(UniqueViolationError):
                await adapter.create("domain", _domain("dom_2", "a.com"))
        finally:
            await adapter.close()

    @pytest.mark.asyncio
    async def test_foreign_keys_enforced(self, db_path):
        """Consents cannot reference missing subjects."""
        adapter = await _connect(db_path)
        try:
            with pytest.raises(AdapterError):
                await adapter.create(
                    "consent",
                    {
                        "id": "cns_1",
                        "subjectId": "sub_missing",
                        "domainId": "dom_missing",
                        "status": "active",
                        "isActive": True,
                        "givenAt": CREATED,
                    },
                )
        finally:
            await adapter.close()

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, db_path):
        """A raising callback rolls back every write."""
        adapter = await _connect(db_path)

        async def work(tx):
            await tx.create("domain", _domain("dom_1", "a.com"))
            raise RuntimeError("boom")

        try:
            with pytest.raises(RuntimeError):
                await adapter.transaction(work)
            count = await adapter.count("domain")
        finally:
            await adapter.close()

        assert count == 0

    @pytest.mark.asyncio
    async def test_transaction_commit(self, db_path):
        """Committed writes are visible to a new connection."""
        adapter = await _connect(db_path)

        async def work(tx):
            await tx.create("domain", _domain("dom_1", "a.com"))
            await tx.create("domain", _domain("dom_2", "b.com"))

        try:
            await adapter.transaction(work)
        finally:
            await adapter.close()

        reopened = await _connect(db_path)
        try:
            assert await reopened.count("domain") == 2
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_physical_names(self, db_path):
        """Renamed tables and columns are used in SQL."""
        options = StoreOptions(tables={"domain": EntityConfig(entity_name="sites", fields={"name": "host"})})
        adapter = await _connect(db_path, options)
        try:
            await adapter.create("domain", _domain("dom_1", "a.com"))
            found = await adapter.find_one("domain", [eq("name", "a.com")])
            live = {t.name: t for t in await adapter.introspect()}
        finally:
            await adapter.close()

        assert found["name"] == "a.com"
        assert "host" in live["sites"].column_names()

    @pytest.mark.asyncio
    async def test_regulatory_zones_transform(self, db_path):
        """Transformed fields round trip through SQLite."""
        adapter = await _connect(db_path)
        try:
            await adapter.create(
                "geoLocation",
                {
                    "id": "geo_1",
                    "countryCode": "FR",
                    "countryName": "France",
                    "regulatoryZones": ["gdpr", "eprivacy"],
                    "createdAt": CREATED,
                },
            )
            found = await adapter.find_one("geoLocation", [eq("id", "geo_1")])
        finally:
            await adapter.close()

        assert found["regulatoryZones"] == ["gdpr", "eprivacy"]
