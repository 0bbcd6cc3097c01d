"""
Unit tests for dialect type mapping.

Tests cover:
- DDL types per kind and dialect
- Bounded varchars for key strings, sized for any entity prefix
- Introspected type matching
"""

import pytest

from backend.consent_store.config import Dialect, EntityConfig, StoreOptions
from backend.consent_store.migrations.type_mapping import get_column_type, keyed_fields, match_type, primary_key_type
from backend.consent_store.pipeline import default_id
from backend.consent_store.schema import assemble_schema
from backend.consent_store.schema.types import FieldKind, field


class TestGetColumnType:
    """Tests for get_column_type."""

    @pytest.mark.parametrize(
        "kind,dialect,expected",
        [
            ("boolean", Dialect.SQLITE, "integer"),
            ("boolean", Dialect.POSTGRES, "boolean"),
            ("boolean", Dialect.MSSQL, "smallint"),
            ("date", Dialect.POSTGRES, "timestamp"),
            ("date", Dialect.MYSQL, "datetime"),
            ("json", Dialect.POSTGRES, "jsonb"),
            ("json", Dialect.MSSQL, "nvarchar(max)"),
            ("timezone", Dialect.MYSQL, "varchar(50)"),
        ],
    )
    def test_kind_per_dialect(self, kind, dialect, expected):
        """Each kind maps to its dialect type."""
        assert get_column_type(field(kind), dialect) == expected

    def test_d1_uses_sqlite_types(self):
        """D1 shares SQLite's types."""
        for kind in ("string", "boolean", "date", "json"):
            assert get_column_type(field(kind), Dialect.D1) == get_column_type(field(kind), Dialect.SQLITE)

    def test_bigint(self):
        """bigint numbers map to bigint."""
        assert get_column_type(field("number"), Dialect.POSTGRES) == "integer"
        assert get_column_type(field("number", bigint=True), Dialect.POSTGRES) == "bigint"

    def test_mysql_string_sizing(self):
        """MySQL strings are bounded when they are keys."""
        assert get_column_type(field("string", unique=True), Dialect.MYSQL) == "varchar(255)"
        assert get_column_type(field("string", references="subject"), Dialect.MYSQL) == "varchar(255)"
        assert get_column_type(field("string"), Dialect.MYSQL) == "text"
        assert get_column_type(field("string"), Dialect.MYSQL, keyed=True) == "varchar(255)"

    def test_mssql_string_sizing(self):
        """MSSQL key strings are bounded nvarchars."""
        assert get_column_type(field("string", indexed=True), Dialect.MSSQL) == "nvarchar(255)"
        assert get_column_type(field("string"), Dialect.MSSQL, keyed=True) == "nvarchar(255)"
        assert get_column_type(field("string"), Dialect.MSSQL) == "text"

    def test_keyed_fields(self):
        """Composite index and unique constraint members are keyed."""
        schema = assemble_schema(StoreOptions())

        assert {"entityType", "entityId"} <= keyed_fields(schema["auditLog"])
        assert {"consentId", "purposeId"} <= keyed_fields(schema["consentPurposeJunction"])
        assert keyed_fields(schema["domain"]) == set()

    def test_postgres_strings_are_text(self):
        """Postgres strings are always text."""
        assert get_column_type(field("string", unique=True), Dialect.POSTGRES) == "text"

    def test_primary_key_type(self):
        """Primary keys are bounded where strings need to be."""
        assert primary_key_type(Dialect.MYSQL) == "varchar(255)"
        assert primary_key_type(Dialect.MSSQL) == "nvarchar(255)"
        assert primary_key_type(Dialect.SQLITE) == "text"

    def test_key_columns_fit_long_prefixes(self):
        """Generated ids with a long entity prefix fit the id and reference columns."""
        schema = assemble_schema(StoreOptions(tables={"domain": EntityConfig(entity_prefix="domain")}))
        generated = default_id(schema["domain"])
        reference = schema["consent"].fields["domainId"]

        for dialect in (Dialect.MYSQL, Dialect.MSSQL):
            for column_type in (primary_key_type(dialect), get_column_type(reference, dialect)):
                size = int(column_type.split("(")[1].rstrip(")"))
                assert len(generated) <= size


class TestMatchType:
    """Tests for match_type."""

    def test_case_insensitive(self):
        """Reported types match regardless of case."""
        assert match_type("TEXT", FieldKind.STRING, Dialect.SQLITE)

    def test_postgres_synonyms(self):
        """Driver synonyms are accepted."""
        assert match_type("int4", FieldKind.NUMBER, Dialect.POSTGRES)
        assert match_type("timestamp without time zone", FieldKind.DATE, Dialect.POSTGRES)

    def test_parameterised_base_name(self):
        """A sized varchar matches a varchar entry."""
        assert match_type("VARCHAR(120)", FieldKind.STRING, Dialect.MYSQL)

    def test_mismatch(self):
        """Incompatible types do not match."""
        assert not match_type("text", FieldKind.BOOLEAN, Dialect.POSTGRES)
        assert not match_type("integer", FieldKind.STRING, Dialect.SQLITE)
