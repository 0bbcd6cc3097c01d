"""
Unit tests for schema descriptor types.

Tests cover:
- FieldKind and OnDelete parsing
- FieldDef validation and defaults
- Dictionary round trips from option files
- TableDef validation and column lookup
"""

from datetime import datetime

import pytest

from backend.consent_store.schema.types import (
    FieldDef,
    FieldKind,
    FieldRef,
    IndexDef,
    OnDelete,
    TableDef,
    UniqueConstraintDef,
    field,
)


class TestFieldKind:
    """Tests for FieldKind."""

    def test_from_str(self):
        """Known kinds parse."""
        assert FieldKind.from_str("timezone") == FieldKind.TIMEZONE
        assert FieldKind.from_str("json") == FieldKind.JSON

    def test_from_str_invalid(self):
        """Unknown kinds are rejected with the valid list."""
        with pytest.raises(ValueError, match="Valid kinds"):
            FieldKind.from_str("uuid")

    def test_on_delete_normalizes(self):
        """on_delete accepts upper case and underscores."""
        assert OnDelete.from_str("CASCADE") == OnDelete.CASCADE
        assert OnDelete.from_str("set_null") == OnDelete.SET_NULL


class TestFieldDef:
    """Tests for FieldDef."""

    def test_field_helper(self):
        """field() builds a FieldDef from a string kind."""
        f = field("string", required=True, unique=True)

        assert f.kind == FieldKind.STRING
        assert f.required
        assert f.unique
        assert f.reference is None

    def test_field_helper_reference_shorthand(self):
        """An entity key becomes a reference to its id."""
        f = field("string", references="subject", on_delete="cascade")

        assert f.reference == FieldRef("subject", "id", OnDelete.CASCADE)

    def test_bigint_only_on_numbers(self):
        """bigint on a string field is rejected."""
        with pytest.raises(ValueError, match="bigint"):
            field("string", bigint=True)

    def test_literal_default_is_copied(self):
        """Mutable literal defaults are not shared between records."""
        f = field("json", default=["a"])

        first = f.resolve_default()
        first.append("b")

        assert f.resolve_default() == ["a"]

    def test_callable_default_runs_each_time(self):
        """Callable defaults are invoked on every resolution."""
        calls = []

        def stamp():
            calls.append(1)
            return datetime(2024, 1, 1)

        f = field("date", default=stamp)

        assert f.resolve_default() == datetime(2024, 1, 1)
        f.resolve_default()
        assert len(calls) == 2
        assert f.has_default
        assert not f.has_literal_default

    def test_to_dict_marks_generated_default(self):
        """Callable defaults serialize by name, not by value."""

        def utc_now():
            return datetime.now()

        assert field("date", default=utc_now).to_dict()["default"] == {"generated": "utc_now"}

    def test_from_dict_option_file_spelling(self):
        """Option files may use type, fieldName and references."""
        f = FieldDef.from_dict(
            {
                "type": "string",
                "required": True,
                "fieldName": "tenant_id",
                "references": {"model": "domain", "field": "id", "onDelete": "cascade"},
            }
        )

        assert f.kind == FieldKind.STRING
        assert f.physical_name == "tenant_id"
        assert f.reference == FieldRef("domain", "id", OnDelete.CASCADE)

    def test_column_name(self):
        """Physical name falls back to the logical name."""
        assert field("string").column_name("code") == "code"
        assert field("string", physical_name="purpose_code").column_name("code") == "purpose_code"


class TestTableDef:
    """Tests for TableDef."""

    def test_primary_key_not_declarable(self):
        """Declaring id as a field is rejected."""
        with pytest.raises(ValueError, match="implicit"):
            TableDef(key="t", entity_name="t", entity_prefix="t", fields={"id": field("string")})

    def test_constraint_fields_must_exist(self):
        """Indexes cannot name unknown fields."""
        with pytest.raises(ValueError, match="unknown fields"):
            TableDef(
                key="t",
                entity_name="t",
                entity_prefix="t",
                fields={"a": field("string")},
                indexes=(IndexDef("idx_t_b", ("b",)),),
            )

    def test_unique_constraint_needs_two_fields(self):
        """Single-column uniqueness belongs on the field."""
        with pytest.raises(ValueError, match="two or more"):
            UniqueConstraintDef("uq", ("a",))

    def test_column_lookup(self):
        """column() maps logical to physical names."""
        table = TableDef(
            key="domain",
            entity_name="domains",
            entity_prefix="dom",
            fields={"name": field("string", physical_name="domain_name")},
        )

        assert table.column("name") == "domain_name"
        assert table.column("id") == "id"
        assert table.has_field("id")
        assert not table.has_field("missing")

    def test_references(self):
        """references() lists reference fields in order."""
        table = TableDef(
            key="consent",
            entity_name="consent",
            entity_prefix="cns",
            fields={
                "subjectId": field("string", references="subject"),
                "note": field("string"),
                "domainId": field("string", references="domain"),
            },
        )

        assert [name for name, _ in table.references()] == ["subjectId", "domainId"]
