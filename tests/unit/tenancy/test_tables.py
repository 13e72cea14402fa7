"""Tests for essential table DDL."""

from estate.tenancy.tables import (
    ESSENTIAL_TABLE_NAMES,
    ESSENTIAL_TABLES,
    FORM_FIELD_TYPES,
    FORM_FIELDS,
    FORM_RESPONSES,
    LINK_PROFILES,
    LINKS,
)


class TestTableDefinition:
    """Tests for TableDefinition.create_statements."""

    def test_sequence_table_owner_order(self) -> None:
        """Test the sequence exists before the table and is owned after."""
        sequence, table, owner = LINKS.create_statements("client_42")

        assert sequence == 'CREATE SEQUENCE IF NOT EXISTS "client_42"."links_id_seq"'
        assert table.startswith('CREATE TABLE IF NOT EXISTS "client_42"."links" (')
        assert "nextval('\"client_42\".\"links_id_seq\"'::regclass)" in table
        assert owner == (
            'ALTER SEQUENCE "client_42"."links_id_seq" '
            'OWNED BY "client_42"."links".id'
        )

    def test_foreign_keys_stay_in_namespace(self) -> None:
        """Test references point at the same namespace."""
        table = LINKS.create_statements("client_7")[1]

        assert 'REFERENCES "client_7".link_profiles(id) ON DELETE CASCADE' in table
        assert "{schema}" not in table

    def test_json_default_is_literal(self) -> None:
        table = FORM_RESPONSES.create_statements("client_1")[1]

        assert "DEFAULT '{}'::jsonb" in table

    def test_form_field_type_check(self) -> None:
        table = FORM_FIELDS.create_statements("client_1")[1]

        for field_type in FORM_FIELD_TYPES:
            assert f"'{field_type}'" in table
        assert "CHECK (type IN (" in table

    def test_slug_is_unique(self) -> None:
        assert "UNIQUE (slug)" in LINK_PROFILES.create_statements("client_1")[1]


class TestEssentialTables:
    """Tests for the essential table set."""

    def test_names(self) -> None:
        assert set(ESSENTIAL_TABLE_NAMES) == {
            "link_profiles",
            "links",
            "form_submissions",
            "form_responses",
            "form_fields",
            "form_field_options",
        }

    def test_referenced_tables_come_first(self) -> None:
        """Test every table is created after the tables it references."""
        seen: set[str] = set()
        for table in ESSENTIAL_TABLES:
            ddl = table.create_statements("client_1")[1]
            for other in ESSENTIAL_TABLE_NAMES:
                if f'"client_1".{other}(id)' in ddl:
                    assert other in seen, f"{table.name} references {other} too early"
            seen.add(table.name)
