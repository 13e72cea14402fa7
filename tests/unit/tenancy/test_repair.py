"""Tests for the self-healing routines."""

import pytest

from estate.tenancy import repair
from estate.tenancy.models import ProfileLocation
from estate.tenancy.provisioner import SchemaProvisioner
from estate.tenancy.tables import ESSENTIAL_TABLE_NAMES


class TestRepairDatabaseFunctions:
    """Tests for repair_database_functions."""

    @pytest.mark.anyio
    async def test_recreates_both_functions(self, fake_pool, fake_db) -> None:
        """Test both functions are dropped and created again."""
        fake_db.functions.add("setup_user_environment")

        assert await repair.repair_database_functions(fake_pool) is True

        assert fake_db.functions == set(repair.REPAIRED_FUNCTIONS)
        assert fake_db.count(r"^DROP FUNCTION IF EXISTS") == 2
        assert fake_pool.in_use == 0

    @pytest.mark.anyio
    async def test_runs_in_autocommit(self, fake_pool, fake_db) -> None:
        """Test each statement is its own transaction."""
        await repair.repair_database_functions(fake_pool)

        assert fake_pool.idle[0].statements[-1] == "ROLLBACK"
        assert "COMMIT" not in fake_pool.idle[0].statements

    @pytest.mark.anyio
    async def test_failed_step_is_skipped(self, fake_pool, fake_db) -> None:
        """Test one failing CREATE does not stop the other."""
        fake_db.fail_on.append(r"^CREATE OR REPLACE FUNCTION public\.create_client_schema")

        assert await repair.repair_database_functions(fake_pool) is False

        assert fake_db.functions == {"setup_user_environment"}

    @pytest.mark.anyio
    async def test_unreachable_database(self, fake_pool) -> None:
        """Test an unreachable database reports failure instead of raising."""
        fake_pool.fail_connect = True

        assert await repair.repair_database_functions(fake_pool) is False

    def test_function_bodies_quote_the_namespace(self) -> None:
        """Test the plpgsql bodies build names with %I."""
        for body in (repair.SETUP_USER_ENVIRONMENT_SQL, repair.CREATE_CLIENT_SCHEMA_SQL):
            assert "'client_' || p_user_id" in body
            assert "%I" in body


class TestRepairClientSchemas:
    """Tests for repair_client_schemas."""

    @pytest.mark.anyio
    async def test_creates_missing_tables(
        self, fake_pool, fake_db, provisioner: SchemaProvisioner
    ) -> None:
        """Test missing tables are created and existing rows kept."""
        fake_db.add_schema("client_1", {"links": [{"id": 9}]})
        complete = {name: [] for name in ESSENTIAL_TABLE_NAMES}
        complete["property_coordinates"] = []
        fake_db.add_schema("client_2", complete)

        repaired = await repair.repair_client_schemas(fake_pool, provisioner)

        assert list(repaired) == ["client_1"]
        assert "links" not in repaired["client_1"]
        assert "property_coordinates" in repaired["client_1"]
        assert fake_db.tables["client_1"]["links"] == [{"id": 9}]
        assert set(ESSENTIAL_TABLE_NAMES) <= fake_db.table_names("client_1")

    @pytest.mark.anyio
    async def test_ignores_non_client_schemas(
        self, fake_pool, fake_db, provisioner: SchemaProvisioner
    ) -> None:
        """Test public, template and look-alike names are never touched."""
        fake_db.add_schema("client_abc", {})

        assert await repair.repair_client_schemas(fake_pool, provisioner) == {}

        assert fake_db.table_names("client_abc") == set()
        assert "links" not in fake_db.table_names("template")

    @pytest.mark.anyio
    async def test_failed_table_does_not_stop_the_rest(
        self, fake_pool, fake_db, provisioner: SchemaProvisioner
    ) -> None:
        """Test a table that cannot be created is skipped, not fatal."""
        fake_db.add_schema("client_1", {})
        fake_db.add_schema("client_2", {})
        fake_db.fail_on.append(r'"client_1"\."property_coordinates" \(')

        repaired = await repair.repair_client_schemas(fake_pool, provisioner)

        assert list(repaired) == ["client_1", "client_2"]
        assert "property_coordinates" not in repaired["client_1"]
        assert "links" in repaired["client_1"]
        assert "property_coordinates" in repaired["client_2"]
        assert fake_pool.in_use == 0


class TestSyncClientDirectories:
    """Tests for sync_client_directories."""

    @pytest.mark.anyio
    async def test_sync(self, fake_pool, fake_db, directories) -> None:
        """Test every client namespace gets its upload tree."""
        fake_db.add_schema("client_4", {})
        fake_db.add_schema("client_9", {})

        namespaces = await repair.sync_client_directories(fake_pool, directories)

        assert namespaces == ["client_4", "client_9"]
        assert (directories.root / "client_4" / "logos").is_dir()
        assert (directories.root / "client_9" / "documents").is_dir()


class TestFindProfileBySlug:
    """Tests for find_profile_by_slug."""

    @pytest.mark.anyio
    async def test_found(self, fake_pool, fake_db) -> None:
        """Test the owning namespace is reported."""
        fake_db.add_schema("client_1", {"link_profiles": [{"id": 1, "slug": "alpha"}]})
        fake_db.add_schema("client_2", {"link_profiles": [{"id": 5, "slug": "beta"}]})

        location = await repair.find_profile_by_slug(fake_pool, "beta")

        assert location == ProfileLocation(
            namespace="client_2", tenant_id=2, profile_id=5, slug="beta"
        )
        assert fake_pool.in_use == 0

    @pytest.mark.anyio
    async def test_not_found(self, fake_pool, fake_db) -> None:
        """Test an unknown slug returns None."""
        fake_db.add_schema("client_1", {"link_profiles": [{"id": 1, "slug": "alpha"}]})
        fake_db.add_schema("client_3", {})

        assert await repair.find_profile_by_slug(fake_pool, "missing") is None

    @pytest.mark.anyio
    async def test_slug_is_bound(self, fake_pool, fake_db) -> None:
        """Test the slug is passed as a parameter, never spliced."""
        fake_db.add_schema("client_1", {"link_profiles": []})

        await repair.find_profile_by_slug(fake_pool, "x' OR '1'='1")

        assert fake_db.count(r"WHERE slug = :slug") == 1
        assert fake_db.count(r"OR '1'='1") == 0
