"""Tests for the SQL-backed document store and partition registry.

Runs against in-memory SQLite through the same engine setup the app uses.
"""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rollbook.config import Settings
from rollbook.core.database import close_db, get_session_factory, init_db
from rollbook.models import PartitionStats, StudentDocument
from rollbook.repositories import SqlDocumentStore, SqlPartitionRegistry
from rollbook.services.directory_cache import DirectoryCache
from rollbook.services.search import StudentSearchService


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialize the database and seed two partitions."""
    await init_db(test_settings)
    factory = get_session_factory()

    async with factory() as session:
        session.add_all(
            [
                StudentDocument(
                    partition_name="students_cse_1",
                    admission_number="22015112001",
                    roll_number="22B81A0501",
                    data={"name": "Asha Reddy", "year": "3"},
                ),
                StudentDocument(
                    partition_name="students_cse_1",
                    admission_number="22015112002",
                    roll_number=None,
                    data={"name": "Vikram Naidu"},
                ),
                StudentDocument(
                    partition_name="students_cse_1",
                    admission_number="22015112003",
                    is_active=False,
                    data={"name": "Inactive Student"},
                ),
                StudentDocument(
                    partition_name="students_it_1",
                    admission_number="22015312077",
                    roll_number="22B81A0577",
                    data={"name": "Misfiled Student"},
                ),
                PartitionStats(
                    name="Computer Science Engineering 1",
                    partition_name="students_cse_1",
                    total_students=3,
                    active_students=2,
                ),
                PartitionStats(
                    name="Information Technology 1",
                    partition_name="students_it_1",
                    total_students=1,
                    active_students=1,
                ),
                PartitionStats(
                    name="Civil Engineering 1",
                    partition_name="students_civil_1",
                    total_students=0,
                ),
                PartitionStats(
                    name="Archived Section",
                    partition_name="students_archived",
                    total_students=40,
                    is_active=False,
                ),
            ]
        )
        await session.commit()

    yield factory

    await close_db()


class TestSqlDocumentStore:
    """Tests for SqlDocumentStore reads."""

    @pytest.mark.asyncio
    async def test_fetch_active_skips_inactive(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that only active documents of the partition are returned."""
        store = SqlDocumentStore(session_factory)

        documents = await store.fetch_active("students_cse_1")

        numbers = sorted(d.data["admission_number"] for d in documents)
        assert numbers == ["22015112001", "22015112002"]
        assert all(d.id for d in documents)

    @pytest.mark.asyncio
    async def test_fetch_where_in(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test an "in" read scoped to one partition."""
        store = SqlDocumentStore(session_factory)

        documents = await store.fetch_where_in(
            "students_cse_1",
            "admission_number",
            ["22015112001", "22015112003", "22015312077"],
        )

        assert [d.data["name"] for d in documents] == ["Asha Reddy"]

    @pytest.mark.asyncio
    async def test_fetch_where_equal_by_roll_number(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test an equality read on the secondary key."""
        store = SqlDocumentStore(session_factory)

        documents = await store.fetch_where_equal(
            "students_it_1", "roll_number", "22B81A0577"
        )

        assert len(documents) == 1
        assert documents[0].data["admission_number"] == "22015312077"
        assert documents[0].data["created_at"] is not None

    @pytest.mark.asyncio
    async def test_unknown_field_is_rejected(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that only indexed lookup keys can be filtered on."""
        store = SqlDocumentStore(session_factory)

        with pytest.raises(ValueError, match="not queryable"):
            await store.fetch_where_equal("students_cse_1", "name", "Asha Reddy")

    @pytest.mark.asyncio
    async def test_empty_in_read(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test that an empty value list returns without a query."""
        store = SqlDocumentStore(session_factory)

        assert await store.fetch_where_in("students_cse_1", "roll_number", []) == []


class TestSqlPartitionRegistry:
    """Tests for SqlPartitionRegistry."""

    @pytest.mark.asyncio
    async def test_lists_active_non_empty_partitions_by_name(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Test filtering of archived and empty partitions, and ordering."""
        registry = SqlPartitionRegistry(session_factory)

        partitions = await registry.list_partitions()

        assert [p.partition_name for p in partitions] == [
            "students_cse_1",
            "students_it_1",
        ]
        assert partitions[0].active_students == 2


class TestEndToEnd:
    """Tests for the cache and search service over the SQL store."""

    @pytest.mark.asyncio
    async def test_full_load_and_lookups(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
    ) -> None:
        """Test a full load, a roll lookup and a misrouted direct lookup."""
        store = SqlDocumentStore(session_factory)
        registry = SqlPartitionRegistry(session_factory)
        cache = DirectoryCache(store, registry, settings=test_settings)
        service = StudentSearchService(cache, store, registry, settings=test_settings)

        summary = await cache.load_all()
        assert summary.total_records == 3
        assert summary.partitions_loaded == 2

        roll = await service.search_by_roll_number("22B81A0501")
        assert roll.found is True
        assert roll.record is not None
        assert roll.record.department == "Computer Science Engineering"

        missing_roll = await cache.search_by_admission_number("22015112002")
        assert missing_roll.record is not None
        assert missing_roll.record.roll_number == "N/A"

        result = await service.direct_batch_search(["22015312077", "invalid123"])
        assert [m.record.partition_name for m in result.found] == ["students_it_1"]
        assert [m.identifier for m in result.not_found] == ["invalid123"]
