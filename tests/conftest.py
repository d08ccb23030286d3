"""Pytest configuration and fixtures for Rollbook tests.

This module provides reusable fixtures for:
- Test settings (in-memory SQLite, no pacing delay)
- In-memory document store and partition registry doubles with call counters
- A directory cache, search service and monitor wired to those doubles
- Async test client against the app, with the search service injected
"""

import asyncio
from collections import Counter
from collections.abc import AsyncGenerator, Generator, Sequence
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from rollbook.config import Settings
from rollbook.core.exceptions import DocumentStoreError, RegistryUnavailableError
from rollbook.main import create_app
from rollbook.repositories.documents import StoreDocument
from rollbook.repositories.registry import PartitionInfo
from rollbook.services.directory_cache import DirectoryCache
from rollbook.services.monitor import PerformanceMonitor
from rollbook.services.search import StudentSearchService, set_search_service

# =============================================================================
# Test Doubles
# =============================================================================


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDocumentStore:
    """In-memory DocumentStore that counts every read.

    Attributes:
        calls: Reads per method name
        active_reads: Partitions passed to fetch_active, in call order
        in_reads: (partition, values) passed to fetch_where_in, in call order
        equal_reads: Partitions passed to fetch_where_equal, in call order
        failing: Partitions whose reads raise DocumentStoreError
    """

    def __init__(self, partitions: dict[str, list[dict[str, Any]]]) -> None:
        self.partitions = partitions
        self.calls: Counter[str] = Counter()
        self.active_reads: list[str] = []
        self.in_reads: list[tuple[str, list[str]]] = []
        self.equal_reads: list[str] = []
        self.failing: set[str] = set()
        self.fail_all = False

    def _check(self, partition: str) -> None:
        if self.fail_all or partition in self.failing:
            raise DocumentStoreError(
                message=f"Read from partition {partition} failed",
                partition=partition,
                error="connection reset",
            )

    def _documents(self, partition: str) -> list[StoreDocument]:
        return [
            StoreDocument(id=f"{partition}-{index}", data=dict(data))
            for index, data in enumerate(self.partitions.get(partition, []))
            if data.get("is_active", True)
        ]

    async def fetch_active(self, partition: str) -> list[StoreDocument]:
        self.calls["fetch_active"] += 1
        self.active_reads.append(partition)
        await asyncio.sleep(0)
        self._check(partition)
        return self._documents(partition)

    async def fetch_where_in(
        self, partition: str, field: str, values: Sequence[str]
    ) -> list[StoreDocument]:
        assert len(values) <= 10, "'in' reads are limited to 10 values"
        self.calls["fetch_where_in"] += 1
        self.in_reads.append((partition, list(values)))
        await asyncio.sleep(0)
        self._check(partition)
        return [d for d in self._documents(partition) if d.data.get(field) in values]

    async def fetch_where_equal(
        self, partition: str, field: str, value: str, limit: int = 1
    ) -> list[StoreDocument]:
        self.calls["fetch_where_equal"] += 1
        self.equal_reads.append(partition)
        await asyncio.sleep(0)
        self._check(partition)
        matches = [d for d in self._documents(partition) if d.data.get(field) == value]
        return matches[:limit]


class FakePartitionRegistry:
    """In-memory PartitionRegistry that counts reads."""

    def __init__(self, partitions: list[PartitionInfo]) -> None:
        self.partitions = partitions
        self.calls = 0
        self.fail = False

    async def list_partitions(self) -> list[PartitionInfo]:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise RegistryUnavailableError(error="registry offline")
        return list(self.partitions)


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def directory_data() -> dict[str, list[dict[str, Any]]]:
    """Student documents per partition.

    ``22015312077`` routes to students_cse_3 but is stored in students_it_1.
    """
    return {
        "students_aids_1": [
            {"admission_number": "220114112001", "roll_number": "22B81A4201",
             "name": "Kiran Rao", "year": "2"},
        ],
        "students_cse_1": [
            {"admission_number": "22015112001", "roll_number": "22B81A0501",
             "name": "Asha Reddy", "year": "3"},
            {"admission_number": "22015112002", "roll_number": "22B81A0502",
             "name": "Vikram Naidu", "year": "3"},
            {"admission_number": "22015112003", "roll_number": "22B81A0503",
             "name": "Inactive Student", "is_active": False},
        ],
        "students_cse_2": [
            {"admission_number": "22015212001", "roll_number": "22B81A0561",
             "name": "Meera Iyer", "department": "CSE (Section 2)"},
        ],
        "students_ece_1": [
            {"admission_number": "22014112001", "name": "Ravi Teja"},
        ],
        "students_it_1": [
            {"admission_number": "22017112001", "roll_number": "22B81A1201",
             "name": "Sana Khan"},
            {"admission_number": "22015312077", "roll_number": "22B81A0577",
             "name": "Misfiled Student"},
        ],
    }


@pytest.fixture
def registry_entries(
    directory_data: dict[str, list[dict[str, Any]]],
) -> list[PartitionInfo]:
    """Registry entries for every partition that holds data, sorted by name."""
    return [
        PartitionInfo(
            name=name,
            partition_name=name,
            total_students=len(docs),
            active_students=len(docs),
        )
        for name, docs in sorted(directory_data.items())
    ]


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test-specific settings.

    In-memory SQLite, no inter-chunk pacing, default search thresholds.
    """
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=False,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url="sqlite+aiosqlite:///:memory:",
        database_create_tables=True,
        batch_pacing_ms=0,
    )


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(directory_data: dict[str, list[dict[str, Any]]]) -> FakeDocumentStore:
    return FakeDocumentStore(directory_data)


@pytest.fixture
def registry(registry_entries: list[PartitionInfo]) -> FakePartitionRegistry:
    return FakePartitionRegistry(registry_entries)


@pytest.fixture
def cache(
    store: FakeDocumentStore,
    registry: FakePartitionRegistry,
    test_settings: Settings,
    clock: FakeClock,
) -> DirectoryCache:
    """A fresh, empty directory cache over the in-memory doubles."""
    return DirectoryCache(store, registry, settings=test_settings, clock=clock)


@pytest.fixture
def monitor(cache: DirectoryCache) -> PerformanceMonitor:
    return PerformanceMonitor(cache)


@pytest.fixture
def search_service(
    cache: DirectoryCache,
    store: FakeDocumentStore,
    registry: FakePartitionRegistry,
    test_settings: Settings,
    monitor: PerformanceMonitor,
) -> StudentSearchService:
    return StudentSearchService(
        cache, store, registry, settings=test_settings, monitor=monitor
    )


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(
    test_settings: Settings, search_service: StudentSearchService
) -> Generator[FastAPI, None, None]:
    """Create a test application with the search service injected."""
    application = create_app(settings=test_settings)
    set_search_service(search_service)
    yield application
    set_search_service(None)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    This client makes requests to the test app without starting a server,
    so the lifespan (database and cache wiring) does not run.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
