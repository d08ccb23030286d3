"""DirectoryCache - in-memory student directory over a partitioned store.

The cache aggregates loaded partitions into two indices:
- by admission number (routable, so misses trigger a targeted "smart load")
- by roll number (not routable, so misses can only be served by a full load)

Loading is partition-granular and idempotent. A partition that was loaded is
never re-read until the cache is cleared, and concurrent loads of the same
partition share one store read. Full loads are single-flight: callers that
arrive while one is running join it instead of starting another.

State machine::

    EMPTY -> LOADING -> READY_FRESH -> (time passes) -> READY_STALE -> LOADING

A failed full load (registry unreachable) leaves the cache EMPTY.

The cache is process-local and never persisted; the backing store stays the
source of truth.
"""

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any

import structlog

from rollbook.config import Settings, get_settings
from rollbook.core.exceptions import (
    DocumentStoreError,
    PartitionLoadError,
    RegistryUnavailableError,
)
from rollbook.repositories.documents import DocumentStore
from rollbook.repositories.registry import PartitionRegistry
from rollbook.services.key_router import KeyRouter, key_router
from rollbook.services.records import (
    MISSING,
    BatchFailure,
    BatchMatch,
    BatchMiss,
    BatchSearchResult,
    SearchResult,
    StudentRecord,
)

logger = structlog.get_logger(__name__)

NOT_FOUND = "Student not found"


class CacheState(str, Enum):
    """Lifecycle state of the cache as a whole."""

    EMPTY = "empty"
    LOADING = "loading"
    READY_FRESH = "ready_fresh"
    READY_STALE = "ready_stale"


@dataclass
class LoadSummary:
    """Result of a full load."""

    total_records: int
    partitions_loaded: int
    cached: bool = False
    failed_partitions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "partitions_loaded": self.partitions_loaded,
            "cached": self.cached,
            "failed_partitions": list(self.failed_partitions),
        }


@dataclass
class CacheStats:
    """Point-in-time snapshot of cache contents and freshness."""

    total_records: int
    total_by_roll_number: int
    partitions_loaded: list[str]
    last_full_refresh: float | None
    needs_refresh: bool
    is_loading: bool
    cache_age_ms: int | None
    conflicts: int
    state: CacheState

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "total_by_roll_number": self.total_by_roll_number,
            "partitions_loaded": list(self.partitions_loaded),
            "last_full_refresh": self.last_full_refresh,
            "needs_refresh": self.needs_refresh,
            "is_loading": self.is_loading,
            "cache_age_ms": self.cache_age_ms,
            "conflicts": self.conflicts,
            "state": self.state.value,
        }


def _normalize(identifier: Any) -> str:
    return str(identifier).strip()


class DirectoryCache:
    """Partition-aware cache of student records.

    Usage:
        ```python
        cache = DirectoryCache(store, registry)
        await cache.init()

        result = await cache.search_by_admission_number("22015112001")
        if result.found:
            print(result.record.name, result.from_cache, result.smart_loaded)
        ```
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: PartitionRegistry,
        settings: Settings | None = None,
        router: KeyRouter = key_router,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize an empty cache.

        Args:
            store: Backing document store
            registry: Source of the partitions that hold data
            settings: Application settings (defaults to get_settings())
            router: Admission number router
            clock: Returns the current time in epoch seconds
        """
        settings = settings or get_settings()
        self._store = store
        self._registry = registry
        self._router = router
        self._clock = clock
        self._preload_on_init = settings.cache_preload_on_startup
        self.refresh_interval = settings.cache_refresh_interval_seconds

        self._by_admission: dict[str, StudentRecord] = {}
        self._by_roll: dict[str, StudentRecord] = {}
        self._partitions: dict[str, list[StudentRecord]] = {}
        self._partition_loads: dict[str, asyncio.Task[list[StudentRecord]]] = {}
        self._in_flight: asyncio.Task[LoadSummary] | None = None
        self._last_full_refresh: float | None = None
        self._conflicts = 0
        # Bumped by clear(); loads started before a clear never write back
        self._generation = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self) -> None:
        """Start the cache, optionally running a full load."""
        logger.info(
            "directory_cache_started",
            refresh_interval_seconds=self.refresh_interval,
            preload=self._preload_on_init,
        )
        if self._preload_on_init:
            await self.preload()

    async def shutdown(self) -> None:
        """Wait for any running load and drop all cached state."""
        pending: list[asyncio.Task[Any]] = list(self._partition_loads.values())
        if self._in_flight is not None:
            pending.append(self._in_flight)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.clear()
        logger.info("directory_cache_stopped")

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_partition(self, partition_name: str) -> list[StudentRecord]:
        """Load one partition into both indices.

        Idempotent: a loaded partition returns its records without touching
        the store, and concurrent calls for the same partition share one
        read. A store failure is logged and yields an empty list; the
        partition stays unloaded so a later call can retry it.

        Args:
            partition_name: Partition to load

        Returns:
            The partition's records
        """
        records = self._partitions.get(partition_name)
        if records is not None:
            return list(records)

        task = self._partition_loads.get(partition_name)
        if task is None:
            task = asyncio.create_task(
                self._read_partition(partition_name, self._generation)
            )
            self._partition_loads[partition_name] = task
            task.add_done_callback(partial(self._forget_partition_load, partition_name))

        return list(await task)

    async def smart_load(self, admission_numbers: Iterable[Any]) -> list[str]:
        """Load only the partitions needed to resolve the given ids.

        Unroutable ids are skipped; they are left for fallback scanning.

        Returns:
            Partitions that were loaded by this call
        """
        targets: list[str] = []
        for admission_number in admission_numbers:
            partition = self._router.target_partition(admission_number)
            if (
                partition is not None
                and partition not in self._partitions
                and partition not in targets
            ):
                targets.append(partition)

        if not targets:
            return []

        await asyncio.gather(*(self.load_partition(p) for p in targets))
        loaded = [p for p in targets if p in self._partitions]
        logger.info(
            "smart_load_completed",
            requested_partitions=len(targets),
            loaded_partitions=loaded,
        )
        return loaded

    async def load_all(self, force_refresh: bool = False) -> LoadSummary:
        """Load every partition listed by the registry.

        Single-flight: if a full load is already running, the caller joins
        it and receives the same summary.

        Args:
            force_refresh: Reload even if the cache is fresh

        Returns:
            Load summary; ``cached=True`` when no store access was needed

        Raises:
            RegistryUnavailableError: If the registry cannot be read. The
                cache is left empty.
        """
        if self._in_flight is not None:
            logger.debug("full_load_joined")
            return await self._in_flight

        if not force_refresh and self._by_admission and not self.needs_refresh():
            return LoadSummary(
                total_records=len(self._by_admission),
                partitions_loaded=len(self._partitions),
                cached=True,
            )

        task = asyncio.create_task(self._load_all())
        self._in_flight = task
        task.add_done_callback(self._clear_in_flight)
        return await task

    async def force_refresh(self) -> LoadSummary:
        """Full reload regardless of freshness."""
        return await self.load_all(force_refresh=True)

    async def preload(self) -> bool:
        """Warm the cache with a full load.

        Returns:
            True on success, False if the load failed (the failure is logged)
        """
        try:
            summary = await self.load_all()
        except DocumentStoreError as e:
            logger.error("cache_preload_failed", error=str(e))
            return False
        logger.info("cache_preloaded", **summary.to_dict())
        return True

    async def refresh_if_stale(self) -> CacheStats:
        """Run a full load only when the cache is empty or stale.

        A failed refresh is logged and the current stats are returned.
        """
        if self._by_admission and not self.needs_refresh():
            return self.stats()
        try:
            await self.load_all()
        except DocumentStoreError as e:
            logger.warning("cache_refresh_skipped", error=str(e))
        return self.stats()

    def clear(self) -> None:
        """Drop every record and forget all loaded partitions."""
        self._by_admission.clear()
        self._by_roll.clear()
        self._partitions.clear()
        self._partition_loads.clear()
        self._last_full_refresh = None
        self._conflicts = 0
        self._generation += 1
        logger.info("directory_cache_cleared")

    # =========================================================================
    # Lookups
    # =========================================================================

    async def search_by_admission_number(self, admission_number: Any) -> SearchResult:
        """Find a student by admission number, smart-loading on a miss."""
        key = _normalize(admission_number)
        try:
            record = self._by_admission.get(key)
            if record is not None:
                return SearchResult.hit(key, record, from_cache=True)

            await self.smart_load([key])
            record = self._by_admission.get(key)
            if record is not None:
                return SearchResult.hit(key, record, from_cache=True, smart_loaded=True)
        except Exception as e:
            logger.error(
                "admission_number_search_failed", admission_number=key, error=str(e)
            )
            return SearchResult.miss(key, f"Search failed: {e}", from_cache=False)

        return SearchResult.miss(key, NOT_FOUND)

    async def search_by_roll_number(self, roll_number: Any) -> SearchResult:
        """Find a student by roll number.

        Roll numbers cannot be routed, so a miss against an empty or stale
        cache triggers a full load; a miss against a fresh cache is final.
        """
        key = _normalize(roll_number)
        try:
            record = self._by_roll.get(key)
            if record is not None:
                return SearchResult.hit(key, record, from_cache=True)

            if not self._by_admission or self.needs_refresh():
                await self.load_all()
                record = self._by_roll.get(key)
                if record is not None:
                    return SearchResult.hit(key, record, from_cache=True)
        except Exception as e:
            logger.error("roll_number_search_failed", roll_number=key, error=str(e))
            return SearchResult.miss(key, f"Search failed: {e}", from_cache=False)

        return SearchResult.miss(key, NOT_FOUND)

    async def batch_search_by_admission_numbers(
        self, admission_numbers: list[Any]
    ) -> BatchSearchResult:
        """Resolve a batch from memory after a single smart load.

        Every occurrence is reported on its own, duplicates included. An id
        whose routed partition failed to load is reported as an error.
        """
        keys = [_normalize(a) for a in admission_numbers]
        await self.smart_load(keys)

        result = BatchSearchResult(method="cached")
        for key in keys:
            record = self._by_admission.get(key)
            if record is not None:
                result.found.append(BatchMatch(key, record, from_cache=True))
                continue

            partition = self._router.target_partition(key)
            if partition is not None and partition not in self._partitions:
                failure = PartitionLoadError(partition)
                result.errors.append(BatchFailure(key, failure.message, failure.code))
            else:
                result.not_found.append(BatchMiss(key, NOT_FOUND, from_cache=True))
        return result

    async def batch_search_by_roll_numbers(
        self, roll_numbers: list[Any]
    ) -> BatchSearchResult:
        """Resolve a batch of roll numbers with at most one full load."""
        keys = [_normalize(r) for r in roll_numbers]
        if any(k not in self._by_roll for k in keys) and (
            not self._by_admission or self.needs_refresh()
        ):
            await self.load_all()

        result = BatchSearchResult(method="cached")
        for key in keys:
            record = self._by_roll.get(key)
            if record is not None:
                result.found.append(BatchMatch(key, record, from_cache=True))
            else:
                result.not_found.append(BatchMiss(key, NOT_FOUND, from_cache=True))
        return result

    # =========================================================================
    # Introspection
    # =========================================================================

    def needs_refresh(self) -> bool:
        """True when no full load happened yet or the last one is too old."""
        if self._last_full_refresh is None:
            return True
        return self._clock() - self._last_full_refresh > self.refresh_interval

    @property
    def is_loading(self) -> bool:
        return self._in_flight is not None

    @property
    def state(self) -> CacheState:
        if self.is_loading:
            return CacheState.LOADING
        if not self._by_admission:
            return CacheState.EMPTY
        if self.needs_refresh():
            return CacheState.READY_STALE
        return CacheState.READY_FRESH

    @property
    def loaded_partitions(self) -> list[str]:
        return list(self._partitions)

    def is_partition_loaded(self, partition_name: str) -> bool:
        return partition_name in self._partitions

    def stats(self) -> CacheStats:
        age_ms = None
        if self._last_full_refresh is not None:
            age_ms = int((self._clock() - self._last_full_refresh) * 1000)
        return CacheStats(
            total_records=len(self._by_admission),
            total_by_roll_number=len(self._by_roll),
            partitions_loaded=self.loaded_partitions,
            last_full_refresh=self._last_full_refresh,
            needs_refresh=self.needs_refresh(),
            is_loading=self.is_loading,
            cache_age_ms=age_ms,
            conflicts=self._conflicts,
            state=self.state,
        )

    def __len__(self) -> int:
        return len(self._by_admission)

    # =========================================================================
    # Private Methods
    # =========================================================================

    async def _load_all(self) -> LoadSummary:
        started = self._clock()
        self.clear()
        generation = self._generation

        try:
            partitions = await self._registry.list_partitions()
        except RegistryUnavailableError as e:
            logger.error("full_load_failed", error=str(e))
            raise

        names = [p.partition_name for p in partitions]
        await asyncio.gather(*(self.load_partition(name) for name in names))

        if generation != self._generation:
            logger.info("full_load_discarded", partitions=len(names))
            return LoadSummary(
                total_records=len(self._by_admission),
                partitions_loaded=len(self._partitions),
            )

        failed = [name for name in names if name not in self._partitions]
        self._last_full_refresh = self._clock()
        summary = LoadSummary(
            total_records=len(self._by_admission),
            partitions_loaded=len(self._partitions),
            failed_partitions=failed,
        )
        logger.info(
            "full_load_completed",
            total_records=summary.total_records,
            partitions_loaded=summary.partitions_loaded,
            failed_partitions=failed,
            duration_ms=int((self._last_full_refresh - started) * 1000),
        )
        return summary

    async def _read_partition(
        self, partition_name: str, generation: int
    ) -> list[StudentRecord]:
        try:
            documents = await self._store.fetch_active(partition_name)
        except DocumentStoreError as e:
            logger.warning(
                "partition_load_failed",
                partition=partition_name,
                code=PartitionLoadError.code,
                error=str(e),
            )
            return []

        records = [
            StudentRecord.from_document(doc, partition_name, self._router)
            for doc in documents
        ]

        if generation != self._generation:
            logger.debug("partition_load_discarded", partition=partition_name)
            return records

        self._index(partition_name, records)
        logger.info("partition_loaded", partition=partition_name, records=len(records))
        return records

    def _index(self, partition_name: str, records: list[StudentRecord]) -> None:
        for record in records:
            if record.admission_number == MISSING:
                continue

            previous = self._by_admission.get(record.admission_number)
            if previous is not None:
                if previous.partition_name != record.partition_name:
                    self._conflicts += 1
                    logger.warning(
                        "primary_key_conflict",
                        admission_number=record.admission_number,
                        kept_partition=record.partition_name,
                        replaced_partition=previous.partition_name,
                    )
                if previous.has_roll_number and (
                    self._by_roll.get(previous.roll_number) is previous
                ):
                    del self._by_roll[previous.roll_number]

            self._by_admission[record.admission_number] = record
            if record.has_roll_number:
                self._by_roll[record.roll_number] = record

        self._partitions[partition_name] = records

    def _forget_partition_load(
        self, partition_name: str, task: asyncio.Task[list[StudentRecord]]
    ) -> None:
        if self._partition_loads.get(partition_name) is task:
            del self._partition_loads[partition_name]

    def _clear_in_flight(self, task: asyncio.Task[LoadSummary]) -> None:
        if self._in_flight is task:
            self._in_flight = None
