"""StudentSearchService - strategy selection and fallback lookups.

This is the only component callers need. For every batch it picks one of two
paths:

- ``cached``: one smart load of the routed partitions, then resolve from
  memory. Ids the cache cannot resolve are scanned for in the partitions the
  cache has not loaded.
- ``direct``: query the store without touching the cache, through a fallback
  chain of lookup strategies (targeted partition, then registry scan).

The choice is a fixed decision table (see ``choose_strategy``). If the chosen
path fails outright, the other one is tried once before the search is
reported as unavailable.
"""

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

import structlog

from rollbook.config import Settings, get_settings
from rollbook.core.exceptions import (
    BatchItemError,
    DocumentStoreError,
    RegistryUnavailableError,
    SearchUnavailableError,
)
from rollbook.repositories.documents import DocumentStore
from rollbook.repositories.registry import PartitionRegistry
from rollbook.services.directory_cache import NOT_FOUND, DirectoryCache, LoadSummary
from rollbook.services.key_router import KeyRouter, key_router
from rollbook.services.monitor import PerformanceMonitor
from rollbook.services.records import (
    BatchFailure,
    BatchMatch,
    BatchMiss,
    BatchSearchResult,
    SearchResult,
    StudentRecord,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Failure key for ids the registry scan could not reach
REGISTRY = "<registry>"


def _normalize(identifier: Any) -> str:
    return str(identifier).strip()


# -----------------------------------------------------------------------------
# Strategy selection
# -----------------------------------------------------------------------------


class SearchMethod(str, Enum):
    """Batch lookup paths."""

    CACHED = "cached"
    DIRECT = "direct"

    @property
    def other(self) -> "SearchMethod":
        if self is SearchMethod.CACHED:
            return SearchMethod.DIRECT
        return SearchMethod.CACHED


@dataclass(frozen=True)
class StrategyDecision:
    """Chosen batch path and why. The reason is for logs and responses only."""

    method: SearchMethod
    reason: str
    batch_size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "reason": self.reason,
            "batch_size": self.batch_size,
        }


# -----------------------------------------------------------------------------
# Fallback chain
# -----------------------------------------------------------------------------


@dataclass
class LookupState:
    """Progress of a direct lookup across the strategies of a chain.

    Attributes:
        pending: Distinct ids still unresolved, in input order
        hits: Resolved records by admission number
        tried: Partitions successfully queried for each id
        failures: Per id, partitions whose query failed and was not retried
            successfully, with the error
        queries: Store reads issued
    """

    pending: dict[str, None] = field(default_factory=dict)
    hits: dict[str, StudentRecord] = field(default_factory=dict)
    tried: dict[str, set[str]] = field(default_factory=lambda: defaultdict(set))
    failures: dict[str, dict[str, str]] = field(
        default_factory=lambda: defaultdict(dict)
    )
    queries: int = 0

    @classmethod
    def for_ids(
        cls, ids: Iterable[Any], tried: Iterable[str] | None = None
    ) -> "LookupState":
        state = cls(pending=dict.fromkeys(_normalize(i) for i in ids))
        seeded = set(tried or ())
        if seeded:
            for key in state.pending:
                state.tried[key] |= seeded
        return state

    @property
    def done(self) -> bool:
        return not self.pending

    def untried(self, partition: str) -> list[str]:
        return [key for key in self.pending if partition not in self.tried[key]]

    def record_success(self, ids: Iterable[str], partition: str) -> None:
        for key in ids:
            self.tried[key].add(partition)
            self.failures[key].pop(partition, None)

    def record_failure(self, ids: Iterable[str], partition: str, error: str) -> None:
        for key in ids:
            self.failures[key][partition] = error

    def record_hit(self, record: StudentRecord) -> bool:
        key = record.admission_number
        if key not in self.pending:
            return False
        del self.pending[key]
        self.hits[key] = record
        return True

    def errored(self) -> dict[str, str]:
        """Unresolved ids with at least one failed, never-retried query."""
        return {
            key: next(iter(self.failures[key].values()))
            for key in self.pending
            if self.failures.get(key)
        }


class LookupStrategy(Protocol):
    """One step of a fallback chain. Resolves as many pending ids as it can."""

    name: str

    async def resolve(self, state: LookupState) -> None: ...


class _PartitionQuery:
    """Chunked "in" reads against one partition, chunks fanned out at once."""

    def __init__(
        self, store: DocumentStore, router: KeyRouter, chunk_size: int
    ) -> None:
        self._store = store
        self._router = router
        self._chunk_size = chunk_size

    async def query(self, state: LookupState, partition: str, ids: list[str]) -> None:
        chunks = [
            ids[i : i + self._chunk_size] for i in range(0, len(ids), self._chunk_size)
        ]
        await asyncio.gather(*(self._query_chunk(state, partition, c) for c in chunks))

    async def _query_chunk(
        self, state: LookupState, partition: str, chunk: list[str]
    ) -> None:
        state.queries += 1
        try:
            documents = await self._store.fetch_where_in(
                partition, "admission_number", chunk
            )
        except DocumentStoreError as e:
            logger.warning(
                "partition_query_failed",
                partition=partition,
                ids=len(chunk),
                error=str(e),
            )
            state.record_failure(chunk, partition, str(e))
            return

        state.record_success(chunk, partition)
        for document in documents:
            state.record_hit(
                StudentRecord.from_document(document, partition, self._router)
            )


class TargetedPartitionLookup(_PartitionQuery):
    """Query each id in the partition its admission number routes to."""

    name = "targeted_partition"

    async def resolve(self, state: LookupState) -> None:
        groups: dict[str, list[str]] = defaultdict(list)
        unroutable = 0
        for key in state.pending:
            partition = self._router.target_partition(key)
            if partition is None:
                unroutable += 1
            elif partition not in state.tried[key]:
                groups[partition].append(key)

        if unroutable:
            logger.debug("unroutable_ids_deferred", count=unroutable)

        await asyncio.gather(
            *(self.query(state, partition, ids) for partition, ids in groups.items())
        )


class RegistryScanLookup(_PartitionQuery):
    """Walk the registry's partitions in order until every id is resolved.

    Partitions already queried for an id are skipped for that id. If the
    registry cannot be read, every pending id is marked as failed against it,
    so ids already resolved by earlier strategies are kept.
    """

    name = "registry_scan"

    def __init__(
        self,
        store: DocumentStore,
        registry: PartitionRegistry,
        router: KeyRouter,
        chunk_size: int,
    ) -> None:
        super().__init__(store, router, chunk_size)
        self._registry = registry

    async def resolve(self, state: LookupState) -> None:
        if state.done:
            return

        scanning = len(state.pending)
        try:
            partitions = await self._registry.list_partitions()
        except RegistryUnavailableError as e:
            logger.warning("registry_scan_unavailable", ids=scanning, error=str(e))
            state.record_failure(list(state.pending), REGISTRY, str(e))
            return

        for info in partitions:
            if state.done:
                break
            ids = state.untried(info.partition_name)
            if ids:
                await self.query(state, info.partition_name, ids)

        logger.info(
            "registry_scan_completed",
            scanned_ids=scanning,
            resolved=scanning - len(state.pending),
        )


class FallbackChain:
    """Ordered lookup strategies, evaluated until nothing is left pending.

    Usage:
        ```python
        chain = FallbackChain([targeted, registry_scan])
        state = await chain.run(["22015112001", "invalid123"])
        state.hits  # resolved records
        state.pending  # not found anywhere
        ```
    """

    def __init__(self, strategies: Sequence[LookupStrategy]) -> None:
        self._strategies = list(strategies)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._strategies]

    async def run(
        self, ids: Iterable[Any], tried: Iterable[str] | None = None
    ) -> LookupState:
        """Resolve ``ids``.

        Args:
            ids: Admission numbers; duplicates are queried once
            tried: Partitions to treat as already searched for every id
        """
        state = LookupState.for_ids(ids, tried)
        for strategy in self._strategies:
            if state.done:
                break
            await strategy.resolve(state)
            logger.debug(
                "lookup_strategy_completed",
                strategy=strategy.name,
                resolved=len(state.hits),
                pending=len(state.pending),
            )
        return state


# -----------------------------------------------------------------------------
# Chunked runs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkProgress:
    """Passed to the progress callback before each chunk runs."""

    completed: int
    total: int
    chunk: int
    chunks: int


@dataclass
class ChunkError:
    chunk: int
    ids: list[str]
    error: str


@dataclass
class ChunkedRunResult(Generic[T]):
    """Per-chunk results and errors of a chunked run."""

    results: list[T] = field(default_factory=list)
    errors: list[ChunkError] = field(default_factory=list)
    chunks: int = 0
    total_processed: int = 0

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total_processed": self.total_processed,
            "chunks": self.chunks,
            "errors": len(self.errors),
        }


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


class StudentSearchService:
    """Entry point for student lookups.

    Usage with FastAPI:
        ```python
        from rollbook.services.search import get_search_service

        @router.post("/students/batch-search")
        async def batch_search(
            service: StudentSearchService = Depends(get_search_service),
        ):
            ...
        ```
    """

    def __init__(
        self,
        cache: DirectoryCache,
        store: DocumentStore,
        registry: PartitionRegistry,
        settings: Settings | None = None,
        router: KeyRouter = key_router,
        monitor: PerformanceMonitor | None = None,
    ) -> None:
        """Initialize the search service.

        Args:
            cache: Directory cache used by the cached path
            store: Backing document store used by the direct path
            registry: Partition registry walked by fallback scans
            settings: Application settings (defaults to get_settings())
            router: Admission number router
            monitor: Optional performance monitor wrapping consumer calls
        """
        self._settings = settings or get_settings()
        self._cache = cache
        self._store = store
        self._registry = registry
        self._router = router
        self._monitor = monitor

        chunk_size = self._settings.store_query_chunk_size
        registry_scan = RegistryScanLookup(store, registry, router, chunk_size)
        self.direct_chain = FallbackChain(
            [TargetedPartitionLookup(store, router, chunk_size), registry_scan]
        )
        self.scan_chain = FallbackChain([registry_scan])

    @property
    def cache(self) -> DirectoryCache:
        return self._cache

    @property
    def monitor(self) -> PerformanceMonitor | None:
        return self._monitor

    # =========================================================================
    # Strategy
    # =========================================================================

    def choose_strategy(
        self, ids: Sequence[Any], method: SearchMethod | str | None = None
    ) -> StrategyDecision:
        """Pick the batch path for ``ids``.

        Decision table, first matching row wins:

        ====================================  ========
        explicit ``method``                   as given
        size >= cached threshold (50)         cached
        size >= medium threshold (20) and
        cache holds > warm floor (1000)       cached
        cache needs refresh                   direct
        otherwise                             direct
        ====================================  ========
        """
        size = len(ids)
        settings = self._settings

        if method is not None:
            decision = StrategyDecision(
                SearchMethod(method), "Requested by caller", size
            )
        elif size >= settings.search_cached_threshold:
            decision = StrategyDecision(
                SearchMethod.CACHED, "Large batch - cache is more efficient", size
            )
        elif (
            size >= settings.search_medium_threshold
            and len(self._cache) > settings.search_warm_cache_min_records
        ):
            decision = StrategyDecision(
                SearchMethod.CACHED, "Medium batch with loaded cache", size
            )
        elif self._cache.needs_refresh():
            decision = StrategyDecision(
                SearchMethod.DIRECT, "Cache needs refresh", size
            )
        else:
            decision = StrategyDecision(SearchMethod.DIRECT, "Small batch size", size)

        logger.info("search_strategy_chosen", **decision.to_dict())
        return decision

    # =========================================================================
    # Batch paths
    # =========================================================================

    async def smart_batch_search(
        self, ids: Sequence[Any], method: SearchMethod | str | None = None
    ) -> BatchSearchResult:
        """Run a batch on the chosen path, falling back once to the other.

        Raises:
            SearchUnavailableError: If both paths failed
        """
        decision = self.choose_strategy(ids, method)
        try:
            result = await self._run_path(decision.method, ids)
            result.reason = decision.reason
            return result
        except DocumentStoreError as first:
            fallback = decision.method.other
            logger.warning(
                "search_path_failed",
                method=decision.method.value,
                fallback=fallback.value,
                error=str(first),
            )

        try:
            result = await self._run_path(fallback, ids)
        except DocumentStoreError as second:
            logger.error(
                "search_unavailable",
                attempted=[decision.method.value, fallback.value],
                error=str(second),
            )
            raise SearchUnavailableError(
                attempted=[decision.method.value, fallback.value], error=str(second)
            ) from second

        result.reason = (
            f"{decision.reason}; fell back after {decision.method.value} failed"
        )
        return result

    async def direct_batch_search(self, ids: Sequence[Any]) -> BatchSearchResult:
        """Resolve ids straight from the store through the fallback chain.

        Each distinct id is queried once. Inputs larger than the run chunk
        size are split into paced chunks.
        """
        keys = [_normalize(i) for i in ids]
        distinct = list(dict.fromkeys(keys))

        hits: dict[str, StudentRecord] = {}
        errored: dict[str, str] = {}

        if len(distinct) <= self._settings.batch_chunk_size:
            states = [await self.direct_chain.run(distinct)]
        else:
            run = await self.chunked_run(
                distinct, self.direct_chain.run, capture=(DocumentStoreError,)
            )
            states = run.results
            for chunk_error in run.errors:
                errored.update(dict.fromkeys(chunk_error.ids, chunk_error.error))

        for state in states:
            hits.update(state.hits)
            errored.update(state.errored())

        return self._assemble(keys, {}, hits, errored, SearchMethod.DIRECT)

    async def chunked_run(
        self,
        ids: Sequence[Any],
        operation: Callable[[list[Any]], Awaitable[T]],
        chunk_size: int | None = None,
        progress: Callable[[ChunkProgress], None] | None = None,
        capture: tuple[type[Exception], ...] = (Exception,),
    ) -> ChunkedRunResult[T]:
        """Run ``operation`` over ``ids`` in sequential, paced chunks.

        A chunk failing with one of ``capture`` is recorded in ``errors`` and
        the run continues; any other exception propagates.

        Args:
            ids: Items to process
            operation: Coroutine function called once per chunk
            chunk_size: Items per chunk (defaults to the batch chunk size)
            progress: Called before each chunk
            capture: Exception types recorded per chunk instead of raised
        """
        size = chunk_size or self._settings.batch_chunk_size
        items = list(ids)
        chunks = [items[i : i + size] for i in range(0, len(items), size)]
        pacing = self._settings.batch_pacing_seconds

        run: ChunkedRunResult[T] = ChunkedRunResult(chunks=len(chunks))
        for index, chunk in enumerate(chunks):
            if progress is not None:
                progress(
                    ChunkProgress(
                        completed=index * size,
                        total=len(items),
                        chunk=index + 1,
                        chunks=len(chunks),
                    )
                )
            try:
                run.results.append(await operation(chunk))
                run.total_processed += len(chunk)
            except capture as e:
                logger.warning(
                    "chunk_failed", chunk=index + 1, ids=len(chunk), error=str(e)
                )
                run.errors.append(ChunkError(chunk=index + 1, ids=chunk, error=str(e)))

            if pacing and index < len(chunks) - 1:
                await asyncio.sleep(pacing)

        logger.info("chunked_run_completed", **run.summary)
        return run

    # =========================================================================
    # Consumer API
    # =========================================================================

    async def search_by_admission_number(self, admission_number: Any) -> SearchResult:
        """Find one student; misses are scanned for outside the loaded partitions."""
        key = _normalize(admission_number)
        result, _ = await self._measure(
            lambda: self._search_by_admission_number(key),
            [key],
            "search_by_admission_number",
        )
        return result

    async def search_by_roll_number(self, roll_number: Any) -> SearchResult:
        """Find one student by roll number, scanning the store if the cache fails."""
        key = _normalize(roll_number)
        result, _ = await self._measure(
            lambda: self._search_by_roll_number(key),
            [key],
            "search_by_roll_number",
        )
        return result

    async def batch_search(
        self, ids: Sequence[Any], method: SearchMethod | str | None = None
    ) -> BatchSearchResult:
        result, _ = await self._measure(
            lambda: self.smart_batch_search(ids, method), ids, "batch_search"
        )
        return result

    async def batch_search_by_roll_numbers(
        self, roll_numbers: Sequence[Any]
    ) -> BatchSearchResult:
        result, _ = await self._measure(
            lambda: self._cache.batch_search_by_roll_numbers(list(roll_numbers)),
            roll_numbers,
            "batch_search_by_roll_numbers",
        )
        return result

    async def preload(self) -> bool:
        return await self._cache.preload()

    async def refresh(self) -> LoadSummary:
        return await self._cache.force_refresh()

    def clear(self) -> None:
        self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {"cache": self._cache.stats().to_dict()}
        if self._monitor is not None:
            stats["performance"] = self._monitor.summary()
        return stats

    # =========================================================================
    # Private Methods
    # =========================================================================

    async def _run_path(
        self, method: SearchMethod, ids: Sequence[Any]
    ) -> BatchSearchResult:
        if method is SearchMethod.CACHED:
            result = await self._cached_batch_search(ids)
        else:
            result = await self.direct_batch_search(ids)

        # Nothing resolved and nothing answered: treat as a failed path
        if ids and len(result.errors) == len(ids):
            raise DocumentStoreError(
                message=f"Every lookup failed on the {method.value} path",
                error=result.errors[0].error,
            )
        return result

    async def _cached_batch_search(self, ids: Sequence[Any]) -> BatchSearchResult:
        keys = [_normalize(i) for i in ids]
        cached = await self._cache.batch_search_by_admission_numbers(keys)

        unresolved = [m.identifier for m in cached.not_found]
        unresolved += [f.identifier for f in cached.errors]
        if not unresolved:
            return cached

        # Loaded partitions are authoritative; only scan the rest
        state = await self.scan_chain.run(
            unresolved, tried=self._cache.loaded_partitions
        )
        cache_hits = {m.identifier: m.record for m in cached.found}
        return self._assemble(
            keys, cache_hits, state.hits, state.errored(), SearchMethod.CACHED
        )

    async def _search_by_admission_number(self, key: str) -> SearchResult:
        result = await self._cache.search_by_admission_number(key)
        if result.found or result.error != NOT_FOUND:
            return result

        state = await self.scan_chain.run([key], tried=self._cache.loaded_partitions)
        if key in state.hits:
            logger.info(
                "record_found_outside_routed_partition",
                admission_number=key,
                partition=state.hits[key].partition_name,
            )
            return SearchResult.hit(key, state.hits[key], from_cache=False)

        errored = state.errored()
        if key in errored:
            return SearchResult.miss(
                key, f"Search failed: {errored[key]}", from_cache=False
            )
        return SearchResult.miss(key, NOT_FOUND, from_cache=False)

    async def _search_by_roll_number(self, key: str) -> SearchResult:
        result = await self._cache.search_by_roll_number(key)
        if result.found or result.error == NOT_FOUND:
            return result

        logger.warning("roll_number_cache_unavailable", roll_number=key)
        return await self._scan_roll_number(key)

    async def _scan_roll_number(self, key: str) -> SearchResult:
        """Equality reads across unloaded partitions, first match wins.

        Partitions come from the registry, or from the section table when the
        registry itself is down.
        """
        try:
            partitions = [
                p.partition_name for p in await self._registry.list_partitions()
            ]
        except RegistryUnavailableError as e:
            logger.warning("roll_number_scan_without_registry", error=str(e))
            partitions = self._router.all_partitions()

        failure: str | None = None
        for partition in partitions:
            if self._cache.is_partition_loaded(partition):
                continue
            try:
                documents = await self._store.fetch_where_equal(
                    partition, "roll_number", key, limit=1
                )
            except DocumentStoreError as e:
                failure = str(e)
                continue
            if documents:
                record = StudentRecord.from_document(
                    documents[0], partition, self._router
                )
                return SearchResult.hit(key, record, from_cache=False)

        if failure is not None:
            return SearchResult.miss(
                key, f"Search failed: {failure}", from_cache=False
            )
        return SearchResult.miss(key, NOT_FOUND, from_cache=False)

    async def _measure(
        self,
        operation: Callable[[], Awaitable[T]],
        ids: Sequence[Any],
        label: str,
    ) -> tuple[T, Any]:
        if self._monitor is None:
            return await operation(), None
        return await self._monitor.measure(operation, ids, label=label)

    @staticmethod
    def _assemble(
        keys: list[str],
        cache_hits: dict[str, StudentRecord],
        store_hits: dict[str, StudentRecord],
        errored: dict[str, str],
        method: SearchMethod,
    ) -> BatchSearchResult:
        result = BatchSearchResult(method=method.value)
        for key in keys:
            if key in cache_hits:
                result.found.append(BatchMatch(key, cache_hits[key], from_cache=True))
            elif key in store_hits:
                result.found.append(BatchMatch(key, store_hits[key], from_cache=False))
            elif key in errored:
                result.errors.append(
                    BatchFailure.from_error(BatchItemError(key, errored[key]))
                )
            else:
                result.not_found.append(BatchMiss(key, NOT_FOUND, from_cache=False))
        return result


# -----------------------------------------------------------------------------
# FastAPI Dependency Injection
# -----------------------------------------------------------------------------

_search_service: StudentSearchService | None = None


def set_search_service(service: StudentSearchService | None) -> None:
    """Set the global search service during app startup."""
    global _search_service
    _search_service = service


def get_search_service() -> StudentSearchService:
    """FastAPI dependency for StudentSearchService."""
    if _search_service is None:
        raise RuntimeError(
            "Search service not initialized. Call set_search_service first."
        )
    return _search_service
