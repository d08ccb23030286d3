"""Performance monitoring for cache-backed operations.

Wraps an operation to record how long it took and how much the cache grew
while it ran. Samples are kept in a bounded history for reporting; the
monitor never changes the outcome of the operation it wraps.
"""

import time
from collections import deque
from collections.abc import Awaitable, Callable, Sized
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from rollbook.services.directory_cache import DirectoryCache

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Cache older than this is reported as aging
AGING_THRESHOLD_MS = 10 * 60 * 1000


@dataclass
class PerformanceSample:
    """Measurements for one monitored operation."""

    operation: str
    id_count: int
    duration_ms: float
    cache_growth: int
    error: str | None = None

    @property
    def ms_per_id(self) -> float:
        if self.id_count == 0:
            return 0.0
        return self.duration_ms / self.id_count

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "id_count": self.id_count,
            "duration_ms": round(self.duration_ms, 2),
            "cache_growth": self.cache_growth,
            "ms_per_id": round(self.ms_per_id, 3),
            "error": self.error,
        }


@dataclass
class CacheHealth:
    """Health report for the directory cache."""

    total_records: int
    partitions_loaded: int
    records_per_partition: float
    is_healthy: bool
    age_minutes: int | None
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "partitions_loaded": self.partitions_loaded,
            "records_per_partition": self.records_per_partition,
            "is_healthy": self.is_healthy,
            "age_minutes": self.age_minutes,
            "recommendation": self.recommendation,
        }


class PerformanceMonitor:
    """Records duration and cache growth of wrapped operations.

    Usage:
        ```python
        monitor = PerformanceMonitor(cache)
        result, sample = await monitor.measure(
            lambda: cache.batch_search_by_admission_numbers(ids), ids
        )
        ```
    """

    def __init__(
        self,
        cache: DirectoryCache,
        history_size: int = 100,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._cache = cache
        self._timer = timer
        self._samples: deque[PerformanceSample] = deque(maxlen=history_size)

    async def measure(
        self,
        operation: Callable[[], Awaitable[T]],
        ids: Sized,
        label: str | None = None,
    ) -> tuple[T, PerformanceSample]:
        """Run ``operation`` and record a sample for it.

        Args:
            operation: Zero-argument coroutine function to run
            ids: The ids the operation works on (only the count is used)
            label: Name for the sample (defaults to the function name)

        Returns:
            Tuple of (operation result, sample)

        Raises:
            Whatever ``operation`` raises; the failed sample is still recorded.
        """
        name = label or getattr(operation, "__name__", "operation")
        size_before = len(self._cache)
        started = self._timer()

        try:
            result = await operation()
        except Exception as e:
            sample = self._record(name, ids, started, size_before, error=str(e))
            logger.warning("monitored_operation_failed", **sample.to_dict())
            raise

        sample = self._record(name, ids, started, size_before)
        logger.debug("monitored_operation", **sample.to_dict())
        return result, sample

    @property
    def samples(self) -> list[PerformanceSample]:
        return list(self._samples)

    def summary(self) -> dict[str, Any]:
        """Aggregate figures over the recorded history."""
        samples = list(self._samples)
        count = len(samples)
        total_ids = sum(s.id_count for s in samples)
        total_ms = sum(s.duration_ms for s in samples)
        return {
            "operations": count,
            "failures": sum(1 for s in samples if not s.succeeded),
            "average_duration_ms": round(total_ms / count, 2) if count else 0.0,
            "average_ms_per_id": round(total_ms / total_ids, 3) if total_ids else 0.0,
            "total_cache_growth": sum(s.cache_growth for s in samples),
        }

    def cache_health(self) -> CacheHealth:
        stats = self._cache.stats()
        loaded = len(stats.partitions_loaded)
        per_partition = 0.0
        if stats.total_records:
            per_partition = round(stats.total_records / (loaded or 1), 1)
        age_minutes = (
            stats.cache_age_ms // 60000 if stats.cache_age_ms is not None else None
        )

        if not stats.total_records:
            recommendation = "Cache not loaded - performance may be slow"
        elif stats.needs_refresh:
            recommendation = "Cache needs refresh for optimal performance"
        elif stats.cache_age_ms is not None and stats.cache_age_ms > AGING_THRESHOLD_MS:
            recommendation = "Cache is aging - consider refresh"
        else:
            recommendation = "Cache is optimal"

        return CacheHealth(
            total_records=stats.total_records,
            partitions_loaded=loaded,
            records_per_partition=per_partition,
            is_healthy=stats.total_records > 0 and not stats.needs_refresh,
            age_minutes=age_minutes,
            recommendation=recommendation,
        )

    def reset(self) -> None:
        self._samples.clear()

    def _record(
        self,
        name: str,
        ids: Sized,
        started: float,
        size_before: int,
        error: str | None = None,
    ) -> PerformanceSample:
        sample = PerformanceSample(
            operation=name,
            id_count=len(ids),
            duration_ms=(self._timer() - started) * 1000,
            cache_growth=len(self._cache) - size_before,
            error=error,
        )
        self._samples.append(sample)
        return sample
