"""Services package for Rollbook.

This module exports the routing, caching, search and monitoring services.
"""

from rollbook.services.directory_cache import (
    CacheState,
    CacheStats,
    DirectoryCache,
    LoadSummary,
)
from rollbook.services.key_router import (
    KeyRouter,
    ParsedAdmissionNumber,
    PartitionDescriptor,
    key_router,
)
from rollbook.services.monitor import CacheHealth, PerformanceMonitor, PerformanceSample
from rollbook.services.records import (
    BatchSearchResult,
    SearchResult,
    StudentRecord,
)
from rollbook.services.search import (
    FallbackChain,
    RegistryScanLookup,
    SearchMethod,
    StrategyDecision,
    StudentSearchService,
    TargetedPartitionLookup,
    get_search_service,
    set_search_service,
)

__all__ = [
    # Routing
    "KeyRouter",
    "ParsedAdmissionNumber",
    "PartitionDescriptor",
    "key_router",
    # Cache
    "CacheState",
    "CacheStats",
    "DirectoryCache",
    "LoadSummary",
    # Records
    "BatchSearchResult",
    "SearchResult",
    "StudentRecord",
    # Search
    "FallbackChain",
    "RegistryScanLookup",
    "SearchMethod",
    "StrategyDecision",
    "StudentSearchService",
    "TargetedPartitionLookup",
    "get_search_service",
    "set_search_service",
    # Monitoring
    "CacheHealth",
    "PerformanceMonitor",
    "PerformanceSample",
]
