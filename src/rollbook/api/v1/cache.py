"""Directory cache management endpoints.

Preload, refresh, clear and inspect the in-memory directory cache.
"""

from fastapi import APIRouter, status

from rollbook.core.logging import get_logger
from rollbook.dependencies import SearchServiceDep
from rollbook.schemas.common import ErrorResponse
from rollbook.schemas.students import (
    CacheHealthResponse,
    CacheStatsEnvelope,
    CacheStatsResponse,
    LoadSummaryResponse,
    PreloadResponse,
)
from rollbook.services.monitor import PerformanceMonitor

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/preload",
    response_model=PreloadResponse,
    status_code=status.HTTP_200_OK,
    summary="Warm the cache",
    description="Runs a full load unless the cache is already fresh.",
)
async def preload_cache(service: SearchServiceDep) -> PreloadResponse:
    success = await service.preload()
    return PreloadResponse(
        success=success,
        stats=CacheStatsResponse.from_stats(service.cache.stats()),
    )


@router.post(
    "/refresh",
    response_model=LoadSummaryResponse,
    status_code=status.HTTP_200_OK,
    summary="Force a full cache reload",
    responses={
        503: {"model": ErrorResponse, "description": "Partition registry unavailable"},
    },
)
async def refresh_cache(service: SearchServiceDep) -> LoadSummaryResponse:
    summary = await service.refresh()
    logger.info("cache_refreshed", **summary.to_dict())
    return LoadSummaryResponse.from_summary(summary)


@router.delete(
    "",
    response_model=CacheStatsResponse,
    status_code=status.HTTP_200_OK,
    summary="Clear the cache",
)
async def clear_cache(service: SearchServiceDep) -> CacheStatsResponse:
    service.clear()
    return CacheStatsResponse.from_stats(service.cache.stats())


@router.get(
    "/stats",
    response_model=CacheStatsEnvelope,
    status_code=status.HTTP_200_OK,
    summary="Cache and lookup statistics",
)
async def cache_stats(service: SearchServiceDep) -> CacheStatsEnvelope:
    return CacheStatsEnvelope.model_validate(service.get_stats())


@router.get(
    "/health",
    response_model=CacheHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Cache health and recommendation",
)
async def cache_health(service: SearchServiceDep) -> CacheHealthResponse:
    monitor = service.monitor or PerformanceMonitor(service.cache)
    return CacheHealthResponse.from_health(monitor.cache_health())
