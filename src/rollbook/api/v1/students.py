"""Student lookup endpoints.

Provides point lookups by admission number and roll number, and batch
lookups that pick between the cached and the direct search paths.
"""

from fastapi import APIRouter, status

from rollbook.core.logging import get_logger, log_context
from rollbook.dependencies import SearchServiceDep
from rollbook.schemas.common import ErrorResponse
from rollbook.schemas.students import (
    BatchSearchRequest,
    BatchSearchResponse,
    RollNumberBatchRequest,
    SearchResponse,
)

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Point Lookups
# =============================================================================


@router.get(
    "/admission/{admission_number}",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Find a student by admission number",
    description=(
        "Looks the admission number up in the cache, loading only its routed "
        "partition on a miss. Not found is reported with found=false."
    ),
)
async def get_by_admission_number(
    admission_number: str,
    service: SearchServiceDep,
) -> SearchResponse:
    result = await service.search_by_admission_number(admission_number)
    logger.info(
        "admission_number_lookup",
        admission_number=result.identifier,
        found=result.found,
        from_cache=result.from_cache,
        smart_loaded=result.smart_loaded,
    )
    return SearchResponse.from_result(result)


@router.get(
    "/roll/{roll_number}",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Find a student by roll number",
    description=(
        "Roll numbers cannot be routed; a miss against an empty or stale cache "
        "triggers one full cache load."
    ),
)
async def get_by_roll_number(
    roll_number: str,
    service: SearchServiceDep,
) -> SearchResponse:
    result = await service.search_by_roll_number(roll_number)
    logger.info("roll_number_lookup", roll_number=result.identifier, found=result.found)
    return SearchResponse.from_result(result)


# =============================================================================
# Batch Lookups
# =============================================================================


@router.post(
    "/batch-search",
    response_model=BatchSearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Resolve many admission numbers",
    responses={
        200: {"description": "Every input is in found, not_found or errors"},
        503: {"model": ErrorResponse, "description": "Both search paths failed"},
    },
)
async def batch_search(
    request: BatchSearchRequest,
    service: SearchServiceDep,
) -> BatchSearchResponse:
    """Resolve a batch on the cached or direct path.

    The path is chosen from the batch size and the cache state unless
    ``method`` forces one.
    """
    with log_context(batch_size=len(request.admission_numbers)):
        result = await service.batch_search(request.admission_numbers, request.method)
        logger.info("batch_search_completed", **result.summary)
    return BatchSearchResponse.from_result(result)


@router.post(
    "/batch-search/roll",
    response_model=BatchSearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Resolve many roll numbers",
)
async def batch_search_by_roll_numbers(
    request: RollNumberBatchRequest,
    service: SearchServiceDep,
) -> BatchSearchResponse:
    result = await service.batch_search_by_roll_numbers(request.roll_numbers)
    logger.info("roll_number_batch_completed", **result.summary)
    return BatchSearchResponse.from_result(result)
