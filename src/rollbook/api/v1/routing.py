"""Admission number routing endpoints.

Exposes the key router so callers can see which partition an admission
number belongs to, without touching the cache or the store.
"""

from typing import Annotated

from fastapi import APIRouter, Query, status

from rollbook.core.exceptions import AdmissionNumberParseError
from rollbook.dependencies import KeyRouterDep
from rollbook.schemas.common import ErrorResponse
from rollbook.schemas.students import (
    RoutingAnalysisRequest,
    RoutingAnalysisResponse,
    RoutingResponse,
)

router = APIRouter()


@router.get(
    "/{admission_number}",
    response_model=RoutingResponse,
    status_code=status.HTTP_200_OK,
    summary="Route an admission number",
    responses={
        400: {"model": ErrorResponse, "description": "Not routable (strict mode)"},
    },
)
async def route_admission_number(
    admission_number: str,
    key_router: KeyRouterDep,
    strict: Annotated[
        bool, Query(description="Reject unroutable admission numbers with 400")
    ] = False,
) -> RoutingResponse:
    """Parse an admission number and report its partition.

    Raises:
        AdmissionNumberParseError: In strict mode, if it cannot be routed
    """
    result = key_router.validate(admission_number)
    if strict and not result.is_valid:
        raise AdmissionNumberParseError(admission_number=admission_number)
    return RoutingResponse.from_validation(admission_number, result)


@router.post(
    "/analyze",
    response_model=RoutingAnalysisResponse,
    status_code=status.HTTP_200_OK,
    summary="Analyze how a batch would be routed",
)
async def analyze_routing(
    request: RoutingAnalysisRequest,
    key_router: KeyRouterDep,
) -> RoutingAnalysisResponse:
    analysis = key_router.analyze_routing(request.admission_numbers)
    return RoutingAnalysisResponse.from_analysis(analysis)
