"""Student lookup, routing and cache API schemas.

This module defines Pydantic models for point and batch lookups, admission
number routing, and the cache management endpoints.
"""

from typing import Any

from pydantic import BaseModel, Field

from rollbook.schemas.common import BaseSchema
from rollbook.services.directory_cache import CacheStats, LoadSummary
from rollbook.services.key_router import RoutingAnalysis, ValidationResult
from rollbook.services.monitor import CacheHealth
from rollbook.services.records import BatchSearchResult, SearchResult
from rollbook.services.search import SearchMethod

# Upper bound on ids accepted by one batch request
MAX_BATCH_IDS = 5000

# =============================================================================
# Records
# =============================================================================


class StudentResponse(BaseSchema):
    """A student record as served from the cache or the store."""

    id: str = Field(..., description="Store document id")
    admission_number: str = Field(..., description="Admission number")
    roll_number: str = Field("N/A", description="Roll number")
    name: str = Field("N/A", description="Student name")
    department: str = Field("N/A", description="Department name")
    department_code: str = Field("N/A", description="Department or section code")
    year: str = Field("N/A", description="Year of study")
    is_active: bool = Field(True, description="Whether the record is active")
    partition_name: str = Field(..., description="Partition holding the record")
    created_at: str | None = Field(None, description="Creation timestamp (ISO)")
    updated_at: str | None = Field(None, description="Last update timestamp (ISO)")


# =============================================================================
# Point Lookups
# =============================================================================


class SearchResponse(BaseSchema):
    """Outcome of a single lookup. Not found is a 200 with ``found=false``."""

    identifier: str
    found: bool
    student: StudentResponse | None = None
    department: str | None = None
    partition_name: str | None = None
    from_cache: bool = False
    smart_loaded: bool = False
    error: str | None = None

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResponse":
        return cls(
            identifier=result.identifier,
            found=result.found,
            student=(
                StudentResponse.model_validate(result.record) if result.record else None
            ),
            department=result.department,
            partition_name=result.partition_name,
            from_cache=result.from_cache,
            smart_loaded=result.smart_loaded,
            error=result.error,
        )


# =============================================================================
# Batch Lookups
# =============================================================================


class BatchSearchRequest(BaseSchema):
    """Request body for a batch admission number search."""

    admission_numbers: list[str] = Field(
        ...,
        min_length=1,
        max_length=MAX_BATCH_IDS,
        description="Admission numbers to resolve (duplicates allowed)",
        json_schema_extra={"example": ["22015112001", "22015212044"]},
    )
    method: SearchMethod | None = Field(
        None, description="Force the cached or direct path"
    )


class RollNumberBatchRequest(BaseSchema):
    """Request body for a batch roll number search."""

    roll_numbers: list[str] = Field(
        ...,
        min_length=1,
        max_length=MAX_BATCH_IDS,
        description="Roll numbers to resolve",
    )


class BatchMatchResponse(BaseSchema):
    identifier: str
    student: StudentResponse
    from_cache: bool


class BatchMissResponse(BaseSchema):
    identifier: str
    error: str
    from_cache: bool


class BatchFailureResponse(BaseSchema):
    identifier: str
    error: str
    code: str


class BatchSummary(BaseModel):
    total: int
    found: int
    not_found: int
    errors: int


class BatchSearchResponse(BaseSchema):
    """Every input occurrence appears in exactly one of the three lists."""

    found: list[BatchMatchResponse] = Field(default_factory=list)
    not_found: list[BatchMissResponse] = Field(default_factory=list)
    errors: list[BatchFailureResponse] = Field(default_factory=list)
    summary: BatchSummary
    method: str | None = Field(None, description="Path that produced the result")
    reason: str | None = Field(None, description="Why that path was chosen")

    @classmethod
    def from_result(cls, result: BatchSearchResult) -> "BatchSearchResponse":
        return cls(
            found=[
                BatchMatchResponse(
                    identifier=m.identifier,
                    student=StudentResponse.model_validate(m.record),
                    from_cache=m.from_cache,
                )
                for m in result.found
            ],
            not_found=[BatchMissResponse.model_validate(m) for m in result.not_found],
            errors=[BatchFailureResponse.model_validate(f) for f in result.errors],
            summary=BatchSummary(
                total=result.total,
                found=len(result.found),
                not_found=len(result.not_found),
                errors=len(result.errors),
            ),
            method=result.method,
            reason=result.reason,
        )


# =============================================================================
# Routing
# =============================================================================


class RoutingResponse(BaseModel):
    """How an admission number is parsed and routed."""

    admission_number: str
    is_valid: bool
    partition_name: str | None = None
    parsed: dict[str, Any] | None = None
    error: str | None = None
    details: str | None = None
    valid_department_codes: list[str] = Field(default_factory=list)

    @classmethod
    def from_validation(
        cls, admission_number: str, result: ValidationResult
    ) -> "RoutingResponse":
        return cls(
            admission_number=admission_number,
            is_valid=result.is_valid,
            partition_name=result.target_partition,
            parsed=result.parsed.to_dict() if result.parsed else None,
            error=result.error,
            details=result.details,
            valid_department_codes=list(result.valid_department_codes),
        )


class RoutingAnalysisRequest(BaseSchema):
    admission_numbers: list[str] = Field(
        ..., min_length=1, max_length=MAX_BATCH_IDS
    )


class RoutingAnalysisResponse(BaseModel):
    total: int
    routable: int
    unroutable: list[str]
    distribution: dict[str, int]
    optimization_rate: float
    estimated_queries_without_routing: int
    estimated_queries_with_routing: int
    query_reduction: float

    @classmethod
    def from_analysis(cls, analysis: RoutingAnalysis) -> "RoutingAnalysisResponse":
        return cls(**analysis.to_dict())


# =============================================================================
# Cache Management
# =============================================================================


class CacheStatsResponse(BaseModel):
    total_records: int
    total_by_roll_number: int
    partitions_loaded: list[str]
    last_full_refresh: float | None
    needs_refresh: bool
    is_loading: bool
    cache_age_ms: int | None
    conflicts: int
    state: str

    @classmethod
    def from_stats(cls, stats: CacheStats) -> "CacheStatsResponse":
        return cls(**stats.to_dict())


class CacheStatsEnvelope(BaseModel):
    cache: CacheStatsResponse
    performance: dict[str, float | int] | None = None


class LoadSummaryResponse(BaseModel):
    total_records: int
    partitions_loaded: int
    cached: bool
    failed_partitions: list[str] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: LoadSummary) -> "LoadSummaryResponse":
        return cls(**summary.to_dict())


class PreloadResponse(BaseModel):
    success: bool
    stats: CacheStatsResponse


class CacheHealthResponse(BaseModel):
    total_records: int
    partitions_loaded: int
    records_per_partition: float
    is_healthy: bool
    age_minutes: int | None
    recommendation: str

    @classmethod
    def from_health(cls, health: CacheHealth) -> "CacheHealthResponse":
        return cls(**health.to_dict())
