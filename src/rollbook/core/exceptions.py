"""Custom exception hierarchy for Rollbook.

Lookups never raise for "not found"; that outcome is a value on
``SearchResult``. Exceptions are reserved for:
- Invalid input at the HTTP boundary (400)
- Backing store failures (502/503), some of which are absorbed per partition
- Per-item batch failures that get captured into a batch's ``errors`` list

Usage:
    from rollbook.core.exceptions import PartitionLoadError

    raise PartitionLoadError(partition="students_cse_1", error="timeout")
"""

from typing import Any


class RollbookError(Exception):
    """Base exception for all Rollbook errors.

    Attributes:
        code: Machine-readable error code (e.g., "PARTITION_LOAD_FAILED")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Override default message
            code: Override default error code
            details: Additional error details
        """
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(RollbookError):
    """Raised when input validation fails."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with optional field information."""
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class AdmissionNumberParseError(ValidationError):
    """Raised when a caller demands a routable admission number and it is not.

    The key router itself returns ``None`` for unparseable input; this error
    only exists for boundaries that must reject such input outright.
    """

    code: str = "INVALID_ADMISSION_NUMBER"
    message: str = "Admission number does not match any known section"

    def __init__(
        self, admission_number: str | None = None, message: str | None = None
    ) -> None:
        """Initialize with the offending admission number."""
        details: dict[str, Any] = {}
        if admission_number is not None:
            details["admission_number"] = admission_number
        super().__init__(message=message, field="admission_number", details=details)


# =============================================================================
# Backing Store Errors (502, 503)
# =============================================================================


class ExternalServiceError(RollbookError):
    """Base class for external service errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class DocumentStoreError(ExternalServiceError):
    """Raised when a read against the backing document store fails."""

    code: str = "DOCUMENT_STORE_ERROR"
    message: str = "Failed to read from the document store"

    def __init__(
        self,
        message: str | None = None,
        partition: str | None = None,
        error: str | None = None,
    ) -> None:
        """Initialize with the partition involved and the underlying error."""
        details: dict[str, Any] = {}
        if partition:
            details["partition"] = partition
        if error:
            details["error"] = error
        super().__init__(message=message, details=details if details else None)


class PartitionLoadError(DocumentStoreError):
    """Raised when one partition cannot be loaded into the cache.

    The cache logs and absorbs this; sibling partitions keep loading.
    """

    code: str = "PARTITION_LOAD_FAILED"
    message: str = "Failed to load partition"

    def __init__(self, partition: str, error: str | None = None) -> None:
        """Initialize with the failing partition."""
        super().__init__(
            message=f"Failed to load partition {partition}",
            partition=partition,
            error=error,
        )


class RegistryUnavailableError(DocumentStoreError):
    """Raised when the partition registry cannot be read."""

    code: str = "PARTITION_REGISTRY_UNAVAILABLE"
    message: str = "Partition registry is unavailable"
    status_code: int = 503


class SearchUnavailableError(ExternalServiceError):
    """Raised when both the cached and the direct search paths failed."""

    code: str = "SEARCH_UNAVAILABLE"
    message: str = "Student search is temporarily unavailable"
    status_code: int = 503

    def __init__(
        self,
        attempted: list[str] | None = None,
        error: str | None = None,
    ) -> None:
        """Initialize with the strategies that were attempted."""
        details: dict[str, Any] = {}
        if attempted:
            details["attempted"] = ", ".join(attempted)
        if error:
            details["error"] = error
        super().__init__(details=details if details else None)


# =============================================================================
# Batch Errors
# =============================================================================


class BatchItemError(RollbookError):
    """An isolated failure resolving one id inside a batch.

    Captured into the batch's ``errors`` list; never propagated to callers.
    """

    code: str = "BATCH_ITEM_FAILED"
    message: str = "Failed to resolve batch item"

    def __init__(self, identifier: str, error: str | None = None) -> None:
        """Initialize with the id that failed."""
        self.identifier = identifier
        details: dict[str, Any] = {"identifier": identifier}
        if error:
            details["error"] = error
        super().__init__(message=error or self.message, details=details)
