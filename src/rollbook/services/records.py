"""Record and result types shared by the cache and the search service.

``StudentRecord`` is built exactly once, at the load boundary, from a raw
store document. Lookups hand out results as values: "not found" is a
``SearchResult`` with ``found=False``, never an exception, and batches account
for every input occurrence in exactly one of found / not_found / errors.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from rollbook.core.exceptions import BatchItemError
from rollbook.repositories.documents import StoreDocument
from rollbook.services.key_router import KeyRouter, key_router

MISSING = "N/A"


def _text(value: Any) -> str:
    if value is None:
        return MISSING
    text = str(value).strip()
    return text or MISSING


def _timestamp(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


@dataclass
class StudentRecord:
    """One student, as held by the directory cache.

    Missing text fields default to "N/A". Department fields fall back to the
    key router's metadata when the document does not carry them.
    """

    id: str
    admission_number: str
    partition_name: str
    roll_number: str = MISSING
    name: str = MISSING
    department: str = MISSING
    department_code: str = MISSING
    year: str = MISSING
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def has_roll_number(self) -> bool:
        return self.roll_number != MISSING

    @classmethod
    def from_document(
        cls,
        document: StoreDocument,
        partition_name: str,
        router: KeyRouter = key_router,
    ) -> "StudentRecord":
        """Build a record from a store document read out of ``partition_name``."""
        data = document.data
        admission_number = _text(data.get("admission_number"))
        parsed = router.parse(admission_number)

        department = data.get("department") or (
            parsed.department.full_name if parsed else None
        )
        department_code = data.get("department_code") or (
            parsed.section_code if parsed else None
        )

        return cls(
            id=document.id,
            admission_number=admission_number,
            partition_name=partition_name,
            roll_number=_text(data.get("roll_number")),
            name=_text(data.get("name")),
            department=_text(department),
            department_code=_text(department_code),
            year=_text(data.get("year")),
            is_active=bool(data.get("is_active", True)),
            created_at=_timestamp(data.get("created_at")),
            updated_at=_timestamp(data.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "admission_number": self.admission_number,
            "roll_number": self.roll_number,
            "name": self.name,
            "department": self.department,
            "department_code": self.department_code,
            "year": self.year,
            "is_active": self.is_active,
            "partition_name": self.partition_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class SearchResult:
    """Outcome of a point lookup."""

    identifier: str
    found: bool
    record: StudentRecord | None = None
    from_cache: bool = False
    smart_loaded: bool = False
    error: str | None = None

    @property
    def department(self) -> str | None:
        return self.record.department if self.record else None

    @property
    def partition_name(self) -> str | None:
        return self.record.partition_name if self.record else None

    @classmethod
    def hit(
        cls,
        identifier: str,
        record: StudentRecord,
        *,
        from_cache: bool,
        smart_loaded: bool = False,
    ) -> "SearchResult":
        return cls(
            identifier=identifier,
            found=True,
            record=record,
            from_cache=from_cache,
            smart_loaded=smart_loaded,
        )

    @classmethod
    def miss(
        cls, identifier: str, error: str, *, from_cache: bool = True
    ) -> "SearchResult":
        return cls(
            identifier=identifier, found=False, from_cache=from_cache, error=error
        )


@dataclass
class BatchMatch:
    identifier: str
    record: StudentRecord
    from_cache: bool


@dataclass
class BatchMiss:
    identifier: str
    error: str = "Student not found"
    from_cache: bool = True


@dataclass
class BatchFailure:
    identifier: str
    error: str
    code: str = BatchItemError.code

    @classmethod
    def from_error(cls, error: BatchItemError) -> "BatchFailure":
        return cls(error.identifier, error.message, error.code)


@dataclass
class BatchSearchResult:
    """Outcome of a batch lookup.

    Every occurrence of every input id lands in exactly one list, so
    ``summary["total"]`` always equals the input length.
    """

    found: list[BatchMatch] = field(default_factory=list)
    not_found: list[BatchMiss] = field(default_factory=list)
    errors: list[BatchFailure] = field(default_factory=list)
    method: str | None = None
    reason: str | None = None

    @property
    def total(self) -> int:
        return len(self.found) + len(self.not_found) + len(self.errors)

    @property
    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "found": len(self.found),
            "not_found": len(self.not_found),
            "errors": len(self.errors),
            "method": self.method,
        }
