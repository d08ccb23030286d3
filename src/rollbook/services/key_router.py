"""Key router - maps admission numbers to the partition that holds them.

Admission numbers carry their own routing information::

    22 0 1 51 12001
    YY B C SS SERIAL

    YY      admission year
    B       batch digit
    C       campus digit
    SS      section code, 1-3 digits starting at offset 4
    SERIAL  everything after the section code

The section code is matched against a static table by trying the 3-digit,
then 2-digit, then 1-digit substring at offset 4; the first hit wins. The
table is the single source of truth for routing and never changes at runtime.

Everything here is pure: no I/O and no dependency on the directory cache, so
routing can be used before (or without) any partition being loaded.
"""

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

MIN_ADMISSION_NUMBER_LENGTH = 10
SECTION_CODE_OFFSET = 4
SECTION_CODE_WIDTHS = (3, 2, 1)

_DIGITS = re.compile(r"[0-9]+")


# -----------------------------------------------------------------------------
# DTOs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class DepartmentInfo:
    """Human-readable metadata for a department."""

    code: str
    short_name: str
    full_name: str
    max_sections: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "short_name": self.short_name,
            "full_name": self.full_name,
            "max_sections": self.max_sections,
        }


@dataclass(frozen=True)
class PartitionDescriptor:
    """One row of the static section table."""

    section_code: str
    partition_name: str
    department_code: str
    department_name: str
    section_index: int

    @property
    def display_name(self) -> str:
        return f"{self.department_name} Section {self.section_index}"


@dataclass(frozen=True)
class ParsedAdmissionNumber:
    """Decoded components of a routable admission number."""

    original: str
    year: str
    batch: str
    campus: str
    section_code: str
    serial: str
    partition_name: str
    department: DepartmentInfo
    section_index: int

    @property
    def full_year(self) -> str:
        return f"20{self.year}"

    @property
    def department_code(self) -> str:
        return self.department.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "year": self.year,
            "full_year": self.full_year,
            "batch": self.batch,
            "campus": self.campus,
            "section_code": self.section_code,
            "serial": self.serial,
            "partition_name": self.partition_name,
            "department": self.department.to_dict(),
            "section_index": self.section_index,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating an admission number for routing."""

    is_valid: bool
    parsed: ParsedAdmissionNumber | None = None
    error: str | None = None
    details: str | None = None
    valid_department_codes: tuple[str, ...] = ()

    @property
    def target_partition(self) -> str | None:
        return self.parsed.partition_name if self.parsed else None


@dataclass(frozen=True)
class YearInfo:
    """Batch information derived from a 2-digit year code."""

    year_code: str
    admission_year: int
    batch_name: str
    estimated_semester: int
    graduation_year: int


@dataclass
class RoutingAnalysis:
    """How much of a batch can be routed straight to one partition."""

    total: int
    routable: int
    unroutable: list[str] = field(default_factory=list)
    distribution: dict[str, int] = field(default_factory=dict)
    total_partitions: int = 0

    @property
    def optimization_rate(self) -> float:
        """Percentage of ids that route to a single partition."""
        if self.total == 0:
            return 0.0
        return round(self.routable / self.total * 100, 1)

    @property
    def estimated_queries_without_routing(self) -> int:
        return self.total * self.total_partitions

    @property
    def estimated_queries_with_routing(self) -> int:
        return self.routable + len(self.unroutable) * self.total_partitions

    @property
    def query_reduction(self) -> float:
        """Percentage of per-partition queries saved by routing."""
        before = self.estimated_queries_without_routing
        if before == 0:
            return 0.0
        return round((before - self.estimated_queries_with_routing) / before * 100, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "routable": self.routable,
            "unroutable": list(self.unroutable),
            "distribution": dict(self.distribution),
            "optimization_rate": self.optimization_rate,
            "estimated_queries_without_routing": (
                self.estimated_queries_without_routing
            ),
            "estimated_queries_with_routing": self.estimated_queries_with_routing,
            "query_reduction": self.query_reduction,
        }


# -----------------------------------------------------------------------------
# Static tables
# -----------------------------------------------------------------------------


DEPARTMENTS: dict[str, DepartmentInfo] = {
    info.code: info
    for info in (
        DepartmentInfo("01", "Civil", "Civil Engineering", 2),
        DepartmentInfo("02", "Mech", "Mechanical Engineering", 2),
        DepartmentInfo("04", "ECE", "Electronics and Communication Engineering", 3),
        DepartmentInfo("05", "CSE", "Computer Science Engineering", 3),
        DepartmentInfo("06", "EEE", "Electrical and Electronics Engineering", 2),
        DepartmentInfo("07", "IT", "Information Technology", 3),
        DepartmentInfo("08", "Chem", "Chemical Engineering", 1),
        DepartmentInfo("09", "Bio tech", "Biotechnology", 1),
        DepartmentInfo("12", "CSM", "Computer Science and Engineering (AI&ML)", 1),
        DepartmentInfo("13", "IOT", "Internet of Things", 1),
        DepartmentInfo("14", "AIDS", "Artificial Intelligence and Data Science", 2),
        DepartmentInfo(
            "15", "AIML", "Artificial Intelligence and Machine Learning", 1
        ),
    )
}

# department code -> partition names, in section order
_PARTITIONS_BY_DEPARTMENT: dict[str, tuple[str, ...]] = {
    "01": ("students_civil_1", "students_civil_2"),
    "02": ("students_mech_1", "students_mech_2"),
    "04": ("students_ece_1", "students_ece_2", "students_ece_3"),
    "05": ("students_cse_1", "students_cse_2", "students_cse_3"),
    "06": ("students_eee_1", "students_eee_2"),
    "07": ("students_it_1", "students_it_2", "students_it_3"),
    "08": ("students_chem",),
    "09": ("students_bio_tech",),
    "12": ("students_csm",),
    "13": ("students_iot",),
    "14": ("students_aids_1", "students_aids_2"),
    "15": ("students_aiml",),
}


def _build_section_table() -> dict[str, PartitionDescriptor]:
    table: dict[str, PartitionDescriptor] = {}
    for department_code, partitions in _PARTITIONS_BY_DEPARTMENT.items():
        department = DEPARTMENTS[department_code]
        for index, partition_name in enumerate(partitions, start=1):
            # Section codes drop the department's leading zero: "05" + 1 -> "51"
            section_code = f"{int(department_code)}{index}"
            table[section_code] = PartitionDescriptor(
                section_code=section_code,
                partition_name=partition_name,
                department_code=department_code,
                department_name=department.full_name,
                section_index=index,
            )
    return table


SECTION_TABLE: dict[str, PartitionDescriptor] = _build_section_table()


# -----------------------------------------------------------------------------
# Router
# -----------------------------------------------------------------------------


class KeyRouter:
    """Stateless admission number parser and partition router.

    Usage:
        ```python
        from rollbook.services.key_router import key_router

        key_router.target_partition("22015112001")  # "students_cse_1"
        key_router.parse("invalid123")  # None
        ```
    """

    def __init__(
        self,
        sections: Mapping[str, PartitionDescriptor] = SECTION_TABLE,
        departments: Mapping[str, DepartmentInfo] = DEPARTMENTS,
    ) -> None:
        self._sections = dict(sections)
        self._departments = dict(departments)
        self._by_partition = {d.partition_name: d for d in self._sections.values()}

    def parse(self, admission_number: Any) -> ParsedAdmissionNumber | None:
        """Decode an admission number, or return None if it cannot be routed.

        Never raises: wrong types, short strings, non-digits and unknown
        section codes all yield None.
        """
        if isinstance(admission_number, int) and not isinstance(
            admission_number, bool
        ):
            admission_number = str(admission_number)
        if not isinstance(admission_number, str):
            return None

        clean = admission_number.strip()
        if len(clean) < MIN_ADMISSION_NUMBER_LENGTH:
            return None
        if not _DIGITS.fullmatch(clean):
            return None

        descriptor = self._match_section(clean)
        if descriptor is None:
            return None

        department = self._departments.get(descriptor.department_code)
        if department is None:
            return None

        serial_start = SECTION_CODE_OFFSET + len(descriptor.section_code)
        return ParsedAdmissionNumber(
            original=clean,
            year=clean[0:2],
            batch=clean[2],
            campus=clean[3],
            section_code=descriptor.section_code,
            serial=clean[serial_start:],
            partition_name=descriptor.partition_name,
            department=department,
            section_index=descriptor.section_index,
        )

    def target_partition(self, admission_number: Any) -> str | None:
        """Partition that should hold this admission number, if routable."""
        parsed = self.parse(admission_number)
        return parsed.partition_name if parsed else None

    def department_info(self, code: str) -> DepartmentInfo | None:
        """Resolve a section code ("51") or department code ("05")."""
        if code in self._sections:
            return self._departments.get(self._sections[code].department_code)
        return self._departments.get(code)

    def all_partitions(self) -> list[str]:
        """Every partition name in the section table, in table order."""
        return [d.partition_name for d in self._sections.values()]

    def descriptor_for(self, partition_name: str) -> PartitionDescriptor | None:
        return self._by_partition.get(partition_name)

    def sections_for_department(
        self, department_code: str
    ) -> list[PartitionDescriptor]:
        """Sections of one department, in section order."""
        department = self._departments.get(department_code)
        if department is None:
            return []
        return sorted(
            (
                d
                for d in self._sections.values()
                if d.department_code == department_code
                and d.section_index <= department.max_sections
            ),
            key=lambda d: d.section_index,
        )

    def validate(self, admission_number: Any) -> ValidationResult:
        """Like parse(), but explains why an admission number is rejected."""
        parsed = self.parse(admission_number)
        if parsed is None:
            return ValidationResult(
                is_valid=False,
                error=(
                    "Invalid admission number format or unrecognized section code"
                ),
                details=(
                    "Expected format: YYBCSS..., where YY=year, B=batch, "
                    "C=campus, SS=section code of 1-3 digits, followed by the serial"
                ),
                valid_department_codes=tuple(self._departments),
            )
        return ValidationResult(is_valid=True, parsed=parsed)

    def year_info(self, year_code: str, current_year: int | None = None) -> YearInfo:
        """Batch details for a 2-digit admission year code."""
        if current_year is None:
            current_year = datetime.now(UTC).year
        admission_year = 2000 + int(year_code)
        semester = (current_year - admission_year) * 2 + 1
        return YearInfo(
            year_code=year_code,
            admission_year=admission_year,
            batch_name=f"Batch {year_code}'",
            estimated_semester=min(max(semester, 1), 8),
            graduation_year=admission_year + 4,
        )

    def analyze_routing(self, admission_numbers: Iterable[Any]) -> RoutingAnalysis:
        """Summarize how a batch would be routed across partitions."""
        ids = list(admission_numbers)
        distribution: Counter[str] = Counter()
        unroutable: list[str] = []

        for admission_number in ids:
            partition = self.target_partition(admission_number)
            if partition is None:
                unroutable.append(str(admission_number))
            else:
                distribution[partition] += 1

        return RoutingAnalysis(
            total=len(ids),
            routable=sum(distribution.values()),
            unroutable=unroutable,
            distribution=dict(distribution.most_common()),
            total_partitions=len(self._sections),
        )

    def _match_section(self, clean: str) -> PartitionDescriptor | None:
        for width in SECTION_CODE_WIDTHS:
            candidate = clean[SECTION_CODE_OFFSET : SECTION_CODE_OFFSET + width]
            if len(candidate) != width:
                continue
            descriptor = self._sections.get(candidate)
            if descriptor is not None:
                return descriptor
        return None


key_router = KeyRouter()
