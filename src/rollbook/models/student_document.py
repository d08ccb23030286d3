"""StudentDocument model - one student record inside one partition.

The document store is partitioned by academic section. Every row carries the
name of the partition (collection) it belongs to; lookups are always scoped
to a single partition, mirroring how the directory is physically sharded.

The lookup keys are real columns so they can be indexed. Everything else
about the student lives in the free-form ``data`` document.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rollbook.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class StudentDocument(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A student document stored in one section partition.

    Attributes:
        partition_name: Collection the document belongs to (e.g. "students_cse_1")
        admission_number: Structured primary identifier
        roll_number: Secondary identifier, may be absent
        is_active: Inactive documents are invisible to lookups
        data: Remaining document fields (name, department, year, ...)
    """

    __tablename__ = "student_documents"

    partition_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    admission_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    roll_number: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_student_documents_partition_active", "partition_name", "is_active"),
    )

    def to_document(self) -> dict:
        """Flatten the row into the document shape the cache consumes."""
        return {
            **(self.data or {}),
            "admission_number": self.admission_number,
            "roll_number": self.roll_number,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"<StudentDocument(partition='{self.partition_name}', "
            f"admission_number='{self.admission_number}')>"
        )
