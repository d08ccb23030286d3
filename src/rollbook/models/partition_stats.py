"""PartitionStats model - the partition registry.

One row per partition that has ever been registered. The directory cache
reads this table once per full refresh to discover which partitions hold
data; creating, renaming and archiving rows is done by admin tooling.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rollbook.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PartitionStats(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Registry entry describing one partition.

    Attributes:
        name: Display name (e.g. "Computer Science Engineering 1")
        partition_name: Backing collection name (e.g. "students_cse_1")
        department_code: Optional department code recorded by admin tooling
        total_students: Documents in the partition
        active_students: Active documents in the partition
        is_active: Archived partitions are skipped by full loads
    """

    __tablename__ = "partition_stats"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    partition_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
    )
    department_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    total_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<PartitionStats(partition='{self.partition_name}', "
            f"total={self.total_students}, active={self.is_active})>"
        )
