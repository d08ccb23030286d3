"""Models package for Rollbook.

This module exports the Base class and the document store tables.
"""

from rollbook.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from rollbook.models.partition_stats import PartitionStats
from rollbook.models.student_document import StudentDocument

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    # Document store
    "StudentDocument",
    "PartitionStats",
]
