"""Backing document store access.

The directory cache and the search service only ever talk to the store
through the ``DocumentStore`` protocol: equality and "in" reads scoped to a
single partition, always filtered to active documents. ``SqlDocumentStore``
implements it on SQLAlchemy async sessions; tests use in-memory doubles.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rollbook.core.exceptions import DocumentStoreError
from rollbook.core.logging import get_logger
from rollbook.models.student_document import StudentDocument

logger = get_logger(__name__)

# Document fields that can be used in equality / "in" filters
QUERYABLE_FIELDS = ("admission_number", "roll_number")


@dataclass(frozen=True)
class StoreDocument:
    """A document snapshot returned by the store."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DocumentStore(Protocol):
    """Read interface of the partitioned document store.

    All reads only return active documents. Implementations raise
    ``DocumentStoreError`` when a read fails.
    """

    async def fetch_active(self, partition: str) -> list[StoreDocument]:
        """Every active document in one partition."""
        ...

    async def fetch_where_in(
        self,
        partition: str,
        field: str,
        values: Sequence[str],
    ) -> list[StoreDocument]:
        """Active documents in one partition whose ``field`` is in ``values``."""
        ...

    async def fetch_where_equal(
        self,
        partition: str,
        field: str,
        value: str,
        limit: int = 1,
    ) -> list[StoreDocument]:
        """Active documents in one partition whose ``field`` equals ``value``."""
        ...


class SqlDocumentStore:
    """DocumentStore backed by the ``student_documents`` table.

    Each read opens its own short-lived session so concurrent fan-out reads
    never share a connection.

    Usage:
        ```python
        store = SqlDocumentStore(get_session_factory())
        docs = await store.fetch_where_in("students_cse_1", "admission_number", ids)
        ```
    """

    # Upper bound on values per "in" read
    MAX_IN_VALUES = 30

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory producing async sessions
        """
        self._session_factory = session_factory

    async def fetch_active(self, partition: str) -> list[StoreDocument]:
        query = select(StudentDocument).where(
            StudentDocument.partition_name == partition,
            StudentDocument.is_active.is_(True),
        )
        return await self._run(query, partition=partition, operation="fetch_active")

    async def fetch_where_in(
        self,
        partition: str,
        field: str,
        values: Sequence[str],
    ) -> list[StoreDocument]:
        if not values:
            return []
        if len(values) > self.MAX_IN_VALUES:
            raise ValueError(
                f"'in' reads accept at most {self.MAX_IN_VALUES} values, "
                f"got {len(values)}"
            )
        column = self._column(field)
        query = select(StudentDocument).where(
            StudentDocument.partition_name == partition,
            StudentDocument.is_active.is_(True),
            column.in_(list(values)),
        )
        return await self._run(query, partition=partition, operation="fetch_where_in")

    async def fetch_where_equal(
        self,
        partition: str,
        field: str,
        value: str,
        limit: int = 1,
    ) -> list[StoreDocument]:
        column = self._column(field)
        query = (
            select(StudentDocument)
            .where(
                StudentDocument.partition_name == partition,
                StudentDocument.is_active.is_(True),
                column == value,
            )
            .limit(limit)
        )
        return await self._run(
            query, partition=partition, operation="fetch_where_equal"
        )

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    @staticmethod
    def _column(field: str) -> Any:
        if field not in QUERYABLE_FIELDS:
            raise ValueError(f"Field {field!r} is not queryable")
        return getattr(StudentDocument, field)

    async def _run(
        self, query: Any, *, partition: str, operation: str
    ) -> list[StoreDocument]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "document_store_read_failed",
                partition=partition,
                operation=operation,
                error=str(e),
            )
            raise DocumentStoreError(
                message=f"Read from partition {partition} failed",
                partition=partition,
                error=str(e),
            ) from e

        return [StoreDocument(id=str(row.id), data=row.to_document()) for row in rows]
