"""Partition registry access.

The registry lists which partitions currently hold data. The directory cache
reads it once per full refresh and the search service walks it, in order,
when an id has to be looked for outside its routed partition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rollbook.core.exceptions import RegistryUnavailableError
from rollbook.core.logging import get_logger
from rollbook.models.partition_stats import PartitionStats

logger = get_logger(__name__)


@dataclass(frozen=True)
class PartitionInfo:
    """Registry entry for one partition."""

    name: str
    partition_name: str
    total_students: int = 0
    active_students: int = 0
    department_code: str | None = None
    is_active: bool = True


@runtime_checkable
class PartitionRegistry(Protocol):
    """Source of the partitions that currently hold data."""

    async def list_partitions(self) -> list[PartitionInfo]:
        """Active partitions with at least one record, in registry order.

        Raises:
            RegistryUnavailableError: If the registry cannot be read
        """
        ...


class SqlPartitionRegistry:
    """PartitionRegistry backed by the ``partition_stats`` table.

    Registry order is the display name, alphabetically.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_partitions(self) -> list[PartitionInfo]:
        # Only filter on is_active in SQL; the count filter stays in Python
        query = (
            select(PartitionStats)
            .where(PartitionStats.is_active.is_(True))
            .order_by(PartitionStats.name)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("partition_registry_read_failed", error=str(e))
            raise RegistryUnavailableError(error=str(e)) from e

        return [
            PartitionInfo(
                name=row.name,
                partition_name=row.partition_name,
                total_students=row.total_students or 0,
                active_students=row.active_students or 0,
                department_code=row.department_code,
                is_active=row.is_active,
            )
            for row in rows
            if (row.total_students or 0) > 0
        ]
