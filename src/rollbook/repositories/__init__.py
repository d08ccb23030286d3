"""Backing store access for Rollbook.

This module exports the store/registry protocols and their SQL implementations.
"""

from rollbook.repositories.documents import (
    DocumentStore,
    SqlDocumentStore,
    StoreDocument,
)
from rollbook.repositories.registry import (
    PartitionInfo,
    PartitionRegistry,
    SqlPartitionRegistry,
)

__all__ = [
    # Document store
    "DocumentStore",
    "SqlDocumentStore",
    "StoreDocument",
    # Partition registry
    "PartitionInfo",
    "PartitionRegistry",
    "SqlPartitionRegistry",
]
