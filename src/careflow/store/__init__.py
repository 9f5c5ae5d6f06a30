"""Careflow resource and checkpoint stores."""

from careflow.store.base import (
    CheckpointStore,
    FilterOp,
    Found,
    LookupResult,
    NotFound,
    ResourceStore,
    SearchFilter,
    SearchQuery,
)
from careflow.store.memory import InMemoryCheckpointStore, InMemoryResourceStore

__all__ = [
    "CheckpointStore",
    "FilterOp",
    "Found",
    "LookupResult",
    "NotFound",
    "ResourceStore",
    "SearchFilter",
    "SearchQuery",
    "InMemoryCheckpointStore",
    "InMemoryResourceStore",
]
