"""
In-Memory Stores

Dictionary-backed implementations of the store contracts. Resources are
copied on the way in and out so callers must ``update`` to persist changes,
as with any real backend.
"""

from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel

from careflow.errors import PersistenceError, ResourceNotFoundError
from careflow.models.base import BaseResource, Reference, as_utc, utc_now
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

logger = structlog.get_logger(__name__)

_MISSING = object()


def _comparable(value: Any) -> Any:
    """Normalise a value so stored fields and filter values compare cleanly."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Reference):
        return value.reference
    if isinstance(value, datetime):
        return as_utc(value)
    return value


def _resolve(obj: Any, path: list[str]) -> list[Any]:
    """Resolve a dotted path, flattening lists along the way."""
    if not path:
        if isinstance(obj, list):
            return [v for v in obj if v is not None]
        return [] if obj is None else [obj]

    if isinstance(obj, list):
        values: list[Any] = []
        for item in obj:
            values.extend(_resolve(item, path))
        return values

    head, rest = path[0], path[1:]
    value = _MISSING
    if isinstance(obj, BaseModel):
        value = getattr(obj, head, _MISSING)
        if value is _MISSING:
            value = getattr(obj, f"{head}_", _MISSING)
        if value is _MISSING and obj.model_extra:
            value = obj.model_extra.get(head, _MISSING)
    elif isinstance(obj, dict):
        value = obj.get(head, _MISSING)

    if value is _MISSING or value is None:
        return []
    return _resolve(value, rest)


def _matches(resource: BaseResource, search_filter: SearchFilter) -> bool:
    values = [_comparable(v) for v in _resolve(resource, search_filter.field.split("."))]
    op = search_filter.op

    if op == FilterOp.IN:
        wanted = {_comparable(v) for v in search_filter.value}
        return any(v in wanted for v in values)

    target = _comparable(search_filter.value)
    if op == FilterOp.EQ:
        return target in values
    if op == FilterOp.NE:
        return target not in values

    try:
        if op == FilterOp.LT:
            return any(v < target for v in values)
        if op == FilterOp.LE:
            return any(v <= target for v in values)
        if op == FilterOp.GT:
            return any(v > target for v in values)
        if op == FilterOp.GE:
            return any(v >= target for v in values)
    except TypeError:
        return False
    return False


class InMemoryResourceStore(ResourceStore):
    """
    Resource store kept in process memory.

    Search results follow insertion order so offset pagination is stable.
    """

    def __init__(self):
        self._resources: dict[str, dict[str, BaseResource]] = {}

    async def create(self, resource: BaseResource) -> str:
        if not resource.id:
            resource.generate_id()
        bucket = self._resources.setdefault(resource.resource_type, {})
        resource_id = resource.logical_id
        if resource_id in bucket:
            raise PersistenceError(f"{resource.reference_value()} already exists")

        resource.last_updated = utc_now()
        bucket[resource_id] = resource.model_copy(deep=True)
        logger.debug("Resource created", reference=resource.reference_value())
        return resource_id

    async def lookup(self, resource_type: str, resource_id: str) -> LookupResult:
        stored = self._resources.get(resource_type, {}).get(resource_id)
        if stored is None:
            return NotFound(resource_type=resource_type, resource_id=resource_id)
        return Found(stored.model_copy(deep=True))

    async def update(self, resource: BaseResource) -> None:
        bucket = self._resources.get(resource.resource_type, {})
        resource_id = resource.logical_id
        if resource_id not in bucket:
            raise ResourceNotFoundError(resource.resource_type, str(resource_id))

        resource.last_updated = utc_now()
        bucket[resource_id] = resource.model_copy(deep=True)
        logger.debug("Resource updated", reference=resource.reference_value())

    async def search(self, resource_type: str, query: SearchQuery | None = None) -> list[BaseResource]:
        query = query or SearchQuery()
        matches = [
            resource
            for resource in self._resources.get(resource_type, {}).values()
            if all(_matches(resource, f) for f in query.filters)
        ]
        end = None if query.count is None else query.offset + query.count
        return [r.model_copy(deep=True) for r in matches[query.offset:end]]

    def count(self, resource_type: str) -> int:
        return len(self._resources.get(resource_type, {}))


class InMemoryCheckpointStore(CheckpointStore):
    """Checkpoint values kept in a dict."""

    def __init__(self, values: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(values or {})

    async def read(self, key: str, default: str | None = None) -> str | None:
        return self._values.get(key, default)

    async def write(self, key: str, value: str) -> None:
        self._values[key] = value
