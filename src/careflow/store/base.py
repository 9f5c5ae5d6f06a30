"""Resource Store - abstract data access contracts"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from careflow.errors import ResourceNotFoundError
from careflow.models.base import BaseResource

T = TypeVar("T", bound=BaseResource)


@dataclass(frozen=True)
class Found(Generic[T]):
    """Successful lookup."""
    resource: T


@dataclass(frozen=True)
class NotFound:
    """Lookup of a resource that does not exist."""
    resource_type: str
    resource_id: str


LookupResult = Found | NotFound


class FilterOp(str, Enum):
    EQ = "eq"
    NE = "ne"
    IN = "in"
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"


class SearchFilter(BaseModel):
    """
    A single filter on a (dotted) field path.

    Reference fields match on their reference string; list fields match
    when any element matches.
    """
    field: str
    op: FilterOp = FilterOp.EQ
    value: Any = None


class SearchQuery(BaseModel):
    """Filters plus pagination (``offset`` / ``count``)."""
    filters: list[SearchFilter] = Field(default_factory=list)
    offset: int = 0
    count: int | None = None

    def where(self, field: str, op: FilterOp | str, value: Any) -> "SearchQuery":
        """Return a copy with an extra filter."""
        return self.model_copy(
            update={"filters": [*self.filters, SearchFilter(field=field, op=FilterOp(op), value=value)]}
        )

    def page(self, offset: int, count: int) -> "SearchQuery":
        return self.model_copy(update={"offset": offset, "count": count})


class ResourceStore(ABC):
    """
    Narrow resource store contract consumed by the engine.

    Abstracts the underlying storage (FHIR server, local database, etc.)
    """

    @abstractmethod
    async def create(self, resource: BaseResource) -> str:
        """Create a new resource, return its id."""
        pass

    @abstractmethod
    async def lookup(self, resource_type: str, resource_id: str) -> LookupResult:
        """Fetch a resource as ``Found`` or ``NotFound``."""
        pass

    @abstractmethod
    async def update(self, resource: BaseResource) -> None:
        """Persist changes to an existing resource."""
        pass

    @abstractmethod
    async def search(self, resource_type: str, query: SearchQuery | None = None) -> list[BaseResource]:
        """Search resources of a type, returning one page."""
        pass

    async def get(self, resource_type: str, resource_id: str) -> BaseResource:
        """Fetch a resource or raise ``ResourceNotFoundError``."""
        result = await self.lookup(resource_type, resource_id)
        if isinstance(result, NotFound):
            raise ResourceNotFoundError(resource_type, resource_id)
        return result.resource

    async def exists(self, resource_type: str, resource_id: str) -> bool:
        return isinstance(await self.lookup(resource_type, resource_id), Found)

    async def save(self, resource: BaseResource) -> str:
        """Create or update depending on whether the resource already exists."""
        if resource.id and await self.exists(resource.resource_type, resource.logical_id):
            await self.update(resource)
            return resource.logical_id
        return await self.create(resource)


class CheckpointStore(ABC):
    """Persisted string values keyed by job, used for batch offsets."""

    @abstractmethod
    async def read(self, key: str, default: str | None = None) -> str | None:
        pass

    @abstractmethod
    async def write(self, key: str, value: str) -> None:
        pass
