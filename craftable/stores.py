"""Pagination, query building and the store interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Iterable, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")


@dataclass
class Page:
    """Pagination metadata; number is 1-based."""

    number: int
    size: int
    total: int
    pages: int

    def to_dict(self) -> dict[str, int]:
        return {"page": self.number, "page_size": self.size, "total": self.total, "pages": self.pages}


@dataclass
class Paginated(Generic[T]):
    """A page of items together with its metadata."""

    data: list[T]
    page: Page
    empty: bool

    def has_next(self) -> bool:
        return self.page.number < self.page.pages

    def has_previous(self) -> bool:
        return self.page.number > 1

    def to_dict(self) -> dict[str, Any]:
        return {"data": list(self.data), "pagination": self.page.to_dict(), "empty": self.empty}


def new_paginated(data: Iterable[T], page: int, size: int, total: int) -> Paginated[T]:
    """Build a paginated result, computing the page count by ceiling division."""
    items = list(data)
    pages = -(-total // size) if size > 0 else 0
    return Paginated(data=items, page=Page(page, size, total, pages), empty=not items)


@dataclass
class PaginationOptions:
    """Options for a paginated query."""

    page: int = 1
    page_size: int = 25
    order_by: str = "id"
    desc: bool = False
    filters: dict[str, Any] = field(default_factory=dict)
    fields: list[str] | None = None

    def with_filter(self, key: str, value: Any) -> PaginationOptions:
        """Return a copy with one more equality filter."""
        return replace(self, filters={**(self.filters or {}), key: value})


def default_pagination_options() -> PaginationOptions:
    return PaginationOptions()


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class Sort:
    field: str
    desc: bool = False


class QueryBuilder(Generic[T]):
    """Fluent builder for queries that convert to pagination options."""

    def __init__(self) -> None:
        self.filters: list[Filter] = []
        self.sorts: list[Sort] = []
        self._limit = -1
        self._offset = 0
        self.fields: list[str] | None = None

    def where(self, field: str, op: str, value: Any) -> QueryBuilder[T]:
        self.filters.append(Filter(field, op, value))
        return self

    def order_by(self, field: str, desc: bool = False) -> QueryBuilder[T]:
        self.sorts.append(Sort(field, desc))
        return self

    def limit(self, limit: int) -> QueryBuilder[T]:
        self._limit = limit
        return self

    def offset(self, offset: int) -> QueryBuilder[T]:
        self._offset = offset
        return self

    def select(self, *fields: str) -> QueryBuilder[T]:
        self.fields = list(fields)
        return self

    def to_pagination_options(self) -> PaginationOptions:
        """Convert limit/offset to page/page size; only the first sort is kept."""
        opts = default_pagination_options()
        if self._limit > 0:
            opts.page_size = self._limit
        if self._offset > 0 and opts.page_size > 0:
            opts.page = self._offset // opts.page_size + 1
        for flt in self.filters:
            opts = opts.with_filter(flt.field, flt.value)
        if self.sorts:
            opts.order_by = self.sorts[0].field
            opts.desc = self.sorts[0].desc
        opts.fields = list(self.fields) if self.fields is not None else None
        return opts


@dataclass
class SearchOptions:
    """Options for a full-text search."""

    fields: list[str] = field(default_factory=list)
    boost: dict[str, float] = field(default_factory=dict)
    limit: int = 0
    offset: int = 0


@dataclass
class ChangeEvent(Generic[T]):
    """A data change notification: insert, update, delete or replace."""

    operation: str
    old_value: T | None = None
    new_value: T | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class Repository(Protocol[T]):
    """Basic CRUD operations."""

    def create(self, item: T) -> T: ...

    def find_by_id(self, id: str) -> T: ...

    def find_one(self, filter: dict[str, Any]) -> T: ...

    def update(self, id: str, item: T) -> T: ...

    def delete(self, id: str) -> None: ...

    def paginate(self, opts: PaginationOptions) -> Paginated[T]: ...


@runtime_checkable
class BulkOperator(Protocol[T]):
    """Batch operations."""

    def bulk_insert(self, items: list[T]) -> None: ...

    def bulk_update(self, items: list[T]) -> None: ...

    def bulk_delete(self, ids: list[str]) -> None: ...


@runtime_checkable
class TxManager(Protocol):
    """Runs a callable inside a transaction."""

    def with_transaction(self, fn: Callable[..., Any]) -> Any: ...


@runtime_checkable
class Searchable(Protocol[T]):
    """Full-text search."""

    def search(self, query: str, opts: SearchOptions) -> list[T]: ...


@runtime_checkable
class ChangeStream(Protocol[T]):
    """Real-time change notifications."""

    def watch(self, filter: dict[str, Any] | None) -> Iterable[ChangeEvent[T]]: ...