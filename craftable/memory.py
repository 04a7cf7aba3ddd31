"""In-memory store with CRUD, bulk operations, search and change notifications."""

from __future__ import annotations

import dataclasses
import threading
import time
from collections import deque
from typing import Any, Callable, Generic, Iterable, Iterator, Mapping, TypeVar

from .errors import BULK_OP_FAILED, CREATE_FAILED, INVALID_QUERY, RECORD_NOT_FOUND, STORE_ERRORS
from .stores import ChangeEvent, Paginated, PaginationOptions, SearchOptions, new_paginated

T = TypeVar("T")
R = TypeVar("R")

WATCH_BUFFER_SIZE = 100

_MISSING = object()


def _field_value(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, _MISSING)
    return getattr(item, name, _MISSING)


def _field_values(item: Any) -> list[Any]:
    if isinstance(item, Mapping):
        return list(item.values())
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return [getattr(item, f.name) for f in dataclasses.fields(item)]
    if hasattr(item, "__dict__"):
        return list(vars(item).values())
    return [item]


class _TimeIdGenerator:
    """Produces strictly increasing nanosecond timestamps as string IDs."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            self._last = max(time.time_ns(), self._last + 1)
            return str(self._last)


class Subscription(Generic[T]):
    """A buffered stream of change events; events beyond the buffer are dropped."""

    def __init__(self, store: MemoryStore[T], capacity: int = WATCH_BUFFER_SIZE) -> None:
        self._store = store
        self._capacity = capacity
        self._events: deque[ChangeEvent[T]] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, event: ChangeEvent[T]) -> bool:
        with self._cond:
            if self._closed or len(self._events) >= self._capacity:
                return False
            self._events.append(event)
            self._cond.notify()
            return True

    def get(self, timeout: float | None = None) -> ChangeEvent[T] | None:
        """Return the next event, or None once closed and drained.

        Raises TimeoutError if no event arrives within timeout seconds.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._events or self._closed, timeout):
                raise TimeoutError("no change event within timeout")
            if self._events:
                return self._events.popleft()
            return None

    def close(self) -> None:
        """Stop receiving events; buffered events can still be read."""
        self._store._unsubscribe(self)
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[ChangeEvent[T]]:
        while (event := self.get()) is not None:
            yield event

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MemoryStore(Generic[T]):
    """A thread-safe in-memory store keyed by string IDs."""

    def __init__(
        self,
        id_extractor: Callable[[T], str] | None = None,
        id_generator: Callable[[], str] | None = None,
    ) -> None:
        self._data: dict[str, T] = {}
        self._lock = threading.RLock()
        self._id_extractor = id_extractor
        self._id_generator = id_generator or _TimeIdGenerator()
        self._subscribers: list[Subscription[T]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _extract_id(self, item: T) -> str:
        return self._id_extractor(item) if self._id_extractor is not None else ""

    def _id_for_insert(self, item: T) -> str:
        return self._extract_id(item) or self._id_generator()

    @staticmethod
    def _matches_filter(item: T, filter: Mapping[str, Any] | None) -> bool:
        if not filter:
            return True
        return all(_field_value(item, key) == value for key, value in filter.items())

    @staticmethod
    def _matches_query(item: T, query: str, fields: Iterable[str]) -> bool:
        if not query:
            return True
        needle = query.casefold()
        fields = list(fields)
        values = [_field_value(item, f) for f in fields] if fields else _field_values(item)
        return any(isinstance(v, str) and needle in v.casefold() for v in values)

    @staticmethod
    def _sorted(items: list[T], order_by: str, desc: bool) -> list[T]:
        if not order_by:
            return items
        keys = [_field_value(item, order_by) for item in items]
        if any(key is _MISSING for key in keys):
            return items
        try:
            pairs = sorted(zip(keys, items), key=lambda pair: pair[0], reverse=desc)
        except TypeError:
            return items
        return [item for _, item in pairs]

    def _notify(self, operation: str, old_value: T | None, new_value: T | None) -> None:
        event: ChangeEvent[T] = ChangeEvent(operation, old_value, new_value)
        for subscriber in list(self._subscribers):
            subscriber._offer(event)

    def _unsubscribe(self, subscription: Subscription[T]) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def create(self, item: T) -> T:
        """Store a new item; raises CREATE_FAILED if its ID is taken."""
        with self._lock:
            item_id = self._id_for_insert(item)
            if item_id in self._data:
                raise STORE_ERRORS.new(CREATE_FAILED).with_detail("reason", "ID already exists")
            self._data[item_id] = item
            self._notify("insert", None, item)
            return item

    def find_by_id(self, id: str) -> T:
        with self._lock:
            try:
                return self._data[id]
            except KeyError:
                raise STORE_ERRORS.new(RECORD_NOT_FOUND).with_detail("id", id) from None

    def find_one(self, filter: Mapping[str, Any] | None) -> T:
        """Return the first item whose fields equal every filter value."""
        with self._lock:
            for item in self._data.values():
                if self._matches_filter(item, filter):
                    return item
            raise STORE_ERRORS.new(RECORD_NOT_FOUND).with_detail("filter", filter)

    def update(self, id: str, item: T) -> T:
        with self._lock:
            if id not in self._data:
                raise STORE_ERRORS.new(RECORD_NOT_FOUND).with_detail("id", id)
            old = self._data[id]
            self._data[id] = item
            self._notify("update", old, item)
            return item

    def delete(self, id: str) -> None:
        with self._lock:
            if id not in self._data:
                raise STORE_ERRORS.new(RECORD_NOT_FOUND).with_detail("id", id)
            old = self._data.pop(id)
            self._notify("delete", old, None)

    def paginate(self, opts: PaginationOptions) -> Paginated[T]:
        """Filter, order by opts.order_by where every item has it, and slice a page."""
        if opts.page < 1 or opts.page_size < 0:
            raise (
                STORE_ERRORS.new(INVALID_QUERY)
                .with_detail("page", opts.page)
                .with_detail("page_size", opts.page_size)
            )
        with self._lock:
            items = [item for item in self._data.values() if self._matches_filter(item, opts.filters)]
        items = self._sorted(items, opts.order_by, opts.desc)
        total = len(items)
        start = (opts.page - 1) * opts.page_size
        if start >= total:
            return new_paginated([], opts.page, opts.page_size, total)
        return new_paginated(items[start : start + opts.page_size], opts.page, opts.page_size, total)

    def bulk_insert(self, items: Iterable[T]) -> None:
        """Insert items in order, stopping at the first duplicate ID."""
        items = list(items)
        if not items:
            return
        with self._lock:
            for item in items:
                item_id = self._id_for_insert(item)
                if item_id in self._data:
                    raise STORE_ERRORS.new(BULK_OP_FAILED).with_detail("reason", "duplicate ID found")
                self._data[item_id] = item
                self._notify("insert", None, item)

    def bulk_update(self, items: Iterable[T]) -> None:
        """Replace items in order, stopping at the first one without an ID or not stored."""
        items = list(items)
        if not items:
            return
        with self._lock:
            for item in items:
                item_id = self._extract_id(item)
                if not item_id:
                    raise STORE_ERRORS.new(BULK_OP_FAILED).with_detail("reason", "item has no ID")
                if item_id not in self._data:
                    raise STORE_ERRORS.new(BULK_OP_FAILED).with_detail("reason", "item not found")
                old = self._data[item_id]
                self._data[item_id] = item
                self._notify("update", old, item)

    def bulk_delete(self, ids: Iterable[str]) -> None:
        """Delete IDs in order, stopping at the first one not stored."""
        ids = list(ids)
        if not ids:
            return
        with self._lock:
            for item_id in ids:
                if item_id not in self._data:
                    raise STORE_ERRORS.new(BULK_OP_FAILED).with_detail("item not found id", item_id)
                old = self._data.pop(item_id)
                self._notify("delete", old, None)

    def with_transaction(self, fn: Callable[[], R]) -> R:
        """Run fn directly; an in-memory store needs no transaction."""
        return fn()

    def search(self, query: str, opts: SearchOptions) -> list[T]:
        """Case-insensitive substring search over opts.fields, or all string fields."""
        with self._lock:
            results = [
                item for item in self._data.values() if self._matches_query(item, query, opts.fields)
            ]
        if opts.limit > 0 and opts.offset >= 0:
            results = results[opts.offset : opts.offset + opts.limit]
        return results

    def watch(self, filter: Mapping[str, Any] | None = None) -> Subscription[T]:
        """Subscribe to change events until the subscription is closed."""
        subscription: Subscription[T] = Subscription(self)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def count(self, filter: Mapping[str, Any] | None = None) -> int:
        with self._lock:
            if not filter:
                return len(self._data)
            return sum(1 for item in self._data.values() if self._matches_filter(item, filter))

    def clear(self) -> None:
        with self._lock:
            self._data = {}