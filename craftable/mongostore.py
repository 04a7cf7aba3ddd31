"""Typed store over a MongoDB collection."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Iterable, Iterator, Mapping, TypeVar

from bson import ObjectId, Timestamp
from bson.errors import InvalidId
from pymongo import UpdateOne

from .errors import (
    BULK_OP_FAILED,
    INVALID_ID,
    MONGO_COUNT_FAILED,
    MONGO_DECODE_FAILED,
    MONGO_DELETE_FAILED,
    MONGO_FIND_FAILED,
    MONGO_INSERT_FAILED,
    MONGO_UPDATE_FAILED,
    RECORD_NOT_FOUND,
    SEARCH_FAILED,
    STORE_ERRORS,
)
from .sqlstore import _scanner, extract_id_value
from .stores import ChangeEvent, Paginated, PaginationOptions, SearchOptions, new_paginated

T = TypeVar("T")

_VALUE_OPERATIONS = frozenset({"insert", "update", "replace"})


def _collection_name(collection: Any) -> str:
    return str(getattr(collection, "name", ""))


def _to_document(item: Any, id_field: str) -> dict[str, Any]:
    """Turn a mapping, dataclass or plain object into a document.

    An ID field holding None is left out, so the database assigns one.
    """
    if isinstance(item, Mapping):
        doc = dict(item)
    elif dataclasses.is_dataclass(item) and not isinstance(item, type):
        doc = {fld.name: getattr(item, fld.name) for fld in dataclasses.fields(item)}
    elif hasattr(item, "__dict__"):
        doc = dict(vars(item))
    else:
        raise TypeError(f"cannot store value of type {type(item).__name__} as a document")
    if id_field in doc and doc[id_field] is None:
        del doc[id_field]
    return doc


def _decode_all(cursor: Any, decode: Callable[[Any], Any]) -> list[Any]:
    try:
        return [decode(doc) for doc in cursor]
    finally:
        close = getattr(cursor, "close", None)
        if close is not None:
            close()


def _event_time(value: Any) -> datetime:
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if isinstance(value, datetime):
        return value
    return datetime.now(timezone.utc)


def paginate_mongo(
    collection: Any,
    opts: PaginationOptions,
    factory: Callable[..., Any] | None = None,
) -> Paginated[Any]:
    """Count the documents matching opts.filters and fetch one page of them."""
    name = _collection_name(collection)
    filter = dict(opts.filters or {})
    try:
        total = collection.count_documents(filter)
    except Exception as exc:
        raise (
            STORE_ERRORS.new(MONGO_COUNT_FAILED).with_detail("collection", name).with_cause(exc)
        ) from exc

    find_args: dict[str, Any] = {
        "skip": (opts.page - 1) * opts.page_size,
        "limit": opts.page_size,
    }
    if opts.order_by:
        find_args["sort"] = [(opts.order_by, -1 if opts.desc else 1)]
    if opts.fields:
        find_args["projection"] = {field: 1 for field in opts.fields}

    try:
        cursor = collection.find(filter, **find_args)
    except Exception as exc:
        raise (
            STORE_ERRORS.new(MONGO_FIND_FAILED)
            .with_detail("collection", name)
            .with_detail("filter", str(filter))
            .with_cause(exc)
        ) from exc

    try:
        results = _decode_all(cursor, _scanner(factory))
    except Exception as exc:
        raise (
            STORE_ERRORS.new(MONGO_DECODE_FAILED).with_detail("collection", name).with_cause(exc)
        ) from exc

    return new_paginated(results, opts.page, opts.page_size, int(total))


class TypedMongo(Generic[T]):
    """CRUD, pagination, bulk operations, text search and change streams on one collection.

    Documents are turned into items by factory: none yields dicts, a dataclass
    type is built from the matching keys, any other callable gets the document.
    """

    def __init__(
        self,
        collection: Any,
        factory: Callable[..., T] | None = None,
        *,
        id_field: str = "_id",
    ) -> None:
        self.collection = collection
        self.factory = factory
        self.id_field = id_field
        self._decode = _scanner(factory)

    def with_id_field(self, field_name: str) -> TypedMongo[T]:
        self.id_field = field_name
        return self

    @property
    def _name(self) -> str:
        return _collection_name(self.collection)

    def _id_value(self, id: str) -> Any:
        """Convert id to an ObjectId when the native _id field is used."""
        if self.id_field != "_id":
            return id
        try:
            if not isinstance(id, str):
                raise InvalidId(f"{id!r} is not a hex string")
            return ObjectId(id)
        except (InvalidId, TypeError) as exc:
            raise STORE_ERRORS.new(INVALID_ID).with_detail("id", id).with_cause(exc) from exc

    def _decode_one(self, doc: Any, **details: Any) -> T:
        try:
            return self._decode(doc)
        except Exception as exc:
            err = STORE_ERRORS.new(MONGO_DECODE_FAILED).with_details(details)
            raise err.with_detail("collection", self._name).with_cause(exc) from exc

    def create(self, item: T) -> T:
        """Insert item and return the stored document."""
        try:
            result = self.collection.insert_one(_to_document(item, self.id_field))
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_INSERT_FAILED)
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc

        inserted_id = getattr(result, "inserted_id", None)
        if inserted_id is None:
            return item
        try:
            doc = self.collection.find_one({self.id_field: inserted_id})
            if doc is None:
                raise LookupError("inserted document not found")
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_FIND_FAILED)
                .with_detail("id", str(inserted_id))
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc
        return self._decode_one(doc, id=str(inserted_id))

    def find_by_id(self, id: str) -> T:
        id_value = self._id_value(id)
        try:
            doc = self.collection.find_one({self.id_field: id_value})
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_FIND_FAILED)
                .with_detail("id", id)
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc
        if doc is None:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("id", id)
                .with_detail("collection", self._name)
            )
        return self._decode_one(doc, id=id)

    def find_one(self, filter: Mapping[str, Any] | None) -> T:
        """Return the first document matching filter."""
        query = dict(filter or {})
        try:
            doc = self.collection.find_one(query)
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_FIND_FAILED)
                .with_detail("filter", str(filter))
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc
        if doc is None:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("filter", str(filter))
                .with_detail("collection", self._name)
            )
        return self._decode_one(doc, filter=str(filter))

    def update(self, id: str, item: T) -> T:
        """Set the fields of item on the document with the given ID and return it."""
        id_value = self._id_value(id)
        try:
            result = self.collection.update_one(
                {self.id_field: id_value}, {"$set": _to_document(item, self.id_field)}
            )
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_UPDATE_FAILED)
                .with_detail("id", id)
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc
        if result.matched_count == 0:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("id", id)
                .with_detail("collection", self._name)
            )
        return self.find_by_id(id)

    def delete(self, id: str) -> None:
        id_value = self._id_value(id)
        try:
            result = self.collection.delete_one({self.id_field: id_value})
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_DELETE_FAILED)
                .with_detail("id", id)
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc
        if result.deleted_count == 0:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("id", id)
                .with_detail("collection", self._name)
            )

    def paginate(self, opts: PaginationOptions) -> Paginated[T]:
        return paginate_mongo(self.collection, opts, self.factory)

    def bulk_insert(self, items: Iterable[T]) -> None:
        items = list(items)
        if not items:
            return
        try:
            self.collection.insert_many([_to_document(item, self.id_field) for item in items])
        except Exception as exc:
            raise (
                STORE_ERRORS.new(BULK_OP_FAILED)
                .with_detail("operation", "insert")
                .with_detail("count", len(items))
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc

    def bulk_update(self, items: Iterable[T]) -> None:
        """Set each item on the document with its ID; items without an ID are skipped."""
        models = []
        for item in items:
            id_value = extract_id_value(item, self.id_field)
            if id_value is None:
                continue
            models.append(
                UpdateOne({self.id_field: id_value}, {"$set": _to_document(item, self.id_field)})
            )
        if not models:
            return
        try:
            self.collection.bulk_write(models)
        except Exception as exc:
            raise (
                STORE_ERRORS.new(BULK_OP_FAILED)
                .with_detail("operation", "update")
                .with_detail("count", len(models))
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc

    def bulk_delete(self, ids: Iterable[str]) -> None:
        """Delete documents by ID; IDs that are not valid ObjectIds are skipped."""
        ids = list(ids)
        if not ids:
            return
        id_values: list[Any] = []
        for id in ids:
            if self.id_field == "_id":
                if isinstance(id, str) and ObjectId.is_valid(id) and len(id) == 24:
                    id_values.append(ObjectId(id))
            else:
                id_values.append(id)
        if not id_values:
            return
        try:
            self.collection.delete_many({self.id_field: {"$in": id_values}})
        except Exception as exc:
            raise (
                STORE_ERRORS.new(BULK_OP_FAILED)
                .with_detail("operation", "delete")
                .with_detail("count", len(ids))
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc

    def search(self, query: str, opts: SearchOptions) -> list[T]:
        """Run a $text search, best matches first."""
        find_args: dict[str, Any] = {
            "projection": {"score": {"$meta": "textScore"}},
            "sort": [("score", {"$meta": "textScore"})],
        }
        if opts.limit > 0:
            find_args["limit"] = opts.limit
        if opts.offset > 0:
            find_args["skip"] = opts.offset
        try:
            cursor = self.collection.find({"$text": {"$search": query}}, **find_args)
        except Exception as exc:
            raise (
                STORE_ERRORS.new(SEARCH_FAILED)
                .with_detail("query", query)
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc
        try:
            return _decode_all(cursor, self._decode)
        except Exception as exc:
            raise (
                STORE_ERRORS.new(MONGO_DECODE_FAILED)
                .with_detail("query", query)
                .with_detail("collection", self._name)
                .with_cause(exc)
            ) from exc

    def watch(self, filter: Mapping[str, Any] | None = None) -> Iterator[ChangeEvent[T]]:
        """Open a change stream and return an iterator of change events.

        Closing the iterator closes the stream. Events that cannot be decoded
        are skipped.
        """
        pipeline: list[dict[str, Any]] = []
        if filter:
            pipeline.append({"$match": dict(filter)})
        stream = self.collection.watch(pipeline, full_document="updateLookup")
        return self._events(stream)

    def _events(self, stream: Any) -> Iterator[ChangeEvent[T]]:
        try:
            for change in stream:
                try:
                    operation = change["operationType"]
                    new_value = None
                    document = change.get("fullDocument")
                    if operation in _VALUE_OPERATIONS and document is not None:
                        new_value = self._decode(document)
                    timestamp = _event_time(change.get("clusterTime"))
                except Exception:
                    continue
                yield ChangeEvent(operation, None, new_value, timestamp)
        finally:
            stream.close()