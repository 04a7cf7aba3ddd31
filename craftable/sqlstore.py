"""Typed store over a DB-API connection, built from generated SQL statements.

Statements are written with ``$1, $2, ...`` placeholders. A store converts
them to its connection's parameter style before running them, so the same
store works with drivers that use ``?``, ``%s`` or ``:1`` markers. The
module-level pagination helpers hand their queries to the driver unchanged.
"""

from __future__ import annotations

import contextlib
import dataclasses
import re
import threading
from contextlib import closing
from typing import Any, Callable, Generic, Iterable, Mapping, Sequence, TypeVar

from .errors import (
    INVALID_QUERY,
    RECORD_NOT_FOUND,
    SQL_COUNT_FAILED,
    SQL_EXEC_FAILED,
    SQL_QUERY_FAILED,
    SQL_SCAN_FAILED,
    STORE_ERRORS,
    TX_COMMIT_FAILED,
    CraftError,
)
from .stores import Paginated, PaginationOptions, SearchOptions, new_paginated

T = TypeVar("T")
R = TypeVar("R")

Row = dict[str, Any]
Scanner = Callable[[Row], Any]

PARAM_STYLES = ("dollar", "qmark", "format", "numeric")

_PLACEHOLDER = re.compile(r"\$(\d+)")


def build_where_clause(filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    """Build ``WHERE a = $1 AND b = $2`` and its arguments from equality filters."""
    if not filters:
        return "", []
    conditions = [f"{name} = ${index}" for index, name in enumerate(filters, start=1)]
    return "WHERE " + " AND ".join(conditions), list(filters.values())


def build_set_clause(fields: Sequence[str]) -> str:
    """Build ``a = $1, b = $2`` for an UPDATE statement."""
    return ", ".join(f"{name} = ${index}" for index, name in enumerate(fields, start=1))


def create_placeholders(count: int) -> str:
    """Build ``$1, $2, ...`` with count placeholders."""
    return ", ".join(f"${index}" for index in range(1, count + 1))


def extract_fields_and_values(item: Any) -> tuple[list[str], list[Any]]:
    """Return the column names and values of a mapping, dataclass or plain object."""
    if isinstance(item, Mapping):
        pairs = list(item.items())
    elif dataclasses.is_dataclass(item) and not isinstance(item, type):
        pairs = [
            (fld.name, getattr(item, fld.name))
            for fld in dataclasses.fields(item)
            if not fld.name.startswith("_")
        ]
    elif hasattr(item, "__dict__"):
        pairs = [(name, value) for name, value in vars(item).items() if not name.startswith("_")]
    else:
        raise STORE_ERRORS.new(INVALID_QUERY).with_detail("reason", "item has no fields")
    return [name for name, _ in pairs], [value for _, value in pairs]


def extract_id_value(item: Any, id_field: str) -> Any:
    """Return the value of the ID field of item, or None when it has none."""
    if isinstance(item, Mapping):
        return item.get(id_field)
    return getattr(item, id_field, None)


def _scanner(factory: Callable[..., Any] | None) -> Scanner:
    """Turn a factory into a function from a row mapping to an item.

    No factory yields plain dicts; a dataclass type is built from the columns
    that match its fields; any other callable receives the row mapping.
    """
    if factory is None:
        return dict
    if isinstance(factory, type) and dataclasses.is_dataclass(factory):
        names = {fld.name for fld in dataclasses.fields(factory) if fld.init}
        return lambda row: factory(**{key: value for key, value in row.items() if key in names})
    return factory


def _fetch(conn: Any, query: str, params: Sequence[Any]) -> list[Row]:
    with closing(conn.cursor()) as cur:
        cur.execute(query, list(params))
        if cur.description is None:
            return []
        columns = [column[0] for column in cur.description]
        return [dict(zip(columns, row)) for row in cur.fetchall()]


def _exec(conn: Any, query: str, params: Sequence[Any]) -> int:
    with closing(conn.cursor()) as cur:
        cur.execute(query, list(params))
        return cur.rowcount


def _render(query: str, args: Sequence[Any], style: str) -> tuple[str, list[Any]]:
    """Rewrite ``$N`` placeholders into the given parameter style."""
    args = list(args)
    if style == "dollar":
        return query, args
    ordered: list[Any] = []

    def substitute(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if not 1 <= index <= len(args):
            raise (
                STORE_ERRORS.new(INVALID_QUERY)
                .with_detail("reason", "placeholder out of range")
                .with_detail("placeholder", match.group(0))
            )
        if style == "numeric":
            return f":{index}"
        ordered.append(args[index - 1])
        return "?" if style == "qmark" else "%s"

    rendered = _PLACEHOLDER.sub(substitute, query)
    return rendered, args if style == "numeric" else ordered


def paginate_sql(
    conn: Any,
    opts: PaginationOptions,
    base_query: str,
    count_query: str,
    args: Sequence[Any],
    scan: Scanner,
) -> Paginated[Any]:
    """Count, then fetch one page of base_query, turning each row into an item.

    When count_query is empty it is derived from base_query's FROM part, with
    any ORDER BY dropped.
    """
    if not count_query:
        from_index = base_query.upper().find("FROM")
        if from_index == -1:
            raise STORE_ERRORS.new_with_message(INVALID_QUERY, "cannot extract FROM clause")
        count_query = "SELECT COUNT(*) " + base_query[from_index:]
        order_index = count_query.upper().find("ORDER BY")
        if order_index != -1:
            count_query = count_query[:order_index]

    try:
        count_rows = _fetch(conn, count_query, args)
        total = int(next(iter(count_rows[0].values())))
    except Exception as exc:
        raise STORE_ERRORS.new_with_cause(SQL_COUNT_FAILED, exc) from exc

    paginated_query = base_query
    if "ORDER BY" not in base_query.upper() and opts.order_by:
        direction = "DESC" if opts.desc else "ASC"
        paginated_query += f" ORDER BY {opts.order_by} {direction}"
    offset = (opts.page - 1) * opts.page_size
    paginated_query += f" LIMIT {opts.page_size} OFFSET {offset}"

    try:
        rows = _fetch(conn, paginated_query, args)
    except Exception as exc:
        raise STORE_ERRORS.new_with_cause(SQL_QUERY_FAILED, exc) from exc

    try:
        items = [scan(row) for row in rows]
    except Exception as exc:
        raise STORE_ERRORS.new_with_cause(SQL_SCAN_FAILED, exc) from exc

    return new_paginated(items, opts.page, opts.page_size, total)


def paginate_simple(
    conn: Any,
    opts: PaginationOptions,
    query: str,
    args: Sequence[Any],
    factory: Callable[..., Any] | None = None,
) -> Paginated[Any]:
    """Paginate query, building items with factory and deriving the count query."""
    return paginate_sql(conn, opts, query, "", args, _scanner(factory))


class TypedSQL(Generic[T]):
    """CRUD, pagination, bulk operations and search on one table.

    Writes outside with_transaction are committed at once; inside it they
    are committed together, or rolled back when the callable raises.
    """

    def __init__(
        self,
        conn: Any,
        factory: Callable[..., T] | None = None,
        *,
        table_name: str = "",
        id_column: str = "id",
        paramstyle: str = "dollar",
        like_operator: str = "ILIKE",
    ) -> None:
        if paramstyle not in PARAM_STYLES:
            raise ValueError(f"unsupported parameter style: {paramstyle!r}")
        self.conn = conn
        self.factory = factory
        self.table_name = table_name
        self.id_column = id_column
        self.paramstyle = paramstyle
        self.like_operator = like_operator
        self._scan: Scanner = _scanner(factory)
        self._local = threading.local()

    def with_table_name(self, table_name: str) -> TypedSQL[T]:
        self.table_name = table_name
        return self

    def with_id_column(self, column_name: str) -> TypedSQL[T]:
        self.id_column = column_name
        return self

    @property
    def _tx_depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @_tx_depth.setter
    def _tx_depth(self, value: int) -> None:
        self._local.depth = value

    def _require_table(self) -> None:
        if not self.table_name:
            raise STORE_ERRORS.new(INVALID_QUERY).with_detail("reason", "table name not set")

    def _render(self, query: str, args: Sequence[Any]) -> tuple[str, list[Any]]:
        return _render(query, args, self.paramstyle)

    def _fetch(self, query: str, args: Sequence[Any]) -> list[Row]:
        return _fetch(self.conn, *self._render(query, args))

    def _exec(self, query: str, args: Sequence[Any]) -> int:
        return _exec(self.conn, *self._render(query, args))

    def _commit(self) -> None:
        if self._tx_depth:
            return
        try:
            self.conn.commit()
        except Exception as exc:
            raise (
                STORE_ERRORS.new(TX_COMMIT_FAILED).with_detail("table", self.table_name).with_cause(exc)
            ) from exc

    def _abort(self) -> None:
        if self._tx_depth:
            return
        with contextlib.suppress(Exception):
            self.conn.rollback()

    def _insert_columns(self, item: T) -> tuple[list[str], list[Any]]:
        """Columns and values to insert; an ID column holding None is left to the database."""
        fields, values = extract_fields_and_values(item)
        pairs = [
            (name, value)
            for name, value in zip(fields, values)
            if not (name == self.id_column and value is None)
        ]
        return [name for name, _ in pairs], [value for _, value in pairs]

    def _scan_row(self, row: Row, **details: Any) -> T:
        try:
            return self._scan(row)
        except Exception as exc:
            err = STORE_ERRORS.new(SQL_SCAN_FAILED).with_details(details)
            raise err.with_detail("table", self.table_name).with_cause(exc) from exc

    def _fetch_single(self, query: str, args: Sequence[Any], **details: Any) -> Row | None:
        try:
            rows = self._fetch(query, args)
        except CraftError:
            self._abort()
            raise
        except Exception as exc:
            self._abort()
            err = STORE_ERRORS.new(SQL_SCAN_FAILED).with_details(details)
            raise err.with_detail("table", self.table_name).with_cause(exc) from exc
        return rows[0] if rows else None

    def create(self, item: T) -> T:
        """Insert item and return the stored row."""
        self._require_table()
        columns, values = self._insert_columns(item)
        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES ({create_placeholders(len(columns))}) RETURNING *"
        )
        row = self._fetch_single(query, values)
        if row is None:
            self._abort()
            raise (
                STORE_ERRORS.new(SQL_SCAN_FAILED)
                .with_detail("table", self.table_name)
                .with_detail("reason", "no row returned")
            )
        self._commit()
        return self._scan_row(row)

    def find_by_id(self, id: str) -> T:
        self._require_table()
        query = f"SELECT * FROM {self.table_name} WHERE {self.id_column} = $1"
        row = self._fetch_single(query, [id], id=id)
        if row is None:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("id", id)
                .with_detail("table", self.table_name)
            )
        return self._scan_row(row, id=id)

    def find_one(self, filter: Mapping[str, Any] | None) -> T:
        """Return the first row whose columns equal every filter value."""
        self._require_table()
        where, args = build_where_clause(filter)
        suffix = f" {where}" if where else ""
        query = f"SELECT * FROM {self.table_name}{suffix} LIMIT 1"
        row = self._fetch_single(query, args, filter=str(filter))
        if row is None:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("filter", str(filter))
                .with_detail("table", self.table_name)
            )
        return self._scan_row(row, filter=str(filter))

    def update(self, id: str, item: T) -> T:
        """Overwrite every column of the row with the given ID and return it."""
        self._require_table()
        fields, values = extract_fields_and_values(item)
        values = [*values, id]
        query = (
            f"UPDATE {self.table_name} SET {build_set_clause(fields)} "
            f"WHERE {self.id_column} = ${len(values)} RETURNING *"
        )
        row = self._fetch_single(query, values, id=id)
        if row is None:
            self._abort()
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("id", id)
                .with_detail("table", self.table_name)
            )
        self._commit()
        return self._scan_row(row, id=id)

    def delete(self, id: str) -> None:
        self._require_table()
        query = f"DELETE FROM {self.table_name} WHERE {self.id_column} = $1"
        try:
            affected = self._exec(query, [id])
        except Exception as exc:
            self._abort()
            raise (
                STORE_ERRORS.new(SQL_EXEC_FAILED)
                .with_detail("id", id)
                .with_detail("table", self.table_name)
                .with_cause(exc)
            ) from exc
        if affected == 0:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("id", id)
                .with_detail("table", self.table_name)
            )
        self._commit()

    def paginate(self, opts: PaginationOptions) -> Paginated[T]:
        """Fetch one page of rows matching opts.filters."""
        self._require_table()
        where, args = build_where_clause(opts.filters)
        suffix = f" {where}" if where else ""
        base, params = self._render(f"SELECT * FROM {self.table_name}{suffix}", args)
        count, _ = self._render(f"SELECT COUNT(*) FROM {self.table_name}{suffix}", args)
        return paginate_sql(self.conn, opts, base, count, params, self._scan)

    def paginate_simple(
        self, opts: PaginationOptions, query: str, args: Sequence[Any]
    ) -> Paginated[T]:
        """Paginate a hand-written query that uses ``$N`` placeholders."""
        rendered, params = self._render(query, args)
        return paginate_sql(self.conn, opts, rendered, "", params, self._scan)

    def bulk_insert(self, items: Iterable[T]) -> None:
        """Insert all items in one statement, using the columns of the first."""
        items = list(items)
        if not items:
            return
        self._require_table()
        columns, _ = self._insert_columns(items[0])
        width = len(columns)
        groups: list[str] = []
        args: list[Any] = []
        for row_index, item in enumerate(items):
            fields, values = extract_fields_and_values(item)
            by_name = dict(zip(fields, values))
            start = row_index * width + 1
            groups.append("(" + ", ".join(f"${start + j}" for j in range(width)) + ")")
            args.extend(by_name.get(name) for name in columns)
        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) VALUES {', '.join(groups)}"
        )
        try:
            self._exec(query, args)
        except Exception as exc:
            self._abort()
            raise (
                STORE_ERRORS.new(SQL_EXEC_FAILED)
                .with_detail("operation", "bulk_insert")
                .with_detail("count", len(items))
                .with_detail("table", self.table_name)
                .with_cause(exc)
            ) from exc
        self._commit()

    def bulk_update(self, items: Iterable[T]) -> None:
        """Update each item by its ID; items without an ID are skipped."""
        items = list(items)
        if not items:
            return
        self._require_table()
        for item in items:
            id_value = extract_id_value(item, self.id_column)
            if id_value is None:
                continue
            fields, values = extract_fields_and_values(item)
            values = [*values, id_value]
            query = (
                f"UPDATE {self.table_name} SET {build_set_clause(fields)} "
                f"WHERE {self.id_column} = ${len(values)}"
            )
            try:
                self._exec(query, values)
            except Exception as exc:
                self._abort()
                raise (
                    STORE_ERRORS.new(SQL_EXEC_FAILED)
                    .with_detail("id", str(id_value))
                    .with_detail("table", self.table_name)
                    .with_cause(exc)
                ) from exc
        self._commit()

    def bulk_delete(self, ids: Iterable[str]) -> None:
        """Delete rows by ID; raises RECORD_NOT_FOUND when none was deleted."""
        ids = list(ids)
        if not ids:
            return
        self._require_table()
        query = (
            f"DELETE FROM {self.table_name} WHERE {self.id_column} "
            f"IN ({create_placeholders(len(ids))})"
        )
        try:
            affected = self._exec(query, ids)
        except Exception as exc:
            self._abort()
            raise (
                STORE_ERRORS.new(SQL_EXEC_FAILED)
                .with_detail("operation", "bulk_delete")
                .with_detail("count", len(ids))
                .with_detail("table", self.table_name)
                .with_cause(exc)
            ) from exc
        if affected == 0:
            raise (
                STORE_ERRORS.new(RECORD_NOT_FOUND)
                .with_detail("operation", "bulk_delete")
                .with_detail("table", self.table_name)
            )
        self._commit()

    def search(self, query: str, opts: SearchOptions) -> list[T]:
        """Match query as a LIKE pattern against any of opts.fields."""
        self._require_table()
        if not opts.fields:
            raise STORE_ERRORS.new(INVALID_QUERY).with_detail("reason", "search fields not specified")
        conditions = " OR ".join(f"{name} {self.like_operator} $1" for name in opts.fields)
        sql = f"SELECT * FROM {self.table_name} WHERE {conditions}"
        if opts.limit > 0:
            sql += f" LIMIT {opts.limit}"
        if opts.offset > 0:
            sql += f" OFFSET {opts.offset}"
        try:
            rows = self._fetch(sql, [query])
        except Exception as exc:
            raise (
                STORE_ERRORS.new(SQL_QUERY_FAILED)
                .with_detail("query", query)
                .with_detail("table", self.table_name)
                .with_cause(exc)
            ) from exc
        return [self._scan_row(row, query=query) for row in rows]

    def with_transaction(self, fn: Callable[[], R]) -> R:
        """Run fn so that its writes commit together, or roll back if it raises."""
        self._tx_depth += 1
        try:
            result = fn()
        except BaseException:
            self._tx_depth -= 1
            if not self._tx_depth:
                with contextlib.suppress(Exception):
                    self.conn.rollback()
            raise
        self._tx_depth -= 1
        self._commit()
        return result