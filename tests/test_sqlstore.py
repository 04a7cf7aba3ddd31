from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace

import pytest

from craftable.errors import SQL_COUNT_FAILED, is_code, is_invalid_query, is_record_not_found
from craftable.sqlstore import (
    TypedSQL,
    build_set_clause,
    build_where_clause,
    create_placeholders,
    extract_fields_and_values,
    extract_id_value,
    paginate_simple,
    paginate_sql,
)
from craftable.stores import PaginationOptions, SearchOptions


@dataclass
class Product:
    id: int | None = None
    name: str = ""
    price: float = 0.0


SCHEMA = "CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT, price REAL)"


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.execute(SCHEMA)
    connection.commit()
    yield connection
    connection.close()


def make_store(connection):
    return TypedSQL(connection, Product, paramstyle="qmark", like_operator="LIKE").with_table_name(
        "products"
    )


@pytest.fixture
def store(conn):
    return make_store(conn)


def test_build_where_clause():
    assert build_where_clause({}) == ("", [])
    assert build_where_clause({"a": 1, "b": "x"}) == ("WHERE a = $1 AND b = $2", [1, "x"])


def test_build_set_clause_and_placeholders():
    assert build_set_clause(["a", "b"]) == "a = $1, b = $2"
    assert create_placeholders(3) == "$1, $2, $3"
    assert create_placeholders(0) == ""


def test_extract_fields_and_values():
    assert extract_fields_and_values(Product(1, "a", 2.0)) == (["id", "name", "price"], [1, "a", 2.0])
    assert extract_fields_and_values({"x": 1}) == (["x"], [1])
    with pytest.raises(Exception) as info:
        extract_fields_and_values(42)
    assert is_invalid_query(info.value)


def test_extract_id_value():
    assert extract_id_value(Product(7, "a"), "id") == 7
    assert extract_id_value({"id": "k"}, "id") == "k"
    assert extract_id_value({"name": "k"}, "id") is None


def test_unknown_paramstyle():
    with pytest.raises(ValueError):
        TypedSQL(None, paramstyle="weird")


def test_table_name_required(conn):
    store = TypedSQL(conn, Product, paramstyle="qmark")
    with pytest.raises(Exception) as info:
        store.create(Product(name="a"))
    assert is_invalid_query(info.value)
    assert info.value.details["reason"] == "table name not set"


def test_create_and_find_by_id(conn, store):
    created = store.create(Product(name="Phone", price=9.5))
    assert created.name == "Phone" and created.price == 9.5
    assert isinstance(created.id, int)
    assert not conn.in_transaction
    assert store.find_by_id(str(created.id)) == created


def test_create_without_factory_returns_dicts(conn):
    store = TypedSQL(conn, paramstyle="qmark").with_table_name("products")
    created = store.create({"name": "x", "price": 1.0})
    assert set(created) == {"id", "name", "price"}
    assert created["name"] == "x"


def test_find_by_id_missing(store):
    with pytest.raises(Exception) as info:
        store.find_by_id("999")
    assert is_record_not_found(info.value)


def test_find_one(store):
    store.create(Product(name="a", price=1.0))
    target = store.create(Product(name="b", price=2.0))
    assert store.find_one({"name": "b"}) == target
    with pytest.raises(Exception) as info:
        store.find_one({"name": "zzz"})
    assert is_record_not_found(info.value)


def test_update(store):
    created = store.create(Product(name="a", price=1.0))
    updated = store.update(str(created.id), replace(created, price=20.0))
    assert updated == replace(created, price=20.0)
    assert store.find_by_id(str(created.id)).price == 20.0


def test_update_missing(store):
    with pytest.raises(Exception) as info:
        store.update("999", Product(999, "x", 1.0))
    assert is_record_not_found(info.value)


def test_delete(store):
    created = store.create(Product(name="a"))
    store.delete(str(created.id))
    with pytest.raises(Exception) as info:
        store.find_by_id(str(created.id))
    assert is_record_not_found(info.value)
    with pytest.raises(Exception) as again:
        store.delete(str(created.id))
    assert is_record_not_found(again.value)


def test_paginate_orders_and_slices(store):
    prices = [5.0, 1.0, 4.0, 2.0, 3.0]
    store.bulk_insert([Product(name=f"p{i}", price=p) for i, p in enumerate(prices)])
    result = store.paginate(PaginationOptions(page=2, page_size=2, order_by="price", desc=True))
    assert [p.price for p in result.data] == sorted(prices, reverse=True)[2:4]
    assert result.page.total == len(prices)
    assert result.has_next() and result.has_previous()


def test_paginate_with_filter(store):
    store.bulk_insert([Product(name="a", price=1.0), Product(name="b", price=2.0)])
    result = store.paginate(PaginationOptions().with_filter("name", "b"))
    assert [p.name for p in result.data] == ["b"]
    assert result.page.total == 1


def test_paginate_missing_table(conn):
    store = TypedSQL(conn, paramstyle="qmark").with_table_name("missing")
    with pytest.raises(Exception) as info:
        store.paginate(PaginationOptions())
    assert is_code(info.value, SQL_COUNT_FAILED)


def test_paginate_simple_method_reorders_placeholders(store):
    store.bulk_insert(
        [Product(name="x", price=5.0), Product(name="y", price=6.0), Product(name="z", price=1.0)]
    )
    result = store.paginate_simple(
        PaginationOptions(),
        "SELECT id, name, price FROM products WHERE price > $2 AND name <> $1",
        ["x", 2.0],
    )
    assert [p.name for p in result.data] == ["y"]
    assert result.page.total == 1


def test_paginate_sql_derives_count(conn, store):
    store.bulk_insert([Product(name=n) for n in ["c", "a", "b"]])
    result = paginate_sql(
        conn,
        PaginationOptions(page=1, page_size=10, order_by=""),
        "SELECT name FROM products ORDER BY name",
        "",
        [],
        dict,
    )
    assert [row["name"] for row in result.data] == ["a", "b", "c"]
    assert result.page.total == 3


def test_paginate_sql_without_from(conn):
    with pytest.raises(Exception) as info:
        paginate_sql(conn, PaginationOptions(), "SELECT 1", "", [], dict)
    assert is_invalid_query(info.value)


def test_paginate_simple_function(conn, store):
    store.bulk_insert([Product(name="a", price=1.0), Product(name="b", price=3.0)])
    result = paginate_simple(
        conn,
        PaginationOptions(),
        "SELECT id, name, price FROM products WHERE price > ?",
        [2.0],
        Product,
    )
    assert [p.name for p in result.data] == ["b"]
    assert isinstance(result.data[0], Product)


def test_bulk_update(store):
    store.bulk_insert([Product(name="a", price=1.0), Product(name="b", price=2.0)])
    items = store.paginate(PaginationOptions()).data
    store.bulk_update([replace(p, name="new " + p.name) for p in items] + [Product(name="no id")])
    names = [p.name for p in store.paginate(PaginationOptions()).data]
    assert names == ["new a", "new b"]


def test_bulk_delete(store):
    store.bulk_insert([Product(name="a"), Product(name="b"), Product(name="c")])
    items = store.paginate(PaginationOptions()).data
    store.bulk_delete([str(p.id) for p in items[:2]])
    assert [p.name for p in store.paginate(PaginationOptions()).data] == ["c"]
    with pytest.raises(Exception) as info:
        store.bulk_delete(["999"])
    assert is_record_not_found(info.value)


def test_bulk_operations_with_nothing(store):
    store.bulk_insert([])
    store.bulk_update([])
    store.bulk_delete([])
    assert store.paginate(PaginationOptions()).empty


def test_search(store):
    store.bulk_insert([Product(name="Smartphone"), Product(name="Laptop"), Product(name="phone case")])
    found = store.search("%phone%", SearchOptions(fields=["name"]))
    assert sorted(p.name for p in found) == ["Smartphone", "phone case"]
    assert len(store.search("%phone%", SearchOptions(fields=["name"], limit=1))) == 1


def test_search_requires_fields(store):
    with pytest.raises(Exception) as info:
        store.search("x", SearchOptions())
    assert is_invalid_query(info.value)


def test_with_transaction_commits(tmp_path):
    path = tmp_path / "db.sqlite"
    connection = sqlite3.connect(path)
    connection.execute(SCHEMA)
    connection.commit()
    store = make_store(connection)

    def work():
        return store.create(Product(name="a")).name

    assert store.with_transaction(work) == "a"
    other = sqlite3.connect(path)
    assert other.execute("SELECT name FROM products").fetchall() == [("a",)]
    other.close()
    connection.close()


def test_with_transaction_rolls_back(tmp_path):
    path = tmp_path / "db.sqlite"
    connection = sqlite3.connect(path)
    connection.execute(SCHEMA)
    connection.commit()
    store = make_store(connection)

    def work():
        store.create(Product(name="a"))
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.with_transaction(work)
    assert connection.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 0
    connection.close()