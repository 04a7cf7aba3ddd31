# craftable

Building blocks for application back ends:

- **Stores**: a shared set of repository operations (create, find, update,
  delete, paginate, bulk operations, transactions, search, change events),
  implemented by an in-memory store (`craftable.memory.MemoryStore`), a store
  over any DB-API connection (`craftable.sqlstore.TypedSQL`) and a store over a
  MongoDB collection (`craftable.mongostore.TypedMongo`). The operations are
  described as protocols in `craftable.stores` (`Repository`, `BulkOperator`,
  `TxManager`, `Searchable`, `ChangeStream`).
- **Pagination**: `PaginationOptions`, `Paginated` results with `has_next()`
  and `has_previous()`, and a fluent `QueryBuilder`.
- **File system**: `craftable.fsx.LocalFS`, local disk access confined beneath
  an optional root directory.
- **Validation**: rules such as `required,min=3,max=50` attached to dataclass
  fields and checked by `craftable.validator`.
- **Errors**: `CraftError` exceptions carrying a registered code, an error
  type, an HTTP status, details and a cause (`craftable.errors`).

## Installing

```
pip install craftable
```

To run the tests:

```
pip install "craftable[test]"
pytest
```

## In-memory store

```python
from craftable.memory import MemoryStore
from craftable.stores import SearchOptions, default_pagination_options

store = MemoryStore(id_extractor=lambda user: user["id"])
store.create({"id": "1", "name": "Ada", "email": "ada@example.com"})
store.create({"id": "2", "name": "Grace", "email": "grace@example.com"})

opts = default_pagination_options()      # page 1, 25 per page, ordered by "id"
opts.page_size = 1
result = store.paginate(opts)
print(result.page.number, result.page.pages, result.page.total)   # 1 2 2
print(result.has_next())                                          # True

store.find_one({"name": "Grace"})            # equality on every filter key
store.search("ADA", SearchOptions())         # case-insensitive substring match
```

Items may be mappings, dataclasses or plain objects. Without an
`id_extractor`, or when it returns an empty string, the store generates an ID
with `id_generator` (by default an increasing nanosecond timestamp).

Change events are delivered through a buffered `Subscription`; once 100 events
are waiting, further ones are dropped for that subscriber:

```python
with store.watch() as events:
    store.delete("2")
    event = events.get(timeout=1)
    print(event.operation, event.old_value)      # delete {...}
```

## SQL store

`TypedSQL` takes a DB-API connection and generates `INSERT ... RETURNING *`,
`SELECT`, `UPDATE ... RETURNING *` and `DELETE` statements. Statements are
written with `$1, $2, ...` placeholders and rewritten to the connection's
style: `paramstyle` is one of `"dollar"`, `"qmark"`, `"format"` or
`"numeric"`. Rows come back as dicts, or are built with `factory` (a
dataclass type receives the matching columns).

```python
import sqlite3
from dataclasses import dataclass
from craftable.sqlstore import TypedSQL
from craftable.stores import SearchOptions, default_pagination_options

@dataclass
class Product:
    id: int | None
    name: str
    price: float

conn = sqlite3.connect(":memory:")
conn.execute("CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT, price REAL)")

products = TypedSQL(conn, Product, table_name="products",
                    paramstyle="qmark", like_operator="LIKE")
phone = products.create(Product(None, "Smartphone", 999.99))
page = products.paginate(default_pagination_options().with_filter("name", "Smartphone"))
found = products.search("%phone%", SearchOptions(fields=["name"]))

def reprice():
    products.update(str(phone.id), Product(phone.id, "Smartphone", 899.0))

products.with_transaction(reprice)   # committed together, rolled back on error
```

`paginate_sql` and `paginate_simple` paginate hand-written queries directly on
a connection; when no count query is given it is derived from the query's
`FROM` part.

## MongoDB store

`TypedMongo` wraps a `pymongo` collection. With the default `_id` field, IDs
are converted to `ObjectId`, and an invalid one raises an `INVALID_ID` error;
`with_id_field` selects another field. `search` runs a `$text` query ordered
by text score, and `watch` returns an iterator of `ChangeEvent`s from a change
stream.

```python
from pymongo import MongoClient
from craftable.mongostore import TypedMongo

users = TypedMongo(MongoClient()["app"]["users"])
created = users.create({"name": "Ada", "email": "ada@example.com"})
print(users.find_by_id(str(created["_id"])))
```

## Queries

```python
from craftable.stores import QueryBuilder

opts = (
    QueryBuilder()
    .where("status", "=", "active")
    .order_by("created_at", True)
    .limit(50)
    .select("name", "email")
    .to_pagination_options()
)
```

Only the value of each `where` is kept (as an equality filter), only the first
sort is used, and limit and offset become a page size and page number.

## Errors

```python
from craftable.errors import CraftError, is_record_not_found

try:
    store.find_by_id("missing")
except CraftError as err:
    assert is_record_not_found(err)
    print(err.code, err.http_status, err.details)   # STORE.NOT_FOUND 404 {'id': 'missing'}
```

New code families are made with `ErrorRegistry("PREFIX").register(...)`.

## Validation

Rules live in the `validatex` metadata key of dataclass fields. Empty values
fail only the `required` rule. Built-in rules: `required`, `email`, `url`,
`min=N`, `max=N` (numbers, or lengths of strings and collections), `oneof=a b c`,
`regex=PATTERN`, `uuid`, `alphanum`, `alpha`, `numeric`.

```python
from dataclasses import dataclass, field
from craftable.validation_errors import ValidationErrors
from craftable.validator import validate, validate_field, validate_with_error

@dataclass
class User:
    username: str = field(default="", metadata={"validatex": "required,min=3,max=50"})
    email: str = field(default="", metadata={"validatex": "required,email"})
    role: str = field(default="", metadata={"validatex": "oneof=admin user guest"})

try:
    validate(User("jo", "not-an-email", "superuser"))
except ValidationErrors as errors:
    print(errors.has("username"), [e.rule for e in errors])

error = validate_with_error(User("ada", "ada@example.com", "admin"))   # None
validate_field("ab", "required,min=3")                                 # raises ValidationErrors
```

Extra rules are added with `craftable.rules.register_validation_func`, or per
validator with `CustomValidator().register_rule(...)`, which can also read
rules from another metadata key via `with_tag_name`. Objects with their own
`validate()` method are validated by calling it.

## Local files

```python
from craftable.fsx import LocalFS

fs = LocalFS("/tmp/data")
fs.write_file("notes/today.txt", b"hello")      # parent directories are created
print(fs.read_file("notes/today.txt"))
for info in fs.list("notes"):                   # sorted by name
    print(info.name, info.size, info.content_type)
fs.delete_dir("notes", recursive=True)
```

## What it does not do

- The only file system implementation is local disk; there is no cloud object
  storage backend.
- Validation results are returned as exceptions and `CraftError` values
  (`to_dict()` gives a serialisable form); nothing writes them to an HTTP
  response.
- There is no command-line tool.