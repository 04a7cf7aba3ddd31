import itertools

import pytest

from craftable.errors import (
    BULK_OP_FAILED,
    CREATE_FAILED,
    CraftError,
    is_code,
    is_record_not_found,
)
from craftable.memory import MemoryStore
from craftable.stores import PaginationOptions, SearchOptions


def _store():
    return MemoryStore(id_extractor=lambda item: item.get("id", ""))


def _fill(store, names):
    for name in names:
        store.create({"id": name, "name": name.upper()})


def test_create_and_find_by_id():
    store = _store()
    item = {"id": "a", "name": "Alice"}
    assert store.create(item) == item
    assert store.find_by_id("a") == item
    assert len(store) == 1


def test_create_duplicate_raises():
    store = _store()
    store.create({"id": "a"})
    with pytest.raises(CraftError) as info:
        store.create({"id": "a"})
    assert is_code(info.value, CREATE_FAILED)
    assert info.value.details["reason"] == "ID already exists"


def test_find_by_id_missing():
    with pytest.raises(CraftError) as info:
        _store().find_by_id("nope")
    assert is_record_not_found(info.value)
    assert info.value.details["id"] == "nope"


def test_generated_ids_used_without_extractor():
    counter = itertools.count(1)
    store = MemoryStore(id_generator=lambda: f"gen-{next(counter)}")
    store.create({"name": "x"})
    store.create({"name": "y"})
    assert store.find_by_id("gen-1") == {"name": "x"}
    assert store.find_by_id("gen-2") == {"name": "y"}


def test_default_generator_gives_distinct_ids():
    store = MemoryStore()
    for n in range(50):
        store.create({"n": n})
    assert store.count() == 50


def test_find_one_filters_by_fields():
    store = _store()
    store.create({"id": "a", "role": "admin"})
    store.create({"id": "b", "role": "user"})
    assert store.find_one({"role": "user"})["id"] == "b"
    with pytest.raises(CraftError) as info:
        store.find_one({"role": "guest"})
    assert is_record_not_found(info.value)


def test_update_and_delete():
    store = _store()
    store.create({"id": "a", "v": 1})
    assert store.update("a", {"id": "a", "v": 2}) == {"id": "a", "v": 2}
    assert store.find_by_id("a")["v"] == 2
    store.delete("a")
    assert store.count() == 0
    with pytest.raises(CraftError) as info:
        store.delete("a")
    assert is_record_not_found(info.value)
    with pytest.raises(CraftError) as info:
        store.update("a", {"id": "a"})
    assert is_record_not_found(info.value)


def test_paginate_pages_cover_all_items():
    store = _store()
    names = ["c", "a", "e", "b", "d"]
    _fill(store, names)
    seen = []
    for page in range(1, 4):
        result = store.paginate(PaginationOptions(page=page, page_size=2))
        assert result.page.total == len(names)
        seen.extend(item["id"] for item in result.data)
    assert seen == sorted(names)
    last = store.paginate(PaginationOptions(page=3, page_size=2))
    assert not last.has_next()
    assert last.has_previous()


def test_paginate_desc_and_past_end():
    store = _store()
    _fill(store, ["a", "b", "c"])
    result = store.paginate(PaginationOptions(page=1, page_size=10, desc=True))
    assert [item["id"] for item in result.data] == ["c", "b", "a"]
    beyond = store.paginate(PaginationOptions(page=5, page_size=10))
    assert beyond.empty
    assert beyond.data == []
    assert beyond.page.total == 3


def test_paginate_with_filter():
    store = _store()
    store.create({"id": "a", "role": "admin"})
    store.create({"id": "b", "role": "user"})
    store.create({"id": "c", "role": "user"})
    opts = PaginationOptions(page=1, page_size=10).with_filter("role", "user")
    result = store.paginate(opts)
    assert [item["id"] for item in result.data] == ["b", "c"]


def test_bulk_insert_stops_on_duplicate():
    store = _store()
    store.create({"id": "b"})
    with pytest.raises(CraftError) as info:
        store.bulk_insert([{"id": "a"}, {"id": "b"}, {"id": "c"}])
    assert is_code(info.value, BULK_OP_FAILED)
    assert store.count() == 2
    with pytest.raises(CraftError):
        store.find_by_id("c")


def test_bulk_insert_empty_is_noop():
    store = _store()
    store.bulk_insert([])
    assert store.count() == 0


def test_bulk_update():
    store = _store()
    _fill(store, ["a", "b"])
    store.bulk_update([{"id": "a", "name": "new"}, {"id": "b", "name": "new"}])
    assert store.find_by_id("a")["name"] == "new"
    assert store.find_by_id("b")["name"] == "new"
    with pytest.raises(CraftError) as info:
        store.bulk_update([{"name": "no id"}])
    assert info.value.details["reason"] == "item has no ID"
    with pytest.raises(CraftError) as info:
        store.bulk_update([{"id": "zzz"}])
    assert info.value.details["reason"] == "item not found"


def test_bulk_delete():
    store = _store()
    _fill(store, ["a", "b", "c"])
    store.bulk_delete(["a", "b"])
    assert store.count() == 1
    with pytest.raises(CraftError) as info:
        store.bulk_delete(["c", "missing"])
    assert is_code(info.value, BULK_OP_FAILED)
    assert info.value.details["item not found id"] == "missing"
    assert store.count() == 0


def test_with_transaction_runs_function():
    store = _store()
    assert store.with_transaction(lambda: store.create({"id": "t"})) == {"id": "t"}

    def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.with_transaction(failing)


def test_search_limit_offset():
    store = _store()
    _fill(store, ["a", "b", "c", "d"])
    everything = store.search("", SearchOptions())
    assert len(everything) == 4
    window = store.search("", SearchOptions(limit=2, offset=1))
    assert window == everything[1:3]
    assert store.search("", SearchOptions(limit=2, offset=10)) == []


def test_search_matches_fields():
    store = _store()
    store.create({"id": "1", "name": "Smartphone", "note": "x"})
    store.create({"id": "2", "name": "Laptop", "note": "phone dock"})
    assert [i["id"] for i in store.search("PHONE", SearchOptions(fields=["name"]))] == ["1"]
    assert len(store.search("phone", SearchOptions())) == 2


def test_watch_receives_events():
    store = _store()
    sub = store.watch()
    store.create({"id": "a", "v": 1})
    store.update("a", {"id": "a", "v": 2})
    store.delete("a")
    insert = sub.get(timeout=1)
    update = sub.get(timeout=1)
    delete = sub.get(timeout=1)
    assert (insert.operation, insert.old_value, insert.new_value) == ("insert", None, {"id": "a", "v": 1})
    assert (update.old_value, update.new_value) == ({"id": "a", "v": 1}, {"id": "a", "v": 2})
    assert (delete.operation, delete.old_value, delete.new_value) == ("delete", {"id": "a", "v": 2}, None)


def test_watch_timeout_and_close():
    store = _store()
    sub = store.watch()
    with pytest.raises(TimeoutError):
        sub.get(timeout=0.01)
    store.create({"id": "a"})
    sub.close()
    store.create({"id": "b"})
    assert [event.new_value for event in sub] == [{"id": "a"}]
    assert sub.get(timeout=0.01) is None


def test_watch_drops_events_when_buffer_full():
    store = _store()
    with store.watch() as sub:
        store.bulk_insert({"id": str(n)} for n in range(105))
        received = []
        while True:
            try:
                received.append(sub.get(timeout=0.01))
            except TimeoutError:
                break
    assert len(received) == 100
    assert received[0].new_value == {"id": "0"}


def test_count_and_clear():
    store = _store()
    store.create({"id": "a", "role": "admin"})
    store.create({"id": "b", "role": "user"})
    assert store.count({"role": "admin"}) == 1
    assert store.count(None) == 2
    store.clear()
    assert store.count() == 0