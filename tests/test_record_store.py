from __future__ import annotations

import pytest

from traitcore.exceptions import ValidationError
from traitcore.storage import KIND_MEMORY, KIND_TRAIT_BASELINE, RecordStore, SQLiteRecordStore


def test_save_load_delete_roundtrip(store):
    assert isinstance(store, RecordStore)
    store.save(KIND_MEMORY, "m1", {"content": "hello", "importance": 0.5})
    assert store.load(KIND_MEMORY, "m1") == {"content": "hello", "importance": 0.5}
    assert store.load(KIND_TRAIT_BASELINE, "m1") is None

    store.save(KIND_MEMORY, "m1", {"content": "changed"})
    assert store.load(KIND_MEMORY, "m1") == {"content": "changed"}
    assert store.count(KIND_MEMORY) == 1

    assert store.delete(KIND_MEMORY, "m1") is True
    assert store.delete(KIND_MEMORY, "m1") is False
    assert store.load(KIND_MEMORY, "m1") is None


def test_keys_are_sorted_per_kind(store):
    for rid in ("b", "a", "c"):
        store.save(KIND_MEMORY, rid, {})
    store.save(KIND_TRAIT_BASELINE, "trust", {})
    assert store.keys(KIND_MEMORY) == ["a", "b", "c"]
    assert store.keys(KIND_TRAIT_BASELINE) == ["trust"]


def test_unknown_kind_is_rejected(store):
    with pytest.raises(ValidationError):
        store.save("widget", "x", {})
    with pytest.raises(ValidationError):
        store.load("widget", "x")


def test_transaction_rollback_discards_writes(store):
    store.save(KIND_MEMORY, "kept", {"v": 1})
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.save(KIND_MEMORY, "dropped", {"v": 2})
            store.save(KIND_MEMORY, "kept", {"v": 3})
            raise RuntimeError("boom")
    assert store.load(KIND_MEMORY, "dropped") is None
    assert store.load(KIND_MEMORY, "kept") == {"v": 1}


def test_nested_begin_commits_once(store):
    store.begin()
    store.begin()
    store.save(KIND_MEMORY, "m", {"v": 1})
    store.commit()
    store.commit()
    assert store.load(KIND_MEMORY, "m") == {"v": 1}


def test_records_survive_reopen(tmp_path):
    path = tmp_path / "db" / "records.db"
    first = SQLiteRecordStore(path)
    first.save(KIND_MEMORY, "m", {"content": "persisted"})
    first.close()

    second = SQLiteRecordStore(path)
    try:
        assert second.load(KIND_MEMORY, "m") == {"content": "persisted"}
    finally:
        second.close()
