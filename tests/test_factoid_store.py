"""Tests for the factoid store and its trigger index."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import msgpack
import pytest

from pandora_bot.client import DataClient
from pandora_bot.engine import itob
from pandora_bot.errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from pandora_bot.factoids import FACTOID_BUCKET, TRIGGER_INDEX_BUCKET, FactoidStore
from pandora_bot.models import Factoid, FactoidResponse


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2020, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(tmp_path: Path, clock: FakeClock):
    with DataClient(tmp_path / "pandora.lmdb", clock=clock, lock_timeout=0.1) as data:
        yield data


@pytest.fixture
def store(client: DataClient) -> FactoidStore:
    return client.factoids


def _raw_index(store: FactoidStore, trigger: str):
    with store.engine.begin() as txn:
        return txn.bucket(TRIGGER_INDEX_BUCKET).get(trigger.encode("utf-8"))


def test_create_then_lookup(store: FactoidStore, clock: FakeClock) -> None:
    factoid = Factoid(trigger="hello")
    factoid.add_response(FactoidResponse(response="hi there"))

    factoid_id = store.create(factoid)

    assert factoid_id == 1
    by_id = store.get_by_id(1)
    by_trigger = store.get_by_trigger("hello")
    assert by_id == by_trigger
    assert by_id.trigger == "hello"
    assert by_id.responses[1].response == "hi there"
    assert by_id.date_created == clock.now
    assert by_id.date_edited == clock.now


def test_triggers_are_cleaned(store: FactoidStore) -> None:
    store.create(Factoid(trigger="  What's   UP?? "))

    assert store.get_by_trigger("whats up").id == 1
    assert store.get_by_trigger("WHAT'S UP").id == 1
    assert store.exists_by_trigger("what's up!")
    assert store.get_by_id(1).trigger == "whats up"


def test_duplicate_create_reports_existing_id(store: FactoidStore) -> None:
    store.create(Factoid(trigger="first"))
    store.create(Factoid(trigger="hello"))
    with store.engine.begin() as txn:
        before = txn.bucket(FACTOID_BUCKET).get(itob(2))

    with pytest.raises(AlreadyExistsError) as excinfo:
        store.create(Factoid(trigger="Hello"))

    assert excinfo.value.existing_id == 2
    with store.engine.begin() as txn:
        assert txn.bucket(FACTOID_BUCKET).get(itob(2)) == before
    assert store.count() == 2


def test_failed_create_does_not_consume_an_id(store: FactoidStore) -> None:
    store.create(Factoid(trigger="a"))
    with pytest.raises(AlreadyExistsError):
        store.create(Factoid(trigger="a"))
    assert store.create(Factoid(trigger="b")) == 2


def test_empty_trigger_rejected(store: FactoidStore) -> None:
    with pytest.raises(ValidationError):
        store.create(Factoid(trigger="   "))
    with pytest.raises(ValidationError):
        store.create(Factoid(trigger="?!"))
    assert store.count() == 0
    assert store.get_by_trigger("") is None


def test_missing_lookups_return_none(store: FactoidStore) -> None:
    assert store.get_by_id(42) is None
    assert store.get_by_trigger("nobody") is None
    assert not store.exists(42)
    assert not store.exists_by_trigger("nobody")


def test_rename_moves_index_entry(store: FactoidStore, clock: FakeClock) -> None:
    factoid_id = store.create(Factoid(trigger="old name"))
    created = clock.now
    clock.advance(minutes=5)

    factoid = store.get_by_id(factoid_id)
    factoid.trigger = "new name"
    assert store.put(factoid_id, factoid) == factoid_id

    assert store.get_by_trigger("old name") is None
    assert _raw_index(store, "old name") is None
    renamed = store.get_by_trigger("new name")
    assert renamed.id == factoid_id
    assert renamed.date_created == created
    assert renamed.date_edited == clock.now


def test_rename_onto_taken_trigger_conflicts(store: FactoidStore) -> None:
    store.create(Factoid(trigger="taken"))
    other_id = store.create(Factoid(trigger="other"))

    factoid = store.get_by_id(other_id)
    factoid.trigger = "taken"
    with pytest.raises(ConflictError) as excinfo:
        store.update(factoid)

    assert excinfo.value.owner_id == 1
    assert store.get_by_trigger("taken").id == 1
    assert store.get_by_trigger("other").id == other_id


def test_put_absent_id_allocates(store: FactoidStore) -> None:
    store.create(Factoid(trigger="one"))
    new_id = store.put(99, Factoid(trigger="two"))
    assert new_id == 2
    assert store.get_by_id(99) is None
    assert store.get_by_trigger("two").id == 2


def test_put_by_trigger_upserts(store: FactoidStore) -> None:
    first = Factoid(trigger="ignored")
    first.add_response(FactoidResponse(response="v1"))
    factoid_id = store.put_by_trigger("Greeting", first)

    second = Factoid(trigger="ignored")
    second.add_response(FactoidResponse(response="v2"))
    assert store.put_by_trigger("greeting", second) == factoid_id

    stored = store.get_by_trigger("greeting")
    assert stored.response_texts() == ["v2"]
    assert store.count() == 1


def test_update_requires_existing(store: FactoidStore) -> None:
    with pytest.raises(NotFoundError):
        store.update(Factoid(trigger="ghost", id=5))
    with pytest.raises(NotFoundError):
        store.update(Factoid(trigger="ghost"))


def test_delete_removes_record_and_index(store: FactoidStore) -> None:
    factoid_id = store.create(Factoid(trigger="doomed"))

    removed = store.delete(factoid_id)

    assert removed.trigger == "doomed"
    assert store.get_by_id(factoid_id) is None
    assert _raw_index(store, "doomed") is None
    with pytest.raises(NotFoundError):
        store.delete(factoid_id)
    # Ids are not reused after delete.
    assert store.create(Factoid(trigger="doomed")) == factoid_id + 1


def test_range_returns_requested_count(store: FactoidStore) -> None:
    for number in range(10):
        store.create(Factoid(trigger=f"factoid {number}"))

    assert [f.id for f in store.range(0, 5)] == [1, 2, 3, 4, 5]
    assert [f.id for f in store.range(8, 5)] == [8, 9, 10]
    assert store.range(11, 5) == []
    assert store.range(0, 0) == []
    assert store.range(0, -3) == []


def test_range_skips_gaps_and_clamps(store: FactoidStore) -> None:
    for number in range(120):
        store.create(Factoid(trigger=f"t{number}"))
    store.delete(3)

    assert [f.id for f in store.range(2, 3)] == [2, 4, 5]
    assert len(store.range(0, 500)) == 100
    assert [f.id for f in store.iter_all()] == [i for i in range(1, 121) if i != 3]


def test_buckets_survive_reopen(tmp_path: Path) -> None:
    path = tmp_path / "reopen.lmdb"
    with DataClient(path) as data:
        data.factoids.create(Factoid(trigger="persisted"))
    with DataClient(path) as data:
        assert data.factoids.get_by_trigger("persisted").id == 1
        assert data.factoids.create(Factoid(trigger="next")) == 2


def test_migrate_legacy_rewrites_list_responses(store: FactoidStore) -> None:
    store.create(Factoid(trigger="modern"))
    legacy = {
        "kind": "factoid",
        "v": 1,
        "id": 2,
        "trigger": "legacy",
        "responses": [{"response": "a"}, {"response": "b"}, {"response": "a"}],
    }
    with store.engine.begin(write=True) as txn:
        txn.bucket(FACTOID_BUCKET).put(itob(2), msgpack.packb(legacy, use_bin_type=True))
        txn.bucket(TRIGGER_INDEX_BUCKET).put(b"legacy", itob(2))

    preview = store.migrate_legacy(dry_run=True)
    assert preview["pending"] == 1
    assert preview["migrated"] == 0

    summary = store.migrate_legacy()
    assert summary["ids"] == [2]
    assert summary["migrated"] == 1
    assert store.migrate_legacy(dry_run=True)["pending"] == 0
    assert store.get_by_id(2).response_texts() == ["a", "b"]


def _store_raw(store: FactoidStore, key_id: int, record: dict, trigger: str) -> None:
    with store.engine.begin(write=True) as txn:
        txn.bucket(FACTOID_BUCKET).put(itob(key_id), msgpack.packb(record, use_bin_type=True))
        txn.bucket(TRIGGER_INDEX_BUCKET).put(trigger.encode("utf-8"), itob(key_id))


def test_storage_key_is_the_factoid_id(store: FactoidStore) -> None:
    _store_raw(store, 5, {"kind": "factoid", "v": 1, "trigger": "old", "responses": [{"response": "x"}]}, "old")
    _store_raw(store, 7, {"kind": "factoid", "v": 2, "id": 99, "trigger": "misfiled"}, "misfiled")

    assert store.get_by_id(5).id == 5
    assert store.get_by_trigger("misfiled").id == 7
    assert [f.id for f in store.range(0, 10)] == [5, 7]
    assert [f.id for f in store.iter_all(batch_size=1)] == [5, 7]


def test_rename_of_record_without_stored_id(store: FactoidStore) -> None:
    _store_raw(store, 5, {"kind": "factoid", "v": 1, "trigger": "old", "responses": [{"response": "x"}]}, "old")

    factoid = store.get_by_id(5)
    factoid.trigger = "new"

    assert store.put(5, factoid) == 5
    assert store.get_by_trigger("new").id == 5
    assert store.get_by_id(5).trigger == "new"
    assert _raw_index(store, "old") is None
    assert store.get_by_id(0) is None
    assert store.count() == 1


def test_naive_clock_reads_back_naive(tmp_path: Path) -> None:
    naive_now = datetime(2020, 1, 1, 12, 0)
    with DataClient(tmp_path / "naive.lmdb", clock=lambda: naive_now) as data:
        data.factoids.create(Factoid(trigger="hello"))
        stored = data.factoids.get_by_id(1)

    assert stored.date_created == naive_now
    assert stored.date_created.tzinfo is None
