"""Tests for the DB capability defaults and the in-memory backend."""

import pytest

from txload.db import DB, MemoryDB, MemoryStore, Status

TABLE = "usertable"


@pytest.fixture
def db():
    memory = MemoryDB()
    for i in range(5):
        memory.insert(TABLE, f"user{i}", {"field0": f"a{i}".encode(), "field1": f"b{i}".encode()})
    return memory


class TestBaseDB:
    def test_single_key_calls_are_abstract(self):
        with pytest.raises(NotImplementedError):
            DB().read(TABLE, "user1", None, {})

    def test_multi_key_calls_default_to_not_implemented(self):
        base = DB({"a": "1"})
        assert base.properties == {"a": "1"}
        assert base.read_multi(TABLE, ["k"], None, {}) is Status.NOT_IMPLEMENTED
        assert base.update_multi(TABLE, {}) is Status.NOT_IMPLEMENTED
        assert base.scan_write(TABLE, "k", 1, None, lambda key: {}) is Status.NOT_IMPLEMENTED
        assert base.complex(TABLE, [], None, {}, {}) is Status.NOT_IMPLEMENTED


class TestMemoryDB:
    def test_read_projects_fields(self, db):
        result = {}
        assert db.read(TABLE, "user1", {"field1"}, result) is Status.OK
        assert result == {"field1": b"b1"}

    def test_read_missing(self, db):
        assert db.read(TABLE, "user9", None, {}) is Status.NOT_FOUND

    def test_update_merges_fields(self, db):
        assert db.update(TABLE, "user2", {"field0": b"new"}) is Status.OK
        result = {}
        db.read(TABLE, "user2", None, result)
        assert result == {"field0": b"new", "field1": b"b2"}

    def test_update_missing(self, db):
        assert db.update(TABLE, "user9", {"field0": b"x"}) is Status.NOT_FOUND

    def test_delete(self, db):
        assert db.delete(TABLE, "user3") is Status.OK
        assert db.delete(TABLE, "user3") is Status.NOT_FOUND
        assert db.read(TABLE, "user3", None, {}) is Status.NOT_FOUND

    def test_scan_is_ordered_from_start_key(self, db):
        rows = []
        assert db.scan(TABLE, "user1", 3, {"field0"}, rows) is Status.OK
        assert rows == [{"field0": b"a1"}, {"field0": b"a2"}, {"field0": b"a3"}]

    def test_scan_past_end(self, db):
        rows = []
        assert db.scan(TABLE, "user4", 10, None, rows) is Status.OK
        assert len(rows) == 1

    def test_read_multi_marks_missing_keys_empty(self, db):
        result = {}
        assert db.read_multi(TABLE, ["user0", "user9"], None, result) is Status.OK
        assert result["user0"]["field0"] == b"a0"
        assert result["user9"] == {}

    def test_update_multi_is_all_or_nothing(self, db):
        status = db.update_multi(TABLE, {"user0": {"field0": b"x"}, "user9": {"field0": b"y"}})
        assert status is Status.NOT_FOUND
        result = {}
        db.read(TABLE, "user0", None, result)
        assert result["field0"] == b"a0"

    def test_scan_write_rebuilds_each_row(self, db):
        seen = []

        def build(key):
            seen.append(key)
            return {"field0": key.encode()}

        assert db.scan_write(TABLE, "user2", 2, None, build) is Status.OK
        assert seen == ["user2", "user3"]
        result = {}
        db.read(TABLE, "user3", None, result)
        assert result["field0"] == b"user3"

    def test_complex_reads_and_writes(self, db):
        result = {}
        status = db.complex(TABLE, ["user1"], {"field1"}, result, {"user7": {"field0": b"z"}})
        assert status is Status.OK
        assert result == {"user1": {"field1": b"b1"}}
        assert db.read(TABLE, "user7", None, {}) is Status.OK

    def test_instances_share_a_store(self):
        store = MemoryStore()
        writer = MemoryDB(store=store)
        reader = MemoryDB(store=store)
        writer.insert(TABLE, "k", {"field0": b"v"})
        result = {}
        assert reader.read(TABLE, "k", None, result) is Status.OK
        assert result == {"field0": b"v"}

    def test_transaction_ids_increase(self):
        db = MemoryDB()
        first = db.begin()
        second = db.begin()
        assert second.tx_id > first.tx_id
        assert db.commit(second)
