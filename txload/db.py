"""The capability a storage backend exposes to the workload, plus an in-memory backend."""

from __future__ import annotations

import bisect
import enum
import itertools
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

Row = Dict[str, bytes]
ValueBuilder = Callable[[str], Row]


class Status(enum.Enum):
    OK = "The operation completed successfully."
    ERROR = "The operation failed."
    NOT_FOUND = "The requested record was not found."
    NOT_IMPLEMENTED = "The operation is not implemented for the current binding."
    UNEXPECTED_STATE = "The operation reported success, but the result was not as expected."
    BAD_REQUEST = "The request was not valid."

    def is_ok(self) -> bool:
        return self is Status.OK


@dataclass
class TransactionHandle:
    tx_id: int
    context: Optional[object] = field(default=None, repr=False)


class DB:
    """Backend under test.

    One instance is created per worker thread. Every data call runs inside
    its own ``begin``/``commit`` pair; a failed commit surfaces as
    ``Status.ERROR``. Backends report failures through the returned Status and
    do not raise for ordinary errors.
    """

    def __init__(self, properties: Optional[Mapping[str, str]] = None) -> None:
        self.properties: Dict[str, str] = dict(properties or {})

    def init(self) -> None:
        """Called once per worker before the first operation."""

    def cleanup(self) -> None:
        """Called once per worker after the last operation."""

    def begin(self) -> TransactionHandle:
        raise NotImplementedError

    def commit(self, tx: TransactionHandle) -> bool:
        raise NotImplementedError

    def read(self, table: str, key: str, fields: Optional[Set[str]], result: Row) -> Status:
        raise NotImplementedError

    def scan(
        self,
        table: str,
        startkey: str,
        recordcount: int,
        fields: Optional[Set[str]],
        result: List[Row],
    ) -> Status:
        raise NotImplementedError

    def update(self, table: str, key: str, values: Row) -> Status:
        raise NotImplementedError

    def insert(self, table: str, key: str, values: Row) -> Status:
        raise NotImplementedError

    def delete(self, table: str, key: str) -> Status:
        raise NotImplementedError

    def read_multi(
        self,
        table: str,
        keys: List[str],
        fields: Optional[Set[str]],
        result: Dict[str, Row],
    ) -> Status:
        return Status.NOT_IMPLEMENTED

    def update_multi(self, table: str, values_by_key: Dict[str, Row]) -> Status:
        return Status.NOT_IMPLEMENTED

    def scan_write(
        self,
        table: str,
        startkey: str,
        recordcount: int,
        fields: Optional[Set[str]],
        build_values: ValueBuilder,
    ) -> Status:
        """Scan up to ``recordcount`` rows from ``startkey`` and overwrite each with ``build_values(key)``."""
        return Status.NOT_IMPLEMENTED

    def complex(
        self,
        table: str,
        read_keys: List[str],
        fields: Optional[Set[str]],
        result: Dict[str, Row],
        values_by_key: Dict[str, Row],
    ) -> Status:
        """Read ``read_keys`` and write ``values_by_key`` in one transaction."""
        return Status.NOT_IMPLEMENTED


def _project(row: Row, fields: Optional[Iterable[str]]) -> Row:
    if fields is None:
        return dict(row)
    return {name: row[name] for name in fields if name in row}


class MemoryStore:
    """Process-wide tables shared by every MemoryDB client."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.tables: Dict[str, Dict[str, Row]] = {}
        self.ordered_keys: Dict[str, List[str]] = {}
        self._tx_ids = itertools.count(1)

    def next_tx_id(self) -> int:
        return next(self._tx_ids)

    def table(self, name: str) -> Dict[str, Row]:
        if name not in self.tables:
            self.tables[name] = {}
            self.ordered_keys[name] = []
        return self.tables[name]

    def put(self, name: str, key: str, values: Row) -> None:
        rows = self.table(name)
        if key not in rows:
            bisect.insort(self.ordered_keys[name], key)
            rows[key] = {}
        rows[key].update(values)

    def remove(self, name: str, key: str) -> bool:
        rows = self.table(name)
        if key not in rows:
            return False
        del rows[key]
        keys = self.ordered_keys[name]
        del keys[bisect.bisect_left(keys, key)]
        return True

    def keys_from(self, name: str, startkey: str, count: int) -> List[str]:
        self.table(name)
        keys = self.ordered_keys[name]
        index = bisect.bisect_left(keys, startkey)
        return keys[index:index + count]


class MemoryDB(DB):
    """Thread-safe dictionary backend; each call holds the store lock for its whole transaction."""

    def __init__(
        self,
        properties: Optional[Mapping[str, str]] = None,
        store: Optional[MemoryStore] = None,
    ) -> None:
        super().__init__(properties)
        self.store = store or MemoryStore()

    def begin(self) -> TransactionHandle:
        return TransactionHandle(self.store.next_tx_id())

    def commit(self, tx: TransactionHandle) -> bool:
        return True

    def _finish(self, tx: TransactionHandle, status: Status) -> Status:
        if not self.commit(tx):
            return Status.ERROR
        return status

    def read(self, table: str, key: str, fields: Optional[Set[str]], result: Row) -> Status:
        with self.store.lock:
            tx = self.begin()
            row = self.store.table(table).get(key)
            if row is None:
                return self._finish(tx, Status.NOT_FOUND)
            result.update(_project(row, fields))
            return self._finish(tx, Status.OK)

    def scan(
        self,
        table: str,
        startkey: str,
        recordcount: int,
        fields: Optional[Set[str]],
        result: List[Row],
    ) -> Status:
        with self.store.lock:
            tx = self.begin()
            rows = self.store.table(table)
            for key in self.store.keys_from(table, startkey, recordcount):
                result.append(_project(rows[key], fields))
            return self._finish(tx, Status.OK)

    def update(self, table: str, key: str, values: Row) -> Status:
        with self.store.lock:
            tx = self.begin()
            if key not in self.store.table(table):
                return self._finish(tx, Status.NOT_FOUND)
            self.store.put(table, key, values)
            return self._finish(tx, Status.OK)

    def insert(self, table: str, key: str, values: Row) -> Status:
        with self.store.lock:
            tx = self.begin()
            self.store.put(table, key, values)
            return self._finish(tx, Status.OK)

    def delete(self, table: str, key: str) -> Status:
        with self.store.lock:
            tx = self.begin()
            found = self.store.remove(table, key)
            return self._finish(tx, Status.OK if found else Status.NOT_FOUND)

    def read_multi(
        self,
        table: str,
        keys: List[str],
        fields: Optional[Set[str]],
        result: Dict[str, Row],
    ) -> Status:
        with self.store.lock:
            tx = self.begin()
            rows = self.store.table(table)
            for key in keys:
                row = rows.get(key)
                result[key] = _project(row, fields) if row is not None else {}
            return self._finish(tx, Status.OK)

    def update_multi(self, table: str, values_by_key: Dict[str, Row]) -> Status:
        with self.store.lock:
            tx = self.begin()
            rows = self.store.table(table)
            if any(key not in rows for key in values_by_key):
                return self._finish(tx, Status.NOT_FOUND)
            for key, values in values_by_key.items():
                self.store.put(table, key, values)
            return self._finish(tx, Status.OK)

    def scan_write(
        self,
        table: str,
        startkey: str,
        recordcount: int,
        fields: Optional[Set[str]],
        build_values: ValueBuilder,
    ) -> Status:
        with self.store.lock:
            tx = self.begin()
            for key in self.store.keys_from(table, startkey, recordcount):
                self.store.put(table, key, build_values(key))
            return self._finish(tx, Status.OK)

    def complex(
        self,
        table: str,
        read_keys: List[str],
        fields: Optional[Set[str]],
        result: Dict[str, Row],
        values_by_key: Dict[str, Row],
    ) -> Status:
        with self.store.lock:
            tx = self.begin()
            rows = self.store.table(table)
            for key in read_keys:
                row = rows.get(key)
                result[key] = _project(row, fields) if row is not None else {}
            for key, values in values_by_key.items():
                self.store.put(table, key, values)
            return self._finish(tx, Status.OK)
