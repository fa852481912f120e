"""Runs one logical operation end to end against a DB backend."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Set

from txload.db import DB, Row, Status
from txload.keys import VerifyOutcome, verify_row
from txload.measurements import Measurements
from txload.operations import Operation
from txload.partitioning import ThreadState
from txload.workload import COMPLEX_READ, CoreWorkload

VERIFY = "VERIFY"
READ_MODIFY_WRITE = "READ-MODIFY-WRITE"

_VERIFY_STATUS = {
    VerifyOutcome.MATCH: Status.OK,
    VerifyOutcome.MISMATCH: Status.UNEXPECTED_STATE,
    VerifyOutcome.MISSING: Status.ERROR,
}


def _elapsed_us(start_ns: int, end_ns: int) -> int:
    return max(0, (end_ns - start_ns) // 1000)


class TransactionDriver:
    """Per-worker orchestration: pick an operation, pick keys, call the DB, record the outcome.

    One driver is created per worker thread together with that worker's DB
    instance; shared state lives in the ``CoreWorkload`` and the
    ``Measurements`` sink. Failed operations are recorded and never raised.
    """

    def __init__(self, workload: CoreWorkload, db: DB, measurements: Measurements) -> None:
        self.workload = workload
        self.db = db
        self.measurements = measurements
        self.table = workload.table
        self._dispatch: Dict[Operation, Callable[[ThreadState], bool]] = {
            Operation.READ: self.do_read,
            Operation.UPDATE: self.do_update,
            Operation.INSERT: self.do_transaction_insert,
            Operation.SCAN: self.do_scan,
            Operation.READMODIFYWRITE: self.do_read_modify_write,
            Operation.MULTIREAD: self.do_multi_read,
            Operation.MULTIUPDATE: self.do_multi_update,
            Operation.SCANWRITE: self.do_scan_write,
            Operation.COMPLEX: self.do_complex,
        }
        missing = set(Operation) - set(self._dispatch)
        if missing:  # pragma: no cover
            raise RuntimeError(f"No handler for {sorted(op.name for op in missing)}")

    # -- measurement helpers -------------------------------------------------

    def _timed(self, name: str, state: ThreadState, call: Callable[[], Status]) -> Status:
        intended_ns = state.intended_start_ns
        start_ns = time.perf_counter_ns()
        status = call()
        end_ns = time.perf_counter_ns()
        self.measurements.measure(name, _elapsed_us(start_ns, end_ns))
        self.measurements.measure_intended(
            name, _elapsed_us(intended_ns if intended_ns is not None else start_ns, end_ns)
        )
        self.measurements.report_status(name, status)
        if not status.is_ok():
            logging.debug("[%s] thread %d returned %s", name, state.thread_id, status.name)
        return status

    def verify(self, key: str, cells: Optional[Row]) -> VerifyOutcome:
        start_ns = time.perf_counter_ns()
        outcome = verify_row(self.workload.values, key, cells)
        self.measurements.measure(VERIFY, _elapsed_us(start_ns, time.perf_counter_ns()))
        self.measurements.report_status(VERIFY, _VERIFY_STATUS[outcome])
        if outcome is not VerifyOutcome.MATCH:
            logging.debug("[VERIFY] %s: %s", key, outcome.value)
        return outcome

    # -- key and field selection ---------------------------------------------

    def _keys(self, state: ThreadState, count: int) -> List[str]:
        generator, _ = self.workload.select_key_generator(state)
        keys = [
            self.workload.build_key(self.workload.next_keynum(generator, state))
            for _ in range(count)
        ]
        return keys

    def _read_fields(self, state: ThreadState) -> Optional[Set[str]]:
        if not self.workload.config.readallfields:
            return {self.workload.choose_field(state)}
        if self.workload.config.dataintegrity:
            return set(self.workload.field_names)
        return None

    def _write_values(self, state: ThreadState, key: str) -> Row:
        values = self.workload.values
        if self.workload.config.writeallfields:
            return values.all_fields(state.rng, key)
        return values.fields(state.rng, key, [self.workload.choose_field(state)])

    # -- load phase ----------------------------------------------------------

    def do_insert(self, state: ThreadState) -> bool:
        """Insert the next record of the load sequence, retrying per the configured policy."""
        keynum = self.workload.keysequence.next_value()
        key = self.workload.build_key(keynum)
        values = self.workload.values.all_fields(state.rng, key)
        retrier = self.workload.new_retrier(state)
        status = retrier.run(
            lambda: self._timed(Operation.INSERT.value, state, lambda: self.db.insert(self.table, key, values)),
            label=f"insert {key}",
        )
        return status.is_ok()

    # -- run phase -----------------------------------------------------------

    def do_transaction(self, state: ThreadState) -> bool:
        """Run one operation; returns False only when no operation is configured."""
        operation = self.workload.operation_chooser.choose(state.rng)
        if operation is None:
            return False
        self._dispatch[operation](state)
        return True

    def do_read(self, state: ThreadState) -> bool:
        (key,) = self._keys(state, 1)
        fields = self._read_fields(state)
        cells: Row = {}
        status = self._timed(
            Operation.READ.value, state, lambda: self.db.read(self.table, key, fields, cells)
        )
        if self.workload.config.dataintegrity:
            self.verify(key, cells)
        return status.is_ok()

    def do_update(self, state: ThreadState) -> bool:
        (key,) = self._keys(state, 1)
        values = self._write_values(state, key)
        status = self._timed(
            Operation.UPDATE.value, state, lambda: self.db.update(self.table, key, values)
        )
        return status.is_ok()

    def do_transaction_insert(self, state: ThreadState) -> bool:
        tracker = self.workload.tracker
        keynum = tracker.next_sequence()
        try:
            key = self.workload.build_key(keynum)
            values = self.workload.values.all_fields(state.rng, key)
            status = self._timed(
                Operation.INSERT.value, state, lambda: self.db.insert(self.table, key, values)
            )
        finally:
            tracker.acknowledge(keynum)
        return status.is_ok()

    def do_scan(self, state: ThreadState) -> bool:
        (startkey,) = self._keys(state, 1)
        length = self.workload.scanlength.next_value(state.rng)
        fields = self._read_fields(state)
        rows: List[Row] = []
        status = self._timed(
            Operation.SCAN.value,
            state,
            lambda: self.db.scan(self.table, startkey, length, fields, rows),
        )
        return status.is_ok()

    def do_read_modify_write(self, state: ThreadState) -> bool:
        (key,) = self._keys(state, 1)
        fields = None if self.workload.config.readallfields else {self.workload.choose_field(state)}
        values = self._write_values(state, key)
        cells: Row = {}

        intended_ns = state.intended_start_ns
        start_ns = time.perf_counter_ns()
        status = self._timed(
            Operation.READ.value, state, lambda: self.db.read(self.table, key, fields, cells)
        )
        if status.is_ok():
            status = self._timed(
                Operation.UPDATE.value, state, lambda: self.db.update(self.table, key, values)
            )
        end_ns = time.perf_counter_ns()

        if self.workload.config.dataintegrity:
            self.verify(key, cells)
        self.measurements.measure(READ_MODIFY_WRITE, _elapsed_us(start_ns, end_ns))
        self.measurements.measure_intended(
            READ_MODIFY_WRITE,
            _elapsed_us(intended_ns if intended_ns is not None else start_ns, end_ns),
        )
        self.measurements.report_status(READ_MODIFY_WRITE, status)
        return status.is_ok()

    def do_multi_read(self, state: ThreadState) -> bool:
        length = self.workload.transactionlength.next_value(state.rng)
        keys = self._keys(state, length)
        fields = self._read_fields(state)
        result: Dict[str, Row] = {}
        status = self._timed(
            Operation.MULTIREAD.value,
            state,
            lambda: self.db.read_multi(self.table, keys, fields, result),
        )
        if self.workload.config.dataintegrity and status.is_ok():
            for key in dict.fromkeys(keys):
                self.verify(key, result.get(key))
        return status.is_ok()

    def do_multi_update(self, state: ThreadState) -> bool:
        length = self.workload.transactionlength.next_value(state.rng)
        keys = self._keys(state, length)
        values_by_key = {key: self._write_values(state, key) for key in keys}
        status = self._timed(
            Operation.MULTIUPDATE.value,
            state,
            lambda: self.db.update_multi(self.table, values_by_key),
        )
        return status.is_ok()

    def do_scan_write(self, state: ThreadState) -> bool:
        (startkey,) = self._keys(state, 1)
        length = self.workload.scanlength.next_value(state.rng)
        fields = self._read_fields(state)
        status = self._timed(
            Operation.SCANWRITE.value,
            state,
            lambda: self.db.scan_write(
                self.table, startkey, length, fields, lambda key: self._write_values(state, key)
            ),
        )
        return status.is_ok()

    def do_complex(self, state: ThreadState) -> bool:
        length = self.workload.transactionlength.next_value(state.rng)
        keys = self._keys(state, length)
        read_keys: List[str] = []
        write_keys: List[str] = []
        for key in keys:
            if self.workload.complex_chooser.next_value(state.rng) == COMPLEX_READ:
                read_keys.append(key)
            else:
                write_keys.append(key)
        fields = self._read_fields(state)
        values_by_key = {key: self._write_values(state, key) for key in write_keys}
        result: Dict[str, Row] = {}
        status = self._timed(
            Operation.COMPLEX.value,
            state,
            lambda: self.db.complex(self.table, read_keys, fields, result, values_by_key),
        )
        return status.is_ok()
