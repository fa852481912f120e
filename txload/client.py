"""Load and run phases: worker threads, throttling, deadlines and progress logging."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from txload.config import WorkloadConfig
from txload.db import DB, MemoryDB, MemoryStore
from txload.driver import TransactionDriver
from txload.errors import WorkloadConfigError
from txload.measurements import Measurements
from txload.partitioning import ThreadState
from txload.workload import CoreWorkload

LOAD = "load"
RUN = "run"

DBFactory = Callable[[], DB]


@dataclass
class PhaseResult:
    phase: str
    operations: int
    runtime_s: float
    timed_out: bool = False
    failed_workers: int = 0

    @property
    def throughput(self) -> float:
        return self.operations / self.runtime_s if self.runtime_s > 0 else 0.0


class ProgressCounter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.value = 0

    def add(self, amount: int = 1) -> None:
        with self._lock:
            self.value += amount

    def snapshot(self) -> int:
        with self._lock:
            return self.value


def db_factory(config: WorkloadConfig, store: Optional[MemoryStore] = None) -> DBFactory:
    """Return a constructor for per-worker DB instances."""
    if config.db == "memory":
        shared = store or MemoryStore()
        return lambda: MemoryDB(config.properties, store=shared)
    if config.db == "mysql":
        from txload.mysql_db import MySQLDB

        return lambda: MySQLDB(config.properties)
    raise WorkloadConfigError(f'Unknown db "{config.db}" (expected memory or mysql)')


def split_operations(total: int, threads: int) -> List[int]:
    base, extra = divmod(total, threads)
    return [base + (1 if index < extra else 0) for index in range(threads)]


class Throttle:
    """Paces one worker to ``ops_per_sec`` and records each operation's intended start."""

    def __init__(self, ops_per_sec: float, stop_event: threading.Event) -> None:
        self.interval_ns = int(1_000_000_000 / ops_per_sec) if ops_per_sec > 0 else 0
        self.stop_event = stop_event
        self.start_ns = time.perf_counter_ns()

    def wait(self, state: ThreadState, done: int) -> None:
        if not self.interval_ns:
            state.intended_start_ns = None
            return
        intended = self.start_ns + done * self.interval_ns
        delay_ns = intended - time.perf_counter_ns()
        if delay_ns > 0:
            self.stop_event.wait(delay_ns / 1_000_000_000)
        state.intended_start_ns = intended


def _status_logger(
    phase: str,
    counter: ProgressCounter,
    measurements: Measurements,
    interval: float,
    done_event: threading.Event,
    start_ts: float,
) -> None:
    last_ops = 0
    last_ts = start_ts
    while not done_event.wait(interval):
        now = time.perf_counter()
        ops = counter.snapshot()
        current = (ops - last_ops) / (now - last_ts) if now > last_ts else 0.0
        logging.info(
            "[%s] %.0f sec: %d operations; %.2f current ops/sec",
            phase,
            now - start_ts,
            ops,
            current,
        )
        for summary in measurements.summaries():
            logging.debug(
                "[%s] %s count=%d avg=%.2fus p99=%.0fus",
                phase,
                summary.name,
                summary.count,
                summary.avg_us,
                summary.p99_us,
            )
        last_ops, last_ts = ops, now


def run_phase(
    phase: str,
    workload: CoreWorkload,
    measurements: Measurements,
    make_db: DBFactory,
    operationcount: Optional[int] = None,
) -> PhaseResult:
    """Run ``phase`` (load or run) across ``threadcount`` workers and wait for them."""
    config = workload.config
    if operationcount is None:
        operationcount = config.insertcount if phase == LOAD else config.operationcount
    unbounded = operationcount == 0 and config.max_execution_time > 0
    if operationcount == 0 and not unbounded:
        logging.warning("[%s] Nothing to do: operation count is 0 and no max execution time set", phase)
        return PhaseResult(phase=phase, operations=0, runtime_s=0.0)

    threads = config.threadcount
    per_thread = split_operations(operationcount, threads)
    per_thread_target = config.target / threads if config.target > 0 else 0.0
    stop_event = workload.stop_event
    stop_event.clear()
    counter = ProgressCounter()
    failures: List[str] = []
    failures_lock = threading.Lock()

    logging.info(
        "[%s] Starting %d worker(s): %s operations, target=%s ops/sec, maxexecutiontime=%ss",
        phase,
        threads,
        "unbounded" if unbounded else f"{operationcount:,}",
        config.target or "unthrottled",
        config.max_execution_time or "none",
    )

    def worker(thread_id: int, budget: int) -> None:
        db = make_db()
        state = workload.init_thread(thread_id)
        driver = TransactionDriver(workload, db, measurements)
        step = driver.do_insert if phase == LOAD else driver.do_transaction
        try:
            db.init()
            throttle = Throttle(per_thread_target, stop_event)
            done = 0
            while not stop_event.is_set() and (unbounded or done < budget):
                throttle.wait(state, done)
                if stop_event.is_set():
                    break
                if not step(state) and phase == RUN:
                    break
                done += 1
                counter.add()
        except Exception as exc:
            logging.exception("[%s] worker %d failed", phase, thread_id)
            with failures_lock:
                failures.append(f"worker {thread_id}: {exc}")
            stop_event.set()
        finally:
            db.cleanup()

    start_ts = time.perf_counter()
    done_event = threading.Event()
    status_thread = threading.Thread(
        target=_status_logger,
        args=(phase, counter, measurements, max(config.status_interval, 0.1), done_event, start_ts),
        name="status-logger",
        daemon=True,
    )
    status_thread.start()

    workers = [
        threading.Thread(target=worker, args=(index, budget), name=f"worker-{index + 1:02d}")
        for index, budget in enumerate(per_thread)
    ]
    for thread in workers:
        thread.start()

    timed_out = False
    deadline = start_ts + config.max_execution_time if config.max_execution_time > 0 else None
    try:
        for thread in workers:
            while thread.is_alive():
                remaining = None if deadline is None else deadline - time.perf_counter()
                if remaining is not None and remaining <= 0:
                    if not stop_event.is_set():
                        logging.info(
                            "[%s] Max execution time %ss reached; signalling stop.",
                            phase,
                            config.max_execution_time,
                        )
                    timed_out = True
                    stop_event.set()
                    remaining = None
                thread.join(timeout=remaining if remaining is None else min(remaining, 1.0))
    except KeyboardInterrupt:
        logging.warning("[%s] Interrupted; waiting for workers to stop", phase)
        stop_event.set()
        for thread in workers:
            thread.join()
        raise
    finally:
        done_event.set()
        status_thread.join(timeout=5)

    runtime = time.perf_counter() - start_ts
    result = PhaseResult(
        phase=phase,
        operations=counter.snapshot(),
        runtime_s=runtime,
        timed_out=timed_out,
        failed_workers=len(failures),
    )
    logging.info(
        "[%s] COMPLETE: %d operations in %.2fs (%.2f ops/sec)",
        phase,
        result.operations,
        result.runtime_s,
        result.throughput,
    )
    for failure in failures:
        logging.error("[%s] %s", phase, failure)
    return result
