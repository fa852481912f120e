"""Latency and status sink shared by every worker thread."""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from txload.db import Status


@dataclass
class OperationSummary:
    name: str
    count: int
    avg_us: float
    min_us: int
    max_us: int
    p95_us: float
    p99_us: float
    intended_avg_us: float = 0.0
    statuses: Dict[str, int] = field(default_factory=dict)


def summarize(name: str, latencies: List[int], intended: List[int], statuses: Dict[str, int]) -> OperationSummary:
    if latencies:
        values = np.asarray(latencies, dtype=np.int64)
        p95, p99 = np.percentile(values, [95, 99])
        avg, lo, hi = float(values.mean()), int(values.min()), int(values.max())
    else:
        p95 = p99 = avg = 0.0
        lo = hi = 0
    intended_avg = float(np.mean(intended)) if intended else 0.0
    return OperationSummary(
        name=name,
        count=len(latencies),
        avg_us=avg,
        min_us=lo,
        max_us=hi,
        p95_us=float(p95),
        p99_us=float(p99),
        intended_avg_us=intended_avg,
        statuses=dict(statuses),
    )


class Measurements:
    """Collects per-operation latencies (microseconds) and return statuses."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latencies: Dict[str, List[int]] = defaultdict(list)
        self._intended: Dict[str, List[int]] = defaultdict(list)
        self._statuses: Counter[Tuple[str, str]] = Counter()

    def measure(self, operation: str, latency_us: int) -> None:
        with self._lock:
            self._latencies[operation].append(int(latency_us))

    def measure_intended(self, operation: str, latency_us: int) -> None:
        with self._lock:
            self._intended[operation].append(int(latency_us))

    def report_status(self, operation: str, status: Status) -> None:
        with self._lock:
            self._statuses[(operation, status.name)] += 1

    def operation_count(self, operation: str) -> int:
        with self._lock:
            return len(self._latencies.get(operation, ()))

    def status_count(self, operation: str, status: Status) -> int:
        with self._lock:
            return self._statuses[(operation, status.name)]

    def latencies(self, operation: str) -> List[int]:
        with self._lock:
            return list(self._latencies.get(operation, ()))

    def summaries(self) -> List[OperationSummary]:
        with self._lock:
            names = sorted(set(self._latencies) | {op for op, _ in self._statuses})
            snapshot = [
                (
                    name,
                    list(self._latencies.get(name, ())),
                    list(self._intended.get(name, ())),
                    {status: count for (op, status), count in self._statuses.items() if op == name},
                )
                for name in names
            ]
        return [summarize(*entry) for entry in snapshot]

    def log_summary(self) -> None:
        for summary in self.summaries():
            logging.info(
                "[%s] Operations=%d AverageLatency(us)=%.2f MinLatency(us)=%d MaxLatency(us)=%d "
                "95thPercentileLatency(us)=%.0f 99thPercentileLatency(us)=%.0f",
                summary.name,
                summary.count,
                summary.avg_us,
                summary.min_us,
                summary.max_us,
                summary.p95_us,
                summary.p99_us,
            )
            for status, count in sorted(summary.statuses.items()):
                logging.info("[%s] Return=%s %d", summary.name, status, count)
