"""Exports of the per-operation summary: CSV table and latency percentile chart."""

from __future__ import annotations

import csv
import os
from typing import Dict, List, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import seaborn as sns  # noqa: E402

from txload.measurements import Measurements, OperationSummary  # noqa: E402

sns.set_theme(style="whitegrid")
plt.rcParams.update({
    "axes.titlesize": 14,
    "axes.labelsize": 12,
    "xtick.labelsize": 10,
    "ytick.labelsize": 10,
    "legend.fontsize": 10,
})

CSV_COLUMNS = [
    "operation",
    "count",
    "avg_us",
    "min_us",
    "max_us",
    "p95_us",
    "p99_us",
    "intended_avg_us",
    "statuses",
]
PLOT_PERCENTILES = (50, 75, 90, 95, 99, 99.9)


def _format_statuses(statuses: Dict[str, int]) -> str:
    return ";".join(f"{name}={count}" for name, count in sorted(statuses.items()))


def write_summary_csv(summaries: Sequence[OperationSummary], csv_path: str) -> None:
    os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
    with open(csv_path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(CSV_COLUMNS)
        for s in summaries:
            w.writerow([
                s.name,
                s.count,
                f"{s.avg_us:.2f}",
                s.min_us,
                s.max_us,
                f"{s.p95_us:.0f}",
                f"{s.p99_us:.0f}",
                f"{s.intended_avg_us:.2f}",
                _format_statuses(s.statuses),
            ])


def percentile_table(measurements: Measurements, operations: Sequence[str]) -> Dict[str, List[float]]:
    table: Dict[str, List[float]] = {}
    for name in operations:
        latencies = measurements.latencies(name)
        if not latencies:
            continue
        values = np.asarray(latencies, dtype=np.int64)
        table[name] = [float(v) for v in np.percentile(values, PLOT_PERCENTILES)]
    return table


def plot_latency_percentiles(measurements: Measurements, out_path: str, title: str = "Latency percentiles") -> bool:
    """Draw one line per operation over ``PLOT_PERCENTILES``; returns False when nothing was measured."""
    operations = [s.name for s in measurements.summaries() if s.count]
    table = percentile_table(measurements, operations)
    if not table:
        return False

    fig, ax = plt.subplots(figsize=(11, 8.5))
    palette = plt.get_cmap("tab10")
    positions = list(range(len(PLOT_PERCENTILES)))
    for i, (name, values) in enumerate(sorted(table.items())):
        ax.plot(positions, values, marker="o", color=palette(i % 10), label=name)
    ax.set_xticks(positions)
    ax.set_xticklabels([f"p{p:g}" for p in PLOT_PERCENTILES])
    ax.set_yscale("log")
    ax.set_ylabel("Latency (us)")
    ax.set_xlabel("Percentile")
    ax.grid(True, linestyle="--", alpha=0.3)
    ax.legend(loc="upper left")
    fig.suptitle(title)
    fig.tight_layout(rect=[0, 0.03, 1, 0.97])
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return True
