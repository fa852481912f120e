"""Tests for the measurement sink and its CSV/plot exports."""

import csv
import logging
import threading

from txload import report
from txload.db import Status
from txload.measurements import Measurements, summarize


class TestMeasurements:
    def test_summary_statistics(self):
        m = Measurements()
        for latency in range(1, 101):
            m.measure("READ", latency)
            m.report_status("READ", Status.OK)
        m.report_status("READ", Status.NOT_FOUND)
        (summary,) = m.summaries()
        assert summary.name == "READ"
        assert summary.count == 100
        assert summary.min_us == 1
        assert summary.max_us == 100
        assert summary.avg_us == 50.5
        assert 94 <= summary.p95_us <= 96
        assert 98 <= summary.p99_us <= 100
        assert summary.statuses == {"OK": 100, "NOT_FOUND": 1}

    def test_status_only_operation_is_summarized(self):
        m = Measurements()
        m.report_status("VERIFY", Status.ERROR)
        (summary,) = m.summaries()
        assert summary.count == 0
        assert summary.statuses == {"ERROR": 1}

    def test_intended_latency(self):
        summary = summarize("UPDATE", [10, 20], [30, 50], {})
        assert summary.intended_avg_us == 40.0

    def test_concurrent_recording(self):
        m = Measurements()

        def worker():
            for _ in range(1000):
                m.measure("UPDATE", 5)
                m.report_status("UPDATE", Status.OK)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert m.operation_count("UPDATE") == 8000
        assert m.status_count("UPDATE", Status.OK) == 8000

    def test_log_summary(self, caplog):
        m = Measurements()
        m.measure("SCAN", 7)
        m.report_status("SCAN", Status.OK)
        with caplog.at_level(logging.INFO):
            m.log_summary()
        assert "[SCAN] Operations=1" in caplog.text
        assert "[SCAN] Return=OK 1" in caplog.text


class TestReport:
    def test_write_summary_csv(self, tmp_path):
        m = Measurements()
        m.measure("READ", 10)
        m.report_status("READ", Status.OK)
        m.report_status("READ", Status.ERROR)
        path = tmp_path / "out" / "summary.csv"
        report.write_summary_csv(m.summaries(), str(path))
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["operation"] == "READ"
        assert rows[0]["count"] == "1"
        assert rows[0]["statuses"] == "ERROR=1;OK=1"

    def test_plot_latency_percentiles(self, tmp_path):
        m = Measurements()
        for latency in (5, 10, 20, 40):
            m.measure("READ", latency)
            m.measure("UPDATE", latency * 2)
        path = tmp_path / "latency.png"
        assert report.plot_latency_percentiles(m, str(path))
        assert path.stat().st_size > 0

    def test_plot_without_data(self, tmp_path):
        assert not report.plot_latency_percentiles(Measurements(), str(tmp_path / "empty.png"))
