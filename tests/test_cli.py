"""Tests for the command line entry point."""

import csv

import pytest

from txload import cli


@pytest.fixture(autouse=True)
def keep_pytest_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda args: None)


class TestParseArgs:
    def test_overrides_collect_in_order(self):
        args = cli.parse_args(
            ["run", "-P", "a.properties", "-p", "recordcount=5", "--threads", "3", "--db", "memory"]
        )
        assert args.phase == "run"
        assert args.property_files == ["a.properties"]
        assert cli.cli_overrides(args) == ["recordcount=5", "db=memory", "threadcount=3"]

    def test_phase_is_required(self):
        with pytest.raises(SystemExit):
            cli.parse_args([])


class TestMain:
    def test_memory_run_writes_summary(self, tmp_path):
        csv_path = tmp_path / "summary.csv"
        code = cli.main(
            [
                "run",
                "-p", "recordcount=50",
                "-p", "operationcount=100",
                "-p", "status.interval=60",
                "--threads", "2",
                "--csv", str(csv_path),
            ]
        )
        assert code == 0
        with open(csv_path, newline="", encoding="utf-8") as f:
            names = {row["operation"] for row in csv.DictReader(f)}
        assert "READ" in names
        # the implicit load phase is measured separately
        assert "INSERT" not in names

    def test_property_file(self, tmp_path):
        props = tmp_path / "workload.properties"
        props.write_text("recordcount=20\noperationcount=0\ninsertorder=ordered\n")
        assert cli.main(["load", "-P", str(props)]) == 0

    def test_config_error_exits_nonzero(self, caplog):
        assert cli.main(["load", "-p", "requestdistribution=bogus"]) == 1
        assert 'Unknown request distribution "bogus"' in caplog.text
