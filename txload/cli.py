"""Command line entry point: ``txload load`` and ``txload run``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from txload import __version__
from txload.client import LOAD, RUN, PhaseResult, db_factory, run_phase
from txload.config import WorkloadConfig, load_properties
from txload.errors import WorkloadError
from txload.measurements import Measurements
from txload.workload import CoreWorkload


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Build the CLI parser."""
    parser = argparse.ArgumentParser(
        prog="txload",
        description="Synthetic transactional workload generator.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "phase",
        choices=(LOAD, RUN),
        help="'load' inserts the initial records; 'run' executes the transaction mix.",
    )
    parser.add_argument(
        "-P",
        dest="property_files",
        action="append",
        default=[],
        metavar="FILE",
        help="Workload property file (key=value lines, or .toml). May be repeated.",
    )
    parser.add_argument(
        "-p",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a single property. May be repeated; wins over -P files.",
    )
    parser.add_argument("--db", choices=("memory", "mysql"), help="Backend (default: memory)")
    parser.add_argument("--threads", type=int, help="Worker thread count (threadcount)")
    parser.add_argument("--target", type=float, help="Target total ops/sec (0 = unthrottled)")
    parser.add_argument("--max-execution-time", type=float, help="Wall-clock bound in seconds")
    parser.add_argument(
        "--create-table",
        action="store_true",
        help="For the mysql backend: create the database and table before the phase starts.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --create-table: drop and recreate an existing table.",
    )
    parser.add_argument("--csv", help="Write the per-operation summary to this CSV file")
    parser.add_argument("--plot", help="Write a latency percentile chart (PNG) to this path")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity (default: INFO)",
    )
    parser.add_argument("--log-file", help="Also write log output to this file")
    return parser.parse_args(argv)


def configure_logging(args: argparse.Namespace) -> Optional[Path]:
    """Set up logging to stdout and, when requested, tee the stream to a log file."""

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_path: Optional[Path] = None
    if args.log_file:
        log_path = Path(args.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(message)s",
        handlers=handlers,
        force=True,
    )
    return log_path


def cli_overrides(args: argparse.Namespace) -> List[str]:
    overrides = list(args.overrides)
    if args.db:
        overrides.append(f"db={args.db}")
    if args.threads is not None:
        overrides.append(f"threadcount={args.threads}")
    if args.target is not None:
        overrides.append(f"target={args.target}")
    if args.max_execution_time is not None:
        overrides.append(f"maxexecutiontime={args.max_execution_time}")
    return overrides


def export_results(args: argparse.Namespace, measurements: Measurements) -> None:
    if args.csv or args.plot:
        from txload import report

        if args.csv:
            report.write_summary_csv(measurements.summaries(), args.csv)
            logging.info("Summary written to %s", args.csv)
        if args.plot:
            if report.plot_latency_percentiles(measurements, args.plot, title=f"txload {args.phase}"):
                logging.info("Latency chart written to %s", args.plot)
            else:
                logging.warning("No latencies recorded; skipping chart")


def execute(args: argparse.Namespace) -> int:
    props = load_properties([Path(p) for p in args.property_files], cli_overrides(args))
    config = WorkloadConfig.from_properties(props)

    if args.create_table:
        if config.db != "mysql":
            logging.warning("--create-table only applies to the mysql backend; ignoring")
        else:
            from txload.mysql_db import MySQLSettings, create_table

            create_table(MySQLSettings.from_properties(props), config.table, config.fieldcount, args.force)

    measurements = Measurements()
    workload = CoreWorkload(config)
    make_db = db_factory(config)

    results: List[PhaseResult] = []
    if args.phase == RUN and config.db == "memory":
        # The in-memory store lives only as long as this process.
        logging.info("[run] memory backend: loading %d record(s) first", config.insertcount)
        results.append(run_phase(LOAD, workload, Measurements(), make_db))
    results.append(run_phase(args.phase, workload, measurements, make_db))

    logging.info("[OVERALL] RunTime(ms)=%.0f", results[-1].runtime_s * 1000)
    logging.info("[OVERALL] Throughput(ops/sec)=%.2f", results[-1].throughput)
    measurements.log_summary()
    export_results(args, measurements)

    if any(result.failed_workers for result in results):
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args)
    try:
        return execute(args)
    except WorkloadError as exc:
        logging.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
