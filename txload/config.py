"""Workload configuration: property files, TOML files and validation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

try:  # Python 3.11+
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore

from txload.errors import WorkloadConfigError
from txload.operations import DEFAULT_PROPORTIONS, Operation

REQUEST_DISTRIBUTIONS = ("uniform", "zipfian", "latest", "hotspot", "sequential", "exponential")
FIELD_LENGTH_DISTRIBUTIONS = ("constant", "uniform", "zipfian", "histogram")
LENGTH_DISTRIBUTIONS = ("uniform", "zipfian")
INSERT_ORDERS = ("ordered", "hashed")

# recordcount=0 means "as many as an int can hold".
MAX_RECORD_COUNT = 2**31 - 1

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}


def parse_properties_text(text: str) -> Dict[str, str]:
    """Parse ``key=value`` lines; ``#`` and ``!`` start comment lines."""
    props: Dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line[0] in "#!":
            continue
        for sep in ("=", ":"):
            if sep in line:
                key, value = line.split(sep, 1)
                break
        else:
            raise WorkloadConfigError(f"line {lineno}: expected key=value, got {raw!r}")
        props[key.strip()] = value.strip()
    return props


def flatten_toml(data: Mapping[str, object], prefix: str = "") -> Dict[str, str]:
    """Flatten nested TOML tables to dotted keys with string values."""
    flat: Dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_toml(value, f"{name}."))
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


def load_property_file(path: Path) -> Dict[str, str]:
    path = Path(path).expanduser()
    if not path.exists():
        raise WorkloadConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".toml":
        try:
            return flatten_toml(tomllib.loads(text))
        except tomllib.TOMLDecodeError as exc:
            raise WorkloadConfigError(f"Invalid TOML in {path}: {exc}") from exc
    try:
        return parse_properties_text(text)
    except WorkloadConfigError as exc:
        raise WorkloadConfigError(f"{path}: {exc}") from exc


def load_properties(
    paths: Sequence[Path] = (), overrides: Iterable[str] = ()
) -> Dict[str, str]:
    """Merge property files in order, then apply ``key=value`` overrides."""
    props: Dict[str, str] = {}
    for path in paths:
        props.update(load_property_file(path))
        logging.debug("Loaded properties from %s", path)
    for item in overrides:
        if "=" not in item:
            raise WorkloadConfigError(f"Override must look like key=value (got {item!r})")
        key, value = item.split("=", 1)
        props[key.strip()] = value.strip()
    return props


class _Reader:
    """Typed accessors over a flat property map; malformed values are config errors."""

    def __init__(self, props: Mapping[str, str]) -> None:
        self.props = props

    def get_str(self, key: str, default: str) -> str:
        return str(self.props.get(key, default)).strip()

    def get_int(self, key: str, default: int) -> int:
        raw = self.props.get(key)
        if raw is None or str(raw).strip() == "":
            return default
        try:
            return int(str(raw).strip())
        except ValueError as exc:
            raise WorkloadConfigError(f"{key} must be an integer (got {raw!r})") from exc

    def get_float(self, key: str, default: float) -> float:
        raw = self.props.get(key)
        if raw is None or str(raw).strip() == "":
            return default
        try:
            return float(str(raw).strip())
        except ValueError as exc:
            raise WorkloadConfigError(f"{key} must be a number (got {raw!r})") from exc

    def get_bool(self, key: str, default: bool) -> bool:
        raw = self.props.get(key)
        if raw is None:
            return default
        value = str(raw).strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise WorkloadConfigError(f"{key} must be true or false (got {raw!r})")

    def choice(self, key: str, default: str, choices: Sequence[str], label: str) -> str:
        value = self.get_str(key, default)
        if value not in choices:
            raise WorkloadConfigError(f'Unknown {label} "{value}" (expected one of {", ".join(choices)})')
        return value


@dataclass
class WorkloadConfig:
    table: str = "usertable"
    recordcount: int = 1000
    operationcount: int = 1000
    insertstart: int = 0
    insertcount: int = 1000
    fieldcount: int = 10
    fieldlength: int = 100
    fieldlengthdistribution: str = "constant"
    fieldlengthhistogram: str = "hist.txt"
    readallfields: bool = True
    writeallfields: bool = False
    dataintegrity: bool = False
    proportions: Dict[Operation, float] = field(default_factory=lambda: dict(DEFAULT_PROPORTIONS))
    requestdistribution: str = "uniform"
    zipfian_fudge_factor: float = 2.0
    exponential_percentile: float = 95.0
    exponential_frac: float = 0.8571428571
    maxscanlength: int = 1000
    scanlengthdistribution: str = "uniform"
    maxtransactionlength: int = 100
    transactionlengthdistribution: str = "uniform"
    ordered_inserts: bool = False
    zeropadding: int = 4
    hotspot_data_fraction: float = 0.2
    hotspot_opn_fraction: float = 0.8
    globalchance: int = -1
    partitions: int = 1
    insertion_retry_limit: int = 0
    insertion_retry_interval: float = 3.0
    ack_window_size: int = 1 << 20
    threadcount: int = 1
    target: float = 0.0
    max_execution_time: float = 0.0
    status_interval: float = 10.0
    db: str = "memory"
    properties: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def expected_new_keys(self) -> int:
        """Keys a Zipfian domain reserves for inserts made during the run."""
        insert_share = self.proportions.get(Operation.INSERT, 0.0)
        return int(round(self.operationcount * insert_share * self.zipfian_fudge_factor))

    @classmethod
    def from_properties(cls, props: Mapping[str, str]) -> "WorkloadConfig":
        r = _Reader(props)
        recordcount = r.get_int("recordcount", 1000)
        if recordcount == 0:
            recordcount = MAX_RECORD_COUNT
        insertstart = r.get_int("insertstart", 0)
        insertcount = r.get_int("insertcount", recordcount - insertstart)

        proportions: Dict[Operation, float] = {}
        for operation in Operation:
            weight = r.get_float(operation.proportion_key, DEFAULT_PROPORTIONS.get(operation, 0.0))
            if weight < 0:
                raise WorkloadConfigError(f"{operation.proportion_key} must be >= 0 (got {weight})")
            proportions[operation] = weight

        fieldlengthdistribution = r.choice(
            "fieldlengthdistribution", "constant", FIELD_LENGTH_DISTRIBUTIONS, "field length distribution"
        )
        zeropadding_raw = props.get("zeropadding")
        zeropadding = (
            r.get_int("zeropadding", 1) if zeropadding_raw not in (None, "") else len(str(recordcount))
        )

        config = cls(
            table=r.get_str("table", "usertable"),
            recordcount=recordcount,
            operationcount=r.get_int("operationcount", 1000),
            insertstart=insertstart,
            insertcount=insertcount,
            fieldcount=r.get_int("fieldcount", 10),
            fieldlength=r.get_int("fieldlength", 100),
            fieldlengthdistribution=fieldlengthdistribution,
            fieldlengthhistogram=r.get_str("fieldlengthhistogram", "hist.txt"),
            readallfields=r.get_bool("readallfields", True),
            writeallfields=r.get_bool("writeallfields", False),
            dataintegrity=r.get_bool("dataintegrity", False),
            proportions=proportions,
            requestdistribution=r.choice(
                "requestdistribution", "uniform", REQUEST_DISTRIBUTIONS, "request distribution"
            ),
            zipfian_fudge_factor=r.get_float("zipfianfudgefactor", 2.0),
            exponential_percentile=r.get_float("exponential.percentile", 95.0),
            exponential_frac=r.get_float("exponential.frac", 0.8571428571),
            maxscanlength=r.get_int("maxscanlength", 1000),
            scanlengthdistribution=r.choice(
                "scanlengthdistribution", "uniform", LENGTH_DISTRIBUTIONS, "scan length distribution"
            ),
            maxtransactionlength=r.get_int("maxtransactionlength", 100),
            transactionlengthdistribution=r.choice(
                "transactionlengthdistribution",
                "uniform",
                LENGTH_DISTRIBUTIONS,
                "transaction length distribution",
            ),
            ordered_inserts=r.choice("insertorder", "hashed", INSERT_ORDERS, "insert order") == "ordered",
            zeropadding=zeropadding,
            hotspot_data_fraction=r.get_float("hotspotdatafraction", 0.2),
            hotspot_opn_fraction=r.get_float("hotspotopnfraction", 0.8),
            globalchance=r.get_int("globalchance", -1),
            partitions=r.get_int("partitions", 1),
            insertion_retry_limit=r.get_int("core_workload_insertion_retry_limit", 0),
            insertion_retry_interval=r.get_float("core_workload_insertion_retry_interval", 3.0),
            ack_window_size=r.get_int("ackwindowsize", 1 << 20),
            threadcount=r.get_int("threadcount", 1),
            target=r.get_float("target", 0.0),
            max_execution_time=r.get_float("maxexecutiontime", 0.0),
            status_interval=r.get_float("status.interval", 10.0),
            db=r.get_str("db", "memory"),
            properties=dict(props),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.insertstart < 0 or self.insertcount < 0:
            raise WorkloadConfigError("insertstart and insertcount must be >= 0")
        if self.recordcount < self.insertstart + self.insertcount:
            raise WorkloadConfigError(
                "Invalid combination of insertstart, insertcount and recordcount: "
                f"recordcount ({self.recordcount}) must be >= insertstart + insertcount "
                f"({self.insertstart} + {self.insertcount})"
            )
        if self.dataintegrity and self.fieldlengthdistribution != "constant":
            raise WorkloadConfigError("Must have constant field size to check data integrity.")
        if self.fieldcount < 1:
            raise WorkloadConfigError(f"fieldcount must be >= 1 (got {self.fieldcount})")
        if self.fieldlength < 1:
            raise WorkloadConfigError(f"fieldlength must be >= 1 (got {self.fieldlength})")
        if self.maxscanlength < 1 or self.maxtransactionlength < 1:
            raise WorkloadConfigError("maxscanlength and maxtransactionlength must be >= 1")
        if self.partitions < 1:
            raise WorkloadConfigError(f"partitions must be >= 1 (got {self.partitions})")
        if self.globalchance > 100:
            raise WorkloadConfigError(f"globalchance is a percentage (got {self.globalchance})")
        if self.insertion_retry_limit < 0 or self.insertion_retry_interval < 0:
            raise WorkloadConfigError("insertion retry limit and interval must be >= 0")
        if self.ack_window_size < 1:
            raise WorkloadConfigError(f"ackwindowsize must be >= 1 (got {self.ack_window_size})")
        if self.zipfian_fudge_factor < 0:
            raise WorkloadConfigError("zipfianfudgefactor must be >= 0")
        if self.threadcount < 1:
            raise WorkloadConfigError(f"threadcount must be >= 1 (got {self.threadcount})")
        if self.requestdistribution == "exponential" and not 0 < self.exponential_percentile < 100:
            raise WorkloadConfigError("exponential.percentile must be in (0, 100)")
        if self.requestdistribution == "exponential" and self.exponential_frac <= 0:
            raise WorkloadConfigError("exponential.frac must be > 0")

    def summary_lines(self) -> List[str]:
        active = ", ".join(
            f"{op.value}={weight:g}" for op, weight in self.proportions.items() if weight > 0
        )
        return [
            f"table={self.table} recordcount={self.recordcount} operationcount={self.operationcount} "
            f"insertstart={self.insertstart} insertcount={self.insertcount}",
            f"fieldcount={self.fieldcount} fieldlength={self.fieldlength} "
            f"fieldlengthdistribution={self.fieldlengthdistribution} dataintegrity={self.dataintegrity}",
            f"requestdistribution={self.requestdistribution} insertorder="
            f"{'ordered' if self.ordered_inserts else 'hashed'} zeropadding={self.zeropadding}",
            f"operations: {active or 'none'}",
            f"globalchance={self.globalchance}% partitions={self.partitions} "
            f"threads={self.threadcount} target={self.target or 'unthrottled'}",
        ]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.properties.get(key, default)
