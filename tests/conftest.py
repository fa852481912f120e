"""Shared fixtures: seeded RNGs, config builders and misbehaving backends."""

import random
from typing import Dict, Optional

import pytest

from txload.config import WorkloadConfig
from txload.db import MemoryDB, Status
from txload.measurements import Measurements
from txload.workload import CoreWorkload


def build_config(**props) -> WorkloadConfig:
    """WorkloadConfig from keyword properties; dotted keys use ``__`` (``mysql__host``)."""
    flat: Dict[str, str] = {
        key.replace("__", "."): str(value).lower() if isinstance(value, bool) else str(value)
        for key, value in props.items()
    }
    flat.setdefault("seed", "7")
    return WorkloadConfig.from_properties(flat)


def build_workload(**props) -> CoreWorkload:
    return CoreWorkload(build_config(**props))


class FailingInsertDB(MemoryDB):
    """Fails the first ``failures`` inserts (all of them when None)."""

    def __init__(self, failures: Optional[int] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failures = failures
        self.insert_attempts = 0

    def insert(self, table, key, values):
        self.insert_attempts += 1
        if self.failures is None or self.insert_attempts <= self.failures:
            return Status.ERROR
        return super().insert(table, key, values)


class FailingReadDB(MemoryDB):
    def read(self, table, key, fields, result):
        return Status.ERROR


class RecordingDB(MemoryDB):
    """Remembers every key passed to ``read``."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.read_keys = []

    def read(self, table, key, fields, result):
        self.read_keys.append(key)
        return super().read(table, key, fields, result)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def measurements():
    return Measurements()
