"""Engine initialization: turns a WorkloadConfig into generators and shared state."""

from __future__ import annotations

import logging
import random
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from txload.config import WorkloadConfig
from txload.errors import WorkloadConfigError
from txload.generators import (
    ConstantIntegerGenerator,
    CounterGenerator,
    ExponentialGenerator,
    HistogramGenerator,
    HotspotIntegerGenerator,
    NumberGenerator,
    ScrambledZipfianGenerator,
    SequentialGenerator,
    SkewedLatestGenerator,
    UniformIntegerGenerator,
    ZipfianGenerator,
)
from txload.keys import KeyFormatter, ValueFactory, build_field_names
from txload.operations import DiscreteGenerator, OperationChooser
from txload.partitioning import PartitionedKeySelector, Route, ThreadState
from txload.retry import InsertionRetrier
from txload.tracker import AcknowledgedKeyTracker

COMPLEX_READ = "READ"
COMPLEX_WRITE = "WRITE"


def build_field_length_generator(config: WorkloadConfig) -> NumberGenerator:
    distribution = config.fieldlengthdistribution
    if distribution == "constant":
        return ConstantIntegerGenerator(config.fieldlength)
    if distribution == "uniform":
        return UniformIntegerGenerator(1, config.fieldlength)
    if distribution == "zipfian":
        return ZipfianGenerator(1, config.fieldlength)
    if distribution == "histogram":
        return HistogramGenerator.from_file(Path(config.fieldlengthhistogram))
    raise WorkloadConfigError(f'Unknown field length distribution "{distribution}"')


def build_length_generator(distribution: str, maximum: int, label: str) -> NumberGenerator:
    if distribution == "uniform":
        return UniformIntegerGenerator(1, maximum)
    if distribution == "zipfian":
        return ZipfianGenerator(1, maximum)
    raise WorkloadConfigError(f'Distribution "{distribution}" not allowed for {label}')


def build_key_chooser(config: WorkloadConfig, tracker: AcknowledgedKeyTracker) -> NumberGenerator:
    lo = config.insertstart
    hi = config.insertstart + config.insertcount - 1
    distribution = config.requestdistribution
    if distribution == "uniform":
        return UniformIntegerGenerator(lo, hi)
    if distribution == "sequential":
        return SequentialGenerator(lo, hi)
    if distribution == "zipfian":
        # Size the domain for the keys inserted during the run so key
        # popularity does not reshuffle as the keyspace grows; draws past the
        # committed range are resampled.
        return ScrambledZipfianGenerator(lo, hi + config.expected_new_keys)
    if distribution == "latest":
        return SkewedLatestGenerator(tracker)
    if distribution == "hotspot":
        return HotspotIntegerGenerator(
            lo, hi, config.hotspot_data_fraction, config.hotspot_opn_fraction
        )
    if distribution == "exponential":
        return ExponentialGenerator(
            config.exponential_percentile, config.recordcount * config.exponential_frac
        )
    raise WorkloadConfigError(f'Unknown request distribution "{distribution}"')


class CoreWorkload:
    """Holds everything the drivers share for one run.

    Built once before any worker starts. Apart from generator cursors, the
    acknowledgement tracker and the local-generator pool, nothing here
    changes after construction.
    """

    def __init__(self, config: WorkloadConfig, stop_event: Optional[threading.Event] = None) -> None:
        self.config = config
        self.table = config.table
        self.stop_event = stop_event or threading.Event()

        self.field_names: List[str] = build_field_names(config.fieldcount)
        self.field_chooser = UniformIntegerGenerator(0, config.fieldcount - 1)
        self.values = ValueFactory(
            self.field_names, build_field_length_generator(config), config.dataintegrity
        )
        self.key_formatter = KeyFormatter(config.zeropadding, config.ordered_inserts)

        self.keysequence = CounterGenerator(config.insertstart)
        self.operation_chooser = OperationChooser(config.proportions)
        self.tracker = AcknowledgedKeyTracker(config.recordcount, config.ack_window_size)
        self.keychooser = build_key_chooser(config, self.tracker)
        self.scanlength = build_length_generator(
            config.scanlengthdistribution, config.maxscanlength, "scan length"
        )
        self.transactionlength = build_length_generator(
            config.transactionlengthdistribution, config.maxtransactionlength, "transaction length"
        )
        self.complex_chooser: DiscreteGenerator[str] = DiscreteGenerator(
            [(0.5, COMPLEX_READ), (0.5, COMPLEX_WRITE)]
        )

        self.selector: Optional[PartitionedKeySelector] = None
        if config.partitions > 1:
            self.selector = PartitionedKeySelector(
                self.keychooser,
                config.insertstart,
                config.insertstart + config.insertcount - 1,
                config.partitions,
                config.globalchance,
            )

        self._seed = config.get("seed")
        for line in config.summary_lines():
            logging.info("[workload] %s", line)
        if self.selector is not None:
            logging.info(
                "[workload] Global txn chance: %s%%, partitions: %s",
                config.globalchance,
                config.partitions,
            )
        if not self.operation_chooser.operations:
            logging.warning("[workload] No operation has a positive proportion; run phase is a no-op")

    def init_thread(self, thread_id: int) -> ThreadState:
        """Create the private state for one worker thread."""
        if self._seed not in (None, ""):
            rng = random.Random(f"{self._seed}:{thread_id}")
        else:
            rng = random.Random(time.time() + thread_id * 7919)
        if self.selector is not None:
            return self.selector.new_thread_state(thread_id, rng)
        return ThreadState(thread_id=thread_id, rng=rng)

    def new_retrier(self, state: ThreadState) -> InsertionRetrier:
        return InsertionRetrier(
            self.config.insertion_retry_limit,
            self.config.insertion_retry_interval,
            stop_event=self.stop_event,
            rng=state.rng,
        )

    def select_key_generator(self, state: ThreadState) -> Tuple[NumberGenerator, Route]:
        if self.selector is not None:
            return self.selector.select(state)
        return self.keychooser, Route.LOCAL

    def next_keynum(self, generator: NumberGenerator, state: ThreadState) -> int:
        """Draw a record number no greater than the committed high-water mark."""
        if isinstance(generator, ExponentialGenerator):
            while True:
                keynum = self.tracker.high_water_mark() - generator.next_value(state.rng)
                if keynum >= 0:
                    return keynum
        while True:
            keynum = generator.next_value(state.rng)
            if keynum <= self.tracker.high_water_mark():
                return keynum

    def build_key(self, keynum: int) -> str:
        return self.key_formatter(keynum)

    def choose_field(self, state: ThreadState) -> str:
        return self.field_names[self.field_chooser.next_value(state.rng)]
