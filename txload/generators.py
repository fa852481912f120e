"""Number generators that decide which record numbers a workload touches.

Every generator draws from a caller-supplied ``random.Random`` so each worker
thread can keep its own RNG. Generators that carry a cursor (counter,
sequential) guard it with a lock; the Zipfian family publishes its derived
constants as one immutable tuple so concurrent draws never see a half-updated
distribution.
"""

from __future__ import annotations

import logging
import math
import random
import threading
from pathlib import Path
from typing import List, Optional, Tuple, Union

from txload.errors import WorkloadConfigError

FNV_OFFSET_BASIS_64 = 0xCBF29CE484222325
FNV_PRIME_64 = 1099511628211
_MASK_64 = (1 << 64) - 1

ZIPFIAN_CONSTANT = 0.99
# Scrambled Zipfian draws ranks from a fixed, very large item space whose zeta
# value is precomputed for ZIPFIAN_CONSTANT.
SCRAMBLED_ITEM_COUNT = 10_000_000_000
SCRAMBLED_ZETAN = 26.46902820178302

EXPONENTIAL_PERCENTILE_DEFAULT = 95.0
EXPONENTIAL_FRAC_DEFAULT = 0.8571428571


def fnv_hash64(value: int) -> int:
    """64-bit FNV-1 hash of the eight low-order bytes of ``value``, made non-negative."""
    hashval = FNV_OFFSET_BASIS_64
    for _ in range(8):
        octet = value & 0xFF
        value >>= 8
        hashval ^= octet
        hashval = (hashval * FNV_PRIME_64) & _MASK_64
    if hashval >= 1 << 63:
        hashval -= 1 << 64
    return abs(hashval)


class NumberGenerator:
    """Base class; subclasses return one integer per ``next_value`` call."""

    def next_value(self, rng: random.Random) -> int:
        raise NotImplementedError

    def mean(self) -> float:
        raise NotImplementedError


class ConstantIntegerGenerator(NumberGenerator):
    def __init__(self, value: int) -> None:
        self.value = value

    def next_value(self, rng: random.Random) -> int:
        return self.value

    def mean(self) -> float:
        return float(self.value)


class UniformIntegerGenerator(NumberGenerator):
    """Every value in ``[lb, ub]`` is equally likely."""

    def __init__(self, lb: int, ub: int) -> None:
        if ub < lb:
            raise ValueError(f"upper bound {ub} below lower bound {lb}")
        self.lb = lb
        self.ub = ub

    def next_value(self, rng: random.Random) -> int:
        return rng.randint(self.lb, self.ub)

    def mean(self) -> float:
        return (self.lb + self.ub) / 2.0


class CounterGenerator(NumberGenerator):
    """Thread-safe monotonic counter starting at ``start``."""

    def __init__(self, start: int) -> None:
        self._lock = threading.Lock()
        self._next = start

    def next_value(self, rng: Optional[random.Random] = None) -> int:
        with self._lock:
            value = self._next
            self._next += 1
        return value

    def last_value(self) -> int:
        with self._lock:
            return self._next - 1

    def mean(self) -> float:
        raise NotImplementedError("a counter has no meaningful mean")


class SequentialGenerator(NumberGenerator):
    """One shared cursor walking ``[lo, hi]`` and wrapping back to ``lo``."""

    def __init__(self, lo: int, hi: int) -> None:
        if hi < lo:
            raise ValueError(f"upper bound {hi} below lower bound {lo}")
        self.lo = lo
        self.hi = hi
        self._interval = hi - lo + 1
        self._lock = threading.Lock()
        self._cursor = 0

    def next_value(self, rng: Optional[random.Random] = None) -> int:
        with self._lock:
            offset = self._cursor
            self._cursor = (self._cursor + 1) % self._interval
        return self.lo + offset

    def mean(self) -> float:
        return (self.lo + self.hi) / 2.0


class ExponentialGenerator(NumberGenerator):
    """Exponentially distributed offsets.

    ``percentile`` percent of the draws fall below ``range_``. The workload
    subtracts the draw from the newest committed record number, which yields
    a strong bias toward recently inserted records.
    """

    def __init__(self, percentile: float, range_: float) -> None:
        if not 0 < percentile < 100:
            raise ValueError(f"percentile must be in (0, 100) (got {percentile})")
        if range_ <= 0:
            raise ValueError(f"range must be > 0 (got {range_})")
        self.gamma = -math.log(1.0 - percentile / 100.0) / range_

    def next_value(self, rng: random.Random) -> int:
        # 1 - random() is in (0, 1], so the logarithm is always finite.
        return int(-math.log(1.0 - rng.random()) / self.gamma)

    def mean(self) -> float:
        return 1.0 / self.gamma


def _zeta(start: int, stop: int, theta: float, initial: float = 0.0) -> float:
    total = initial
    for i in range(start, stop):
        total += 1.0 / math.pow(i + 1, theta)
    return total


class ZipfianGenerator(NumberGenerator):
    """Rank-frequency power law over ``[lo, hi]``; ``lo`` is the most popular value.

    The item count may grow between calls (see ``next_long``); zeta is then
    extended incrementally instead of being recomputed from scratch.
    """

    def __init__(
        self,
        lo: int,
        hi: int,
        zipfian_constant: float = ZIPFIAN_CONSTANT,
        zetan: Optional[float] = None,
    ) -> None:
        if hi < lo:
            raise ValueError(f"upper bound {hi} below lower bound {lo}")
        self.base = lo
        self.items = hi - lo + 1
        self.theta = zipfian_constant
        self.alpha = 1.0 / (1.0 - zipfian_constant)
        self.zeta2theta = _zeta(0, 2, zipfian_constant)
        if zetan is None:
            zetan = _zeta(0, self.items, zipfian_constant)
        self._lock = threading.Lock()
        self._state: Tuple[int, float, float] = (self.items, zetan, self._eta(self.items, zetan))

    def _eta(self, count: int, zetan: float) -> float:
        denominator = 1.0 - self.zeta2theta / zetan
        if denominator == 0:
            # Only one or two items: every draw resolves before eta is needed.
            return 0.0
        return (1.0 - math.pow(2.0 / count, 1.0 - self.theta)) / denominator

    def _state_for(self, itemcount: int) -> Tuple[int, float, float]:
        state = self._state
        if state[0] == itemcount:
            return state
        with self._lock:
            count, zetan, _ = self._state
            if count == itemcount:
                return self._state
            if itemcount > count:
                zetan = _zeta(count, itemcount, self.theta, zetan)
            else:
                logging.warning(
                    "Zipfian item count shrank from %d to %d; recomputing zeta from scratch",
                    count,
                    itemcount,
                )
                zetan = _zeta(0, itemcount, self.theta)
            self._state = (itemcount, zetan, self._eta(itemcount, zetan))
            return self._state

    def next_long(self, rng: random.Random, itemcount: int) -> int:
        """Draw from ``[base, base + itemcount)``."""
        _, zetan, eta = self._state_for(itemcount)
        u = rng.random()
        uz = u * zetan
        if uz < 1.0:
            return self.base
        if uz < 1.0 + math.pow(0.5, self.theta):
            return self.base + 1
        offset = int(itemcount * math.pow(eta * u - eta + 1.0, self.alpha))
        return self.base + min(offset, itemcount - 1)

    def next_value(self, rng: random.Random) -> int:
        return self.next_long(rng, self.items)

    def mean(self) -> float:
        raise NotImplementedError("Zipfian mean is not computed")


class ScrambledZipfianGenerator(NumberGenerator):
    """Zipfian popularity with the popular values scattered across ``[lo, hi]``."""

    def __init__(self, lo: int, hi: int, zipfian_constant: float = ZIPFIAN_CONSTANT) -> None:
        if hi < lo:
            raise ValueError(f"upper bound {hi} below lower bound {lo}")
        self.lo = lo
        self.hi = hi
        self.itemcount = hi - lo + 1
        if zipfian_constant == ZIPFIAN_CONSTANT:
            self._gen = ZipfianGenerator(
                0, SCRAMBLED_ITEM_COUNT, zipfian_constant, zetan=SCRAMBLED_ZETAN
            )
        else:
            self._gen = ZipfianGenerator(0, self.itemcount - 1, zipfian_constant)

    def next_value(self, rng: random.Random) -> int:
        rank = self._gen.next_value(rng)
        return self.lo + fnv_hash64(rank) % self.itemcount

    def mean(self) -> float:
        return (self.lo + self.hi) / 2.0


class SkewedLatestGenerator(NumberGenerator):
    """Zipfian over distance from the newest committed record.

    The domain is ``[0, tracker.high_water_mark()]`` and is re-read on every
    draw, so it grows as inserts are acknowledged.
    """

    def __init__(self, tracker) -> None:
        self._tracker = tracker
        self._zipfian = ZipfianGenerator(0, max(tracker.high_water_mark(), 0))

    def next_value(self, rng: random.Random) -> int:
        newest = self._tracker.high_water_mark()
        if newest < 0:
            return 0
        return newest - self._zipfian.next_long(rng, newest + 1)

    def mean(self) -> float:
        raise NotImplementedError("skewed-latest mean depends on the live keyspace")


class HotspotIntegerGenerator(NumberGenerator):
    """A hot set at the low end of ``[lb, ub]`` receives a fixed share of draws."""

    def __init__(self, lb: int, ub: int, hotset_fraction: float, hot_opn_fraction: float) -> None:
        if ub < lb:
            raise ValueError(f"upper bound {ub} below lower bound {lb}")
        if not 0.0 <= hotset_fraction <= 1.0:
            logging.warning("Hotset fraction %s out of range; setting to 0.0", hotset_fraction)
            hotset_fraction = 0.0
        if not 0.0 <= hot_opn_fraction <= 1.0:
            logging.warning("Hot operation fraction %s out of range; setting to 0.0", hot_opn_fraction)
            hot_opn_fraction = 0.0
        self.lb = lb
        self.ub = ub
        self.hotset_fraction = hotset_fraction
        self.hot_opn_fraction = hot_opn_fraction
        interval = ub - lb + 1
        self.hot_interval = int(interval * hotset_fraction)
        self.cold_interval = interval - self.hot_interval

    def next_value(self, rng: random.Random) -> int:
        hot = rng.random() < self.hot_opn_fraction
        if (hot and self.hot_interval > 0) or self.cold_interval == 0:
            return self.lb + rng.randrange(self.hot_interval)
        return self.lb + self.hot_interval + rng.randrange(self.cold_interval)

    def mean(self) -> float:
        hot_mean = self.lb + self.hot_interval / 2.0
        cold_mean = self.lb + self.hot_interval + self.cold_interval / 2.0
        return self.hot_opn_fraction * hot_mean + (1 - self.hot_opn_fraction) * cold_mean


class HistogramGenerator(NumberGenerator):
    """Draws sizes from a bucketed histogram; bucket ``i`` stands for ``(i + 1) * block_size``."""

    def __init__(self, buckets: List[int], block_size: int = 1) -> None:
        if not buckets or sum(buckets) <= 0:
            raise ValueError("histogram must contain at least one non-empty bucket")
        self.buckets = list(buckets)
        self.block_size = block_size
        self.area = sum(self.buckets)
        self.weighted_area = sum(i * count for i, count in enumerate(self.buckets))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "HistogramGenerator":
        """Parse a ``BlockSize\\t<n>`` header followed by ``<bucket>\\t<count>`` lines."""
        hist_path = Path(path).expanduser()
        try:
            lines = hist_path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise WorkloadConfigError(f"Couldn't read field length histogram file: {hist_path}") from exc
        if not lines:
            raise WorkloadConfigError(f"Histogram file {hist_path} is empty")
        header = lines[0].split("\t")
        if header[0] != "BlockSize" or len(header) < 2:
            raise WorkloadConfigError(f"First line of histogram {hist_path} is not the BlockSize")
        counts: dict = {}
        try:
            block_size = int(header[1])
            for line in lines[1:]:
                if not line.strip():
                    continue
                bucket, count = line.split("\t")[:2]
                counts[int(bucket)] = int(count)
        except ValueError as exc:
            raise WorkloadConfigError(f"Malformed histogram file {hist_path}: {exc}") from exc
        if not counts:
            raise WorkloadConfigError(f"Histogram file {hist_path} has no buckets")
        buckets = [counts.get(i, 0) for i in range(max(counts) + 1)]
        return cls(buckets, block_size)

    def next_value(self, rng: random.Random) -> int:
        number = rng.randrange(self.area)
        for i, count in enumerate(self.buckets):
            number -= count
            if number < 0:
                return (i + 1) * self.block_size
        return len(self.buckets) * self.block_size

    def mean(self) -> float:
        return self.block_size * (self.weighted_area / self.area + 1)
