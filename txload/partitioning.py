"""Local/global key selection for simulated multi-partition transactions.

Most transactions stay on one partition: each worker thread owns a sequential
generator that starts at a random record and walks forward, so consecutive
keys stay close together. A configurable share of transactions is "global":
the global generator advances a randomly chosen thread's sequence instead,
which lands the transaction on another partition. Every fresh global
transaction arms a one-shot latch, so the thread's next transaction is
replayed as global regardless of how the first one ended.
"""

from __future__ import annotations

import enum
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from txload.generators import NumberGenerator


class Route(enum.Enum):
    LOCAL = "local"
    GLOBAL = "global"
    REPLAY = "replay"

    @property
    def is_global(self) -> bool:
        return self is not Route.LOCAL


@dataclass
class ThreadState:
    """Per-worker state, created once at thread start and passed to every call."""

    thread_id: int
    rng: random.Random = field(repr=False)
    # informational only; reported when the local generator registers
    partition: int = -1
    generator_index: int = -1
    replay_global: bool = False
    intended_start_ns: Optional[int] = None

    def route(self, roll: int, globalchance: int) -> Route:
        """Decide where the next transaction goes.

        A pending replay always wins and is consumed. Otherwise ``roll``
        (0..99) below ``globalchance`` starts a global transaction and arms
        the replay latch for the next call.
        """
        if self.replay_global:
            self.replay_global = False
            return Route.REPLAY
        if roll < globalchance:
            self.replay_global = True
            return Route.GLOBAL
        return Route.LOCAL


class LocalSequence(NumberGenerator):
    """Sequential walk over ``[lo, hi]`` from a seed record, wrapping to ``lo``."""

    def __init__(self, seed: int, lo: int, hi: int) -> None:
        self.lo = lo
        self.hi = hi
        self._lock = threading.Lock()
        self._last = seed

    def next_value(self, rng: Optional[random.Random] = None) -> int:
        with self._lock:
            value = self._last + 1
            if value > self.hi:
                value = self.lo
            self._last = value
        return value

    def last_value(self) -> int:
        return self._last

    def mean(self) -> float:
        return (self.lo + self.hi) / 2.0


class GlobalSequence(NumberGenerator):
    """Advances a pool member picked by the base key chooser."""

    def __init__(self, selector: "PartitionedKeySelector") -> None:
        self._selector = selector

    def next_value(self, rng: random.Random) -> int:
        pool = self._selector.pool
        index = self._selector.base.next_value(rng) % len(pool)
        return pool[index].next_value(rng)

    def mean(self) -> float:
        return self._selector.base.mean()


class PartitionedKeySelector:
    def __init__(
        self,
        base: NumberGenerator,
        lo: int,
        hi: int,
        partitions: int,
        globalchance: int,
    ) -> None:
        self.base = base
        self.lo = lo
        self.hi = hi
        self.partitions = max(partitions, 1)
        self.globalchance = globalchance
        self.pool: List[LocalSequence] = []
        self._pool_lock = threading.Lock()
        self.global_generator = GlobalSequence(self)

    def new_thread_state(self, thread_id: int, rng: random.Random) -> ThreadState:
        return ThreadState(
            thread_id=thread_id,
            rng=rng,
            partition=rng.randrange(self.partitions),
        )

    def register(self, state: ThreadState) -> LocalSequence:
        seed = min(max(self.base.next_value(state.rng), self.lo), self.hi)
        local = LocalSequence(seed, self.lo, self.hi)
        with self._pool_lock:
            state.generator_index = len(self.pool)
            self.pool.append(local)
        logging.debug(
            "[partitioning] thread %d (partition %d) registered local generator %d at record %d",
            state.thread_id,
            state.partition,
            state.generator_index,
            seed,
        )
        return local

    def local_generator(self, state: ThreadState) -> LocalSequence:
        if state.generator_index < 0:
            return self.register(state)
        return self.pool[state.generator_index]

    def select(self, state: ThreadState) -> Tuple[NumberGenerator, Route]:
        """Pick the generator for the calling thread's next transaction."""
        local = self.local_generator(state)
        if self.partitions == 1:
            return local, Route.LOCAL
        route = state.route(state.rng.randrange(100), self.globalchance)
        if route.is_global:
            return self.global_generator, route
        return local, route
