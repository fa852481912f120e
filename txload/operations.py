"""Operation kinds and the weighted chooser that picks them."""

from __future__ import annotations

import enum
import random
from typing import Generic, List, Mapping, Optional, Tuple, TypeVar

T = TypeVar("T")


class Operation(enum.Enum):
    READ = "READ"
    UPDATE = "UPDATE"
    INSERT = "INSERT"
    SCAN = "SCAN"
    READMODIFYWRITE = "READMODIFYWRITE"
    MULTIREAD = "MULTIREAD"
    MULTIUPDATE = "MULTIUPDATE"
    SCANWRITE = "SCANWRITE"
    COMPLEX = "COMPLEX"

    @property
    def proportion_key(self) -> str:
        return f"{self.value.lower()}proportion"


# Proportion defaults for the classic read-mostly mix.
DEFAULT_PROPORTIONS: Mapping[Operation, float] = {
    Operation.READ: 0.95,
    Operation.UPDATE: 0.05,
}


class DiscreteGenerator(Generic[T]):
    """Draws one of a fixed set of values with probability proportional to its weight."""

    def __init__(self, entries: Optional[List[Tuple[float, T]]] = None) -> None:
        self._entries: List[Tuple[float, T]] = []
        self._total = 0.0
        for weight, value in entries or ():
            self.add_value(weight, value)

    def add_value(self, weight: float, value: T) -> None:
        if weight < 0:
            raise ValueError(f"weight must be >= 0 (got {weight})")
        self._entries.append((weight, value))
        self._total += weight

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def values(self) -> List[T]:
        return [value for _, value in self._entries]

    def next_value(self, rng: random.Random) -> Optional[T]:
        if not self._entries or self._total <= 0:
            return None
        roll = rng.random()
        for weight, value in self._entries:
            share = weight / self._total
            if roll < share:
                return value
            roll -= share
        # Floating point residue lands on the last entry.
        return self._entries[-1][1]


class OperationChooser:
    """Weighted choice over operation kinds; zero-weight kinds never appear."""

    def __init__(self, proportions: Mapping[Operation, float]) -> None:
        self._generator: DiscreteGenerator[Operation] = DiscreteGenerator()
        for operation in Operation:
            weight = float(proportions.get(operation, 0.0))
            if weight < 0:
                raise ValueError(f"{operation.proportion_key} must be >= 0 (got {weight})")
            if weight > 0:
                self._generator.add_value(weight, operation)

    @property
    def operations(self) -> List[Operation]:
        return self._generator.values

    def choose(self, rng: random.Random) -> Optional[Operation]:
        """Return the next operation kind, or None when no kind is configured."""
        return self._generator.next_value(rng)
