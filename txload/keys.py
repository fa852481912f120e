"""Record keys, field names, payload synthesis and read-back verification."""

from __future__ import annotations

import enum
import random
import string
from typing import Dict, Iterable, List, Mapping, Optional

from txload.generators import NumberGenerator, fnv_hash64

KEY_PREFIX = "user"
_PRINTABLE = string.ascii_letters + string.digits + string.punctuation


class KeyFormatter:
    """Renders record numbers as ``user`` + left-zero-padded (optionally hashed) number."""

    def __init__(self, zeropadding: int, ordered: bool) -> None:
        self.zeropadding = max(int(zeropadding), 1)
        self.ordered = ordered

    def record_number(self, keynum: int) -> int:
        return keynum if self.ordered else fnv_hash64(keynum)

    def __call__(self, keynum: int) -> str:
        return f"{KEY_PREFIX}{self.record_number(keynum):0{self.zeropadding}d}"


def build_field_names(fieldcount: int) -> List[str]:
    return [f"field{i}" for i in range(fieldcount)]


def java_string_hash(text: str) -> int:
    """32-bit signed polynomial string hash (``s[0]*31^(n-1) + ... + s[n-1]``).

    Stable across processes, unlike ``hash()``, so integrity data written by
    one run can be verified by another.
    """
    value = 0
    for char in text:
        value = (31 * value + ord(char)) & 0xFFFFFFFF
    if value >= 1 << 31:
        value -= 1 << 32
    return value


def build_deterministic_value(key: str, field: str, size: int) -> bytes:
    """Content that depends only on (key, field, size)."""
    text = f"{key}:{field}"
    while len(text) < size:
        text += ":"
        text += str(java_string_hash(text))
    return text[:size].encode("ascii")


def random_printable(rng: random.Random, length: int) -> bytes:
    return "".join(rng.choices(_PRINTABLE, k=length)).encode("ascii")


class ValueFactory:
    """Builds field payloads: random bytes, or deterministic content in integrity mode."""

    def __init__(
        self,
        field_names: List[str],
        length_generator: NumberGenerator,
        dataintegrity: bool,
    ) -> None:
        self.field_names = field_names
        self.length_generator = length_generator
        self.dataintegrity = dataintegrity

    def field_value(self, rng: random.Random, key: str, field: str) -> bytes:
        length = self.length_generator.next_value(rng)
        if self.dataintegrity:
            return build_deterministic_value(key, field, length)
        return random_printable(rng, length)

    def all_fields(self, rng: random.Random, key: str) -> Dict[str, bytes]:
        return {field: self.field_value(rng, key, field) for field in self.field_names}

    def fields(self, rng: random.Random, key: str, names: Iterable[str]) -> Dict[str, bytes]:
        return {field: self.field_value(rng, key, field) for field in names}

    def expected(self, key: str, field: str, rng: Optional[random.Random] = None) -> bytes:
        # Integrity mode requires a constant length generator, so the rng is never consulted.
        length = self.length_generator.next_value(rng or random.Random(0))
        return build_deterministic_value(key, field, length)


class VerifyOutcome(enum.Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"


def verify_row(
    values: ValueFactory, key: str, cells: Optional[Mapping[str, bytes]]
) -> VerifyOutcome:
    """Compare read-back cells with the deterministic content for ``key``.

    An empty result is never valid: the row was expected to exist.
    """
    if not cells:
        return VerifyOutcome.MISSING
    for field, observed in cells.items():
        if isinstance(observed, str):
            observed = observed.encode("ascii", "replace")
        if bytes(observed) != values.expected(key, field):
            return VerifyOutcome.MISMATCH
    return VerifyOutcome.MATCH
