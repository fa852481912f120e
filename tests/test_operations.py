"""Tests for the operation kinds and weighted choosers."""

import random
from collections import Counter

import pytest

from txload.operations import DEFAULT_PROPORTIONS, DiscreteGenerator, Operation, OperationChooser


class TestOperation:
    def test_proportion_keys(self):
        assert Operation.READ.proportion_key == "readproportion"
        assert Operation.READMODIFYWRITE.proportion_key == "readmodifywriteproportion"
        assert Operation.SCANWRITE.proportion_key == "scanwriteproportion"

    def test_default_mix(self):
        assert DEFAULT_PROPORTIONS == {Operation.READ: 0.95, Operation.UPDATE: 0.05}


class TestDiscreteGenerator:
    def test_single_value(self, rng):
        gen = DiscreteGenerator([(1.0, "only")])
        assert {gen.next_value(rng) for _ in range(50)} == {"only"}

    def test_empty_returns_none(self, rng):
        assert DiscreteGenerator().next_value(rng) is None
        assert DiscreteGenerator([(0.0, "x")]).next_value(rng) is None

    def test_negative_weight(self):
        with pytest.raises(ValueError):
            DiscreteGenerator([(-1.0, "x")])


class TestOperationChooser:
    def test_zero_weights_are_excluded(self):
        chooser = OperationChooser({Operation.READ: 0.5, Operation.SCAN: 0.0, Operation.INSERT: 0.5})
        assert chooser.operations == [Operation.READ, Operation.INSERT]

    def test_no_operations(self, rng):
        chooser = OperationChooser({})
        assert chooser.operations == []
        assert chooser.choose(rng) is None

    def test_negative_proportion(self):
        with pytest.raises(ValueError):
            OperationChooser({Operation.READ: -0.1})

    def test_draws_follow_weights(self):
        chooser = OperationChooser({Operation.READ: 0.7, Operation.UPDATE: 0.3})
        rng = random.Random(2)
        counts = Counter(chooser.choose(rng) for _ in range(20_000))
        assert set(counts) == {Operation.READ, Operation.UPDATE}
        assert 0.67 <= counts[Operation.READ] / 20_000 <= 0.73

    def test_weights_need_not_sum_to_one(self):
        chooser = OperationChooser({Operation.READ: 3, Operation.UPDATE: 1})
        rng = random.Random(3)
        counts = Counter(chooser.choose(rng) for _ in range(20_000))
        assert 0.72 <= counts[Operation.READ] / 20_000 <= 0.78
