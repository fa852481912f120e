"""Tests for the keyspace and length generators."""

import random
from collections import Counter

import pytest

from txload.errors import WorkloadConfigError
from txload.generators import (
    ConstantIntegerGenerator,
    CounterGenerator,
    ExponentialGenerator,
    HistogramGenerator,
    HotspotIntegerGenerator,
    ScrambledZipfianGenerator,
    SequentialGenerator,
    SkewedLatestGenerator,
    UniformIntegerGenerator,
    ZipfianGenerator,
    fnv_hash64,
)
from txload.tracker import AcknowledgedKeyTracker


class TestFnvHash:
    def test_deterministic_and_non_negative(self):
        for value in range(1000):
            hashed = fnv_hash64(value)
            assert hashed == fnv_hash64(value)
            assert hashed >= 0
            assert hashed <= 1 << 63

    def test_spreads_sequential_inputs(self):
        assert len({fnv_hash64(v) for v in range(1000)}) > 990


class TestSimpleGenerators:
    def test_constant(self, rng):
        gen = ConstantIntegerGenerator(42)
        assert {gen.next_value(rng) for _ in range(10)} == {42}
        assert gen.mean() == 42.0

    def test_uniform_covers_closed_range(self, rng):
        gen = UniformIntegerGenerator(3, 7)
        seen = {gen.next_value(rng) for _ in range(1000)}
        assert seen == {3, 4, 5, 6, 7}
        assert gen.mean() == 5.0

    def test_uniform_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            UniformIntegerGenerator(5, 4)

    def test_counter(self):
        gen = CounterGenerator(10)
        assert gen.next_value() == 10
        assert gen.next_value() == 11
        assert gen.last_value() == 11

    def test_sequential_wraps_to_lower_bound(self):
        gen = SequentialGenerator(5, 7)
        assert [gen.next_value() for _ in range(7)] == [5, 6, 7, 5, 6, 7, 5]


class TestZipfian:
    def test_rank_frequency_is_non_increasing(self):
        gen = ZipfianGenerator(1, 100)
        rng = random.Random(99)
        counts = Counter(gen.next_value(rng) for _ in range(100_000))

        assert set(counts) <= set(range(1, 101))
        assert counts.most_common(1)[0][0] == 1
        assert counts[1] > counts[2] > counts[10]

        deciles = [sum(counts[r] for r in range(start, start + 10)) for start in range(1, 101, 10)]
        for higher, lower in zip(deciles, deciles[1:]):
            assert lower <= higher * 1.05

    def test_growing_item_count_extends_domain(self):
        gen = ZipfianGenerator(0, 9)
        rng = random.Random(5)
        draws = [gen.next_long(rng, 50) for _ in range(20_000)]
        assert max(draws) >= 10
        assert max(draws) <= 49

    def test_two_item_domain(self, rng):
        gen = ZipfianGenerator(0, 1)
        assert {gen.next_value(rng) for _ in range(500)} == {0, 1}

    def test_scrambled_stays_in_range(self):
        gen = ScrambledZipfianGenerator(100, 1099)
        rng = random.Random(3)
        draws = [gen.next_value(rng) for _ in range(10_000)]
        assert min(draws) >= 100
        assert max(draws) <= 1099
        # the most popular item takes far more than the uniform share of 10 draws
        assert Counter(draws).most_common(1)[0][1] > 50


class TestSkewedLatest:
    def test_favours_newest_record(self):
        tracker = AcknowledgedKeyTracker(100)
        gen = SkewedLatestGenerator(tracker)
        rng = random.Random(11)
        draws = [gen.next_value(rng) for _ in range(20_000)]
        assert min(draws) >= 0
        assert max(draws) <= 99
        assert Counter(draws).most_common(1)[0][0] == 99

    def test_follows_the_high_water_mark(self):
        tracker = AcknowledgedKeyTracker(100)
        gen = SkewedLatestGenerator(tracker)
        for _ in range(10):
            tracker.acknowledge(tracker.next_sequence())
        rng = random.Random(12)
        draws = [gen.next_value(rng) for _ in range(5000)]
        assert max(draws) == 109


class TestHotspot:
    def test_hot_set_receives_configured_share(self):
        gen = HotspotIntegerGenerator(0, 99, 0.2, 0.8)
        rng = random.Random(21)
        draws = [gen.next_value(rng) for _ in range(100_000)]
        assert min(draws) >= 0
        assert max(draws) <= 99
        hot = sum(1 for d in draws if d <= 19)
        assert hot / len(draws) >= 0.75

    def test_out_of_range_fraction_is_reset(self, rng, caplog):
        gen = HotspotIntegerGenerator(0, 9, 1.5, 0.8)
        assert gen.hotset_fraction == 0.0
        assert "out of range" in caplog.text
        assert all(0 <= gen.next_value(rng) <= 9 for _ in range(200))


class TestExponential:
    def test_percentile_of_draws_below_range(self):
        gen = ExponentialGenerator(95, 1000)
        rng = random.Random(8)
        draws = [gen.next_value(rng) for _ in range(20_000)]
        below = sum(1 for d in draws if d < 1000) / len(draws)
        assert 0.93 <= below <= 0.97
        assert min(draws) >= 0

    def test_invalid_percentile(self):
        with pytest.raises(ValueError):
            ExponentialGenerator(100, 10)


class TestHistogram:
    def test_from_file(self, tmp_path, rng):
        path = tmp_path / "hist.txt"
        path.write_text("BlockSize\t10\n0\t0\n1\t5\n")
        gen = HistogramGenerator.from_file(path)
        assert {gen.next_value(rng) for _ in range(100)} == {20}
        assert gen.mean() == 20.0

    def test_bucket_weights(self):
        gen = HistogramGenerator([1, 3], block_size=1)
        rng = random.Random(4)
        counts = Counter(gen.next_value(rng) for _ in range(8000))
        assert set(counts) == {1, 2}
        assert 0.7 <= counts[2] / 8000 <= 0.8

    def test_bad_header(self, tmp_path):
        path = tmp_path / "hist.txt"
        path.write_text("1\t5\n")
        with pytest.raises(WorkloadConfigError):
            HistogramGenerator.from_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(WorkloadConfigError):
            HistogramGenerator.from_file(tmp_path / "nope.txt")
