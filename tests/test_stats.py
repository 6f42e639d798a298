"""Tests for sample aggregation."""

from __future__ import annotations

import random

import pytest

from netbench.stats import (
    STATUS_FAIL,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    derive_status,
    lower_is_better,
    metric_timed,
    metric_units,
    order_samples,
    percentile,
    summarize,
    trim_points,
)


class TestSummarize:
    def test_latency_summary(self):
        """Times are summarized with slowest = largest value."""
        s = summarize([30.0, 10.0, 50.0, 20.0, 40.0], lower_better=True)

        assert s.samples == 5
        assert s.median == 30.0
        assert s.mean == 30.0
        assert s.min == 10.0
        assert s.max == 50.0
        assert s.slowest == 50.0
        assert s.fastest == 10.0
        assert s.p10 == pytest.approx(14.0)
        assert s.p90 == pytest.approx(46.0)
        assert s.stdev == pytest.approx(14.1421, abs=1e-4)
        assert s.rstdev == pytest.approx(47.1405, abs=1e-4)
        assert s.sum == 150.0
        assert s.sum_squares == 5500.0

    def test_throughput_summary_inverts_slowest(self):
        """For rates the slowest sample is the smallest."""
        s = summarize([10.0, 20.0, 50.0], lower_better=False)
        assert s.slowest == 10.0
        assert s.fastest == 50.0
        assert s.min == 10.0
        assert s.max == 50.0

    def test_discard_slowest_keeps_untrimmed_sample_count(self):
        """Trimming changes the statistics but not the reported sample count."""
        s = summarize([10.0, 20.0, 30.0, 40.0, 50.0], lower_better=True, discard_slowest=20)
        assert s.samples == 5
        assert s.max == 40.0
        assert s.mean == 25.0

    def test_discard_fastest_for_rates(self):
        s = summarize([10.0, 20.0, 30.0, 40.0, 50.0], lower_better=False, discard_fastest=20)
        assert s.max == 40.0
        assert s.min == 10.0

    def test_single_sample(self):
        s = summarize([7.5], lower_better=True)
        assert s.median == 7.5
        assert s.stdev == 0.0
        assert s.p90 == 7.5

    def test_empty(self):
        assert summarize([], lower_better=True).samples == 0


class TestHelpers:
    def test_order_samples(self):
        assert order_samples([1, 3, 2], lower_better=True) == [3, 2, 1]
        assert order_samples([1, 3, 2], lower_better=False) == [1, 2, 3]

    def test_trim_points_keeps_at_least_one(self):
        assert trim_points([5.0, 4.0], 50, 50) == [5.0]

    def test_trim_points_floor(self):
        # 10% of 5 points rounds down to nothing
        assert trim_points([5, 4, 3, 2, 1], 10, 10) == [5, 4, 3, 2, 1]

    def test_percentile_interpolates(self):
        assert percentile([1.0, 2.0, 3.0, 4.0], 50) == 2.5

    def test_lower_is_better(self):
        assert lower_is_better("latency")
        assert lower_is_better("dns")
        assert not lower_is_better("downlink")
        assert lower_is_better("uplink", throughput_time=True)

    def test_metric_units(self):
        assert metric_units(True) == ("ms", "milliseconds")
        assert metric_units(False)[0] == "Mb/s"


class TestDeriveStatus:
    def test_success_without_failures(self):
        assert derive_status([1.0], 0, 1) == STATUS_SUCCESS

    def test_partial_with_some_failures(self):
        assert derive_status([1.0], 2, 3) == STATUS_PARTIAL

    def test_fail_when_nothing_succeeded(self):
        assert derive_status([], 2, 0) == STATUS_FAIL

    def test_samples_without_counters(self):
        assert derive_status([1.0]) == STATUS_SUCCESS


class TestMetricTimed:
    def test_subtracts_spacing_between_samples(self):
        # 10 MB over 5 s, minus one 200 ms gap
        assert metric_timed(10, 5.0, 2, 200) == pytest.approx(16.6667, abs=1e-4)

    def test_single_sample_has_no_gap(self):
        assert metric_timed(10, 5.0, 1, 200) == 16.0

    def test_nothing_transferred(self):
        assert metric_timed(0, 5.0, 2, 200) is None


class TestOrderingInvariant:
    @pytest.mark.parametrize("lower_better", [True, False])
    @pytest.mark.parametrize("discard", [(0, 0), (10, 0), (0, 25), (20, 20), (50, 50)])
    def test_percentiles_between_extremes(self, lower_better, discard):
        """min <= p10 <= p25 <= median <= p75 <= p90 <= max for any samples."""
        rng = random.Random(f"{lower_better}-{discard}")
        for _ in range(200):
            values = [rng.uniform(0.001, 1000.0) for _ in range(rng.randint(1, 30))]
            s = summarize(values, lower_better, discard_slowest=discard[0], discard_fastest=discard[1])
            assert s.min <= s.p10 <= s.p25 <= s.median <= s.p75 <= s.p90 <= s.max, (values, s)
            assert {s.fastest, s.slowest} == {s.min, s.max}

    def test_single_unrounded_sample(self):
        s = summarize([7.072281558400617], lower_better=True, discard_slowest=10)
        assert s.min == s.p10 == s.median == s.p90 == s.max == 7.0723

    def test_equal_samples_do_not_exceed_max(self):
        s = summarize([0.1 + 0.2] * 7, lower_better=False)
        assert s.p10 == s.p90 == s.max


class TestTrimNoOp:
    @pytest.mark.parametrize("lower_better", [True, False])
    def test_zero_percent_leaves_samples_unchanged(self, lower_better):
        ordered = order_samples([3.5, 1.25, 9.0, 4.75, 2.0], lower_better)
        once = trim_points(ordered, 0, 0)
        assert once == ordered
        assert trim_points(once, 0, 0) == once

    def test_zero_percent_summary_matches_untrimmed(self):
        values = [3.5, 1.25, 9.0, 4.75, 2.0]
        assert summarize(values, True, 0, 0) == summarize(values, True)
