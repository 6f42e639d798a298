"""Statistical aggregation of probe samples."""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from netbench.models import MetricSummary

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAIL = "fail"
STATUS_FAILED = "failed"

PRECISION = 4


def lower_is_better(test: str, throughput_time: bool = False) -> bool:
    """Latency and DNS are times; throughput is a rate unless measured as time."""
    return test in ("latency", "dns") or throughput_time


def metric_units(lower_better: bool) -> tuple[str, str]:
    if lower_better:
        return "ms", "milliseconds"
    return "Mb/s", "megabits per second"


def order_samples(values: Sequence[float], lower_better: bool) -> list[float]:
    """Sort slowest first: descending for times, ascending for rates."""
    return sorted(values, reverse=lower_better)


def trim_points(ordered: Sequence[float], discard_slowest: float = 0, discard_fastest: float = 0) -> list[float]:
    """Drop a percentage of points from each end of a slowest-first list.

    At least one point always survives.
    """
    n = len(ordered)
    slow = int(math.floor(n * discard_slowest / 100)) if discard_slowest else 0
    fast = int(math.floor(n * discard_fastest / 100)) if discard_fastest else 0
    if slow + fast >= n:
        return list(ordered[:1]) if n else []
    return list(ordered[slow:n - fast])


def percentile(sorted_vals: Sequence[float], pct: float) -> float:
    """Compute the given percentile from ascending values."""
    n = len(sorted_vals)
    if n == 1:
        return sorted_vals[0]
    k = (pct / 100) * (n - 1)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    lo, hi = sorted_vals[f], sorted_vals[c]
    # interpolation stays within its two neighbouring points
    return min(max(lo + (hi - lo) * (k - f), lo), hi)


def summarize(
    values: Sequence[float],
    lower_better: bool,
    discard_slowest: float = 0,
    discard_fastest: float = 0,
) -> MetricSummary:
    """Reduce a SampleSet to its statistical summary.

    ``samples`` is the count before trimming; every other field is computed
    over the trimmed points.
    """
    if not values:
        return MetricSummary()

    ordered = order_samples(values, lower_better)
    if discard_slowest or discard_fastest:
        ordered = trim_points(ordered, discard_slowest, discard_fastest)
        logger.debug("Trimmed metrics %s (slowest %s%%, fastest %s%%)", ordered, discard_slowest, discard_fastest)

    ascending = sorted(ordered)
    n = len(ascending)
    mean = sum(ascending) / n
    median = percentile(ascending, 50)
    variance = sum((v - mean) ** 2 for v in ascending) / n if n > 1 else 0.0
    stdev = math.sqrt(variance)
    rstdev = stdev / mean * 100 if mean else 0.0

    return MetricSummary(
        samples=len(values),
        median=round(median, PRECISION),
        mean=round(mean, PRECISION),
        p10=round(percentile(ascending, 10), PRECISION),
        p25=round(percentile(ascending, 25), PRECISION),
        p75=round(percentile(ascending, 75), PRECISION),
        p90=round(percentile(ascending, 90), PRECISION),
        fastest=round(ordered[-1], PRECISION),
        slowest=round(ordered[0], PRECISION),
        min=round(ascending[0], PRECISION),
        max=round(ascending[-1], PRECISION),
        stdev=round(stdev, PRECISION),
        rstdev=round(rstdev, PRECISION),
        sum=round(sum(ascending), PRECISION),
        sum_squares=round(sum(v * v for v in ascending), PRECISION),
    )


def derive_status(
    values: Sequence[float],
    tests_failed: Optional[int] = None,
    tests_success: Optional[int] = None,
) -> str:
    """Status of a completed probe from its samples and counters."""
    status = STATUS_SUCCESS if values else STATUS_FAIL
    if tests_failed:
        if tests_success is not None and tests_success == 0:
            return STATUS_FAIL
        return STATUS_PARTIAL
    if tests_success:
        return STATUS_SUCCESS
    return status


def metric_timed(transfer_mb: float, duration: float, samples: int, spacing_ms: int) -> Optional[float]:
    """Throughput in Mb/s from wall-clock duration, excluding inter-sample spacing."""
    if transfer_mb <= 0:
        return None
    secs = duration
    if spacing_ms and samples > 1:
        secs -= (samples - 1) * spacing_ms / 1000
        logger.debug("Subtracting spacing from duration, now %.3f secs", secs)
    if secs <= 0:
        return None
    return round(transfer_mb * 8 / secs, PRECISION)
