"""Data models for netbench."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from netbench.config import (
    DEFAULT_DNS_RETRY,
    DEFAULT_DNS_SAMPLES,
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_GEO_REGIONS,
    DEFAULT_LATENCY_INTERVAL,
    DEFAULT_LATENCY_SAMPLES,
    DEFAULT_LATENCY_TIMEOUT,
    DEFAULT_SAME_SIZES,
    DEFAULT_SPACING_MS,
    DEFAULT_TEST,
    DEFAULT_THROUGHPUT_SIZE,
    DEFAULT_THROUGHPUT_THREADS,
    DEFAULT_THROUGHPUT_TOLERANCE,
    DEFAULT_THROUGHPUT_URI,
    SERVICE_ID_TYPES,
    THROUGHPUT_SAMPLES_LONG,
    THROUGHPUT_SAMPLES_SHORT,
    THROUGHPUT_TIMEOUT_LONG,
    THROUGHPUT_TIMEOUT_SHORT,
)
from netbench.expression import evaluate_expression


class ProbeKind(str, enum.Enum):
    """Measurement operation types."""

    LATENCY = "latency"
    DNS = "dns"
    DOWNLINK = "downlink"
    UPLINK = "uplink"

    @property
    def is_throughput(self) -> bool:
        return self in (ProbeKind.DOWNLINK, ProbeKind.UPLINK)


class RunState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


def split_values(value: str, unique: bool = True) -> list[str]:
    """Split a comma and/or space separated option value into its tokens."""
    tokens: list[str] = []
    for chunk in value.split(","):
        for token in chunk.split():
            token = token.strip()
            if token and (not unique or token not in tokens):
                tokens.append(token)
    return tokens


def parse_location(location: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split ``"[state,] country"`` into ``(country, state)``."""
    if not location:
        return None, None
    pieces = location.split(",")
    country = pieces[-1].strip().upper() or None
    state = pieces[0].strip() if len(pieces) > 1 else None
    return country, state or None


def _pick(values: Sequence[Any], index: int) -> Any:
    """Per-endpoint option lookup: element *index*, else the shared first element."""
    if not values:
        return None
    if index < len(values):
        return values[index]
    return values[0]


@dataclass(frozen=True)
class VantagePoint:
    """The local host the probes are run from."""

    location: Optional[str] = None
    provider: Optional[str] = None
    provider_id: Optional[str] = None
    compute_service: Optional[str] = None
    compute_service_id: Optional[str] = None
    region: Optional[str] = None
    instance_id: Optional[str] = None
    hostname: Optional[str] = None
    public_ip: Optional[str] = None
    meta: dict[str, str] = field(default_factory=dict)  # cpu, memory, os, run_id...

    @property
    def country(self) -> Optional[str]:
        return parse_location(self.location)[0]

    @property
    def state(self) -> Optional[str]:
        return parse_location(self.location)[1]


@dataclass(frozen=True)
class Endpoint:
    """One test target, resolved from the per-endpoint option arrays."""

    index: int
    addresses: tuple[str, ...]
    location: Optional[str] = None
    provider: Optional[str] = None
    provider_id: Optional[str] = None
    service: Optional[str] = None
    service_id: Optional[str] = None
    service_type: Optional[str] = None
    region: Optional[str] = None
    instance_id: Optional[str] = None
    private_network_type: Optional[str] = None

    @property
    def public(self) -> str:
        return self.addresses[0]

    @property
    def private(self) -> Optional[str]:
        return self.addresses[1] if len(self.addresses) > 1 else None

    @property
    def country(self) -> Optional[str]:
        return parse_location(self.location)[0]

    @property
    def state(self) -> Optional[str]:
        return parse_location(self.location)[1]


@dataclass(frozen=True)
class RunConfiguration:
    """Operator supplied run options.

    Per-endpoint options are tuples holding either one shared value or one
    value per entry of ``test_endpoint``.  Derived defaults are resolved in
    ``__post_init__`` so the instance is complete and read-only afterwards.
    """

    test_endpoint: tuple[tuple[str, ...], ...] = ()
    test: tuple[tuple[str, ...], ...] = ((DEFAULT_TEST,),)
    vantage: VantagePoint = field(default_factory=VantagePoint)

    # per-endpoint metadata
    test_instance_id: tuple[str, ...] = ()
    test_location: tuple[str, ...] = ()
    test_private_network_type: tuple[str, ...] = ()
    test_provider: tuple[str, ...] = ()
    test_provider_id: tuple[str, ...] = ()
    test_region: tuple[str, ...] = ()
    test_service: tuple[str, ...] = ()
    test_service_id: tuple[str, ...] = ()
    test_service_type: tuple[str, ...] = ()

    # run limits and pacing
    abort_threshold: Optional[int] = None
    max_runtime: Optional[int] = None
    max_tests: Optional[int] = None
    min_runtime: Optional[int] = None
    spacing: int = DEFAULT_SPACING_MS
    conditional_spacing: Optional[str] = None
    sleep_before_start: Optional[str] = None
    randomize: bool = False
    suppress_failed: bool = False
    traceroute: bool = False
    output: str = field(default_factory=os.getcwd)

    # statistics
    discard_fastest: float = 0
    discard_slowest: float = 0

    # same-* constraints
    same_continent_only: bool = False
    same_country_only: bool = False
    same_geo_region: bool = False
    same_provider_only: bool = False
    same_region_only: bool = False
    same_service_only: bool = False
    same_state_only: bool = False
    geo_regions: tuple[str, ...] = DEFAULT_GEO_REGIONS

    # dns
    dns_one_server: bool = False
    dns_recursive: bool = False
    dns_retry: int = DEFAULT_DNS_RETRY
    dns_samples: int = DEFAULT_DNS_SAMPLES
    dns_tcp: bool = False
    dns_timeout: int = DEFAULT_DNS_TIMEOUT

    # latency
    latency_interval: float = DEFAULT_LATENCY_INTERVAL
    latency_samples: int = DEFAULT_LATENCY_SAMPLES
    latency_skip: tuple[str, ...] = ()
    latency_timeout: int = DEFAULT_LATENCY_TIMEOUT

    # custom commands
    test_cmd_downlink: Optional[str] = None
    test_cmd_uplink: Optional[str] = None
    test_cmd_uplink_del: Optional[str] = None
    test_cmd_url_strip: Optional[str] = None
    test_files_dir: Optional[str] = None

    # throughput
    throughput_header: tuple[str, ...] = ()
    throughput_https: bool = False
    throughput_inverse: bool = False
    throughput_keepalive: bool = False
    throughput_same_continent: Optional[int] = None
    throughput_same_country: Optional[int] = None
    throughput_same_geo_region: Optional[int] = None
    throughput_same_provider: Optional[int] = None
    throughput_same_region: Optional[int] = None
    throughput_same_service: Optional[int] = None
    throughput_same_state: Optional[int] = None
    throughput_samples: Optional[int] = None
    throughput_size: Optional[float] = None
    throughput_slowest_thread: bool = False
    throughput_small_file: bool = False
    throughput_threads: int | str = DEFAULT_THROUGHPUT_THREADS
    throughput_time: bool = False
    throughput_timeout: Optional[int] = None
    throughput_tolerance: Optional[float] = DEFAULT_THROUGHPUT_TOLERANCE
    throughput_uri: str = DEFAULT_THROUGHPUT_URI
    throughput_use_mean: bool = False
    throughput_webpage: tuple[tuple[str, ...], ...] = ()

    def __post_init__(self) -> None:
        set_ = object.__setattr__  # frozen: derived defaults are set once here

        if isinstance(self.throughput_threads, str):
            set_(self, "throughput_threads", int(evaluate_expression(self.throughput_threads)))

        if self.throughput_size is None:
            for dimension, size in DEFAULT_SAME_SIZES.items():
                key = f"throughput_same_{dimension}"
                if getattr(self, key) is None:
                    set_(self, key, size)
            set_(self, "throughput_size", DEFAULT_THROUGHPUT_SIZE)

        if self.throughput_size == 0:
            set_(self, "throughput_time", True)

        short = self.throughput_small_file or self.throughput_time
        if self.throughput_samples is None:
            set_(self, "throughput_samples", THROUGHPUT_SAMPLES_SHORT if short else THROUGHPUT_SAMPLES_LONG)
        if self.throughput_timeout is None:
            set_(self, "throughput_timeout", THROUGHPUT_TIMEOUT_SHORT if short else THROUGHPUT_TIMEOUT_LONG)

        tolerance = self.throughput_tolerance
        if tolerance is None or not 0 <= tolerance <= 1:
            set_(self, "throughput_tolerance", DEFAULT_THROUGHPUT_TOLERANCE)

        set_(self, "geo_regions", tuple(r.lower() for r in self.geo_regions))
        set_(self, "test", tuple(tuple(t.lower() for t in tests) for tests in self.test if tests))

    # -- per-endpoint accessors -------------------------------------------

    def endpoint(self, index: int) -> Endpoint:
        """Build the :class:`Endpoint` for position *index* of ``test_endpoint``."""
        service_id = _pick(self.test_service_id, index)
        service_type = _pick(self.test_service_type, index)
        if service_id and not service_type:
            pieces = service_id.split(":")
            if len(pieces) == 2 and pieces[1] in SERVICE_ID_TYPES:
                service_type = SERVICE_ID_TYPES[pieces[1]]
        return Endpoint(
            index=index,
            addresses=tuple(self.test_endpoint[index]),
            location=_pick(self.test_location, index),
            provider=_pick(self.test_provider, index),
            provider_id=_pick(self.test_provider_id, index),
            service=_pick(self.test_service, index),
            service_id=service_id,
            service_type=service_type,
            region=_pick(self.test_region, index),
            instance_id=_pick(self.test_instance_id, index),
            private_network_type=_pick(self.test_private_network_type, index),
        )

    def endpoints(self) -> list[Endpoint]:
        return [self.endpoint(i) for i in range(len(self.test_endpoint))]

    def tests_for(self, index: int) -> tuple[str, ...]:
        return _pick(self.test, index) or ()

    def webpage_for(self, index: int) -> tuple[str, ...]:
        return _pick(self.throughput_webpage, index) or ()

    def same_size(self, dimension: str) -> Optional[int]:
        return getattr(self, f"throughput_same_{dimension}")

    @property
    def headers(self) -> dict[str, str]:
        """``throughput_header`` values parsed from ``key:value`` form."""
        headers: dict[str, str] = {}
        for header in self.throughput_header:
            name, sep, value = header.partition(":")
            if sep and name.strip():
                headers[name.strip()] = value.strip()
        return headers


@dataclass
class PingReply:
    """Output of one ping utility invocation."""

    exit_code: int
    rtts: list[float] = field(default_factory=list)
    output: str = ""


@dataclass
class ProbeRequest:
    """A single unit of transfer work for one concurrent stream."""

    method: str
    urls: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[str | int] = None  # file path, or a byte count to generate

    @property
    def url(self) -> Optional[str]:
        return self.urls[0] if self.urls else None


@dataclass
class TransferResult:
    """Per-request transfer measurements; one entry per URL fetched."""

    speeds: list[float] = field(default_factory=list)  # bytes/sec
    times: list[float] = field(default_factory=list)  # seconds
    transfers: list[int] = field(default_factory=list)  # bytes

    @property
    def total_bytes(self) -> int:
        return sum(self.transfers)


@dataclass
class BatchOutcome:
    """Outcome of one concurrent batch of :class:`ProbeRequest`."""

    results: list[Optional[TransferResult]] = field(default_factory=list)
    statuses: list[Optional[int]] = field(default_factory=list)

    def add(self, result: Optional[TransferResult], status: Optional[int]) -> None:
        self.results.append(result)
        self.statuses.append(status)

    @property
    def lowest_status(self) -> Optional[int]:
        codes = [s for s in self.statuses if s is not None]
        return min(codes) if codes else None

    @property
    def highest_status(self) -> Optional[int]:
        codes = [s for s in self.statuses if s is not None]
        return max(codes) if codes else None


@dataclass
class ProbeOutput:
    """Samples produced by one probe plus optional counters and extra fields."""

    samples: list[float] = field(default_factory=list)
    tests_failed: Optional[int] = None
    tests_success: Optional[int] = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricSummary:
    """Aggregated statistics for one SampleSet."""

    samples: int = 0
    median: float = 0.0
    mean: float = 0.0
    p10: float = 0.0
    p25: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    fastest: float = 0.0
    slowest: float = 0.0
    min: float = 0.0
    max: float = 0.0
    stdev: float = 0.0
    rstdev: float = 0.0
    sum: float = 0.0
    sum_squares: float = 0.0


@dataclass(frozen=True)
class ResultRow:
    """One output record."""

    test: str
    test_endpoint: str
    test_ip: Optional[str] = None
    test_started: Optional[str] = None
    test_stopped: Optional[str] = None
    timeout: Optional[float] = None
    status: str = "failed"
    summary: Optional[MetricSummary] = None
    metrics: str = ""  # samples in collection order
    metric_unit: Optional[str] = None
    metric_unit_long: Optional[str] = None
    metric_timed: Optional[float] = None
    tests_failed: Optional[int] = None
    tests_success: Optional[int] = None
    extras: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)  # test_* / meta_* enrichment

    def as_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "test": self.test,
            "test_endpoint": self.test_endpoint,
        }
        if self.test_ip:
            row["test_ip"] = self.test_ip
        row["test_started"] = self.test_started
        row["test_stopped"] = self.test_stopped
        row.update(self.attributes)
        row["timeout"] = self.timeout
        if self.summary is not None:
            s = self.summary
            row.update({
                "samples": s.samples,
                "metrics": self.metrics,
                "metric": s.median,
                "metric_10": s.p10,
                "metric_25": s.p25,
                "metric_75": s.p75,
                "metric_90": s.p90,
                "metric_fastest": s.fastest,
                "metric_slowest": s.slowest,
                "metric_mean": s.mean,
                "metric_min": s.min,
                "metric_max": s.max,
                "metric_stdev": s.stdev,
                "metric_rstdev": s.rstdev,
                "metric_sum": s.sum,
                "metric_sum_squares": s.sum_squares,
                "metric_unit": self.metric_unit,
                "metric_unit_long": self.metric_unit_long,
            })
            if self.metric_timed is not None:
                row["metric_timed"] = self.metric_timed
        if self.tests_failed is not None:
            row["tests_failed"] = self.tests_failed
        if self.tests_success is not None:
            row["tests_success"] = self.tests_success
        row.update(self.extras)
        row["status"] = self.status
        return row


@dataclass
class RunReport:
    """Complete run results."""

    state: RunState = RunState.PENDING
    rows: list[ResultRow] = field(default_factory=list)
    tests_completed: int = 0
    tests_failed: int = 0
    started: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return any(row.summary is not None for row in self.rows)
