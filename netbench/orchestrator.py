"""The test run loop.

Endpoints are processed one at a time and probes strictly in sequence;
only the throughput probes fan out internally. Run limits are checked
before each endpoint and after each probe, never while a probe is running.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

from netbench.config import SERVICE_TYPES
from netbench.constraints import ConstraintValidator, use_private_network
from netbench.executors.base import ProbeExecutor
from netbench.geo import GeoResolver
from netbench.models import Endpoint, ProbeKind, ResultRow, RunConfiguration, RunReport, RunState
from netbench.probes import ProbeContext, get_probe, hostname_of
from netbench.rows import build_row, inverse_eligible, synthesize_inverse
from netbench.timing import ConditionalSpacing, Pacer

logger = logging.getLogger(__name__)

# Probe kinds each service type can serve
CAPABILITIES = {
    "compute": ("uplink", "downlink", "latency"),
    "paas": ("uplink", "downlink", "latency"),
    "storage": ("downlink", "latency"),
    "cdn": ("downlink", "latency"),
    "dns": ("dns",),
}


def expand_tests(tests: tuple[str, ...]) -> list[tuple[str, bool]]:
    """Expand ``throughput`` into downlink + uplink; returns (test, expanded) pairs.

    Each test keeps the position where it first appears. A test listed both
    by name and through ``throughput`` counts as expanded.
    """
    expanded: dict[str, bool] = {}
    for test in tests:
        names = ("downlink", "uplink") if test == "throughput" else (test,)
        for name in names:
            expanded[name] = expanded.get(name, False) or test == "throughput"
    return list(expanded.items())


class TestOrchestrator:
    """Runs every requested probe against every eligible endpoint."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        config: RunConfiguration,
        executor: ProbeExecutor,
        geo: Optional[GeoResolver] = None,
        pacer: Optional[Pacer] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
        tracer: Optional[Callable[[str, str], Awaitable[object]]] = None,
    ):
        self.config = config
        self.executor = executor
        self.geo = geo or GeoResolver(geo_regions=config.geo_regions)
        self.rng = rng or random.Random()
        self.pacer = pacer or Pacer(rng=self.rng)
        if self.pacer.conditional is None:
            self.pacer.conditional = ConditionalSpacing.parse(config.conditional_spacing)
        self.clock = clock
        self.now = now
        self.tracer = tracer
        self.validator = ConstraintValidator(config, self.geo)
        self.context = ProbeContext(
            config=config,
            executor=executor,
            pacer=self.pacer,
            validator=self.validator,
            rng=self.rng,
            countries=set(self.geo.table.countries),
        )
        self.state = RunState.PENDING
        self._traced: set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def supported_tests(self, endpoint: Endpoint, tests: list[tuple[str, bool]]) -> list[tuple[str, bool]]:
        """Filter *tests* by what the endpoint's service type can serve."""
        service_type = endpoint.service_type
        if service_type not in SERVICE_TYPES:
            return tests
        supported = list(CAPABILITIES[service_type])
        if service_type == "storage" and self.config.test_cmd_uplink:
            supported.append("uplink")
        return [(t, e) for t, e in tests if t in supported]

    def skip_latency(self, endpoint: Endpoint) -> bool:
        skip = self.config.latency_skip
        if not skip:
            return False
        return (
            hostname_of(endpoint.public) in skip
            or (endpoint.service_id is not None and endpoint.service_id in skip)
            or (endpoint.provider_id is not None and endpoint.provider_id in skip)
        )

    def _limit_reached(self, started: float, report: RunReport) -> bool:
        cfg = self.config
        if cfg.max_runtime is not None and self.clock() - started >= cfg.max_runtime:
            logger.info("max_runtime %d secs reached", cfg.max_runtime)
            return True
        if cfg.max_tests is not None and report.tests_completed >= cfg.max_tests:
            logger.info("max_tests %d reached", cfg.max_tests)
            return True
        if cfg.abort_threshold is not None and report.tests_failed >= cfg.abort_threshold:
            logger.warning("abort_threshold %d reached, aborting run", cfg.abort_threshold)
            self.state = RunState.ABORTED
            return True
        return False

    async def _resolve_ip(self, address: str) -> Optional[str]:
        host = hostname_of(address.replace("*", str(self.rng.randint(0, 2**31 - 1))))
        if not host:
            return None
        return await self.executor.resolve_address(host)

    async def _diagnose(self, address: str) -> None:
        if not self.config.traceroute or self.tracer is None:
            return
        host = hostname_of(address)
        if not host or host in self._traced:
            return
        self._traced.add(host)
        try:
            await self.tracer(host, self.config.output)
        except Exception as exc:
            logger.warning("Traceroute to %s failed: %s", host, exc)

    def _timestamp(self) -> str:
        return self.now().strftime("%Y-%m-%d %H:%M:%S")

    # ------------------------------------------------------------------
    # Probe execution
    # ------------------------------------------------------------------

    async def run_probe(self, endpoint: Endpoint, test: str, expanded: bool, report: RunReport) -> list[ResultRow]:
        """Run one probe, private address first when applicable; returns the new rows."""
        cfg = self.config
        probe = get_probe(ProbeKind(test), self.context)

        candidates: list[tuple[str, bool]] = []
        if test != "dns" and endpoint.private and use_private_network(cfg, endpoint.index):
            candidates.append((endpoint.private, True))
        elif endpoint.private and test != "dns":
            logger.debug("Skipping private address %s because services are not related", endpoint.private)
        candidates.append((endpoint.public, False))

        output = None
        address, private = endpoint.public, False
        started = stopped = self._timestamp()
        t0 = t1 = self.clock()
        for address, private in candidates:
            started, t0 = self._timestamp(), self.clock()
            logger.info("Starting %s test against %s", test, address)
            output = await probe.run(endpoint, address)
            stopped, t1 = self._timestamp(), self.clock()
            if output is not None:
                break

        row_args = dict(
            started=started,
            stopped=stopped,
            duration=t1 - t0,
            timeout=probe.timeout,
            test_ip=await self._resolve_ip(address),
            private=private and output is not None,
        )

        if output is not None and output.samples:
            report.tests_completed += 1
            row = build_row(test, endpoint, address, output, cfg, self.geo, **row_args)
            rows = [row]
            if inverse_eligible(cfg, row, expanded):
                rows.append(synthesize_inverse(row, cfg.vantage))
            logger.info("%s test for %s completed: %s", test, address, row.status)
            return rows

        logger.warning("%s test for %s failed", test, endpoint.public)
        report.tests_failed += 1
        if cfg.suppress_failed:
            return []
        await self._diagnose(address)
        return [build_row(test, endpoint, address, None, cfg, self.geo, **row_args)]

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> RunReport:
        cfg = self.config
        report = RunReport(started=self._timestamp())
        self.state = RunState.RUNNING
        await self.pacer.sleep_before_start(cfg.sleep_before_start)

        started = self.clock()
        indexes = list(range(len(cfg.test_endpoint)))
        if cfg.randomize:
            self.rng.shuffle(indexes)
        logger.info("Initiating testing for %d endpoints", len(indexes))

        probes_run = 0
        previous_metric: Optional[float] = None
        stop = False
        for index in indexes:
            if self._limit_reached(started, report):
                break
            if not self.validator.validate(index):
                logger.info("Skipping endpoint %s: same-* constraints do not match", cfg.test_endpoint[index][0])
                continue

            endpoint = cfg.endpoint(index)
            tests = self.supported_tests(endpoint, expand_tests(cfg.tests_for(index)))
            if not tests:
                logger.info(
                    "Skipping endpoint %s: no requested tests supported by service type %s",
                    endpoint.public, endpoint.service_type,
                )
                continue
            if cfg.randomize:
                self.rng.shuffle(tests)

            for test, expanded in tests:
                if test == "latency" and self.skip_latency(endpoint):
                    logger.info("Skipping latency test for %s due to latency_skip", endpoint.public)
                    continue
                if probes_run:
                    await self.pacer.space(cfg.spacing)
                    await self.pacer.conditional_space(previous_metric)
                probes_run += 1

                rows = await self.run_probe(endpoint, test, expanded, report)
                report.rows.extend(rows)
                previous_metric = rows[0].summary.median if rows and rows[0].summary else None

                if self._limit_reached(started, report):
                    stop = True
                    break
            if stop:
                break

        if self.state != RunState.ABORTED:
            self.state = RunState.COMPLETED
        report.state = self.state

        if report.succeeded and cfg.min_runtime:
            remaining = cfg.min_runtime - (self.clock() - started)
            if remaining > 0:
                logger.info("min_runtime %d not reached, sleeping %.1f secs", cfg.min_runtime, remaining)
                await self.pacer.sleep(remaining)
        return report
