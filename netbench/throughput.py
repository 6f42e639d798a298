"""Uplink and downlink throughput probes.

Each sample is one batch of ``throughput_threads`` concurrent requests,
dispatched either to the probe executor or, when a ``test_cmd_*`` template
is configured, to the custom command runner. Both paths return the same
:class:`BatchOutcome` shape so reduction is shared.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from netbench.config import BYTES_PER_MB, PING_PAYLOAD_BYTES, SAME_SIZE_DIMENSIONS, SMALL_FILE_LIMIT
from netbench.catalog import DownlinkFile, select_downlink_file
from netbench.constraints import ConstraintValidator
from netbench.custom import CustomCommandRunner
from netbench.geo import GeoResolver
from netbench.models import BatchOutcome, Endpoint, ProbeKind, ProbeOutput, ProbeRequest
from netbench.probes import Probe
from netbench.stats import percentile

logger = logging.getLogger(__name__)

_HAS_PATH_RE = re.compile(r"^https?://.*/")


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 6) if values else 0.0


def _median(values: Sequence[float]) -> float:
    return round(percentile(sorted(values), 50), 6) if values else 0.0


@dataclass
class BatchSample:
    """Reduction of one accepted batch."""

    value: float  # Mb/s, or ms when measuring time
    size_mb: float  # MB per request
    transfer_mb: float


class ThroughputProbe(Probe):
    uplink = False

    @property
    def timeout(self) -> float:
        return self.config.throughput_timeout

    @property
    def direction(self) -> str:
        return "uplink" if self.uplink else "downlink"

    # ------------------------------------------------------------------
    # Batch construction
    # ------------------------------------------------------------------

    def base_urls(self, address: str, webpage: bool = False) -> list[str]:
        """Candidate base URLs for *address*: https then http when enabled."""
        cfg = self.config
        if address.startswith("http"):
            bases = [address]
        else:
            protocols = ("https", "http") if cfg.throughput_https else ("http",)
            bases = [f"{proto}://{address}" for proto in protocols]
        if webpage:
            return bases

        uri = cfg.throughput_uri
        resolved = []
        for base in bases:
            if not _HAS_PATH_RE.match(base):
                base = f"{base}{'' if uri.startswith('/') else '/'}{uri}"
            elif base.endswith("/"):
                base = base[:-1]
            resolved.append(base)
        return resolved

    def _validator(self) -> ConstraintValidator:
        if self.context.validator is None:
            geo = GeoResolver(geo_regions=self.config.geo_regions)
            self.context.validator = ConstraintValidator(self.config, geo)
        return self.context.validator

    def transfer_size(self, endpoint: Endpoint) -> float:
        """Nominal size in MB, escalated by matching ``throughput_same_*`` overrides."""
        size_mb = self.config.throughput_size
        if not size_mb or size_mb <= 0:
            return 0
        for dimension in SAME_SIZE_DIMENSIONS:
            same = self.config.same_size(dimension)
            if not same or same <= size_mb:
                continue
            if self._validator().validate(endpoint.index, dimension):
                logger.debug("throughput_same_%s matches %s, size now %s MB", dimension, endpoint.public, same)
                size_mb = same
            else:
                logger.debug("throughput_same_%s does not match %s", dimension, endpoint.public)
        return size_mb

    def _select_file(self, size: float, endpoint: Endpoint) -> DownlinkFile:
        return select_downlink_file(size, endpoint.service_type, self.config.test_files_dir)

    def _assign_body(self, request: ProbeRequest, base: str, size: float, endpoint: Endpoint) -> int:
        """Point *request* at a test file of about *size* bytes; returns its expected bytes."""
        dfile = self._select_file(size, endpoint)
        if self.uplink:
            if self.config.test_files_dir:
                request.body = os.path.join(self.config.test_files_dir, dfile.name)
                return dfile.size
            request.body = int(size)
            return int(size)
        request.urls = [f"{base}/{dfile.name}"]
        return dfile.size

    def initial_requests(
        self, base: str, threads: int, size: Optional[float], endpoint: Endpoint,
    ) -> tuple[list[ProbeRequest], int]:
        """One request per thread, plus the bytes the batch should transfer."""
        requests = []
        expected = 0
        for _ in range(threads):
            request = ProbeRequest(
                method="POST" if self.uplink else "GET",
                headers=dict(self.config.headers),
            )
            if self.uplink:
                request.urls = [f"{base}/up.html"]
            if size is not None:
                expected += self._assign_body(request, base, size, endpoint)
            requests.append(request)
        return requests, expected

    def webpage_requests(
        self, base: str, resources: Sequence[str], requests: list[ProbeRequest],
    ) -> list[ProbeRequest]:
        """Split the page's resources across threads; the first thread takes the remainder."""
        urls = sorted(
            r if r.startswith("http") else f"{base}{'' if r.startswith('/') else '/'}{r}"
            for r in resources
        )
        threads = min(len(requests), len(urls))
        if threads < len(requests):
            logger.debug("Reducing threads from %d to %d to match page resources", len(requests), threads)
        per_thread = len(urls) // threads
        first = len(urls) - (threads - 1) * per_thread

        sliced = []
        pointer = 0
        for n, request in enumerate(requests[:threads]):
            count = first if n == 0 else per_thread
            request.urls = urls[pointer:pointer + count]
            pointer += count
            sliced.append(request)
        return sliced

    def small_file_requests(
        self, base: str, requests: list[ProbeRequest], endpoint: Endpoint,
    ) -> int:
        """Give every request a random small file; returns the expected bytes."""
        expected = 0
        for request in requests:
            size = self.context.rng.randint(1, SMALL_FILE_LIMIT)
            expected += self._assign_body(request, base, size, endpoint)
        return expected

    def duplicate_for_keepalive(
        self, base: str, requests: list[ProbeRequest], expected: int, endpoint: Endpoint,
    ) -> int:
        """Repeat every request's URL once per sample over one connection."""
        samples = self.config.throughput_samples
        small = self.config.throughput_small_file
        for request in requests:
            first = request.urls[0]
            urls = [first]
            for _ in range(1, samples):
                if small and not self.uplink:
                    dfile = self._select_file(self.context.rng.randint(1, SMALL_FILE_LIMIT), endpoint)
                    urls.append(f"{base}/{dfile.name}")
                    expected += dfile.size
                else:
                    urls.append(first)
            request.urls = urls
        if not small or self.uplink:
            expected *= samples
        return expected

    # ------------------------------------------------------------------
    # Dispatch and reduction
    # ------------------------------------------------------------------

    def _custom_runner(self) -> CustomCommandRunner:
        if self.context.custom is None:
            cfg = self.config
            self.context.custom = CustomCommandRunner(
                downlink_template=cfg.test_cmd_downlink,
                uplink_template=cfg.test_cmd_uplink,
                delete_template=cfg.test_cmd_uplink_del,
                url_strip=cfg.test_cmd_url_strip,
                payload_dir=cfg.output,
                rng=self.context.rng,
            )
        return self.context.custom

    async def dispatch(self, requests: list[ProbeRequest], use_tls: bool) -> Optional[BatchOutcome]:
        cfg = self.config
        if self.uplink and cfg.test_cmd_uplink:
            return await self._custom_runner().uplink(requests, self.timeout)
        if not self.uplink and cfg.test_cmd_downlink:
            return await self._custom_runner().downlink(requests, self.timeout)
        return await self.context.executor.run_concurrent_transfer(requests, self.timeout, use_tls)

    def reduce_batch(
        self,
        outcome: Optional[BatchOutcome],
        expected: Optional[int],
        ping: bool,
        webpage: bool = False,
    ) -> Optional[BatchSample]:
        """Turn a batch outcome into one sample, or None when it is unusable."""
        cfg = self.config
        if outcome is None:
            logger.warning("%s batch failed", self.direction)
            return None
        results = [r for r in outcome.results if r is not None]
        lowest, highest = outcome.lowest_status, outcome.highest_status
        if lowest is None or highest is None or not results:
            logger.warning("%s batch did not return a status or results", self.direction)
            return None
        if not (200 <= lowest and highest < 300):
            logger.warning("%s batch failed: status range %d/%d is not 2XX", self.direction, lowest, highest)
            return None

        speeds: list[float] = []
        times: list[float] = []
        transferred = 0
        slowest = 0.0
        for result in results:
            rate = [round(s * 8 / BYTES_PER_MB, 6) for s in result.speeds]
            speeds.append(_mean(rate))
            elapsed = sum(t * 1000 for t in result.times)
            times.append(elapsed)
            slowest = max(slowest, elapsed)
            transferred += result.total_bytes

        mb = round(transferred / BYTES_PER_MB, 6)
        if expected is not None and not ping and transferred < expected * cfg.throughput_tolerance:
            logger.warning(
                "Megabytes transferred %s does not match expected %s",
                mb, round(expected / BYTES_PER_MB, 6),
            )
            return None

        n = len(results)
        rate = _mean(speeds) if cfg.throughput_use_mean else _median(speeds)
        per_thread_time = _mean(times) if cfg.throughput_use_mean else _median(times)
        if cfg.throughput_slowest_thread and slowest > 0:
            total_mbs = round(mb * 8 / (slowest / 1000), 2)
        else:
            total_mbs = rate * n
        total_time = per_thread_time * n

        if cfg.throughput_time:
            value = total_time if webpage else per_thread_time
        else:
            value = total_mbs
        logger.debug(
            "%s batch: %s MB on %d requests, rate %s Mb/s, time %s ms",
            self.direction, mb, n, round(total_mbs, 4), round(total_time, 4),
        )
        return BatchSample(value=value, size_mb=round(transferred / BYTES_PER_MB / n, 6), transfer_mb=mb)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, endpoint: Endpoint, address: str) -> Optional[ProbeOutput]:
        cfg = self.config
        ctx = self.context
        resources = cfg.webpage_for(endpoint.index)
        webpage = bool(resources)
        small = cfg.throughput_small_file
        keepalive = cfg.throughput_keepalive and not webpage
        samples = cfg.throughput_samples

        ping = False
        size: Optional[float] = None
        if not small and not webpage:
            size_mb = self.transfer_size(endpoint)
            if size_mb > 0:
                size = size_mb * BYTES_PER_MB
            else:
                ping = True
                size = PING_PAYLOAD_BYTES

        for base in self.base_urls(address, webpage):
            use_tls = base.startswith("https")
            logger.info(
                "%s test using %s; samples %d; threads %d; timeout %d",
                self.direction, base, samples, cfg.throughput_threads, self.timeout,
            )
            requests, expected = self.initial_requests(base, cfg.throughput_threads, size, endpoint)
            collected: list[BatchSample] = []

            for _ in range(samples):
                batch_expected: Optional[int] = expected
                if webpage:
                    requests = self.webpage_requests(base, resources, requests)
                    batch_expected = None
                elif small:
                    batch_expected = self.small_file_requests(base, requests, endpoint)
                if keepalive and samples > 1:
                    batch_expected = self.duplicate_for_keepalive(base, requests, batch_expected, endpoint)

                if collected:
                    await ctx.pacer.space(cfg.spacing)
                    await ctx.pacer.conditional_space(collected[-1].value)

                outcome = await self.dispatch(requests, use_tls)
                sample = self.reduce_batch(outcome, batch_expected, ping, webpage)
                if sample is not None:
                    collected.append(sample)

                if not collected and (
                    outcome is None or outcome.lowest_status is None or outcome.lowest_status >= 300
                ):
                    break
                if keepalive:
                    logger.debug("Ending %s test after one batch because throughput_keepalive is set", self.direction)
                    break

            if collected:
                return self._finalize(collected, len(requests), ping, use_tls, keepalive)
        return None

    def _finalize(
        self,
        collected: list[BatchSample],
        threads: int,
        ping: bool,
        use_tls: bool,
        keepalive: bool,
    ) -> ProbeOutput:
        cfg = self.config
        samples = cfg.throughput_samples
        extras: dict = {
            "throughput_size": 0 if ping else _mean([s.size_mb for s in collected]),
            "throughput_threads": threads,
        }
        if use_tls:
            extras["throughput_https"] = True
        if cfg.throughput_small_file:
            extras["throughput_small_file"] = True
        if not ping:
            extras["throughput_transfer"] = round(sum(s.transfer_mb for s in collected), 6)
        if cfg.throughput_time:
            extras["throughput_time"] = True

        n = len(collected)
        if keepalive:
            failed, succeeded = 0, samples
        else:
            failed, succeeded = samples - n, n
        logger.info("%s test completed with %d successful, %d failed", self.direction, succeeded, failed)
        return ProbeOutput(
            samples=[s.value for s in collected],
            tests_failed=failed,
            tests_success=succeeded,
            extras=extras,
        )


class DownlinkProbe(ThroughputProbe):
    kind = ProbeKind.DOWNLINK
    uplink = False


class UplinkProbe(ThroughputProbe):
    kind = ProbeKind.UPLINK
    uplink = True
