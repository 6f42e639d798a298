"""Probe implementations and the probe registry.

Every probe returns a :class:`ProbeOutput` holding its SampleSet, or None
when no sample could be collected. Probes never raise for network failures.
"""

from __future__ import annotations

import abc
import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlparse

from netbench.config import RESOLV_CONF
from netbench.constraints import ConstraintValidator
from netbench.executors.base import ProbeExecutor
from netbench.models import Endpoint, ProbeKind, ProbeOutput, RunConfiguration
from netbench.timing import Pacer

if TYPE_CHECKING:
    from netbench.custom import CustomCommandRunner

logger = logging.getLogger(__name__)

# Second-level labels used under country-code TLDs (example.co.uk, example.com.au)
SECOND_LEVEL_LABELS = frozenset({
    "ac", "co", "com", "edu", "gob", "go", "gov", "gv", "in", "ltd", "mil",
    "ne", "net", "nhs", "nic", "nom", "or", "org", "plc", "sch",
})

_NAMESERVER_RE = re.compile(r"^nameserver\s+(\S+)")


def hostname_of(address: str) -> str:
    """Host part of an endpoint address (URL, host:port or bare host)."""
    address = address.strip()
    if "://" not in address:
        address = f"//{address}"
    parsed = urlparse(address)
    return parsed.hostname or ""


def registrable_domain(hostname: str, countries: Optional[set[str]] = None) -> str:
    """Domain whose NS records are authoritative for *hostname*."""
    labels = [label for label in hostname.replace(".*", "").strip(".").split(".") if label and label != "*"]
    if len(labels) <= 2:
        return ".".join(labels)
    is_cctld = countries is None or labels[-1].upper() in countries
    if is_cctld and len(labels[-1]) == 2 and labels[-2].lower() in SECOND_LEVEL_LABELS:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def read_resolv_conf(path: str = RESOLV_CONF) -> list[str]:
    nameservers: list[str] = []
    try:
        with open(path, encoding="utf-8") as fh:
            for line in fh:
                match = _NAMESERVER_RE.match(line.strip())
                if match and match.group(1) not in nameservers:
                    nameservers.append(match.group(1))
    except OSError as exc:
        logger.warning("Unable to read %s: %s", path, exc)
    return nameservers


@dataclass
class ProbeContext:
    """Everything a probe needs besides the endpoint itself."""

    config: RunConfiguration
    executor: ProbeExecutor
    pacer: Pacer = field(default_factory=Pacer)
    validator: Optional[ConstraintValidator] = None
    rng: random.Random = field(default_factory=random.Random)
    custom: Optional[CustomCommandRunner] = None
    countries: Optional[set[str]] = None


class Probe(abc.ABC):
    """One measurement operation type."""

    kind: ProbeKind

    def __init__(self, context: ProbeContext):
        self.context = context
        self.config = context.config

    @property
    def timeout(self) -> float:
        """Timeout recorded in result rows for this probe."""
        return self.config.latency_timeout

    @abc.abstractmethod
    async def run(self, endpoint: Endpoint, address: str) -> Optional[ProbeOutput]:
        """Measure *address* (one of ``endpoint.addresses``)."""


# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

class LatencyProbe(Probe):
    kind = ProbeKind.LATENCY

    async def run(self, endpoint: Endpoint, address: str) -> Optional[ProbeOutput]:
        host = hostname_of(address)
        if not host:
            return None
        cfg = self.config
        reply = await self.context.executor.run_latency(
            host, cfg.latency_samples, cfg.latency_interval, cfg.latency_timeout,
        )
        if not reply.rtts:
            if reply.exit_code == 0:
                logger.warning("ping %s exited successfully but produced no round-trip times", host)
            elif reply.exit_code == 1:
                logger.warning("ping %s failed: host is down or does not accept ICMP", host)
            else:
                logger.warning("ping %s failed with exit code %d", host, reply.exit_code)
            return None

        parsed = len(reply.rtts)
        logger.debug("ping %s: %d successful, %d failed", host, parsed, cfg.latency_samples - parsed)
        return ProbeOutput(
            samples=list(reply.rtts),
            tests_failed=max(cfg.latency_samples - parsed, 0),
            tests_success=parsed,
        )


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------

class DnsProbe(Probe):
    kind = ProbeKind.DNS

    @property
    def timeout(self) -> float:
        return self.config.dns_timeout

    async def nameservers(self, endpoint: Endpoint, host: str) -> list[str]:
        """Explicit, recursive (resolv.conf) or authoritative name servers for *host*."""
        explicit = [a for a in endpoint.addresses[1:] if a]
        if explicit:
            logger.debug("Using explicit name servers for %s: %s", host, explicit)
            return explicit
        if self.config.dns_recursive:
            servers = read_resolv_conf()
            if not servers:
                logger.warning("Unable to determine recursive name servers from %s", RESOLV_CONF)
            return servers
        domain = registrable_domain(host, self.context.countries)
        servers = []
        for server in await self.context.executor.lookup_nameservers(domain):
            if server not in servers:
                servers.append(server)
        if not servers:
            logger.warning("Unable to determine authoritative name servers for %s", host)
        return servers

    async def run(self, endpoint: Endpoint, address: str) -> Optional[ProbeOutput]:
        host = hostname_of(endpoint.public)
        if not host:
            return None
        cfg = self.config
        ctx = self.context
        servers = await self.nameservers(endpoint, host)
        if not servers:
            return None
        ctx.rng.shuffle(servers)

        samples: list[float] = []
        failed = 0
        pinned: Optional[int] = None
        while len(samples) < cfg.dns_samples:
            gained = 0
            for i, server in enumerate(servers):
                if cfg.dns_one_server and pinned is not None and pinned != i:
                    continue
                lookup = host.replace("*", str(ctx.rng.randint(0, 2**31 - 1)))
                t0 = time.perf_counter()
                answer = await ctx.executor.query_dns(
                    lookup, server, cfg.dns_timeout, cfg.dns_retry, cfg.dns_tcp, cfg.dns_recursive,
                )
                elapsed = round((time.perf_counter() - t0) * 1000, 3)
                if not answer:
                    logger.debug("DNS query for %s @%s failed", lookup, server)
                    failed += 1
                    continue

                logger.debug("DNS query for %s @%s returned %s in %s ms", lookup, server, answer, elapsed)
                pinned = i
                gained += 1
                samples.append(elapsed)
                if len(samples) >= cfg.dns_samples:
                    break
                await ctx.pacer.space(cfg.spacing)
                await ctx.pacer.conditional_space(elapsed)
            if not gained:
                logger.warning("No successful DNS queries for %s using %s", host, ", ".join(servers))
                break

        if not samples:
            return None
        return ProbeOutput(
            samples=samples,
            tests_failed=failed,
            tests_success=len(samples),
            extras={"dns_servers": 1 if cfg.dns_one_server else len(servers)},
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_PROBE_MAP: dict[ProbeKind, type[Probe]] | None = None


def _load_probes() -> dict[ProbeKind, type[Probe]]:
    from netbench.throughput import DownlinkProbe, UplinkProbe

    return {
        ProbeKind.LATENCY: LatencyProbe,
        ProbeKind.DNS: DnsProbe,
        ProbeKind.DOWNLINK: DownlinkProbe,
        ProbeKind.UPLINK: UplinkProbe,
    }


def get_probe_map() -> dict[ProbeKind, type[Probe]]:
    """Return the mapping of kind → probe class, loading lazily."""
    global _PROBE_MAP
    if _PROBE_MAP is None:
        _PROBE_MAP = _load_probes()
    return _PROBE_MAP


def get_probe(kind: ProbeKind | str, context: ProbeContext) -> Probe:
    """Instantiate the probe for *kind*."""
    kind = ProbeKind(kind)
    return get_probe_map()[kind](context)
