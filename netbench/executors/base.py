"""Abstract transport interface used by the probes."""

from __future__ import annotations

import abc
from typing import Optional, Sequence

from netbench.models import BatchOutcome, PingReply, ProbeRequest


class ProbeExecutor(abc.ABC):
    """Executes the wire-level work behind each probe.

    Implementations must not raise for transport failures: a failed ping is
    reported through :class:`PingReply`, a failed DNS query as ``None`` and a
    failed transfer request as a non-2xx status in the batch outcome.
    """

    @abc.abstractmethod
    async def run_latency(self, host: str, samples: int, interval: float, timeout: float) -> PingReply:
        """Send *samples* echo requests to *host* and collect round-trip times (ms)."""

    @abc.abstractmethod
    async def query_dns(
        self,
        hostname: str,
        nameserver: str,
        timeout: float,
        retries: int,
        tcp: bool = False,
        recurse: bool = False,
    ) -> Optional[str]:
        """Resolve *hostname* against *nameserver*; the first IPv4 answer or None."""

    @abc.abstractmethod
    async def lookup_nameservers(self, domain: str) -> list[str]:
        """Authoritative name servers of *domain*."""

    @abc.abstractmethod
    async def run_concurrent_transfer(
        self,
        requests: Sequence[ProbeRequest],
        timeout: float,
        use_tls: bool = False,
    ) -> Optional[BatchOutcome]:
        """Run every request concurrently and join before returning."""

    @abc.abstractmethod
    async def resolve_address(self, hostname: str) -> Optional[str]:
        """IPv4 address for *hostname*, or None."""
