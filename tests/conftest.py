"""Shared test fixtures for the netbench test suite."""

from __future__ import annotations

import random
from typing import Callable, Optional, Sequence

import pytest

from netbench.catalog import load_downlink_files
from netbench.executors.base import ProbeExecutor
from netbench.models import BatchOutcome, PingReply, ProbeRequest, RunConfiguration, TransferResult
from netbench.timing import Pacer


# =============================================================================
# Fakes
# =============================================================================


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that only records the requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def full_transfer(requests: Sequence[ProbeRequest], seconds: float = 0.5, status: int = 200) -> BatchOutcome:
    """Every request transfers the full catalog size of its file in *seconds*."""
    files = load_downlink_files()
    outcome = BatchOutcome()
    for request in requests:
        sizes = []
        for url in request.urls:
            name = url.rsplit("/", 1)[-1]
            sizes.append(files.get(name, request.body if isinstance(request.body, int) else 0))
        outcome.add(
            TransferResult(
                speeds=[size / seconds for size in sizes],
                times=[seconds] * len(sizes),
                transfers=sizes,
            ),
            status,
        )
    return outcome


class FakeExecutor(ProbeExecutor):
    """Scripted executor; records every call in ``calls``."""

    def __init__(
        self,
        rtts: Optional[dict[str, list[float]] | list[float]] = None,
        exit_code: int = 0,
        dns_answer: Optional[str] | Callable[[str, str], Optional[str]] = "192.0.2.1",
        nameservers: Optional[list[str]] = None,
        transfer: Optional[Callable[[Sequence[ProbeRequest]], Optional[BatchOutcome]]] = None,
        address: Optional[str] = "192.0.2.10",
    ):
        self.rtts = rtts if rtts is not None else [10.0, 11.0, 12.0]
        self.exit_code = exit_code
        self.dns_answer = dns_answer
        self.nameservers = nameservers or []
        self.transfer = transfer or full_transfer
        self.address = address
        self.calls: list[tuple] = []

    async def run_latency(self, host: str, samples: int, interval: float, timeout: float) -> PingReply:
        self.calls.append(("latency", host))
        rtts = self.rtts.get(host, []) if isinstance(self.rtts, dict) else self.rtts
        return PingReply(exit_code=self.exit_code if rtts else 1, rtts=list(rtts))

    async def query_dns(self, hostname, nameserver, timeout, retries, tcp=False, recurse=False):
        self.calls.append(("dns", hostname, nameserver))
        if callable(self.dns_answer):
            return self.dns_answer(hostname, nameserver)
        return self.dns_answer

    async def lookup_nameservers(self, domain: str) -> list[str]:
        self.calls.append(("nameservers", domain))
        return list(self.nameservers)

    async def run_concurrent_transfer(self, requests, timeout, use_tls=False):
        self.calls.append(("transfer", [r.url for r in requests], use_tls))
        return self.transfer(requests)

    async def resolve_address(self, hostname: str) -> Optional[str]:
        return self.address


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def pacer(sleep: RecordingSleep, rng: random.Random) -> Pacer:
    return Pacer(sleep=sleep, rng=rng)


@pytest.fixture
def make_config(tmp_path) -> Callable[..., RunConfiguration]:
    """Factory for configurations writing into a temporary output directory."""

    def _make(**kwargs) -> RunConfiguration:
        kwargs.setdefault("output", str(tmp_path))
        kwargs.setdefault("test_endpoint", (("host.example.com",),))
        return RunConfiguration(**kwargs)

    return _make
