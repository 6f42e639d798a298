"""Tests for the latency and DNS probes."""

from __future__ import annotations

from conftest import FakeExecutor

from netbench.models import ProbeKind
from netbench.probes import (
    DnsProbe,
    LatencyProbe,
    ProbeContext,
    get_probe,
    hostname_of,
    registrable_domain,
)
from netbench.throughput import DownlinkProbe, UplinkProbe


def _context(config, executor, pacer, rng) -> ProbeContext:
    return ProbeContext(config=config, executor=executor, pacer=pacer, rng=rng)


class TestHelpers:
    def test_hostname_of(self):
        assert hostname_of("http://h.example.com:8080/path") == "h.example.com"
        assert hostname_of("h.example.com") == "h.example.com"
        assert hostname_of("10.0.0.1") == "10.0.0.1"

    def test_registrable_domain(self):
        assert registrable_domain("a.b.example.com") == "example.com"
        assert registrable_domain("example.com") == "example.com"
        assert registrable_domain("www.example.com.au", {"AU"}) == "example.com.au"
        assert registrable_domain("www.example.co.uk") == "example.co.uk"

    def test_registry(self, make_config, pacer, rng):
        ctx = _context(make_config(), FakeExecutor(), pacer, rng)
        assert isinstance(get_probe("latency", ctx), LatencyProbe)
        assert isinstance(get_probe(ProbeKind.DNS, ctx), DnsProbe)
        assert isinstance(get_probe("downlink", ctx), DownlinkProbe)
        assert isinstance(get_probe("uplink", ctx), UplinkProbe)


class TestLatencyProbe:
    async def test_collects_round_trip_times(self, make_config, pacer, rng):
        executor = FakeExecutor(rtts=[1.0, 2.0])
        config = make_config(latency_samples=3)
        probe = LatencyProbe(_context(config, executor, pacer, rng))

        output = await probe.run(config.endpoint(0), "host.example.com")

        assert output.samples == [1.0, 2.0]
        assert output.tests_success == 2
        assert output.tests_failed == 1
        assert executor.calls == [("latency", "host.example.com")]

    async def test_no_replies(self, make_config, pacer, rng):
        probe = LatencyProbe(_context(make_config(), FakeExecutor(rtts=[]), pacer, rng))
        assert await probe.run(make_config().endpoint(0), "host.example.com") is None

    def test_timeout(self, make_config, pacer, rng):
        probe = LatencyProbe(_context(make_config(latency_timeout=7), FakeExecutor(), pacer, rng))
        assert probe.timeout == 7


class TestDnsProbe:
    async def test_no_name_servers(self, make_config, pacer, rng):
        executor = FakeExecutor(nameservers=[])
        config = make_config(test_endpoint=(("www.example.com",),), test=(("dns",),))
        probe = DnsProbe(_context(config, executor, pacer, rng))

        assert await probe.run(config.endpoint(0), "www.example.com") is None
        assert ("nameservers", "example.com") in executor.calls

    async def test_explicit_name_servers(self, make_config, pacer, rng, sleep):
        executor = FakeExecutor()
        config = make_config(
            test_endpoint=(("www.example.com", "192.0.2.53"),),
            dns_samples=3,
            spacing=100,
        )
        probe = DnsProbe(_context(config, executor, pacer, rng))

        output = await probe.run(config.endpoint(0), "www.example.com")

        assert len(output.samples) == 3
        assert output.tests_success == 3
        assert output.tests_failed == 0
        assert output.extras == {"dns_servers": 1}
        assert {c[2] for c in executor.calls if c[0] == "dns"} == {"192.0.2.53"}
        # spacing between samples, none after the last
        assert sleep.calls == [0.1, 0.1]

    async def test_authoritative_servers(self, make_config, pacer, rng):
        executor = FakeExecutor(nameservers=["ns1.example.net", "ns2.example.net"])
        config = make_config(test_endpoint=(("www.example.co.uk",),), dns_samples=4, spacing=0)
        probe = DnsProbe(_context(config, executor, pacer, rng))

        output = await probe.run(config.endpoint(0), "www.example.co.uk")

        assert ("nameservers", "example.co.uk") in executor.calls
        assert len(output.samples) == 4
        assert output.extras == {"dns_servers": 2}

    async def test_all_queries_fail(self, make_config, pacer, rng):
        executor = FakeExecutor(dns_answer=None, nameservers=["ns1.example.net"])
        config = make_config(test_endpoint=(("www.example.com",),), dns_samples=5)
        probe = DnsProbe(_context(config, executor, pacer, rng))

        assert await probe.run(config.endpoint(0), "www.example.com") is None
        assert len([c for c in executor.calls if c[0] == "dns"]) == 1

    async def test_one_server_pins_first_success(self, make_config, pacer, rng):
        def answer(hostname, server):
            return "192.0.2.1" if server == "ns2.example.net" else None

        executor = FakeExecutor(dns_answer=answer, nameservers=["ns1.example.net", "ns2.example.net"])
        config = make_config(
            test_endpoint=(("www.example.com",),), dns_samples=3, dns_one_server=True, spacing=0,
        )
        probe = DnsProbe(_context(config, executor, pacer, rng))

        output = await probe.run(config.endpoint(0), "www.example.com")

        assert len(output.samples) == 3
        assert output.extras == {"dns_servers": 1}
        queried = [c[2] for c in executor.calls if c[0] == "dns"]
        first_success = queried.index("ns2.example.net")
        assert set(queried[first_success:]) == {"ns2.example.net"}
