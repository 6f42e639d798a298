"""Tests for the test run loop."""

from __future__ import annotations

import random

from conftest import FakeExecutor

from netbench.models import RunState, VantagePoint
from netbench.orchestrator import TestOrchestrator, expand_tests


def _orchestrator(config, executor, pacer, **kwargs) -> TestOrchestrator:
    return TestOrchestrator(config, executor, pacer=pacer, rng=random.Random(7), **kwargs)


class FakeClock:
    def __init__(self, step: float = 1.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class TestExpandTests:
    def test_throughput_expands_to_both_directions(self):
        assert expand_tests(("throughput", "latency")) == [
            ("downlink", True),
            ("uplink", True),
            ("latency", False),
        ]

    def test_duplicates_removed(self):
        assert expand_tests(("latency", "latency")) == [("latency", False)]

    def test_named_and_expanded_duplicate_counts_as_expanded(self):
        """The expanded flag does not depend on where the duplicate is listed."""
        assert expand_tests(("downlink", "throughput")) == [("downlink", True), ("uplink", True)]
        assert expand_tests(("throughput", "downlink")) == [("downlink", True), ("uplink", True)]


class TestRunLimits:
    async def test_max_tests_stops_after_one_probe(self, make_config, pacer):
        executor = FakeExecutor()
        config = make_config(
            test_endpoint=(("a.example.com",), ("b.example.com",)),
            latency_samples=3,
            max_tests=1,
        )

        report = await _orchestrator(config, executor, pacer).run()

        assert len(report.rows) == 1
        assert report.rows[0].test_endpoint == "a.example.com"
        assert executor.calls == [("latency", "a.example.com")]
        assert report.state == RunState.COMPLETED
        assert report.succeeded

    async def test_abort_threshold(self, make_config, pacer):
        executor = FakeExecutor(rtts=[])
        config = make_config(
            test_endpoint=(("a.example.com",), ("b.example.com",)),
            abort_threshold=1,
        )
        orchestrator = _orchestrator(config, executor, pacer)

        report = await orchestrator.run()

        assert report.state == RunState.ABORTED
        assert report.tests_failed == 1
        assert [r.status for r in report.rows] == ["failed"]
        assert not report.succeeded

    async def test_max_runtime(self, make_config, pacer):
        executor = FakeExecutor()
        config = make_config(
            test_endpoint=(("a.example.com",), ("b.example.com",), ("c.example.com",)),
            max_runtime=10,
        )
        report = await _orchestrator(config, executor, pacer, clock=FakeClock(step=4.0)).run()
        assert len(report.rows) < 3

    async def test_min_runtime_pads_successful_run(self, make_config, pacer, sleep):
        config = make_config(min_runtime=30, spacing=0)
        await _orchestrator(config, FakeExecutor(), pacer, clock=FakeClock(step=1.0)).run()
        assert sleep.calls == [26.0]


class TestSpacing:
    async def test_spacing_between_probes_only(self, make_config, pacer, sleep):
        config = make_config(
            test_endpoint=(("a.example.com",), ("b.example.com",)),
            spacing=100,
        )
        await _orchestrator(config, FakeExecutor(), pacer).run()
        assert sleep.calls == [0.1]

    async def test_conditional_spacing_applied(self, make_config, pacer, sleep):
        executor = FakeExecutor(rtts={"a.example.com": [150.0], "b.example.com": [10.0]})
        config = make_config(
            test_endpoint=(("a.example.com",), ("b.example.com",)),
            spacing=0,
            conditional_spacing=">100=50",
        )
        await _orchestrator(config, executor, pacer).run()
        assert sleep.calls == [0.05]

    async def test_conditional_spacing_not_applied(self, make_config, pacer, sleep):
        executor = FakeExecutor(rtts={"a.example.com": [80.0], "b.example.com": [10.0]})
        config = make_config(
            test_endpoint=(("a.example.com",), ("b.example.com",)),
            spacing=0,
            conditional_spacing=">100=50",
        )
        await _orchestrator(config, executor, pacer).run()
        assert sleep.calls == []


class TestEndpointSelection:
    async def test_constraint_skips_endpoint(self, make_config, pacer):
        executor = FakeExecutor()
        config = make_config(
            vantage=VantagePoint(location="CA,US"),
            test_endpoint=(("a.example.com",), ("b.example.com",)),
            test_location=("DE", "NY,US"),
            same_country_only=True,
        )
        report = await _orchestrator(config, executor, pacer).run()
        assert [r.test_endpoint for r in report.rows] == ["b.example.com"]

    async def test_service_type_capabilities(self, make_config, pacer):
        executor = FakeExecutor()
        config = make_config(test_service_type=("dns",), test=(("latency",),))
        report = await _orchestrator(config, executor, pacer).run()
        assert report.rows == []
        assert executor.calls == []

    async def test_latency_skip(self, make_config, pacer):
        executor = FakeExecutor()
        config = make_config(latency_skip=("host.example.com",))
        report = await _orchestrator(config, executor, pacer).run()
        assert report.rows == []

    async def test_private_address_first(self, make_config, pacer):
        executor = FakeExecutor()
        config = make_config(
            vantage=VantagePoint(compute_service_id="p1", region="r1"),
            test_endpoint=(("a.example.com", "10.0.0.1"),),
            test_service_id=("p1",),
            test_region=("r1",),
        )
        report = await _orchestrator(config, executor, pacer).run()

        assert executor.calls == [("latency", "10.0.0.1")]
        assert report.rows[0].test_endpoint == "10.0.0.1"
        assert report.rows[0].attributes["test_private_endpoint"] is True

    async def test_private_address_falls_back_to_public(self, make_config, pacer):
        executor = FakeExecutor(rtts={"a.example.com": [5.0]})
        config = make_config(
            vantage=VantagePoint(compute_service_id="p1"),
            test_endpoint=(("a.example.com", "10.0.0.1"),),
            test_service_id=("p1",),
        )
        report = await _orchestrator(config, executor, pacer).run()

        assert executor.calls == [("latency", "10.0.0.1"), ("latency", "a.example.com")]
        assert report.rows[0].test_endpoint == "a.example.com"
        assert "test_private_endpoint" not in report.rows[0].attributes


class TestFailures:
    async def test_suppress_failed(self, make_config, pacer):
        config = make_config(suppress_failed=True)
        report = await _orchestrator(config, FakeExecutor(rtts=[]), pacer).run()
        assert report.rows == []
        assert report.tests_failed == 1

    async def test_traceroute_once_per_host(self, make_config, pacer):
        traced = []

        async def tracer(host, output):
            traced.append((host, output))

        config = make_config(test=(("latency", "downlink"),), traceroute=True, throughput_samples=1)
        executor = FakeExecutor(rtts=[], transfer=lambda requests: None)
        report = await _orchestrator(config, executor, pacer, tracer=tracer).run()

        assert [r.status for r in report.rows] == ["failed", "failed"]
        assert traced == [("host.example.com", config.output)]


class TestInverseRecords:
    async def test_expanded_throughput_adds_inverse(self, make_config, pacer):
        config = make_config(
            vantage=VantagePoint(compute_service_id="aws:ec2", hostname="vantage.example.com", public_ip="198.51.100.7"),
            test=(("throughput",),),
            test_service_id=("gcp:compute",),
            test_service_type=("compute",),
            throughput_inverse=True,
            throughput_size=1,
            throughput_samples=1,
            spacing=0,
        )
        report = await _orchestrator(config, FakeExecutor(), pacer).run()

        assert [r.test for r in report.rows] == ["downlink", "uplink", "uplink", "downlink"]
        assert report.rows[1].test_endpoint == "vantage.example.com"
        assert report.tests_completed == 2
