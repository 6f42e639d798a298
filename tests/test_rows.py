"""Tests for result rows and inverse records."""

from __future__ import annotations

import pytest

from netbench.geo import GeoResolver
from netbench.models import ProbeOutput, VantagePoint
from netbench.rows import build_row, inverse_eligible, synthesize_inverse

VANTAGE = VantagePoint(
    location="CA,US",
    provider="aws",
    provider_id="aws",
    compute_service="ec2",
    compute_service_id="aws:ec2",
    region="us-west-1",
    hostname="vantage.example.com",
    public_ip="198.51.100.7",
    meta={"cpu": "4", "meta_run_id": "r1"},
)


@pytest.fixture
def peer_config(make_config):
    return make_config(
        vantage=VANTAGE,
        throughput_inverse=True,
        test_endpoint=(("peer.example.com",),),
        test_location=("NY,US",),
        test_provider=("gcp",),
        test_provider_id=("gcp",),
        test_service_id=("gcp:compute",),
        test_service_type=("compute",),
        test_region=("us-east1",),
    )


def _row(config, test="downlink", output=None, **kwargs):
    if output is None:
        output = ProbeOutput(
            samples=[100.0, 120.0],
            tests_failed=0,
            tests_success=2,
            extras={"throughput_transfer": 10.0, "throughput_threads": 2},
        )
    return build_row(
        test,
        config.endpoint(0),
        "peer.example.com",
        output,
        config,
        GeoResolver(geo_regions=config.geo_regions),
        started="2024-01-01 00:00:00",
        stopped="2024-01-01 00:00:05",
        duration=5.0,
        timeout=180,
        **kwargs,
    )


class TestBuildRow:
    def test_throughput_row(self, peer_config):
        row = _row(peer_config, test_ip="192.0.2.10")
        data = row.as_dict()

        assert row.status == "success"
        assert data["metric"] == 110.0
        assert data["metric_unit"] == "Mb/s"
        assert data["metrics"] == "100,120"
        assert data["metric_timed"] == pytest.approx(16.6667, abs=1e-4)
        assert data["throughput_custom_cmd"] is False
        assert data["test_ip"] == "192.0.2.10"
        assert data["test_geo_region"] == "us_east"
        assert data["meta_geo_region"] == "us_west"
        assert data["meta_cpu"] == "4"
        assert data["meta_run_id"] == "r1"
        assert list(data)[-1] == "status"

    def test_failed_row(self, peer_config):
        row = build_row(
            "latency", peer_config.endpoint(0), "peer.example.com", None, peer_config, GeoResolver(),
            started="s", stopped="t", duration=1.0, timeout=3,
        )
        data = row.as_dict()
        assert data["status"] == "failed"
        assert "metric" not in data
        assert data["test_provider"] == "gcp"

    def test_latency_units(self, peer_config):
        row = _row(peer_config, test="latency", output=ProbeOutput(samples=[1.5, 2.5]))
        assert row.metric_unit == "ms"
        assert row.metric_timed is None
        assert "throughput_custom_cmd" not in row.extras

    def test_private_endpoint_flag(self, peer_config):
        row = _row(peer_config, private=True)
        assert row.attributes["test_private_endpoint"] is True


class TestInverse:
    def test_eligibility(self, peer_config):
        row = _row(peer_config)
        assert inverse_eligible(peer_config, row, expanded=True)
        assert not inverse_eligible(peer_config, row, expanded=False)
        latency = _row(peer_config, test="latency", output=ProbeOutput(samples=[1.0]))
        assert not inverse_eligible(peer_config, latency, expanded=True)

    def test_downlink_becomes_uplink(self, peer_config):
        row = _row(peer_config, test_ip="192.0.2.10")
        inverse = synthesize_inverse(row, VANTAGE)

        assert inverse.test == "uplink"
        assert inverse.test_endpoint == "vantage.example.com"
        assert inverse.test_ip == "198.51.100.7"
        assert inverse.summary == row.summary

    def test_roles_are_swapped(self, peer_config):
        inverse = synthesize_inverse(_row(peer_config), VANTAGE)
        attrs = inverse.attributes

        assert attrs["meta_provider"] == "gcp"
        assert attrs["test_provider"] == "aws"
        assert attrs["meta_compute_service_id"] == "gcp:compute"
        assert attrs["test_service_id"] == "aws:ec2"
        assert attrs["meta_location"] == "NY,US"
        assert attrs["test_location"] == "CA,US"
        assert attrs["meta_geo_region"] == "us_east"
        assert attrs["test_geo_region"] == "us_west"
        assert attrs["meta_hostname"] == "peer.example.com"
        assert attrs["test_service"] == "ec2"
        assert "meta_cpu" not in attrs

    def test_explicit_public_ip(self, peer_config):
        inverse = synthesize_inverse(_row(peer_config), VANTAGE, public_ip="203.0.113.9")
        assert inverse.test_ip == "203.0.113.9"
