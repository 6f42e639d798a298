"""Tests for run option validation."""

from __future__ import annotations

import os

from netbench.models import VantagePoint
from netbench.validation import validate_run_configuration


class TestValidateRunConfiguration:
    def test_defaults_are_valid(self, make_config):
        assert validate_run_configuration(make_config()) == {}

    def test_endpoint_required(self, make_config):
        errors = validate_run_configuration(make_config(test_endpoint=()))
        assert "test_endpoint" in errors

    def test_numeric_ranges(self, make_config):
        errors = validate_run_configuration(
            make_config(dns_retry=0, latency_samples=101, discard_slowest=50, max_runtime=5)
        )
        assert set(errors) >= {"dns_retry", "latency_samples", "discard_slowest", "max_runtime"}

    def test_unknown_test(self, make_config):
        errors = validate_run_configuration(make_config(test=(("latency", "bogus"),)))
        assert "bogus" in errors["test"]

    def test_unknown_geo_region(self, make_config):
        errors = validate_run_configuration(make_config(geo_regions=("atlantis",)))
        assert "geo_regions" in errors

    def test_unknown_service_type(self, make_config):
        errors = validate_run_configuration(make_config(test_service_type=("mainframe",)))
        assert "test_service_type" in errors

    def test_uplink_command_needs_placeholders_and_delete(self, make_config):
        errors = validate_run_configuration(make_config(test_cmd_uplink="scp [source] host:/tmp"))
        assert "test_cmd_uplink" in errors
        assert "test_cmd_uplink_del" in errors

    def test_delete_command_accepts_wildcard(self, make_config):
        errors = validate_run_configuration(
            make_config(test_cmd_uplink="scp [source] [file]", test_cmd_uplink_del="ssh host rm /tmp/*")
        )
        assert errors == {}

    def test_keepalive_conflicts_with_custom_commands(self, make_config):
        errors = validate_run_configuration(
            make_config(throughput_keepalive=True, test_cmd_downlink="curl -s [file]")
        )
        assert "throughput_keepalive" in errors

    def test_per_endpoint_cardinality(self, make_config):
        errors = validate_run_configuration(
            make_config(
                test_endpoint=(("a.example.com",), ("b.example.com",), ("c.example.com",)),
                test_provider=("aws", "gcp"),
                test=(("latency",), ("dns",)),
            )
        )
        assert "test_provider" in errors
        assert "test" in errors

    def test_shared_value_for_all_endpoints(self, make_config):
        errors = validate_run_configuration(
            make_config(
                test_endpoint=(("a.example.com",), ("b.example.com",)),
                test_provider=("aws",),
            )
        )
        assert errors == {}

    def test_country_codes(self, make_config):
        errors = validate_run_configuration(
            make_config(vantage=VantagePoint(location="QQ"), test_location=("CA,ZZ",))
        )
        assert "meta_location" in errors
        assert "test_location" in errors

    def test_spacing_formats(self, make_config):
        errors = validate_run_configuration(
            make_config(conditional_spacing="100", sleep_before_start="5-1")
        )
        assert "conditional_spacing" in errors
        assert "sleep_before_start" in errors

    def test_output_must_be_writable(self, make_config, tmp_path):
        errors = validate_run_configuration(make_config(output=os.path.join(str(tmp_path), "missing")))
        assert "output" in errors

    def test_test_files_dir_must_hold_catalog(self, make_config, tmp_path):
        errors = validate_run_configuration(make_config(test_files_dir=str(tmp_path)))
        assert "does not contain" in errors["test_files_dir"]
