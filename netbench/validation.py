"""Run option validation."""

from __future__ import annotations

import logging
import os
from typing import Optional

from netbench.catalog import check_files_dir
from netbench.config import PROBE_NAMES, SERVICE_TYPES
from netbench.geo import GeoResolver
from netbench.models import RunConfiguration, parse_location
from netbench.timing import ConditionalSpacing, parse_sleep_range

logger = logging.getLogger(__name__)

# field -> (min, max); None means unbounded
_RANGES: dict[str, tuple[Optional[float], Optional[float]]] = {
    "abort_threshold": (1, None),
    "discard_fastest": (0, 40),
    "discard_slowest": (0, 40),
    "dns_retry": (1, 10),
    "dns_samples": (1, 100),
    "dns_timeout": (1, 60),
    "latency_interval": (0, 10),
    "latency_samples": (1, 100),
    "latency_timeout": (1, 30),
    "max_runtime": (10, None),
    "max_tests": (1, None),
    "min_runtime": (10, None),
    "spacing": (0, None),
    "throughput_same_continent": (1, 1024),
    "throughput_same_country": (1, 1024),
    "throughput_same_geo_region": (1, 1024),
    "throughput_same_provider": (1, 1024),
    "throughput_same_region": (1, 1024),
    "throughput_same_service": (1, 1024),
    "throughput_same_state": (1, 1024),
    "throughput_samples": (1, 100),
    "throughput_size": (0, 1024),
    "throughput_threads": (1, 512),
    "throughput_timeout": (1, 600),
}

_PER_ENDPOINT = (
    "test_instance_id",
    "test_location",
    "test_private_network_type",
    "test_provider",
    "test_provider_id",
    "test_region",
    "test_service",
    "test_service_id",
    "test_service_type",
    "throughput_webpage",
)


def _check_range(name: str, value: object, minimum: Optional[float], maximum: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return f"--{name} must be numeric"
    if minimum is not None and value < minimum:
        return f"--{name} {value} must be >= {minimum}"
    if maximum is not None and value > maximum:
        return f"--{name} {value} must be <= {maximum}"
    return None


def validate_run_configuration(config: RunConfiguration, geo: Optional[GeoResolver] = None) -> dict[str, str]:
    """Return ``{option: message}`` for every invalid option; empty when valid."""
    geo = geo or GeoResolver()
    errors: dict[str, str] = {}

    for name, (minimum, maximum) in _RANGES.items():
        message = _check_range(name, getattr(config, name), minimum, maximum)
        if message:
            errors[name] = message

    if not config.test_endpoint:
        errors["test_endpoint"] = "--test_endpoint is required"
    if not config.test:
        errors["test"] = "--test is required"
    else:
        for tests in config.test:
            invalid = [t for t in tests if t not in PROBE_NAMES]
            if invalid:
                errors["test"] = (
                    f"--test {invalid[0]} is not valid [must be one of: {', '.join(PROBE_NAMES)}]"
                )
                break

    unknown = [r for r in config.geo_regions if not geo.known_region(r)]
    if unknown:
        errors["geo_regions"] = f"--geo_regions {unknown[0]} is not a valid geo region"

    for service_type in config.test_service_type:
        if service_type not in SERVICE_TYPES:
            errors["test_service_type"] = (
                f"--test_service_type {service_type} is not valid [must be one of: {', '.join(SERVICE_TYPES)}]"
            )
            break

    # custom commands
    if config.test_cmd_downlink is not None and "[file]" not in config.test_cmd_downlink:
        errors["test_cmd_downlink"] = "--test_cmd_downlink must contain the substring [file]"
    if config.test_cmd_uplink is not None and (
        "[file]" not in config.test_cmd_uplink or "[source]" not in config.test_cmd_uplink
    ):
        errors["test_cmd_uplink"] = "--test_cmd_uplink must contain substrings [file] AND [source]"
    if config.test_cmd_uplink is not None and config.test_cmd_uplink_del is None:
        errors["test_cmd_uplink_del"] = "--test_cmd_uplink_del is required if --test_cmd_uplink has been set"
    if config.test_cmd_uplink_del is not None and (
        "[file]" not in config.test_cmd_uplink_del and "*" not in config.test_cmd_uplink_del
    ):
        errors["test_cmd_uplink_del"] = "--test_cmd_uplink_del must contain the substring [file] OR a wildcard"
    custom = config.test_cmd_downlink is not None or config.test_cmd_uplink is not None
    if config.throughput_keepalive and custom:
        errors["throughput_keepalive"] = (
            "--throughput_keepalive cannot be used in conjunction with test_cmd_downlink or test_cmd_uplink"
        )
    if config.throughput_webpage and custom:
        errors["throughput_webpage"] = (
            "--throughput_webpage cannot be used in conjunction with test_cmd_downlink or test_cmd_uplink"
        )

    if config.test_files_dir:
        message = check_files_dir(config.test_files_dir)
        if message:
            errors["test_files_dir"] = message

    # per-endpoint options hold one shared value or one per endpoint
    endpoints = len(config.test_endpoint)
    if endpoints and "test_endpoint" not in errors:
        for name in _PER_ENDPOINT:
            count = len(getattr(config, name))
            if count and count != 1 and count != endpoints and name not in errors:
                errors[name] = (
                    f"The --{name} parameter can be specified once [same for all test_endpoint] "
                    f"or {endpoints} times [different for each test_endpoint]"
                )
        count = len(config.test)
        if count not in (1, endpoints) and "test" not in errors:
            errors["test"] = (
                f"The --test parameter can be specified once [same for all test_endpoint] "
                f"or {endpoints} times [different for each test_endpoint]"
            )

    country = config.vantage.country
    if country and not geo.is_country(country):
        errors["meta_location"] = f"{country} is not a valid ISO 3166 country code"
    for location in config.test_location:
        country = parse_location(location)[0]
        if country and not geo.is_country(country):
            errors["test_location"] = f"{country} is not a valid ISO 3166 country code"
            break

    if config.conditional_spacing is not None and ConditionalSpacing.parse(config.conditional_spacing) is None:
        errors["conditional_spacing"] = (
            f"--conditional_spacing {config.conditional_spacing} is not valid [format: >N=ms or <N=ms]"
        )
    if config.sleep_before_start is not None and parse_sleep_range(config.sleep_before_start) is None:
        errors["sleep_before_start"] = f"--sleep_before_start {config.sleep_before_start} is not valid"

    if not os.path.isdir(config.output) or not os.access(config.output, os.W_OK):
        errors["output"] = f"--output {config.output} is not writable"

    for name, message in errors.items():
        logger.debug("Invalid option %s: %s", name, message)
    return errors
