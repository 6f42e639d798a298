"""CLI entry point for netbench."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import socket
import sys
from typing import Any, Optional

import click
import httpx
from click.core import ParameterSource
from rich.logging import RichHandler

from netbench import __version__
from netbench.config import (
    DEFAULT_DNS_RETRY,
    DEFAULT_DNS_SAMPLES,
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_GEO_REGIONS,
    DEFAULT_LATENCY_INTERVAL,
    DEFAULT_LATENCY_SAMPLES,
    DEFAULT_LATENCY_TIMEOUT,
    DEFAULT_SPACING_MS,
    DEFAULT_TEST,
    DEFAULT_THROUGHPUT_THREADS,
    DEFAULT_THROUGHPUT_TOLERANCE,
    DEFAULT_THROUGHPUT_URI,
    USER_AGENT,
)
from netbench.errors import ConfigurationError, NetbenchError, ResourceError
from netbench.geo import GeoResolver
from netbench.models import RunConfiguration, RunReport, VantagePoint, split_values

logger = logging.getLogger(__name__)

# Options holding one value per test endpoint
PER_ENDPOINT = (
    "test_instance_id",
    "test_location",
    "test_private_network_type",
    "test_provider",
    "test_provider_id",
    "test_region",
    "test_service",
    "test_service_id",
    "test_service_type",
)

# Options whose per-endpoint values are themselves lists of tokens
NESTED = ("test_endpoint", "test", "throughput_webpage")

VANTAGE_FIELDS = {
    "meta_location": "location",
    "meta_provider": "provider",
    "meta_provider_id": "provider_id",
    "meta_compute_service": "compute_service",
    "meta_compute_service_id": "compute_service_id",
    "meta_region": "region",
    "meta_instance_id": "instance_id",
    "meta_hostname": "hostname",
    "meta_public_ip": "public_ip",
}

# Options consumed by the CLI itself rather than RunConfiguration
CLI_ONLY = ("params_url", "output_format", "output_file", "verbose", "meta")

# Errors on these options mean the environment, not the operator input, is wrong
RESOURCE_OPTIONS = ("output", "test_files_dir")


def _option(name: str, **kwargs: Any):
    """Option spelled both ``--foo-bar`` and ``--foo_bar``."""
    dashed = "--" + name.replace("_", "-")
    decls = [dashed, f"--{name}"] if "_" in name else [dashed]
    return click.option(*decls, name, **kwargs)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
# endpoints
@_option("test_endpoint", multiple=True, help="Endpoint address(es); repeat once per endpoint")
@_option("test", multiple=True, help="Tests per endpoint: latency downlink uplink throughput dns")
@_option("test_instance_id", multiple=True)
@_option("test_location", multiple=True, help="[state,]country of each endpoint")
@_option("test_private_network_type", multiple=True)
@_option("test_provider", multiple=True)
@_option("test_provider_id", multiple=True)
@_option("test_region", multiple=True)
@_option("test_service", multiple=True)
@_option("test_service_id", multiple=True)
@_option("test_service_type", multiple=True, help="compute, paas, storage, cdn or dns")
# vantage point
@_option("meta_location", default=None, help="[state,]country of this host")
@_option("meta_provider", default=None)
@_option("meta_provider_id", default=None)
@_option("meta_compute_service", default=None)
@_option("meta_compute_service_id", default=None)
@_option("meta_region", default=None)
@_option("meta_instance_id", default=None)
@_option("meta_hostname", default=None)
@_option("meta_public_ip", default=None)
@_option("meta", multiple=True, help="Extra meta_* attribute as key=value")
# run limits and pacing
@_option("abort_threshold", type=int, default=None, help="Abort after this many failed tests")
@_option("max_runtime", type=int, default=None, help="Stop testing after this many seconds")
@_option("max_tests", type=int, default=None)
@_option("min_runtime", type=int, default=None, help="Pad successful runs to this many seconds")
@_option("spacing", type=int, default=DEFAULT_SPACING_MS, show_default=True, help="Delay between tests (ms)")
@_option("conditional_spacing", default=None, help="Extra delay rule, e.g. '>100=50'")
@_option("sleep_before_start", default=None, help="Seconds, or a random 'min-max' range")
@_option("randomize", is_flag=True)
@_option("suppress_failed", is_flag=True)
@_option("traceroute", is_flag=True, help="Trace the path to endpoints whose tests fail")
@_option("output", type=click.Path(file_okay=False), default=None, help="Working directory [default: cwd]")
# statistics
@_option("discard_fastest", type=float, default=0, show_default=True)
@_option("discard_slowest", type=float, default=0, show_default=True)
# same-* constraints
@_option("same_continent_only", is_flag=True)
@_option("same_country_only", is_flag=True)
@_option("same_geo_region", is_flag=True)
@_option("same_provider_only", is_flag=True)
@_option("same_region_only", is_flag=True)
@_option("same_service_only", is_flag=True)
@_option("same_state_only", is_flag=True)
@_option("geo_regions", multiple=True, help=f"Enabled geo regions [default: {' '.join(DEFAULT_GEO_REGIONS)}]")
# dns
@_option("dns_one_server", is_flag=True)
@_option("dns_recursive", is_flag=True)
@_option("dns_retry", type=int, default=DEFAULT_DNS_RETRY, show_default=True)
@_option("dns_samples", type=int, default=DEFAULT_DNS_SAMPLES, show_default=True)
@_option("dns_tcp", is_flag=True)
@_option("dns_timeout", type=int, default=DEFAULT_DNS_TIMEOUT, show_default=True)
# latency
@_option("latency_interval", type=float, default=DEFAULT_LATENCY_INTERVAL, show_default=True)
@_option("latency_samples", type=int, default=DEFAULT_LATENCY_SAMPLES, show_default=True)
@_option("latency_skip", multiple=True, help="Hostnames, service or provider ids to skip")
@_option("latency_timeout", type=int, default=DEFAULT_LATENCY_TIMEOUT, show_default=True)
# custom commands
@_option("test_cmd_downlink", default=None, help="Downlink command template with [file]")
@_option("test_cmd_uplink", default=None, help="Uplink command template with [file] and [source]")
@_option("test_cmd_uplink_del", default=None)
@_option("test_cmd_url_strip", default=None)
@_option("test_files_dir", type=click.Path(file_okay=False), default=None)
# throughput
@_option("throughput_header", multiple=True, help="Extra request header as key:value")
@_option("throughput_https", is_flag=True)
@_option("throughput_inverse", is_flag=True)
@_option("throughput_keepalive", is_flag=True)
@_option("throughput_same_continent", type=int, default=None)
@_option("throughput_same_country", type=int, default=None)
@_option("throughput_same_geo_region", type=int, default=None)
@_option("throughput_same_provider", type=int, default=None)
@_option("throughput_same_region", type=int, default=None)
@_option("throughput_same_service", type=int, default=None)
@_option("throughput_same_state", type=int, default=None)
@_option("throughput_samples", type=int, default=None)
@_option("throughput_size", type=float, default=None, help="Transfer size in MB; 0 for ping mode")
@_option("throughput_slowest_thread", is_flag=True)
@_option("throughput_small_file", is_flag=True)
@_option("throughput_threads", default=DEFAULT_THROUGHPUT_THREADS, show_default=True, help="Number or [cpus] expression")
@_option("throughput_time", is_flag=True)
@_option("throughput_timeout", type=int, default=None)
@_option("throughput_tolerance", type=float, default=DEFAULT_THROUGHPUT_TOLERANCE, show_default=True)
@_option("throughput_uri", default=DEFAULT_THROUGHPUT_URI, show_default=True)
@_option("throughput_use_mean", is_flag=True)
@_option("throughput_webpage", multiple=True, help="Webpage resources per endpoint")
# cli
@_option("params_url", default=None, help="JSON document of additional options")
@click.option("-f", "--format", "output_format", type=click.Choice(["table", "json", "csv", "kv"]),
              default="table", show_default=True)
@click.option("-o", "--output-file", "output_file", default=None, help="Write results to file")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, **options: Any) -> None:
    """netbench - network latency, DNS and throughput measurement.

    Runs the requested tests against each --test-endpoint in turn and
    emits one result row per test.
    """
    from netbench.display import render_error, render_errors

    setup_logging(options["verbose"])

    if options["params_url"]:
        try:
            params = asyncio.run(fetch_params(options["params_url"]))
        except (httpx.HTTPError, ValueError) as exc:
            render_error(f"Unable to load --params-url {options['params_url']}: {exc}")
            sys.exit(1)
        options = merge_params(ctx, options, params)

    try:
        config = build_configuration(options)
        geo = GeoResolver(geo_regions=config.geo_regions)
        check_configuration(config, geo)
    except ConfigurationError as exc:
        render_errors(exc.errors)
        sys.exit(1)
    except (NetbenchError, ValueError) as exc:
        render_error(str(exc))
        sys.exit(1)

    if config.throughput_inverse and not config.vantage.public_ip:
        from netbench.location import get_public_ip

        public_ip = asyncio.run(get_public_ip())
        if public_ip:
            config = dataclasses.replace(config, vantage=dataclasses.replace(config.vantage, public_ip=public_ip))

    try:
        report = asyncio.run(_run(config, geo))
    except KeyboardInterrupt:
        render_error("Interrupted.")
        sys.exit(130)

    _handle_output(report, options["output_format"], options["output_file"])
    sys.exit(0 if report.succeeded else 1)


def setup_logging(verbose: bool) -> None:
    from netbench.display import err_console

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Option handling
# ---------------------------------------------------------------------------

async def fetch_params(url: str, timeout: float = 10.0) -> dict[str, Any]:
    """Fetch a JSON object of option values."""
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        resp = await client.get(url, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
        data = resp.json()
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def merge_params(ctx: click.Context, options: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
    """Fill options the operator left at their defaults from *params*."""
    merged = dict(options)
    multiple = {p.name for p in ctx.command.params if getattr(p, "multiple", False)}
    for key, value in params.items():
        name = key.lstrip("-").replace("-", "_")
        if name not in merged or name in CLI_ONLY:
            logger.debug("Ignoring unknown parameter %s from params url", key)
            continue
        if ctx.get_parameter_source(name) not in (ParameterSource.DEFAULT, None):
            continue
        if name in multiple:
            value = tuple(value) if isinstance(value, (list, tuple)) else (value,)
            value = tuple(str(v) for v in value)
        merged[name] = value
    return merged


def _nested(values: tuple[str, ...]) -> tuple[tuple[str, ...], ...]:
    return tuple(tuple(split_values(v, unique=False)) for v in values)


def build_configuration(options: dict[str, Any]) -> RunConfiguration:
    """Translate parsed CLI options into a :class:`RunConfiguration`."""
    extra = {}
    for item in options.get("meta") or ():
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError({"meta": f"--meta {item} is not in key=value form"})
        extra[key.strip()] = value.strip()

    vantage_kwargs = {attr: options.get(opt) for opt, attr in VANTAGE_FIELDS.items()}
    if not vantage_kwargs["hostname"]:
        vantage_kwargs["hostname"] = socket.gethostname()
    vantage = VantagePoint(meta=extra, **vantage_kwargs)

    kwargs: dict[str, Any] = {"vantage": vantage}
    for name, value in options.items():
        if name in CLI_ONLY or name in VANTAGE_FIELDS:
            continue
        if name in NESTED:
            kwargs[name] = _nested(value)
        elif name in PER_ENDPOINT:
            kwargs[name] = tuple(value)
        elif name in ("geo_regions", "latency_skip"):
            tokens = []
            for v in value:
                tokens.extend(split_values(v))
            kwargs[name] = tuple(tokens)
        elif name == "throughput_header":
            kwargs[name] = tuple(value)
        elif value is not None:
            kwargs[name] = value

    if not kwargs.get("test"):
        kwargs["test"] = ((DEFAULT_TEST,),)
    if not kwargs.get("geo_regions"):
        kwargs.pop("geo_regions", None)
    return RunConfiguration(**kwargs)


def check_configuration(config: RunConfiguration, geo: Optional[GeoResolver] = None) -> None:
    """Raise when *config* cannot be run.

    Problems with the working or test-file directory raise
    :class:`ResourceError`; everything else raises
    :class:`ConfigurationError` carrying every invalid option.
    """
    from netbench.validation import validate_run_configuration

    errors = validate_run_configuration(config, geo)
    if not errors:
        return
    for name in RESOURCE_OPTIONS:
        if name in errors and len(errors) == 1:
            raise ResourceError(errors[name])
    raise ConfigurationError(errors)


# ---------------------------------------------------------------------------
# Run and output
# ---------------------------------------------------------------------------

async def _run(config: RunConfiguration, geo: GeoResolver) -> RunReport:
    from netbench.executors import NetworkProbeExecutor
    from netbench.orchestrator import TestOrchestrator
    from netbench.trace import trace_to_log

    executor = NetworkProbeExecutor(payload_dir=config.output)
    orchestrator = TestOrchestrator(config, executor, geo=geo, tracer=trace_to_log)
    return await orchestrator.run()


def _handle_output(report: RunReport, output_format: str, output_file: Optional[str]) -> None:
    from netbench.display import console, render_report
    from netbench.export import EXPORTERS, export_json, write_to_file

    if output_format in EXPORTERS:
        content = EXPORTERS[output_format](report.rows)
        if output_file:
            write_to_file(content, output_file)
            console.print(f"[dim]Results written to {output_file}[/dim]")
        else:
            click.echo(content, nl=False)
        return

    render_report(report)
    if output_file:
        write_to_file(export_json(report.rows), output_file)
        console.print(f"\n[dim]Results written to {output_file}[/dim]")


if __name__ == "__main__":
    main()
