"""Result row construction and inverse throughput records."""

from __future__ import annotations

import dataclasses
import logging
import socket
from typing import Any, Optional

from netbench.config import INVERSE_CLEARED_META, INVERSE_FIELD_PAIRS
from netbench.geo import GeoResolver
from netbench.models import Endpoint, ProbeOutput, ResultRow, RunConfiguration, VantagePoint
from netbench.probes import hostname_of
from netbench.stats import (
    STATUS_FAILED,
    derive_status,
    lower_is_better,
    metric_timed,
    metric_units,
    summarize,
)

logger = logging.getLogger(__name__)


def vantage_attributes(vantage: VantagePoint, geo: GeoResolver) -> dict[str, Any]:
    """``meta_*`` fields describing the vantage point."""
    attrs: dict[str, Any] = {
        "meta_compute_service": vantage.compute_service,
        "meta_compute_service_id": vantage.compute_service_id,
        "meta_geo_region": geo.geo_region(vantage.country, vantage.state),
        "meta_hostname": vantage.hostname,
        "meta_instance_id": vantage.instance_id,
        "meta_location": vantage.location,
        "meta_location_country": vantage.country,
        "meta_location_state": vantage.state,
        "meta_provider": vantage.provider,
        "meta_provider_id": vantage.provider_id,
        "meta_region": vantage.region,
    }
    for key, value in vantage.meta.items():
        attrs[key if key.startswith("meta_") else f"meta_{key}"] = value
    return {k: v for k, v in attrs.items() if v is not None}


def endpoint_attributes(endpoint: Endpoint, geo: GeoResolver) -> dict[str, Any]:
    """``test_*`` enrichment fields for *endpoint*."""
    attrs: dict[str, Any] = {}
    if endpoint.country:
        region = geo.geo_region(endpoint.country, endpoint.state)
        if region:
            attrs["test_geo_region"] = region
    attrs.update({
        "test_instance_id": endpoint.instance_id,
        "test_location": endpoint.location,
        "test_location_country": endpoint.country,
        "test_location_state": endpoint.state,
        "test_provider": endpoint.provider,
        "test_provider_id": endpoint.provider_id,
        "test_region": endpoint.region,
        "test_service": endpoint.service,
        "test_service_id": endpoint.service_id,
        "test_service_type": endpoint.service_type,
    })
    return {k: v for k, v in attrs.items() if v is not None}


def build_row(
    test: str,
    endpoint: Endpoint,
    address: str,
    output: Optional[ProbeOutput],
    config: RunConfiguration,
    geo: GeoResolver,
    *,
    started: str,
    stopped: str,
    duration: float,
    timeout: float,
    test_ip: Optional[str] = None,
    private: bool = False,
) -> ResultRow:
    """Build the row for one probe; a None *output* yields a ``failed`` row."""
    attributes = endpoint_attributes(endpoint, geo)
    if private:
        attributes["test_private_endpoint"] = True
        if endpoint.private_network_type:
            attributes["test_private_network_type"] = endpoint.private_network_type
    attributes.update(vantage_attributes(config.vantage, geo))

    base = dict(
        test=test,
        test_endpoint=address,
        test_ip=test_ip,
        test_started=started,
        test_stopped=stopped,
        timeout=timeout,
        attributes=attributes,
    )
    if output is None or not output.samples:
        return ResultRow(status=STATUS_FAILED, **base)

    lower_better = lower_is_better(test, config.throughput_time)
    summary = summarize(output.samples, lower_better, config.discard_slowest, config.discard_fastest)
    unit, unit_long = metric_units(lower_better)
    extras = dict(output.extras)

    timed = None
    transfer = extras.get("throughput_transfer")
    if test in ("downlink", "uplink") and transfer:
        timed = metric_timed(transfer, duration, summary.samples, config.spacing)
        extras["throughput_custom_cmd"] = bool(
            (test == "downlink" and config.test_cmd_downlink) or (test == "uplink" and config.test_cmd_uplink)
        )

    row = ResultRow(
        status=derive_status(output.samples, output.tests_failed, output.tests_success),
        summary=summary,
        metrics=",".join(_format(v) for v in output.samples),
        metric_unit=unit,
        metric_unit_long=unit_long,
        metric_timed=timed,
        tests_failed=output.tests_failed,
        tests_success=output.tests_success,
        extras=extras,
        **base,
    )
    logger.debug(
        "%s %s: status %s; samples %d; median %s; mean %s; min %s; max %s",
        test, address, row.status, summary.samples, summary.median, summary.mean, summary.min, summary.max,
    )
    return row


def _format(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def inverse_eligible(config: RunConfiguration, row: ResultRow, expanded: bool) -> bool:
    """Whether *row* gets a mirrored record (expanded throughput against a compute peer)."""
    return (
        config.throughput_inverse
        and expanded
        and row.test in ("downlink", "uplink")
        and row.summary is not None
        and bool(config.vantage.compute_service_id)
        and bool(row.attributes.get("test_service_id"))
        and row.attributes.get("test_service_type") == "compute"
    )


def synthesize_inverse(row: ResultRow, vantage: VantagePoint, public_ip: Optional[str] = None) -> ResultRow:
    """Mirror *row*: swap direction and exchange ``meta_*``/``test_*`` roles."""
    source = row.as_dict()
    attrs = dict(row.attributes)
    for key in INVERSE_CLEARED_META:
        attrs.pop(key, None)

    endpoint = row.test_endpoint
    for meta, attr in INVERSE_FIELD_PAIRS.items():
        remote = source.get(attr)
        if remote is not None:
            attrs[meta] = hostname_of(remote) if meta == "meta_hostname" else remote
        else:
            attrs.pop(meta, None)

        local = row.attributes.get(meta)
        if local is None and meta == "meta_hostname":
            local = vantage.hostname or socket.gethostname()
        if attr == "test_endpoint":
            endpoint = local or endpoint
        elif local:
            attrs[attr] = local
        else:
            attrs.pop(attr, None)

    inverse = dataclasses.replace(
        row,
        test="uplink" if row.test == "downlink" else "downlink",
        test_endpoint=endpoint,
        test_ip=public_ip or vantage.public_ip,
        attributes=attrs,
    )
    logger.debug("Added %s inverse record for %s", inverse.test, row.test_endpoint)
    return inverse
