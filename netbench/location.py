"""Public IP discovery via free lookup APIs."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from netbench.config import IP_APIS, USER_AGENT

logger = logging.getLogger(__name__)


async def get_public_ip(timeout: float = 5.0, apis: Optional[list[str]] = None) -> Optional[str]:
    """Public IP address of this host, trying each API in turn; None when all fail."""
    for api_url in apis or IP_APIS:
        try:
            ip = await _query_api(api_url, timeout)
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Public IP lookup via %s failed: %s", api_url, exc)
            continue
        if ip:
            logger.debug("Public IP %s from %s", ip, api_url)
            return ip
    logger.warning("Unable to determine public IP address")
    return None


async def _query_api(url: str, timeout: float) -> Optional[str]:
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        resp = await client.get(url, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
        data = resp.json()

    if "ip-api.com" in url:
        return _parse_ip_api_com(data)
    return _parse_ip_field(data)


def _parse_ip_field(data: dict) -> Optional[str]:
    """ipinfo.io and ipapi.co both report the address as ``ip``."""
    if data.get("error"):
        logger.debug("Lookup error: %s", data.get("reason"))
        return None
    return data.get("ip")


def _parse_ip_api_com(data: dict) -> Optional[str]:
    if data.get("status") != "success":
        logger.debug("ip-api.com error: %s", data.get("message"))
        return None
    return data.get("query")
