"""Path diagnostics for failed probes.

A traceroute to the failing host is appended to ``traceroute.log`` in the
run's output directory. icmplib is tried first; when ICMP sockets cannot be
opened the system ``traceroute`` binary is used instead.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from netbench.config import TRACE_HOP_TIMEOUT, TRACE_MAX_HOPS, TRACE_PROBES_PER_HOP, TRACEROUTE_LOG

logger = logging.getLogger(__name__)


@dataclass
class Hop:
    """One hop of a traced path; ``address`` is None for a timed-out hop."""

    distance: int
    address: Optional[str] = None
    rtts: list[float] = field(default_factory=list)

    def format(self) -> str:
        if self.address is None:
            return f"{self.distance:>2}  *"
        times = "  ".join(f"{rtt:.3f} ms" for rtt in self.rtts)
        return f"{self.distance:>2}  {self.address}  {times}".rstrip()


# ---------------------------------------------------------------------------
# icmplib
# ---------------------------------------------------------------------------

async def _traceroute_icmplib(host: str, max_hops: int) -> list[Hop]:
    """Run icmplib's blocking traceroute in the default executor."""
    from functools import partial

    from icmplib import traceroute

    loop = asyncio.get_running_loop()
    icmp_hops = await loop.run_in_executor(
        None,
        partial(
            traceroute,
            host,
            count=TRACE_PROBES_PER_HOP,
            timeout=TRACE_HOP_TIMEOUT,
            max_hops=max_hops,
        ),
    )
    hops = []
    for hop in icmp_hops:
        if hop.packets_received:
            hops.append(Hop(hop.distance, hop.address, list(hop.rtts)))
        else:
            hops.append(Hop(hop.distance))
    return hops


# ---------------------------------------------------------------------------
# System traceroute
# ---------------------------------------------------------------------------

_HOP_LINE_RE = re.compile(r"^\s*(\d+)\s+(\S+)(.*)$")
_RTT_RE = re.compile(r"([\d.]+)\s*ms")


def parse_traceroute_output(output: str) -> list[Hop]:
    """Parse ``traceroute -n`` output into hops."""
    hops: list[Hop] = []
    for line in output.splitlines():
        match = _HOP_LINE_RE.match(line)
        if not match:
            continue
        distance, first, rest = int(match.group(1)), match.group(2), match.group(3)
        rtts = [float(m.group(1)) for m in _RTT_RE.finditer(f"{first} {rest}")]
        try:
            ipaddress.ip_address(first)
        except ValueError:
            hops.append(Hop(distance, rtts=rtts) if rtts else Hop(distance))
            continue
        hops.append(Hop(distance, first, rtts))
    return hops


async def _traceroute_system(host: str, max_hops: int) -> list[Hop]:
    binary = shutil.which("traceroute")
    if binary is None:
        for candidate in ("/usr/sbin/traceroute", "/usr/bin/traceroute"):
            if os.path.exists(candidate):
                binary = candidate
                break
    if binary is None:
        raise FileNotFoundError("traceroute binary not found")

    cmd = [
        binary,
        "-n",
        "-m", str(max_hops),
        "-q", str(TRACE_PROBES_PER_HOP),
        "-w", str(int(TRACE_HOP_TIMEOUT)),
        host,
    ]
    logger.debug("Running %s", " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=max_hops * TRACE_HOP_TIMEOUT * TRACE_PROBES_PER_HOP + 10,
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    if proc.returncode != 0:
        logger.warning("traceroute exited %d: %s", proc.returncode, stderr.decode(errors="replace").strip())
    return parse_traceroute_output(stdout.decode(errors="replace"))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def trace_path(host: str, max_hops: int = TRACE_MAX_HOPS) -> list[Hop]:
    """Hops to *host*; empty when neither traceroute method works."""
    try:
        hops = await _traceroute_icmplib(host, max_hops)
        logger.debug("icmplib traceroute to %s returned %d hops", host, len(hops))
        return hops
    except Exception as exc:
        logger.debug("icmplib traceroute to %s failed (%s), using system traceroute", host, exc)
        try:
            return await _traceroute_system(host, max_hops)
        except Exception as fallback_exc:
            logger.warning("Unable to trace %s: %s / %s", host, exc, fallback_exc)
            return []


def format_trace(host: str, hops: list[Hop], when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    lines = [f"traceroute to {host} at {when:%Y-%m-%d %H:%M:%S}"]
    if hops:
        lines.extend(hop.format() for hop in hops)
    else:
        lines.append("no route information available")
    return "\n".join(lines) + "\n\n"


async def trace_to_log(host: str, output: str) -> str:
    """Trace *host* and append the result to ``<output>/traceroute.log``; returns the log path."""
    hops = await trace_path(host)
    path = os.path.join(output, TRACEROUTE_LOG)
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(format_trace(host, hops))
    logger.info("Traceroute to %s written to %s", host, path)
    return path
