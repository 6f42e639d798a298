"""Default executor: icmplib ping, dnspython queries and httpx transfers."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
import re
import time
from typing import Optional, Sequence

import dns.asyncquery
import dns.asyncresolver
import dns.exception
import dns.flags
import dns.message
import dns.rdatatype
import httpx
from icmplib import async_ping
from icmplib.exceptions import ICMPLibError

from netbench import payload
from netbench.config import USER_AGENT
from netbench.executors.base import ProbeExecutor
from netbench.models import BatchOutcome, PingReply, ProbeRequest, TransferResult

logger = logging.getLogger(__name__)

# marks an upload whose body could not be prepared
UNAVAILABLE = object()

_PING_TIME_RE = re.compile(r"time\s*=\s*([0-9.]+)\s+")


def parse_ping_output(output: str) -> list[float]:
    """Round-trip times (ms) from ping utility output, in reply order."""
    return [float(m.group(1)) for m in _PING_TIME_RE.finditer(output)]


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class NetworkProbeExecutor(ProbeExecutor):
    """Executes probes against the real network."""

    def __init__(self, ping_bin: str = "ping", payload_dir: Optional[str] = None, verify: bool = True):
        self.ping_bin = ping_bin
        self.payload_dir = payload_dir
        self.verify = verify

    # ------------------------------------------------------------------
    # Latency
    # ------------------------------------------------------------------

    async def run_latency(self, host: str, samples: int, interval: float, timeout: float) -> PingReply:
        """Ping *host* with icmplib, falling back to the system ``ping`` binary."""
        try:
            reply = await self._ping_icmplib(host, samples, interval, timeout)
            logger.debug("icmplib ping %s: %d of %d replies", host, len(reply.rtts), samples)
            return reply
        except (ICMPLibError, OSError) as exc:
            logger.debug("icmplib ping to %s failed (%s), using %s", host, exc, self.ping_bin)
            return await self._ping_system(host, samples, interval, timeout)

    async def _ping_icmplib(self, host: str, samples: int, interval: float, timeout: float) -> PingReply:
        result = await async_ping(
            host,
            count=samples,
            interval=interval,
            timeout=timeout,
            privileged=False,
        )
        # exit code 1 mirrors ping(8) when no reply was received
        return PingReply(
            exit_code=0 if result.packets_received else 1,
            rtts=list(result.rtts),
            output=str(result),
        )

    async def _ping_system(self, host: str, samples: int, interval: float, timeout: float) -> PingReply:
        cmd = [
            self.ping_bin,
            "-i", str(interval),
            "-c", str(samples),
            "-W", str(int(timeout)),
            host,
        ]
        logger.debug("Latency command: %s", " ".join(cmd))
        env = os.environ.copy()
        env["LANG"] = "C"
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            logger.warning("Unable to run %s: %s", self.ping_bin, exc)
            return PingReply(exit_code=127, output=str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=samples * (interval + timeout) + 10,
            )
        except asyncio.TimeoutError:
            proc.kill()
            stdout, stderr = await proc.communicate()
            logger.warning("ping %s did not finish in time", host)

        output = stdout.decode(errors="replace")
        if proc.returncode:
            logger.debug("ping %s exited %s: %s", host, proc.returncode, stderr.decode(errors="replace").strip())
        return PingReply(
            exit_code=proc.returncode if proc.returncode is not None else 1,
            rtts=parse_ping_output(output),
            output=output,
        )

    # ------------------------------------------------------------------
    # DNS
    # ------------------------------------------------------------------

    async def resolve_address(self, hostname: str) -> Optional[str]:
        if _is_ip(hostname):
            return hostname
        try:
            answer = await dns.asyncresolver.resolve(hostname, "A")
        except Exception as exc:
            logger.debug("Unable to resolve %s: %s", hostname, exc)
            return None
        return str(answer[0]) if len(answer) else None

    async def lookup_nameservers(self, domain: str) -> list[str]:
        try:
            answer = await dns.asyncresolver.resolve(domain, "NS")
        except Exception as exc:
            logger.warning("NS lookup for %s failed: %s", domain, exc)
            return []
        return [str(rdata.target).rstrip(".") for rdata in answer]

    async def query_dns(
        self,
        hostname: str,
        nameserver: str,
        timeout: float,
        retries: int,
        tcp: bool = False,
        recurse: bool = False,
    ) -> Optional[str]:
        server = await self.resolve_address(nameserver)
        if server is None:
            return None

        query = dns.message.make_query(hostname, dns.rdatatype.A)
        if not recurse:
            query.flags &= ~dns.flags.RD

        for attempt in range(max(retries, 0) + 1):
            try:
                if tcp:
                    response = await dns.asyncquery.tcp(query, server, timeout=timeout)
                else:
                    response = await dns.asyncquery.udp(query, server, timeout=timeout)
            except dns.exception.Timeout:
                logger.debug("DNS query %s @%s timed out (attempt %d)", hostname, nameserver, attempt + 1)
                continue
            except Exception as exc:
                logger.debug("DNS query %s @%s failed: %s", hostname, nameserver, exc)
                return None

            for rrset in response.answer:
                if rrset.rdtype == dns.rdatatype.A:
                    for rdata in rrset:
                        return rdata.address
            return None
        return None

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def run_concurrent_transfer(
        self,
        requests: Sequence[ProbeRequest],
        timeout: float,
        use_tls: bool = False,
    ) -> Optional[BatchOutcome]:
        if not requests:
            return None
        # upload bodies are read before any request starts so file setup stays out of the timing
        loop = asyncio.get_running_loop()
        uploads = await loop.run_in_executor(None, self.prepare_uploads, requests)
        results = await asyncio.gather(
            *(
                self._bounded_transfer(request, content, timeout, use_tls)
                for request, content in zip(requests, uploads)
            )
        )
        outcome = BatchOutcome()
        for result, status in results:
            outcome.add(result, status)
        return outcome

    def prepare_uploads(self, requests: Sequence[ProbeRequest]) -> list:
        """Upload content per request, reading each distinct source file once.

        Entries are None for requests without an upload body and
        ``UNAVAILABLE`` when the body could not be turned into a file.
        """
        contents: dict[str, bytes] = {}
        uploads: list = []
        for request in requests:
            if request.method != "POST" or request.body is None:
                uploads.append(None)
                continue
            try:
                source = payload.resolve_source(request.body, self.payload_dir)
                if source is not None and source not in contents:
                    with open(source, "rb") as fh:
                        contents[source] = fh.read()
            except OSError as exc:
                logger.warning("Unable to prepare upload payload for %s: %s", request.url, exc)
                source = None
            uploads.append(contents[source] if source is not None else UNAVAILABLE)
        return uploads

    async def _bounded_transfer(
        self,
        request: ProbeRequest,
        content: Optional[bytes],
        timeout: float,
        use_tls: bool,
    ) -> tuple[Optional[TransferResult], int]:
        if content is UNAVAILABLE:
            return None, 0
        # timeout bounds the whole request, not each socket operation
        try:
            return await asyncio.wait_for(self._transfer(request, content, timeout, use_tls), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("Transfer %s %s exceeded %ss", request.method, request.url, timeout)
            return None, 0

    async def _transfer(
        self,
        request: ProbeRequest,
        content: Optional[bytes],
        timeout: float,
        use_tls: bool,
    ) -> tuple[Optional[TransferResult], int]:
        """Fetch (or post *content* to) every URL of *request* sequentially over one client."""
        headers = {"User-Agent": USER_AGENT, **request.headers}
        result = TransferResult()
        status = 0
        try:
            async with httpx.AsyncClient(
                http2=use_tls,
                timeout=timeout,
                headers=headers,
                verify=self.verify,
            ) as client:
                for url in request.urls:
                    t0 = time.perf_counter()
                    if content is not None:
                        resp = await client.post(url, content=content)
                        transferred = len(content)
                    else:
                        transferred = 0
                        async with client.stream(request.method, url) as resp:
                            async for chunk in resp.aiter_raw():
                                transferred += len(chunk)
                    elapsed = time.perf_counter() - t0
                    status = resp.status_code
                    if not 200 <= status < 300:
                        logger.debug("%s %s returned %d", request.method, url, status)
                        return None, status
                    result.speeds.append(transferred / elapsed if elapsed > 0 else 0.0)
                    result.times.append(elapsed)
                    result.transfers.append(transferred)
        except (httpx.HTTPError, OSError) as exc:
            logger.debug("Transfer %s %s failed: %s", request.method, request.url, exc)
            return None, 0
        return result, status
