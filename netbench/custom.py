"""Throughput transfers through operator supplied shell commands.

Each request of a batch runs as its own subprocess. Start and stop are
taken from a monotonic nanosecond clock around the process, so the
measurement covers the command's full runtime.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import re
import signal
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from netbench import payload
from netbench.models import BatchOutcome, ProbeRequest, TransferResult

logger = logging.getLogger(__name__)

_STATUS_RE = re.compile(r"([4-5][0-9]{2})")


@dataclass
class CommandCapture:
    """Timing and output of one custom command run."""

    start_ns: int
    stop_ns: int
    returncode: int
    stdout_bytes: int = 0
    error: str = ""

    @property
    def seconds(self) -> float:
        return round((self.stop_ns - self.start_ns) / 1e9, 8)


def strip_protocol(url: str) -> str:
    return url.replace("https://", "").replace("http://", "").strip()


def error_status(error: str) -> int:
    """HTTP-style status for a failed command: a 4xx/5xx code in *error*, else 500."""
    match = _STATUS_RE.search(error or "")
    return int(match.group(1)) if match else 500


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process group %d already exited", proc.pid)


async def run_command(cmd: str, timeout: float, capture_stdout: bool = True) -> CommandCapture:
    """Run *cmd* through the shell and time it.

    The shell leads its own process group so a timeout kills every process
    the command started, not only the shell.
    """
    start = time.perf_counter_ns()
    proc = await asyncio.create_subprocess_shell(
        cmd,
        stdout=asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_group(proc)
        await proc.wait()
        logger.debug("Custom command %s timed out after %ss", cmd, timeout)
        return CommandCapture(start, time.perf_counter_ns(), -1, error=f"timed out after {timeout}s")
    stop = time.perf_counter_ns()
    return CommandCapture(
        start_ns=start,
        stop_ns=stop,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout_bytes=len(stdout or b""),
        error=(stderr or b"").decode(errors="replace").strip(),
    )


class CustomCommandRunner:
    """Downlink/uplink batches through ``test_cmd_*`` command templates."""

    def __init__(
        self,
        downlink_template: Optional[str] = None,
        uplink_template: Optional[str] = None,
        delete_template: Optional[str] = None,
        url_strip: Optional[str] = None,
        payload_dir: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.downlink_template = downlink_template
        self.uplink_template = uplink_template
        self.delete_template = delete_template
        self.url_strip = url_strip
        self.payload_dir = payload_dir
        self.rng = rng or random.Random()

    def _finish(self, cmd: str) -> str:
        if self.url_strip:
            cmd = cmd.replace(self.url_strip, "")
        return cmd

    def downlink_command(self, url: str) -> str:
        return self._finish(self.downlink_template.replace("[file]", strip_protocol(url)))

    def uplink_target(self, url: str) -> str:
        return strip_protocol(url.replace("/up.html", ""))

    async def downlink(self, requests: Sequence[ProbeRequest], timeout: float) -> Optional[BatchOutcome]:
        """Run one downlink batch; stdout byte count is the transfer size."""
        commands = []
        for request in requests:
            url = request.url
            if url and strip_protocol(url):
                commands.append(self.downlink_command(url))
        if not commands:
            logger.warning("No custom downlink commands generated from %s", self.downlink_template)
            return None

        logger.info("Running custom downlink command (e.g. %s) with %d concurrent requests", commands[0], len(commands))
        captures = await asyncio.gather(*(run_command(cmd, timeout) for cmd in commands))

        outcome = BatchOutcome()
        for cmd, capture in zip(commands, captures):
            if capture.returncode == 0 and capture.stdout_bytes and capture.stop_ns > capture.start_ns:
                secs = capture.seconds
                outcome.add(
                    TransferResult(
                        speeds=[round(capture.stdout_bytes / secs, 4)],
                        times=[secs],
                        transfers=[capture.stdout_bytes],
                    ),
                    200,
                )
                logger.debug("Custom downlink %s: %d bytes in %.4f secs", cmd, capture.stdout_bytes, secs)
            else:
                logger.warning("Custom downlink %s failed: %s", cmd, capture.error or capture.returncode)
                outcome.add(None, error_status(capture.error))
        return outcome

    def prepare_uplink_jobs(self, requests: Sequence[ProbeRequest]) -> list[tuple[str, str, str, int]]:
        """(target, remote file name, command, bytes) for every uploadable request."""
        jobs = []
        for i, request in enumerate(requests, start=1):
            if request.body is None:
                logger.warning("Uplink request for %s does not contain a body", request.url)
                continue
            try:
                source = payload.resolve_source(request.body, self.payload_dir)
            except OSError as exc:
                logger.warning("Unable to generate upload payload: %s", exc)
                continue
            if source is None or not request.url:
                continue
            target = self.uplink_target(request.url)
            if not target:
                continue
            remote = f"{os.path.basename(source)}.{i}.{self.rng.randint(0, 2**31 - 1)}"
            cmd = f"{self.uplink_template}/{remote}".replace("[file]", target).replace("[source]", source)
            jobs.append((target, remote, self._finish(cmd), os.path.getsize(source)))
        return jobs

    async def uplink(self, requests: Sequence[ProbeRequest], timeout: float) -> Optional[BatchOutcome]:
        """Run one uplink batch, then the delete commands for the uploaded files."""
        # payload files are generated and sized before any upload starts
        loop = asyncio.get_running_loop()
        jobs = await loop.run_in_executor(None, self.prepare_uplink_jobs, requests)
        if not jobs:
            logger.warning("No custom uplink commands generated from %s", self.uplink_template)
            return None

        logger.info("Running custom uplink command (e.g. %s) with %d concurrent requests", jobs[0][2], len(jobs))
        captures = await asyncio.gather(
            *(run_command(cmd, timeout, capture_stdout=False) for _, _, cmd, _ in jobs)
        )
        await self._delete_uploads(jobs, timeout)

        outcome = BatchOutcome()
        for (_, _, cmd, size), capture in zip(jobs, captures):
            if capture.returncode == 0 and size and capture.stop_ns > capture.start_ns:
                secs = capture.seconds
                outcome.add(TransferResult(speeds=[round(size / secs, 4)], times=[secs], transfers=[size]), 200)
                logger.debug("Custom uplink %s: %d bytes in %.4f secs", cmd, size, secs)
            else:
                logger.warning("Custom uplink %s failed: %s", cmd, capture.error or capture.returncode)
                outcome.add(None, 500)
        return outcome

    async def _delete_uploads(self, jobs: list, timeout: float) -> None:
        if not self.delete_template:
            return
        wildcard = "*" in self.delete_template
        commands = []
        for target, remote, _, _ in jobs:
            commands.append(self._finish(f"{self.delete_template}/{remote}".replace("[file]", target)))
            if wildcard:
                break
        captures = await asyncio.gather(*(run_command(cmd, timeout, capture_stdout=False) for cmd in commands))
        for cmd, capture in zip(commands, captures):
            if capture.returncode != 0:
                logger.debug("Delete command %s exited %d: %s", cmd, capture.returncode, capture.error)
