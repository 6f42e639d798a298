"""Probe executors."""

from netbench.executors.base import ProbeExecutor
from netbench.executors.network import NetworkProbeExecutor

__all__ = ["ProbeExecutor", "NetworkProbeExecutor"]
