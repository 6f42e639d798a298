"""netbench: network benchmark engine for latency, DNS and throughput probes."""

__version__ = "0.1.0"
