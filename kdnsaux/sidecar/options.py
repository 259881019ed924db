"""Options for the sidecar daemon."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DNSProbeOption:
    """A periodic DNS health check and latency probe."""

    label: str
    """Label used in the healthcheck URL."""
    server: str
    """Endpoint (``host:port``) to send requests to."""
    name: str
    """Name to resolve."""
    interval: float
    """Seconds between probes."""
    type: int
    """Record type to query for."""


@dataclass
class Options:
    """Options for the sidecar daemon."""

    dnsmasq_port: int = 53
    dnsmasq_addr: str = "127.0.0.1"
    dnsmasq_poll_interval_ms: int = 5000
    probes: list[DNSProbeOption] = field(default_factory=list)
    prometheus_addr: str = "0.0.0.0"
    prometheus_port: int = 10054
    prometheus_path: str = "/metrics"
    prometheus_namespace: str = "kubedns"


def new_options() -> Options:
    """Return options with default values."""
    return Options()