"""Counters and histograms in the Prometheus text format, served over HTTP."""

from __future__ import annotations

import bisect
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Iterator, Sequence, Union
from urllib.parse import urlsplit

from kdnsaux.dnsmasq.metrics import MetricName
from kdnsaux.sidecar.options import Options

_log = logging.getLogger(__name__)

DEFAULT_BUCKETS: tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)
EXPOSITION_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
DNSMASQ_SUBSYSTEM = "dnsmasq"


def _fq_name(namespace: str, subsystem: str, name: str) -> str:
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


@dataclass
class Counter:
    """A monotonically increasing value."""

    name: str
    help: str
    namespace: str = ""
    subsystem: str = ""
    _value: float = field(default=0.0, init=False, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @property
    def fq_name(self) -> str:
        return _fq_name(self.namespace, self.subsystem, self.name)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def add(self, amount: float) -> None:
        """Increase the counter by a non-negative *amount*."""
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        with self._lock:
            self._value += amount

    def _exposition(self) -> list[str]:
        return [
            f"# HELP {self.fq_name} {_escape_help(self.help)}",
            f"# TYPE {self.fq_name} counter",
            f"{self.fq_name} {_format_value(self.value)}",
        ]


@dataclass
class Histogram:
    """Observations counted in cumulative buckets."""

    name: str
    help: str
    namespace: str = ""
    subsystem: str = ""
    buckets: Sequence[float] = DEFAULT_BUCKETS
    _counts: list[int] = field(default_factory=list, init=False, repr=False)
    _sum: float = field(default=0.0, init=False, repr=False)
    _count: int = field(default=0, init=False, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        bounds = [float(bound) for bound in self.buckets]
        if bounds and math.isinf(bounds[-1]) and bounds[-1] > 0:
            bounds.pop()
        for lower, upper in zip(bounds, bounds[1:]):
            if lower >= upper:
                raise ValueError("histogram buckets must be in increasing order")
        self.buckets = tuple(bounds)
        self._counts = [0] * len(bounds)

    @property
    def fq_name(self) -> str:
        return _fq_name(self.namespace, self.subsystem, self.name)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def observe(self, value: float) -> None:
        """Record one observation."""
        with self._lock:
            index = bisect.bisect_left(self.buckets, value)
            if index < len(self._counts):
                self._counts[index] += 1
            self._sum += value
            self._count += 1

    def _exposition(self) -> list[str]:
        name = self.fq_name
        with self._lock:
            counts = list(self._counts)
            total, count = self._sum, self._count
        lines = [
            f"# HELP {name} {_escape_help(self.help)}",
            f"# TYPE {name} histogram",
        ]
        cumulative = 0
        for bound, bucket_count in zip(self.buckets, counts):
            cumulative += bucket_count
            lines.append(f'{name}_bucket{{le="{_format_value(bound)}"}} {cumulative}')
        lines.append(f'{name}_bucket{{le="+Inf"}} {count}')
        lines.append(f"{name}_sum {_format_value(total)}")
        lines.append(f"{name}_count {count}")
        return lines


Metric = Union[Counter, Histogram]


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """Return *count* bucket bounds, the first *start*, each *factor* times the last."""
    if count < 1:
        raise ValueError("exponential_buckets needs a positive count")
    if start <= 0:
        raise ValueError("exponential_buckets needs a positive start value")
    if factor <= 1:
        raise ValueError("exponential_buckets needs a factor greater than 1")
    return [start * factor**power for power in range(count)]


class Registry:
    """A set of metrics with unique names."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def register(self, metric: Metric) -> None:
        """Add *metric*; a name may be registered only once."""
        name = metric.fq_name
        if not name:
            raise ValueError("metric has no name")
        with self._lock:
            if name in self._metrics:
                raise ValueError(
                    f"duplicate metrics collector registration attempted: {name}"
                )
            self._metrics[name] = metric

    def expose(self) -> str:
        """Render every metric in the Prometheus text format."""
        with self._lock:
            metrics = sorted(self._metrics.items())
        lines = [line for _, metric in metrics for line in metric._exposition()]
        return "".join(f"{line}\n" for line in lines)


@dataclass(frozen=True)
class Response:
    """An HTTP response produced by a route handler."""

    status: int
    body: bytes
    content_type: str = "text/plain; charset=utf-8"


Handler = Callable[[], Response]

_NOT_FOUND = Response(404, b"404 page not found\n")


class Router:
    """Maps URL paths to handlers and serves them over HTTP."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._servers: list[ThreadingHTTPServer] = []
        self._lock = threading.Lock()

    def handle(self, path: str, handler: Handler) -> None:
        """Route *path* to *handler*."""
        with self._lock:
            if path in self._handlers:
                raise ValueError(f"multiple registrations for {path}")
            self._handlers[path] = handler

    def dispatch(self, path: str) -> Response:
        """Run the handler for *path*, or answer 404."""
        with self._lock:
            handler = self._handlers.get(path)
        if handler is None:
            return _NOT_FOUND
        return handler()

    def serve(self, addr: str, port: int) -> ThreadingHTTPServer:
        """Serve the routes on *addr*:*port* in a background thread."""
        server = ThreadingHTTPServer((addr, port), _request_handler(self))
        threading.Thread(target=server.serve_forever, daemon=True).start()
        with self._lock:
            self._servers.append(server)
        return server

    def __enter__(self) -> Router:
        return self

    def __exit__(self, *exc_info: object) -> None:
        with self._lock:
            servers, self._servers = self._servers, []
        for server in servers:
            server.shutdown()
            server.server_close()


def _request_handler(router: Router) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        def _respond(self, with_body: bool) -> None:
            try:
                response = router.dispatch(urlsplit(self.path).path)
            except Exception as exc:  # a failing handler must not kill the server
                _log.error("Handler for %s failed: %s", self.path, exc)
                response = Response(500, f"Error: {exc}".encode())
            self.send_response(response.status)
            self.send_header("Content-Type", response.content_type)
            self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if with_body:
                self.wfile.write(response.body)

        def do_GET(self) -> None:
            self._respond(with_body=True)

        def do_POST(self) -> None:
            self._respond(with_body=True)

        def do_HEAD(self) -> None:
            self._respond(with_body=False)

        def log_message(self, format: str, *args: object) -> None:
            _log.debug("%s - %s", self.address_string(), format % args)

    return _Handler


_DNSMASQ_COUNTERS: dict[MetricName, tuple[str, str]] = {
    MetricName.CACHE_HITS: ("hits", "Number of DNS cache hits (from start of process)"),
    MetricName.CACHE_MISSES: ("misses", "Number of DNS cache misses (from start of process)"),
    MetricName.CACHE_EVICTIONS: (
        "evictions",
        "Counter of DNS cache evictions (from start of process)",
    ),
    MetricName.CACHE_INSERTIONS: (
        "insertions",
        "Counter of DNS cache insertions (from start of process)",
    ),
    MetricName.CACHE_SIZE: ("max_size", "Maximum size of the DNS cache"),
}


class DnsmasqCounters:
    """The counters fed from dnsmasq metrics, with the last values seen."""

    def __init__(self, namespace: str = "kubedns") -> None:
        self.counters: dict[MetricName, Counter] = {
            metric: Counter(name, help_text, namespace, DNSMASQ_SUBSYSTEM)
            for metric, (name, help_text) in _DNSMASQ_COUNTERS.items()
        }
        self.errors = Counter(
            "errors",
            "Number of errors that have occurred getting metrics",
            namespace,
            DNSMASQ_SUBSYSTEM,
        )
        self.cache: dict[MetricName, float] = {}

    def __getitem__(self, metric: MetricName) -> Counter:
        return self.counters[metric]

    def __iter__(self) -> Iterator[Counter]:
        yield from self.counters.values()
        yield self.errors


def initialize_metrics(
    options: Options, registry: Registry, router: Router
) -> DnsmasqCounters:
    """Register the dnsmasq counters and serve metrics and ``/healthz``."""
    counters = DnsmasqCounters(options.prometheus_namespace)
    for counter in counters:
        registry.register(counter)

    router.handle(
        options.prometheus_path,
        lambda: Response(200, registry.expose().encode(), EXPOSITION_CONTENT_TYPE),
    )
    router.handle("/healthz", lambda: Response(200, f"ok ({datetime.now()})\n".encode()))
    router.serve(options.prometheus_addr, options.prometheus_port)
    return counters