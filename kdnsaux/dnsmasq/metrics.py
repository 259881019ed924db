"""Read cache metrics from dnsmasq through ``*.bind`` CHAOS TXT queries."""

from __future__ import annotations

import logging
import re
from enum import Enum

import dns.exception
import dns.message
import dns.query
import dns.rdataclass
import dns.rdatatype

_log = logging.getLogger(__name__)

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class MetricName(str, Enum):
    """A metric exported by dnsmasq."""

    CACHE_HITS = "hits"
    CACHE_MISSES = "misses"
    CACHE_EVICTIONS = "evictions"
    CACHE_INSERTIONS = "insertions"
    CACHE_SIZE = "cachesize"


ALL_METRICS: tuple[MetricName, ...] = tuple(MetricName)

Metrics = dict[MetricName, int]


class MetricsError(Exception):
    """Metrics could not be read from dnsmasq."""


class MetricsClient:
    """Client for the raw metrics of a dnsmasq instance (v2.76 and later)."""

    def __init__(self, addr: str, port: int, timeout: float = 2.0) -> None:
        self.addr = addr
        self.port = port
        self.timeout = timeout

    @property
    def addr_port(self) -> str:
        return f"{self.addr}:{self.port}"

    def get_metrics(self) -> Metrics:
        """Query every metric; raise MetricsError on the first failure."""
        return {
            metric: self._get_single_metric(f"{metric.value}.bind.")
            for metric in ALL_METRICS
        }

    def _get_single_metric(self, name: str) -> int:
        query = dns.message.make_query(name, dns.rdatatype.TXT, dns.rdataclass.CH)
        try:
            response = dns.query.udp(
                query, self.addr, timeout=self.timeout, port=self.port
            )
        except (dns.exception.DNSException, OSError) as exc:
            raise MetricsError(
                f"error querying {name} at {self.addr_port}: {exc!r}"
            ) from exc

        records = [(rrset, rdata) for rrset in response.answer for rdata in rrset]
        if len(records) != 1:
            raise MetricsError(
                f"invalid number of Answer records for {name}: {len(records)}"
            )

        rrset, rdata = records[0]
        if rrset.rdtype != dns.rdatatype.TXT:
            raise MetricsError(f"missing TXT record for {name}")

        _log.debug("Got valid TXT response %s for %s", rdata, name)
        if len(rdata.strings) != 1:
            raise MetricsError(
                f"invalid number of TXT records for {name}: {len(rdata.strings)}"
            )

        text = rdata.strings[0].decode("ascii", errors="replace")
        if not _INTEGER.fullmatch(text):
            raise MetricsError(f"invalid value {text!r} for {name}")
        value = int(text)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise MetricsError(f"value {text!r} for {name} is out of range")
        return value