"""Control a kube-dns process for the end-to-end tests."""

from __future__ import annotations

import signal
import socket
import subprocess
import time
from typing import Optional, Union

import dns.message
import dns.query
import dns.rdataclass
import dns.rdatatype

from kdnsaux.e2e.framework import Framework, get_framework
from kdnsaux.e2e.logger import get_logger

DNS_PORT = 10053
HEALTH_PORT = 8081
_INTERRUPT_GRACE_SECONDS = 0.2
_POLL_SECONDS = 0.01


def _port_open(host: str, port: int) -> bool:
    try:
        with socket.create_connection((host, port), timeout=1.0):
            return True
    except OSError:
        return False


class KubeDNS:
    """A kube-dns daemon started through the e2e framework."""

    def __init__(
        self,
        framework: Optional[Framework] = None,
        host: str = "localhost",
        dns_port: int = DNS_PORT,
        health_port: int = HEALTH_PORT,
        startup_timeout: float = 1.0,
        query_timeout: float = 2.0,
    ) -> None:
        self.framework = framework
        self.host = host
        self.dns_port = dns_port
        self.health_port = health_port
        self.startup_timeout = startup_timeout
        self.query_timeout = query_timeout
        self.name = ""
        self.process: Optional[subprocess.Popen[bytes]] = None

    @property
    def is_running(self) -> bool:
        """True while the started process has not exited."""
        return self.process is not None and self.process.poll() is None

    def start(self, name: str, *args: str) -> None:
        """Start kube-dns as *name* with extra *args* and wait for its ports."""
        log = get_logger()
        self.name = name
        fr = self.framework if self.framework is not None else get_framework()
        binary = fr.path("bin/amd64/kube-dns")
        all_args = [
            *args,
            "--dns-port",
            str(self.dns_port),
            "--kubecfg-file",
            fr.path("test/e2e/cluster/config"),
        ]
        try:
            self.process = fr.run_in_background(name, binary, *all_args)
        except OSError as exc:
            log.fatal(exc)

        for port in (self.dns_port, self.health_port):
            self._wait_for_port(port)
        log.logf("kube-dns started")

    def _wait_for_port(self, port: int) -> None:
        deadline = time.monotonic() + self.startup_timeout
        while not _port_open(self.host, port):
            if time.monotonic() >= deadline:
                get_logger().fatalf(
                    "kube-dns did not open %s:%s in time", self.host, port
                )
            time.sleep(_POLL_SECONDS)

    def stop(self) -> None:
        """Interrupt kube-dns so it flushes its logs, then kill it."""
        log = get_logger()
        log.logf("Stopping kube-dns")
        if not self.is_running or self.process is None:
            log.fatalf("kube-dns is not running")
            return
        self.process.send_signal(signal.SIGINT)
        time.sleep(_INTERRUPT_GRACE_SECONDS)
        if self.process.poll() is None:
            self.process.kill()

    def query(self, name: str, qtype: Union[int, str]) -> list[str]:
        """Query kube-dns; return each answer record as tab-separated text."""
        message = dns.message.make_query(
            name, dns.rdatatype.RdataType.make(qtype), dns.rdataclass.IN
        )
        response = dns.query.udp(
            message,
            socket.gethostbyname(self.host),
            timeout=self.query_timeout,
            port=self.dns_port,
        )
        return [
            "\t".join(
                (
                    rrset.name.to_text(),
                    str(rrset.ttl),
                    dns.rdataclass.to_text(rrset.rdclass),
                    dns.rdatatype.to_text(rrset.rdtype),
                    rdata.to_text(),
                )
            )
            for rrset in response.answer
            for rdata in rrset
        ]