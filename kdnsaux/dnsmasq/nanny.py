"""Run dnsmasq as a child process and build its command line from configuration."""

from __future__ import annotations

import ipaddress
import logging
import queue
import socket
import subprocess
import threading
from typing import IO, Callable, Mapping, Optional, Sequence

import dns.exception
import dns.resolver

_log = logging.getLogger(__name__)

Lookup = Callable[[str, str], Sequence[str]]
"""Resolve a name to IP addresses: ``lookup(name, kubedns_server)``."""


class NannyError(Exception):
    """The dnsmasq process cannot be managed as asked."""


def extract_dnsmasq_args(cmdline_args: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split *cmdline_args* at the first ``--``.

    Returns the arguments before it and the arguments after it; the
    ``--`` itself is dropped. Without a ``--`` every argument is kept in
    the first list.
    """
    args = list(cmdline_args)
    try:
        index = args.index("--")
    except ValueError:
        return args, []
    return args[:index], args[index + 1 :]


def munge_server(server: str) -> str:
    """Replace the port separator ``:`` with the ``#`` that dnsmasq expects."""
    colon = server.rfind(":")
    if colon == -1:
        return server
    bracket = server.find("]")
    is_v4 = server.count(":") == 1
    is_bracketed_v6 = bracket != -1
    if is_v4 or (is_bracketed_v6 and colon > bracket):
        return server[:colon] + "#" + server[colon + 1 :]
    return server


def _is_ip(text: str) -> bool:
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _split_host_port(address: str, default_port: int = 53) -> tuple[str, int]:
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
        return host, int(port) if port else default_port
    if address.count(":") == 1:
        host, _, port = address.partition(":")
        return host, int(port)
    return address, default_port


def _default_lookup(name: str, kubedns_server: str) -> list[str]:
    """Resolve cluster names through kube-dns and others through the system."""
    if name.endswith("cluster.local"):
        host, port = _split_host_port(kubedns_server)
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [host]
        resolver.port = port
        addresses: list[str] = []
        for rdtype in ("A", "AAAA"):
            try:
                answer = resolver.resolve(name, rdtype)
            except dns.resolver.NoAnswer:
                continue
            addresses.extend(record.address for record in answer)
        return addresses
    infos = socket.getaddrinfo(name, None)
    return list(dict.fromkeys(str(info[4][0]) for info in infos))


def _log_stream(stream_name: str, stream: IO[bytes]) -> None:
    try:
        for line in iter(stream.readline, b""):
            _log.debug("%s", line.decode("utf-8", errors="replace").rstrip("\n"))
    except (OSError, ValueError) as exc:
        _log.error("Error reading from %s: %s", stream_name, exc)
        return
    _log.warning("Got EOF from %s", stream_name)


class Nanny:
    """A dnsmasq process together with the arguments it is started with."""

    def __init__(self, exec_path: str, lookup: Optional[Lookup] = None) -> None:
        self.exec_path = exec_path
        self.args: list[str] = []
        self._lookup: Lookup = lookup or _default_lookup
        self._process: Optional[subprocess.Popen[bytes]] = None
        self._exits: Optional[queue.Queue[int]] = None

    def configure(
        self,
        args: Sequence[str],
        stub_domains: Optional[Mapping[str, Sequence[str]]],
        upstream_nameservers: Optional[Sequence[str]],
        kubedns_server: str,
    ) -> None:
        """Build the dnsmasq arguments; call before :meth:`start`.

        *kubedns_server* is the ``host:port`` of the local kube-dns used
        to resolve stub-domain servers named under ``cluster.local``.
        """
        new_args = list(args)
        for domain, servers in (stub_domains or {}).items():
            for server in servers:
                if not _is_ip(server):
                    server = self._resolve(server, kubedns_server)
                new_args += ["--server", f"/{domain}/{munge_server(server)}"]

        upstream = list(upstream_nameservers or [])
        for server in upstream:
            new_args += ["--server", munge_server(server)]

        # Explicit upstream servers replace those from /etc/resolv.conf.
        if upstream:
            new_args.append("--no-resolv")
        self.args = new_args

    def _resolve(self, name: str, kubedns_server: str) -> str:
        try:
            addresses = list(self._lookup(name, kubedns_server))
        except (OSError, ValueError, dns.exception.DNSException) as exc:
            _log.error("Error looking up IP for name %r: %s", name, exc)
            return name
        if not addresses:
            _log.error("Name %r does not resolve to any IPs", name)
            return name
        return addresses[0]

    def start(self) -> None:
        """Start dnsmasq; its output is copied to the log."""
        _log.info("Starting dnsmasq %s", self.args)
        process = subprocess.Popen(
            [self.exec_path, *self.args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        for stream_name, stream in (("stderr", process.stderr), ("stdout", process.stdout)):
            threading.Thread(
                target=_log_stream, args=(stream_name, stream), daemon=True
            ).start()

        exits: queue.Queue[int] = queue.Queue(maxsize=1)
        threading.Thread(target=lambda: exits.put(process.wait()), daemon=True).start()
        self._process = process
        self._exits = exits

    def wait(self, timeout: Optional[float] = None) -> int:
        """Wait for dnsmasq to exit and return its exit status."""
        if self._exits is None:
            raise NannyError("dnsmasq has not been started")
        try:
            return self._exits.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("dnsmasq is still running") from None

    def kill(self) -> None:
        """Kill the running dnsmasq."""
        _log.info("Killing dnsmasq")
        if self._process is None:
            raise NannyError("Process is not running")
        try:
            self._process.kill()
        except OSError as exc:
            _log.error("Error killing dnsmasq: %s", exc)
            raise NannyError(f"error killing dnsmasq: {exc}") from exc
        self._process = None