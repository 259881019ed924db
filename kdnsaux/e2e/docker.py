"""A small wrapper around the ``docker`` command line."""

from __future__ import annotations

import os
import subprocess
import time
from typing import Optional, Sequence

from kdnsaux.e2e.logger import get_logger

DEFAULT_SOCKET = "unix:///var/run/docker.sock"
_START_POLL_SECONDS = 0.1


def _succeeds(cmd: Sequence[str]) -> bool:
    try:
        result = subprocess.run(
            list(cmd), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
        )
    except OSError:
        return False
    return result.returncode == 0


class Docker:
    """Runs docker commands against one daemon.

    Most methods raise FatalError through the logger when a command fails.
    """

    def __init__(
        self,
        docker_exec: str = "docker",
        manage_daemon: bool = False,
        base_dir: str = "/",
        cidr: str = "10.123.0.0/24",
        bridge: str = "docker0",
        socket: str = DEFAULT_SOCKET,
    ) -> None:
        self.docker_exec = docker_exec
        self.manage_daemon = manage_daemon
        self.base_dir = base_dir
        self.cidr = cidr
        self.bridge = bridge
        self.socket = socket
        self.process: Optional[subprocess.Popen[bytes]] = None

    def start(self) -> None:
        """Start the daemon if this instance manages it."""
        if not self.manage_daemon:
            return
        log = get_logger()

        exec_dir = self.base_dir + "/var/lib/docker"
        graph_dir = self.base_dir + "/var/run/docker"
        for directory in (exec_dir, graph_dir):
            try:
                os.makedirs(directory, mode=0o755, exist_ok=True)
            except OSError as exc:
                log.fatal(exc)

        pidfile = self.base_dir + "/pid"
        self.socket = "unix://" + self.base_dir + "/var/run/docker.sock"

        self._ensure_bridge()

        args = [
            self.docker_exec,
            "daemon",
            f"--bridge={self.bridge}",
            f"--exec-root={exec_dir}",
            f"--graph={graph_dir}",
            f"--host={self.socket}",
            f"--pidfile={pidfile}",
        ]
        log.logf("Starting Docker %s", args)
        try:
            self.process = subprocess.Popen(["sudo", *args])
        except OSError as exc:
            log.fatal(exc)

        self._wait_for_start()

    def stop(self) -> None:
        """Stop the daemon if this instance manages it."""
        if not self.manage_daemon:
            return
        log = get_logger()
        if self.process is None:
            log.fatal("Docker daemon is not running")
            return
        # The daemon runs as root, so it has to be killed through sudo.
        if not _succeeds(["sudo", "kill", str(self.process.pid)]):
            log.fatalf("Could not kill docker daemon (pid %s)", self.process.pid)
        status = self.process.wait()
        log.logf("Docker exited with %s", status)
        self.process = None

    def pull(self, *args: str) -> None:
        """Pull each of the images named in *args*."""
        for image in args:
            self._run_command(["-H", self.socket, "pull", image])

    def run(self, *args: str) -> str:
        """Call ``docker run`` with *args*; return the container's id."""
        log = get_logger()
        cmd_args = ["-H", self.socket, "run", *args]
        log.logf("docker run %s", cmd_args)
        try:
            result = subprocess.run(
                [self.docker_exec, *cmd_args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            log.fatalf("docker could not be run: %s", exc)
            return ""
        output = result.stdout.decode("utf-8", errors="replace")
        log.log_with_prefix("docker", output)
        if result.returncode != 0:
            log.log_with_prefix("docker", output)
            log.fatalf("docker returned exit code %s", result.returncode)
        return output.strip()

    def remove(self, tag: str) -> None:
        """Remove the container named by *tag*."""
        self._run_command(["-H", self.socket, "rm", "-f", tag])

    def kill(self, tag: str) -> None:
        """Kill the container named by *tag*."""
        self._run_command(["-H", self.socket, "kill", tag])

    def list(self, filter: str) -> list[str]:
        """Return the ids of running containers matching *filter* (all if empty)."""
        log = get_logger()
        args = ["-H", self.socket, "ps", "-q"]
        if filter:
            args += ["--filter", filter]
        log.logf("docker %s", args)
        try:
            result = subprocess.run(
                [self.docker_exec, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            log.fatalf("Error getting containers: %s", exc)
            return []
        if result.returncode != 0:
            log.fatalf("Error getting containers: exit status %s", result.returncode)
        output = result.stdout.decode("utf-8", errors="replace")
        return [tag.strip() for tag in output.split("\n") if tag.strip()]

    def _run_command(self, args: Sequence[str]) -> None:
        log = get_logger()
        log.logf("docker %s", list(args))
        try:
            result = subprocess.run(
                [self.docker_exec, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as exc:
            log.fatal(exc)
            return
        if result.returncode != 0:
            log.log_with_prefix("docker", result.stdout.decode("utf-8", errors="replace"))
            log.fatalf("docker exited with status %s", result.returncode)

    def _ensure_bridge(self) -> None:
        log = get_logger()
        if _succeeds(["ip", "link", "show", self.bridge]):
            log.logf("Bridge device %s exists", self.bridge)
            return
        log.logf("Creating bridge device %s (%s)", self.bridge, self.cidr)
        for cmd in (
            ["sudo", "brctl", "addbr", self.bridge],
            ["sudo", "ip", "addr", "add", self.cidr, "dev", self.bridge],
            ["sudo", "ip", "link", "set", "dev", self.bridge, "up"],
        ):
            if not _succeeds(cmd):
                log.fatalf("Command failed: %s", cmd)

    def _wait_for_start(self) -> None:
        while not _succeeds([self.docker_exec, "-H", self.socket, "info"]):
            time.sleep(_START_POLL_SECONDS)