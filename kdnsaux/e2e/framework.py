"""The e2e test framework: a cluster plus background processes with log files."""

from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

from kdnsaux.e2e.cluster import Cluster
from kdnsaux.e2e.docker import Docker
from kdnsaux.e2e.logger import get_logger
from kdnsaux.e2e.options import Options, default_options
from kdnsaux.e2e.util import can_sudo, keep_sudo_active


@dataclass
class Framework:
    """Holds the e2e options, docker, cluster and started processes."""

    options: Options
    docker: Any
    cluster: Any
    processes: dict[str, subprocess.Popen[bytes]] = field(default_factory=dict)
    failed: bool = False
    """Set when a test case failed; the logs are then dumped on tear-down."""

    def set_up(self) -> None:
        self.cluster.set_up()

    def tear_down(self) -> None:
        """Tear the cluster down; after a failure, dump every process's logs."""
        self.cluster.tear_down()
        if not self.failed:
            return
        log = get_logger()
        for name in self.processes:
            log.logf("Failure detected, dumping logs for '%s'", name)
            log.logf("==== %s stdout ====", name)
            self._dump(self.stdout_logfile(name))
            log.logf("==== %s stderr ====", name)
            self._dump(self.stderr_logfile(name))

    @staticmethod
    def _dump(path: str) -> None:
        try:
            with open(path, encoding="utf-8", errors="replace") as source:
                sys.stderr.write(source.read())
        except OSError as exc:
            get_logger().fatalf("Could not open %s: %s", path, exc)

    def path(self, relative: str) -> str:
        """Return the absolute path of *relative* within the repository."""
        return os.path.abspath(f"{self.options.base_dir}/{relative}")

    def stdout_logfile(self, name: str) -> str:
        return f"{self.options.work_dir}/logs/{name}.out"

    def stderr_logfile(self, name: str) -> str:
        return f"{self.options.work_dir}/logs/{name}.err"

    def run_in_background(
        self, name: str, binary: str, *args: str
    ) -> subprocess.Popen[bytes]:
        """Start *binary* with its output going to the log files for *name*."""
        log = get_logger()
        log.logf("Starting %s (%s %s)", name, binary, list(args))
        if name in self.processes:
            log.fatalf("Cannot run more than one process with the same name: %s", name)

        try:
            stdout = open(self.stdout_logfile(name), "wb")
        except OSError as exc:
            log.fatalf("Could not create %s: %s", self.stdout_logfile(name), exc)
            raise
        try:
            stderr = open(self.stderr_logfile(name), "wb")
        except OSError as exc:
            stdout.close()
            log.fatalf("Could not create %s: %s", self.stderr_logfile(name), exc)
            raise
        with stdout, stderr:
            process = subprocess.Popen([binary, *args], stdout=stdout, stderr=stderr)
        self.processes[name] = process
        return process


_framework: Optional[Framework] = None


def init_framework(base_dir: str, work_dir: str) -> Framework:
    """Create the global framework; sudo must work without a password."""
    log = get_logger()
    log.logf("Creating framework (baseDir=%s, workDir=%s)", base_dir, work_dir)

    if not can_sudo():
        log.fatalf(
            "e2e test requires `sudo` to be active. "
            "Run `sudo -v` before running the e2e test."
        )
    keep_sudo_active()

    options = default_options(base_dir, work_dir)
    docker = Docker()
    framework = Framework(options=options, docker=docker, cluster=Cluster(options, docker))

    try:
        os.makedirs(f"{work_dir}/logs", mode=0o755, exist_ok=True)
    except OSError as exc:
        log.fatalf("Could not mkdir %s: %s", work_dir, exc)

    global _framework
    _framework = framework
    return framework


def get_framework() -> Framework:
    """Return the global framework; init_framework must have been called."""
    if _framework is None:
        get_logger().fatal("InitFramework must be called before use")
    assert _framework is not None
    return _framework