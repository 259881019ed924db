"""Test harness that drives the dnsmasq nanny through its config directory."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass

GLOBAL_TIMEOUT = 10.0


@dataclass
class Harness:
    """Writes nanny configuration and watches the arguments mock dnsmasq records."""

    tmp_dir: str
    nanny_exec: str
    mock_dnsmasq: str
    timeout: float = GLOBAL_TIMEOUT
    poll_interval: float = 1.0

    @property
    def config_dir(self) -> str:
        return f"{self.tmp_dir}/config"

    @property
    def args_file(self) -> str:
        return f"{self.tmp_dir}/args.txt"

    def setup(self) -> None:
        """Create the configuration directory; it must not exist yet."""
        os.mkdir(self.config_dir, 0o755)

    def configure(self, stub_domains: str, upstream_nameservers: str) -> None:
        """Write each non-empty value to its config file; remove the file otherwise."""
        self._write_or_remove("stubDomains", stub_domains)
        self._write_or_remove("upstreamNameservers", upstream_nameservers)

    def _write_or_remove(self, key: str, value: str) -> None:
        filename = f"{self.config_dir}/{key}"
        if value == "":
            try:
                os.remove(filename)
            except FileNotFoundError:
                pass
            return
        with open(filename, "w", encoding="utf-8") as handle:
            handle.write(value)

    def read_output(self) -> list[str]:
        """Return the non-empty lines of the args file, or [] if it is unreadable."""
        try:
            with open(self.args_file, encoding="utf-8") as handle:
                text = handle.read()
        except OSError:
            return []
        return [line for line in text.split("\n") if line]

    def wait_for_args(self, line: str) -> None:
        """Wait until *line* is the last line of the args file."""
        deadline = time.monotonic() + self.timeout
        while time.monotonic() <= deadline:
            lines = self.read_output()
            if lines and lines[-1] == line:
                return
            time.sleep(self.poll_interval)
        raise TimeoutError(f"timeout waiting for line '{line}'")