"""Helpers for the e2e tests that need ``sudo`` and mounts."""

from __future__ import annotations

import subprocess
import threading
import time

from kdnsaux.e2e.logger import get_logger

SUDO_REFRESH_SECONDS = 10.0


def _run(*cmd: str) -> None:
    result = subprocess.run(
        list(cmd), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
    )
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, list(cmd))


def _refresh_sudo() -> None:
    try:
        _run("sudo", "-nv")
    except (OSError, subprocess.CalledProcessError) as exc:
        get_logger().fatalf("Unable to keep sudo active: %s", exc)
    time.sleep(SUDO_REFRESH_SECONDS)


def keep_sudo_active() -> threading.Thread:
    """Refresh the sudo timestamp in a background thread."""
    thread = threading.Thread(target=_refresh_sudo, daemon=True)
    thread.start()
    return thread


def can_sudo() -> bool:
    """Return True if sudo may be used without a password."""
    try:
        _run("sudo", "-nv")
    except (OSError, subprocess.CalledProcessError):
        return False
    return True


def make_shared_mount(path: str) -> None:
    """Bind-mount *path* onto itself and make it recursively shared."""
    try:
        _run("sudo", "mount", "--bind", path, path)
    except (OSError, subprocess.CalledProcessError) as exc:
        get_logger().fatalf("Error bind mounting %s: %s", path, exc)
    try:
        _run("sudo", "mount", "--make-rshared", path)
    except (OSError, subprocess.CalledProcessError) as exc:
        get_logger().fatalf("Error mount --make-rshared %s: %s", path, exc)


def umount(path: str) -> None:
    """Unmount *path*."""
    try:
        _run("sudo", "umount", path)
    except (OSError, subprocess.CalledProcessError) as exc:
        get_logger().fatalf("Error umount %s: %s", path, exc)