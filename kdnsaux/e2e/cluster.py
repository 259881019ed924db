"""A mock Kubernetes cluster made of docker containers."""

from __future__ import annotations

import os
import subprocess
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field

from kdnsaux.e2e.docker import Docker
from kdnsaux.e2e.logger import get_logger
from kdnsaux.e2e.options import Options
from kdnsaux.e2e.util import make_shared_mount, umount

STARTUP_TIMEOUT = 10.0
API_SERVER_URL = "http://localhost:8080"


@dataclass
class Containers:
    """Ids of the containers the cluster runs; empty when not running."""

    etcd: str = ""
    api: str = ""
    kubelet: str = ""


def _sudo(*cmd: str) -> None:
    result = subprocess.run(
        ["sudo", *cmd], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
    )
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, ["sudo", *cmd])


@dataclass
class Cluster:
    """etcd, an API server and optionally a kubelet, run in docker."""

    options: Options
    docker: Docker
    api_url: str = API_SERVER_URL
    startup_timeout: float = STARTUP_TIMEOUT
    poll_interval: float = 1.0
    containers: Containers = field(default_factory=Containers)
    manifest_dir: str = field(default="", init=False)
    var_lib_docker: str = field(default="", init=False)
    var_lib_kubelet: str = field(default="", init=False)
    var_run: str = field(default="", init=False)

    def __post_init__(self) -> None:
        self._resolve_dirs()

    def set_up(self) -> None:
        """Pull images, start etcd and the API server and wait for it."""
        get_logger().logf("SetUp")
        self._resolve_dirs()
        self._pull_images()
        self.start_etcd()
        self.start_api_server()
        self.wait_for_api_server()

    def tear_down(self) -> None:
        """Stop the API server and etcd."""
        get_logger().logf("Teardown")
        self.stop_api_server()
        self.stop_etcd()

    def _resolve_dirs(self) -> None:
        self.manifest_dir = os.path.abspath(
            f"{self.options.base_dir}/test/e2e/cluster/manifests"
        )
        self.var_lib_docker = os.path.abspath("/var/lib/docker")
        self.var_run = os.path.abspath("/var/run")
        self.var_lib_kubelet = os.path.abspath("/var/lib/kubelet")

    def _pull_images(self) -> None:
        self.docker.pull(self.options.etcd_image, self.options.hyperkube_image)

    def start_etcd(self) -> None:
        get_logger().logf("Starting etcd")
        self.containers.etcd = self.docker.run("-d", "--net=host", self.options.etcd_image)

    def stop_etcd(self) -> None:
        if not self.containers.etcd:
            return
        get_logger().logf("Stopping etcd")
        self.docker.kill(self.containers.etcd)
        self.containers.etcd = ""

    def start_api_server(self) -> None:
        get_logger().logf("Starting API server")
        self.containers.api = self.docker.run(
            "-d",
            f"--volume={self.options.base_dir}:/src:ro",
            f"--volume={self.options.work_dir}:/data:rw",
            "--net=host",
            "--pid=host",
            self.options.hyperkube_image,
            "kube-apiserver",
            "--insecure-bind-address=0.0.0.0",
            "--service-cluster-ip-range=10.0.0.1/24",
            "--etcd-servers=http://127.0.0.1:2379",
            "--v=2",
        )

    def stop_api_server(self) -> None:
        if not self.containers.api:
            return
        get_logger().logf("Stopping API server")
        self.docker.kill(self.containers.api)
        self.containers.api = ""

    def wait_for_api_server(self) -> None:
        """Wait until the API server answers any HTTP request."""
        log = get_logger()
        deadline = time.monotonic() + self.startup_timeout
        while time.monotonic() < deadline:
            try:
                with urllib.request.urlopen(self.api_url, timeout=5):
                    pass
            except urllib.error.HTTPError as exc:
                exc.close()
            except (urllib.error.URLError, OSError):
                log.logf("Waiting for API server to start")
                time.sleep(self.poll_interval)
                continue
            log.logf("API server started")
            return
        log.fatal("API server failed to start")

    def start_kubelet(self) -> None:
        log = get_logger()
        log.logf("Starting Kubelet")
        try:
            _sudo("mkdir", "-p", self.var_lib_kubelet)
        except (OSError, subprocess.CalledProcessError) as exc:
            log.fatalf("Could not create %s: %s", self.var_lib_kubelet, exc)
        make_shared_mount(self.var_lib_kubelet)

        self.containers.kubelet = self.docker.run(
            "-d",
            "--volume=/:/rootfs:ro",  # used by the nsenter mounter
            "--volume=/sys:/sys:ro",
            "--volume=/dev:/dev",
            f"--volume={self.options.base_dir}:/src:ro",
            f"--volume={self.options.work_dir}:/data:rw",
            f"--volume={self.manifest_dir}:/etc/kubernetes/manifests-e2e:ro",
            f"--volume={self.var_lib_docker}:/var/lib/docker:rw",
            f"--volume={self.var_run}:/var/run:rw",
            f"--volume={self.var_lib_kubelet}:/var/lib/kubelet:shared",
            "--net=host",
            "--pid=host",
            "--privileged=true",
            self.options.hyperkube_image,
            "/hyperkube",
            "kubelet",
            "--v=4",
            "--containerized",
            "--hostname-override=0.0.0.0",
            "--address=0.0.0.0",
            "--cluster_dns=10.0.0.10",
            "--cluster_domain=cluster.local",
            "--api-servers=http://localhost:8080",
            "--config=/etc/kubernetes/manifests-e2e",
        )

    def stop_kubelet(self) -> None:
        if not self.containers.kubelet:
            return
        log = get_logger()
        log.logf("Stopping Kubelet")
        self.docker.kill(self.containers.kubelet)
        self.containers.kubelet = ""

        # Remove every container the kubelet created.
        for tag in self.docker.list("name=k8s_*"):
            self.docker.kill(tag)

        umount(self.var_lib_kubelet)
        try:
            _sudo("rm", "-rf", self.var_lib_kubelet)
        except (OSError, subprocess.CalledProcessError) as exc:
            log.fatalf("Could not remove kubelet dir %s: %s", self.var_lib_kubelet, exc)