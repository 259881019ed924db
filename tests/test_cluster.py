import os
import socket
import subprocess
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from unittest import mock

import pytest

from kdnsaux.e2e.cluster import Cluster
from kdnsaux.e2e.logger import FatalError
from kdnsaux.e2e.options import default_options


class FakeDocker:
    def __init__(self):
        self.calls = []
        self.listed = []
        self._next = 0

    def pull(self, *images):
        self.calls.append(("pull", images))

    def run(self, *args):
        self._next += 1
        self.calls.append(("run", args))
        return f"id{self._next}"

    def kill(self, tag):
        self.calls.append(("kill", tag))

    def list(self, filter):
        self.calls.append(("list", filter))
        return list(self.listed)


@pytest.fixture
def http_url():
    hits = []

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            hits.append(self.path)
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def log_message(self, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}", hits
    server.shutdown()
    server.server_close()


@pytest.fixture
def cluster(tmp_path):
    options = default_options(str(tmp_path / "base"), str(tmp_path / "work"))
    return Cluster(options, FakeDocker())


def _closed_port_url():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}"


def test_start_and_stop_etcd(cluster):
    cluster.start_etcd()
    assert cluster.containers.etcd == "id1"
    assert cluster.docker.calls == [
        ("run", ("-d", "--net=host", cluster.options.etcd_image))
    ]
    cluster.stop_etcd()
    assert cluster.containers.etcd == ""
    assert cluster.docker.calls[-1] == ("kill", "id1")


def test_stop_without_start_does_nothing(cluster):
    cluster.stop_etcd()
    cluster.stop_api_server()
    cluster.stop_kubelet()
    assert cluster.docker.calls == []


def test_start_api_server_arguments(cluster):
    cluster.start_api_server()
    kind, args = cluster.docker.calls[0]
    assert kind == "run"
    assert args[0] == "-d"
    assert f"--volume={cluster.options.base_dir}:/src:ro" in args
    assert f"--volume={cluster.options.work_dir}:/data:rw" in args
    assert args.index(cluster.options.hyperkube_image) + 1 == args.index("kube-apiserver")
    assert "--etcd-servers=http://127.0.0.1:2379" in args
    assert cluster.containers.api == "id1"


def test_wait_for_api_server_accepts_any_response(cluster, http_url):
    url, hits = http_url
    cluster.api_url = url
    cluster.startup_timeout = 0.3
    cluster.poll_interval = 0.05
    cluster.wait_for_api_server()
    assert len(hits) >= 1

    cluster.api_url = _closed_port_url()
    with pytest.raises(FatalError):
        cluster.wait_for_api_server()


def test_wait_for_api_server_times_out(cluster):
    cluster.api_url = _closed_port_url()
    cluster.startup_timeout = 0.3
    cluster.poll_interval = 0.05
    with pytest.raises(FatalError):
        cluster.wait_for_api_server()


def test_set_up_and_tear_down(cluster, http_url, tmp_path):
    cluster.api_url = http_url[0]
    cluster.set_up()
    assert cluster.docker.calls[0] == (
        "pull",
        (cluster.options.etcd_image, cluster.options.hyperkube_image),
    )
    assert cluster.containers.etcd == "id1"
    assert cluster.containers.api == "id2"
    assert cluster.manifest_dir == os.path.join(
        str(tmp_path), "base", "test", "e2e", "cluster", "manifests"
    )

    cluster.tear_down()
    kills = [tag for kind, tag in cluster.docker.calls if kind == "kill"]
    assert kills == ["id2", "id1"]
    assert cluster.containers.api == "" and cluster.containers.etcd == ""


def test_start_kubelet(cluster):
    ok = subprocess.CompletedProcess([], 0, b"", b"")
    with mock.patch("subprocess.run", return_value=ok) as run:
        cluster.start_kubelet()
    commands = [c.args[0] for c in run.call_args_list]
    assert ["sudo", "mkdir", "-p", cluster.var_lib_kubelet] in commands
    assert [
        "sudo", "mount", "--bind", cluster.var_lib_kubelet, cluster.var_lib_kubelet
    ] in commands
    _, args = cluster.docker.calls[0]
    assert f"--volume={cluster.var_lib_kubelet}:/var/lib/kubelet:shared" in args
    assert f"--volume={cluster.manifest_dir}:/etc/kubernetes/manifests-e2e:ro" in args
    assert cluster.containers.kubelet == "id1"


def test_start_kubelet_mkdir_failure_is_fatal(cluster):
    failed = subprocess.CompletedProcess([], 1, b"", b"")
    with mock.patch("subprocess.run", return_value=failed):
        with pytest.raises(FatalError):
            cluster.start_kubelet()


def test_stop_kubelet_removes_containers(cluster):
    cluster.containers.kubelet = "kubelet-id"
    cluster.docker.listed = ["k8s_a", "k8s_b"]
    ok = subprocess.CompletedProcess([], 0, b"", b"")
    with mock.patch("subprocess.run", return_value=ok) as run:
        cluster.stop_kubelet()
    kills = [tag for kind, tag in cluster.docker.calls if kind == "kill"]
    assert kills == ["kubelet-id", "k8s_a", "k8s_b"]
    assert ("list", "name=k8s_*") in cluster.docker.calls
    commands = [c.args[0] for c in run.call_args_list]
    assert ["sudo", "umount", cluster.var_lib_kubelet] in commands
    assert ["sudo", "rm", "-rf", cluster.var_lib_kubelet] in commands
    assert cluster.containers.kubelet == ""