"""Options for running the end-to-end tests."""

from __future__ import annotations

from dataclasses import dataclass

ETCD_IMAGE = "quay.io/coreos/etcd:v3.5.16"
HYPERKUBE_IMAGE = "registry.k8s.io/hyperkube:v1.18.20"
DNSMASQ_IMAGE = "registry.k8s.io/k8s-dns-dnsmasq-amd64:1.14.10"


@dataclass
class Options:
    """Settings for the e2e cluster and tools."""

    prefix: str = ""
    docker: str = ""
    kubectl: str = ""
    base_dir: str = ""
    work_dir: str = ""
    etcd_image: str = ""
    hyperkube_image: str = ""
    cluster_ip_range: str = ""
    dnsmasq_image: str = ""


def default_options(base_dir: str, work_dir: str) -> Options:
    """Return the default options for an e2e run."""
    return Options(
        prefix="xxx",
        kubectl="kubectl",
        base_dir=base_dir,
        work_dir=work_dir,
        docker="docker",
        etcd_image=ETCD_IMAGE,
        hyperkube_image=HYPERKUBE_IMAGE,
        dnsmasq_image=DNSMASQ_IMAGE,
        cluster_ip_range="10.0.0.0/24",
    )