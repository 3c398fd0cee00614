# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/provision/catalog.py

"""
The Kubernetes node step set.

One step per logical host mutation, each with a postcondition that probes
the host instead of trusting exit codes. Role-specific steps carry a role
precondition, so a single catalog serves masters and workers alike.
"""

from __future__ import annotations

from typing import List

from ..config.models import NodeConfig
from .steps import Predicate, Step, always

BASE_STEPS = (
    "install_prereqs",
    "disable_swap",
    "configure_sysctl",
    "install_container_runtime",
    "install_cluster_tools",
)


def _is_master(c: NodeConfig) -> bool:
    return c.role == "master"


def _is_worker(c: NodeConfig) -> bool:
    return c.role == "worker"


# ------------------ actions ------------------
# Actions get (host, config) from the executor.

def _install_prereqs(host, c: NodeConfig) -> dict:
    host.update_index()
    if c.upgrade_packages:
        host.upgrade_all()
    return {"installed": host.ensure_installed(c.prerequisites)}


def _disable_swap(host, c: NodeConfig) -> None:
    host.disable_swap()


def _configure_sysctl(host, c: NodeConfig) -> None:
    host.apply_module_config(c.kernel)


def _install_container_runtime(host, c: NodeConfig) -> dict:
    return {"runtime_config": host.install_and_configure(c.runtime)}


def _install_cluster_tools(host, c: NodeConfig) -> dict:
    host.add_kubernetes_repo(c.kubernetes.version)
    host.update_index()
    installed = host.ensure_installed(c.kubernetes.packages)
    if c.kubernetes.hold:
        host.hold(c.kubernetes.packages)
    return {"installed": installed}


def _configure_network(host, c: NodeConfig) -> dict:
    net = c.network
    iface = host.apply_static_address(net.interface, net.address, net.resolved_gateway, net.dns)
    return {"interface": iface, "address": net.address}


def _set_hostname(host, c: NodeConfig) -> dict:
    address = c.network.ip if c.network else None
    host.set_hostname(c.hostname, c.fqdn, address)
    return {"fqdn": c.fqdn}


def _init_control_plane(host, c: NodeConfig) -> dict:
    return host.init_control_plane(c.pod_cidr, kube_user=c.kube_user).to_dict()


def _install_pod_network(host, c: NodeConfig) -> dict:
    host.apply_manifest(c.cni_manifest)
    return {"manifest": c.cni_manifest}


def _join_cluster(host, c: NodeConfig) -> None:
    j = c.join
    host.join_as_worker(j.master_address, j.port, j.token, j.ca_cert_hash)


# ------------------ postconditions ------------------
# Read-only probes; they close over the host and take only the config.

def _postconditions(host) -> dict:
    def prereqs(c: NodeConfig) -> bool:
        return not host.missing_packages(c.prerequisites)

    def swap_off(c: NodeConfig) -> bool:
        return not host.swap_active() and not host.swap_in_fstab()

    def kernel_ready(c: NodeConfig) -> bool:
        if not all(host.module_loaded(m) for m in c.kernel.modules):
            return False
        return all(host.sysctl_value(k) == str(v) for k, v in c.kernel.sysctl.items())

    def runtime_up(c: NodeConfig) -> bool:
        return host.runtime_configured(c.runtime) and host.service_active(c.runtime.name)

    def tools_ready(c: NodeConfig) -> bool:
        if host.missing_packages(c.kubernetes.packages):
            return False
        if c.kubernetes.hold:
            held = set(host.held_packages())
            return all(p in held for p in c.kubernetes.packages)
        return True

    def address_set(c: NodeConfig) -> bool:
        return host.has_address(c.network.interface, c.network.address)

    def hostname_set(c: NodeConfig) -> bool:
        if host.current_hostname() != c.fqdn:
            return False
        if c.network is None:
            return True
        return host.hosts_entry_present(c.hostname, c.fqdn, c.network.ip)

    def control_plane_up(c: NodeConfig) -> bool:
        return host.control_plane_ready()

    def pod_network_applied(c: NodeConfig) -> bool:
        return host.manifest_applied(c.cni_manifest)

    def node_joined(c: NodeConfig) -> bool:
        return host.joined()

    return {
        "install_prereqs": prereqs,
        "disable_swap": swap_off,
        "configure_sysctl": kernel_ready,
        "install_container_runtime": runtime_up,
        "install_cluster_tools": tools_ready,
        "configure_network": address_set,
        "set_hostname": hostname_set,
        "init_control_plane": control_plane_up,
        "install_pod_network": pod_network_applied,
        "join_cluster": node_joined,
    }


def build_steps(config: NodeConfig, host=None, verify: bool = True) -> List[Step]:
    """
    Build the node step set for `config`.

    With verify=False every postcondition is `always`; that is what dry runs
    use, since there is no host to probe. Otherwise `host` is required.
    """
    if verify and host is None:
        raise ValueError("build_steps(verify=True) needs a host to probe")
    posts = _postconditions(host) if verify else {}

    def post(name: str) -> Predicate:
        return posts.get(name, always)

    return [
        Step(
            "install_prereqs",
            _install_prereqs,
            postcondition=post("install_prereqs"),
            description="Update package index and install prerequisites",
            timeout_seconds=900,
        ),
        Step(
            "disable_swap",
            _disable_swap,
            postcondition=post("disable_swap"),
            description="Turn swap off now and in /etc/fstab",
            timeout_seconds=120,
        ),
        Step(
            "configure_sysctl",
            _configure_sysctl,
            postcondition=post("configure_sysctl"),
            description="Load kernel modules and apply bridge/forwarding sysctls",
            timeout_seconds=120,
        ),
        Step(
            "install_container_runtime",
            _install_container_runtime,
            depends_on=("install_prereqs",),
            postcondition=post("install_container_runtime"),
            description=f"Install and configure {config.runtime.name}",
            timeout_seconds=600,
        ),
        Step(
            "install_cluster_tools",
            _install_cluster_tools,
            depends_on=("install_prereqs",),
            postcondition=post("install_cluster_tools"),
            description=f"Install {', '.join(config.kubernetes.packages)} ({config.kubernetes.version})",
            timeout_seconds=600,
        ),
        Step(
            "configure_network",
            _configure_network,
            precondition=lambda c: c.network is not None,
            postcondition=post("configure_network"),
            description="Write static netplan configuration and apply it",
            timeout_seconds=120,
        ),
        Step(
            "set_hostname",
            _set_hostname,
            precondition=lambda c: bool(c.hostname),
            postcondition=post("set_hostname"),
            description="Set hostname/FQDN and the /etc/hosts entry",
            timeout_seconds=60,
        ),
        Step(
            "init_control_plane",
            _init_control_plane,
            depends_on=BASE_STEPS,
            precondition=_is_master,
            postcondition=post("init_control_plane"),
            description="kubeadm init and kubeconfig setup",
            timeout_seconds=900,
        ),
        Step(
            "install_pod_network",
            _install_pod_network,
            depends_on=("init_control_plane",),
            precondition=_is_master,
            postcondition=post("install_pod_network"),
            description="Apply the CNI manifest",
            timeout_seconds=300,
        ),
        Step(
            "join_cluster",
            _join_cluster,
            depends_on=BASE_STEPS,
            precondition=_is_worker,
            postcondition=post("join_cluster"),
            description="kubeadm join the control plane",
            timeout_seconds=600,
        ),
    ]
