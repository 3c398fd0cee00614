# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/bootstrap/node/models.py

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
KUBELET_KUBECONFIG = "/etc/kubernetes/kubelet.conf"
NETPLAN_PATH = "/etc/netplan/99-kubernetes.yaml"
MODULES_LOAD_PATH = "/etc/modules-load.d/k8s.conf"
SYSCTL_PATH = "/etc/sysctl.d/k8s.conf"
KUBERNETES_KEYRING = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
KUBERNETES_SOURCES = "/etc/apt/sources.list.d/kubernetes.list"


@dataclass
class SSHTarget:
    """
    Represents a server you will SSH into.
    """
    address: str                  # IP or DNS to connect
    username: str = "root"
    port: int = 22
    password: Optional[str] = None
    pkey_path: Optional[Path] = None
    become_password: Optional[str] = None     # for sudo -S


@dataclass(frozen=True)
class ControlPlaneResult:
    kubeconfig: str               # path of the copied admin kubeconfig
    join_command: str             # `kubeadm join ...` line for workers

    def to_dict(self) -> dict:
        return {"kubeconfig": self.kubeconfig, "join_command": self.join_command}
