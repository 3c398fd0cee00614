# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/config/models.py

import ipaddress
import re
import socket
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_DNS = ["1.1.1.1", "8.8.8.8"]
DEFAULT_CNI_MANIFEST = "https://raw.githubusercontent.com/projectcalico/calico/v3.28.0/manifests/calico.yaml"

_TOKEN = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")
_HASH = re.compile(r"^[0-9a-f]{64}$")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class NetworkSpec(_Frozen):
    """Static address for one interface, rendered into netplan."""

    interface: Optional[str] = None          # None -> interface of the default route
    address: str                             # "192.168.1.10/24"
    gateway: Optional[str] = None            # None -> first host of the subnet (x.y.z.1)
    dns: List[str] = Field(default_factory=lambda: list(DEFAULT_DNS))

    @field_validator("address")
    @classmethod
    def _cidr(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError("address must be in CIDR notation, e.g. 192.168.1.10/24")
        ipaddress.ip_interface(v)
        return v

    @field_validator("gateway")
    @classmethod
    def _gateway(cls, v: Optional[str]) -> Optional[str]:
        if v:
            ipaddress.ip_address(v)
        return v or None

    @field_validator("dns")
    @classmethod
    def _dns(cls, v: List[str]) -> List[str]:
        for server in v:
            ipaddress.ip_address(server)
        return v

    @property
    def ip(self) -> str:
        return str(ipaddress.ip_interface(self.address).ip)

    @property
    def resolved_gateway(self) -> str:
        if self.gateway:
            return self.gateway
        iface = ipaddress.ip_interface(self.address)
        if iface.version == 4:
            a, b, c, _ = self.ip.split(".")
            return f"{a}.{b}.{c}.1"
        return str(next(iface.network.hosts()))


class JoinSpec(_Frozen):
    """Credentials a worker needs to join an existing control plane."""

    master_address: str
    port: int = 6443
    token: str
    ca_cert_hash: str

    @field_validator("token")
    @classmethod
    def _token(cls, v: str) -> str:
        v = v.strip()
        if not _TOKEN.match(v):
            raise ValueError("token must look like 'abcdef.0123456789abcdef'")
        return v

    @field_validator("ca_cert_hash")
    @classmethod
    def _hash(cls, v: str) -> str:
        v = v.strip().lower()
        if v.startswith("sha256:"):
            v = v[len("sha256:"):]
        if not _HASH.match(v):
            raise ValueError("ca_cert_hash must be a hex sha256 digest")
        return v

    @property
    def endpoint(self) -> str:
        return f"{self.master_address}:{self.port}"


class RuntimeSpec(_Frozen):
    name: Literal["containerd"] = "containerd"
    config_path: str = "/etc/containerd/config.toml"
    systemd_cgroup: bool = True


class KubernetesSpec(_Frozen):
    version: str = "v1.30"                   # pkgs.k8s.io minor stream
    packages: List[str] = Field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])
    hold: bool = True

    @field_validator("version")
    @classmethod
    def _version(cls, v: str) -> str:
        if not re.match(r"^v\d+\.\d+$", v):
            raise ValueError("version must look like 'v1.30'")
        return v


class ModuleConfig(_Frozen):
    modules: List[str] = Field(default_factory=lambda: ["overlay", "br_netfilter"])
    sysctl: dict = Field(default_factory=lambda: {
        "net.bridge.bridge-nf-call-iptables": "1",
        "net.bridge.bridge-nf-call-ip6tables": "1",
        "net.ipv4.ip_forward": "1",
    })


class NodeConfig(_Frozen):
    """
    Immutable input of one provisioning run.
    Validated once when built; the orchestrator never mutates it.
    """

    role: Literal["master", "worker"]
    host_id: str = Field(default_factory=socket.gethostname)
    hostname: Optional[str] = None
    domain: Optional[str] = None
    pod_cidr: Optional[str] = None
    network: Optional[NetworkSpec] = None
    join: Optional[JoinSpec] = None
    runtime: RuntimeSpec = RuntimeSpec()
    kubernetes: KubernetesSpec = KubernetesSpec()
    kernel: ModuleConfig = ModuleConfig()
    prerequisites: List[str] = Field(
        default_factory=lambda: ["apt-transport-https", "ca-certificates", "curl", "gpg"]
    )
    upgrade_packages: bool = False
    cni_manifest: str = DEFAULT_CNI_MANIFEST
    kube_user: Optional[str] = None          # gets ~/.kube/config; None -> root

    @field_validator("pod_cidr")
    @classmethod
    def _pod_cidr(cls, v: Optional[str]) -> Optional[str]:
        if v:
            ipaddress.ip_network(v, strict=True)
        return v or None

    @field_validator("hostname")
    @classmethod
    def _hostname(cls, v: Optional[str]) -> Optional[str]:
        if v and not re.match(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$", v):
            raise ValueError(f"invalid hostname: {v!r}")
        return v or None

    @model_validator(mode="after")
    def _role_requirements(self) -> "NodeConfig":
        if self.role == "master" and not self.pod_cidr:
            raise ValueError("pod_cidr is required for role 'master'")
        if self.role == "worker" and self.join is None:
            raise ValueError("join (master_address, token, ca_cert_hash) is required for role 'worker'")
        return self

    @property
    def fqdn(self) -> Optional[str]:
        if not self.hostname:
            return None
        return f"{self.hostname}.{self.domain}" if self.domain else self.hostname
