# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/bootstrap/node/host.py

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import yaml

from ...config.models import ModuleConfig, RuntimeSpec
from ...execution.shell import CommandResult, Shell, q
from ...provision.errors import ShellError
from .models import (
    ADMIN_KUBECONFIG,
    KUBELET_KUBECONFIG,
    KUBERNETES_KEYRING,
    KUBERNETES_SOURCES,
    MODULES_LOAD_PATH,
    NETPLAN_PATH,
    SYSCTL_PATH,
    ControlPlaneResult,
)

log = logging.getLogger("kubeprov")

APT = "DEBIAN_FRONTEND=noninteractive apt-get"


class NodeHost:
    """
    Capabilities of one Linux (Debian/Ubuntu) host, built on a Shell.

    Mutating methods raise CommandError/ShellError when a command fails;
    probe methods never raise on a non-zero exit and answer a question
    about current host state instead. Only the executor hands this object
    to step actions; predicates get read-only probes through closures.
    """

    def __init__(self, shell: Shell):
        self.shell = shell

    # ------------------ utils ------------------

    def _sudo(self, cmd: str, timeout: Optional[float] = None) -> CommandResult:
        return self.shell.run(cmd, sudo=True, timeout=timeout, check=True)

    def _probe(self, cmd: str) -> CommandResult:
        return self.shell.run(cmd, sudo=True)

    def append_line(self, line: str, path: str) -> None:
        """
        Append a line (if not already present) to a file.
        """
        self._sudo(f"touch {path} && (grep -qxF {q(line)} {path} || echo {q(line)} >> {path})")

    # ------------------ packages ------------------

    def update_index(self) -> None:
        self._sudo(f"{APT} update -y")

    def upgrade_all(self) -> None:
        self._sudo(f"{APT} upgrade -y")

    def is_installed(self, name: str) -> bool:
        r = self._probe(f"dpkg-query -W -f='${{Status}}' {q(name)} 2>/dev/null")
        return r.ok and "install ok installed" in r.stdout

    def missing_packages(self, names: Iterable[str]) -> List[str]:
        return [n for n in names if not self.is_installed(n)]

    def ensure_installed(self, names: Iterable[str]) -> List[str]:
        """
        Install whatever is missing; returns the names that were installed.
        """
        missing = self.missing_packages(names)
        if not missing:
            return []
        self._sudo(f"{APT} install -y " + " ".join(q(n) for n in missing))
        return missing

    def hold(self, names: Iterable[str]) -> None:
        self._sudo("apt-mark hold " + " ".join(q(n) for n in names))

    def held_packages(self) -> List[str]:
        r = self._probe("apt-mark showhold")
        return r.stdout.split() if r.ok else []

    def add_kubernetes_repo(self, version: str) -> None:
        """
        Register the pkgs.k8s.io repository for one Kubernetes minor stream.
        """
        base = f"https://pkgs.k8s.io/core:/stable:/{version}/deb/"
        self._sudo("install -d -m 0755 /etc/apt/keyrings")
        self._sudo(f"curl -fsSL {base}Release.key | gpg --dearmor --yes -o {KUBERNETES_KEYRING}")
        self.shell.put_text(f"deb [signed-by={KUBERNETES_KEYRING}] {base} /\n", KUBERNETES_SOURCES)

    def kubernetes_repo_configured(self, version: str) -> bool:
        r = self._probe(f"grep -qF {q(f'/core:/stable:/{version}/deb/')} {KUBERNETES_SOURCES}")
        return r.ok

    # ------------------ swap ------------------

    def disable_swap(self) -> None:
        self._sudo("swapoff -a")
        # comment out active swap entries so the change survives a reboot
        self._sudo(r"sed -i '/\sswap\s/ s/^\([^#].*\)$/#\1/' /etc/fstab")

    def swap_active(self) -> bool:
        r = self._probe("swapon --noheadings --show")
        return bool(r.stdout.strip())

    def swap_in_fstab(self) -> bool:
        return self._probe(r"grep -Eq '^[^#].*\sswap\s' /etc/fstab").ok

    # ------------------ kernel ------------------

    def apply_module_config(self, config: ModuleConfig) -> None:
        """
        Persist kernel modules and sysctl keys, then load/apply them now.
        """
        self.shell.put_text("\n".join(config.modules) + "\n", MODULES_LOAD_PATH)
        for m in config.modules:
            self._sudo(f"modprobe {q(m)}")
        lines = [f"{k} = {v}" for k, v in config.sysctl.items()]
        self.shell.put_text("\n".join(lines) + "\n", SYSCTL_PATH)
        self._sudo("sysctl --system")

    def module_loaded(self, name: str) -> bool:
        return self._probe(f"test -d /sys/module/{q(name)}").ok

    def sysctl_value(self, key: str) -> Optional[str]:
        r = self._probe(f"sysctl -n {q(key)}")
        return r.stdout.strip() if r.ok else None

    # ------------------ container runtime ------------------

    def install_and_configure(self, spec: RuntimeSpec) -> str:
        """
        Install containerd, write its default config (systemd cgroups if
        requested) and (re)start the service. Returns the config path.
        """
        self.ensure_installed([spec.name])
        config_dir = spec.config_path.rsplit("/", 1)[0] or "/"
        self._sudo(f"install -d {config_dir}")
        self._sudo(f"containerd config default > {spec.config_path}")
        if spec.systemd_cgroup:
            self._sudo(f"sed -i 's/SystemdCgroup = false/SystemdCgroup = true/' {spec.config_path}")
        self._sudo(f"systemctl restart {spec.name}")
        self._sudo(f"systemctl enable {spec.name}")
        return spec.config_path

    def service_active(self, name: str) -> bool:
        return self._probe(f"systemctl is-active --quiet {q(name)}").ok

    def runtime_configured(self, spec: RuntimeSpec) -> bool:
        if not spec.systemd_cgroup:
            return self._probe(f"test -s {spec.config_path}").ok
        return self._probe(f"grep -q 'SystemdCgroup = true' {spec.config_path}").ok

    # ------------------ cluster ------------------

    def _kube_home(self, user: Optional[str]) -> str:
        if not user or user == "root":
            return "/root"
        r = self._sudo(f"getent passwd {q(user)} | cut -d: -f6")
        home = r.stdout.strip()
        if not home:
            raise ShellError(f"Unknown user for kubeconfig: {user}")
        return home

    def init_control_plane(
        self,
        pod_cidr: str,
        *,
        kube_user: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ControlPlaneResult:
        """
        kubeadm init (unless already initialised), copy admin.conf for the
        operator and print a fresh worker join command.
        """
        if not self.control_plane_initialised():
            log.info("Initialising control plane (pod network %s)...", pod_cidr)
            self._sudo(f"kubeadm init --pod-network-cidr={q(pod_cidr)}", timeout=timeout)
        else:
            log.info("Control plane already initialised; reusing it")

        home = self._kube_home(kube_user)
        kubeconfig = f"{home}/.kube/config"
        self._sudo(f"install -d -m 0700 {home}/.kube && cp -f {ADMIN_KUBECONFIG} {kubeconfig}")
        if kube_user and kube_user != "root":
            self._sudo(f"chown -R {q(kube_user)}: {home}/.kube")

        return ControlPlaneResult(kubeconfig=kubeconfig, join_command=self.join_command())

    def join_command(self) -> str:
        r = self._sudo("kubeadm token create --print-join-command")
        return r.stdout.strip()

    def control_plane_initialised(self) -> bool:
        return self._probe(f"test -f {ADMIN_KUBECONFIG}").ok

    def control_plane_ready(self) -> bool:
        return self._probe(f"kubectl --kubeconfig {ADMIN_KUBECONFIG} get --raw=/readyz").ok

    def apply_manifest(self, url: str, timeout: Optional[float] = None) -> None:
        self._sudo(f"kubectl --kubeconfig {ADMIN_KUBECONFIG} apply -f {q(url)}", timeout=timeout)

    def manifest_applied(self, url: str) -> bool:
        # non-zero as long as any object of the manifest is missing
        return self._probe(f"kubectl --kubeconfig {ADMIN_KUBECONFIG} get -f {q(url)} -o name").ok

    def join_as_worker(
        self,
        master_address: str,
        port: int,
        token: str,
        ca_cert_hash: str,
        timeout: Optional[float] = None,
    ) -> None:
        if not ca_cert_hash.startswith("sha256:"):
            ca_cert_hash = f"sha256:{ca_cert_hash}"
        self._sudo(
            f"kubeadm join {master_address}:{port} --token {q(token)} "
            f"--discovery-token-ca-cert-hash {ca_cert_hash}",
            timeout=timeout,
        )

    def joined(self) -> bool:
        return self._probe(f"test -f {KUBELET_KUBECONFIG}").ok

    # ------------------ network ------------------

    def default_interface(self) -> str:
        r = self._sudo("ip -o -4 route show to default")
        parts = r.stdout.split()
        if "dev" not in parts:
            raise ShellError("no default route; set network.interface explicitly")
        return parts[parts.index("dev") + 1]

    def render_netplan(self, interface: str, address: str, gateway: str, dns: List[str]) -> str:
        doc = {
            "network": {
                "version": 2,
                "renderer": "networkd",
                "ethernets": {
                    interface: {
                        "dhcp4": False,
                        "addresses": [address],
                        "routes": [{"to": "default", "via": gateway}],
                        "nameservers": {"addresses": list(dns)},
                    }
                },
            }
        }
        return yaml.safe_dump(doc, sort_keys=False)

    def apply_static_address(
        self,
        interface: Optional[str],
        address: str,
        gateway: str,
        dns: List[str],
    ) -> str:
        """
        Write /etc/netplan/99-kubernetes.yaml and `netplan apply`.
        Returns the interface that was configured.
        """
        iface = interface or self.default_interface()
        self.shell.put_text(self.render_netplan(iface, address, gateway, dns), NETPLAN_PATH, mode=0o600)
        self._sudo("netplan apply")
        return iface

    def has_address(self, interface: Optional[str], address: str) -> bool:
        iface = interface or self.default_interface()
        r = self._probe(f"ip -o addr show dev {q(iface)}")
        return r.ok and f" {address} " in f" {r.stdout} "

    # ------------------ hostname ------------------

    def set_hostname(self, hostname: str, fqdn: str, address: Optional[str] = None) -> None:
        """
        hostnamectl + an /etc/hosts entry "<address> <fqdn> <hostname>".
        An existing line for the same address is replaced, not duplicated.
        """
        self._sudo(f"hostnamectl set-hostname {q(fqdn)}")
        if not address:
            return
        entry = f"{address} {fqdn} {hostname}"
        pattern = address.replace(".", r"\.")
        if self._probe(f"grep -q '^{pattern}[[:space:]]' /etc/hosts").ok:
            self._sudo(f"sed -i 's/^{pattern}[[:space:]].*$/{entry}/' /etc/hosts")
        else:
            self.append_line(entry, "/etc/hosts")

    def current_hostname(self) -> str:
        return self._probe("hostname").stdout.strip()

    def hosts_entry_present(self, hostname: str, fqdn: str, address: str) -> bool:
        return self._probe(f"grep -qxF {q(f'{address} {fqdn} {hostname}')} /etc/hosts").ok
