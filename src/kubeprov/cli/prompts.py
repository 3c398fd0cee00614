# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/cli/prompts.py
from __future__ import annotations

from typing import Any, Dict, Optional

import typer
from pydantic import ValidationError

from ..config.models import DEFAULT_DNS, NetworkSpec

DEFAULT_POD_CIDR = "192.168.0.0/16"


def _ask(text: str, default: Optional[str] = None, hide_input: bool = False) -> Optional[str]:
    value = typer.prompt(text, default=default if default is not None else "", show_default=bool(default), hide_input=hide_input)
    value = value.strip()
    return value or None


def _ask_network() -> Optional[Dict[str, Any]]:
    if not typer.confirm("Configure a static IP address for this node?", default=False):
        return None

    while True:
        address = _ask("Static IP address with prefix (e.g. 192.168.1.10/24)")
        try:
            spec = NetworkSpec(address=address or "")
            break
        except ValidationError:
            typer.secho("  Not a valid address in CIDR notation, try again.", fg=typer.colors.RED)

    # gateway defaults to the first address of the subnet, like x.y.z.1
    gateway = _ask("Gateway IP address", default=spec.resolved_gateway)
    dns = _ask("DNS servers (comma separated)", default=",".join(DEFAULT_DNS)) or ""
    interface = _ask("Network interface (empty = interface of the default route)")

    return {
        "interface": interface,
        "address": address,
        "gateway": gateway,
        "dns": [d.strip() for d in dns.split(",") if d.strip()],
    }


def collect_config(role: Optional[str] = None) -> Dict[str, Any]:
    """
    Ask the operator for everything a NodeConfig needs.
    Returns raw data; validation happens in build_config.
    """
    while role not in ("master", "worker"):
        role = (_ask("Node role (master/worker)") or "").lower()

    data: Dict[str, Any] = {"role": role}

    network = _ask_network()
    if network:
        data["network"] = network

    hostname = _ask("Hostname for this machine (e.g. k8s-master, empty = keep current)")
    if hostname:
        data["hostname"] = hostname
        domain = _ask("Domain name (optional, FQDN becomes <hostname>.<domain>)")
        if domain:
            data["domain"] = domain

    if role == "master":
        data["pod_cidr"] = _ask("Pod network CIDR", default=DEFAULT_POD_CIDR)
    else:
        data["join"] = {
            "master_address": _ask("Control plane address"),
            "token": _ask("Join token", hide_input=True),
            "ca_cert_hash": _ask("CA certificate hash (sha256:...)"),
        }

    return data
