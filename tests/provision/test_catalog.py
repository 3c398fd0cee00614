import pytest
import yaml

from kubeprov.bootstrap.node.host import NodeHost
from kubeprov.config.models import NodeConfig
from kubeprov.provision.catalog import BASE_STEPS, build_steps
from kubeprov.provision.executor import HostExecutor, NoopExecutor
from kubeprov.provision.orchestrator import RunOptions, RunStatus, run
from kubeprov.provision.planner import resolve_order
from kubeprov.state.models import StepStatus
from kubeprov.state.store import MemoryRunStateStore

TOKEN = "abcdef.0123456789abcdef"
HASH = "b" * 64


def _master(**kw):
    return NodeConfig(role="master", pod_cidr="192.168.0.0/16", host_id="node-1", **kw)


def _worker(**kw):
    return NodeConfig(
        role="worker",
        host_id="node-2",
        join={"master_address": "10.0.0.10", "token": TOKEN, "ca_cert_hash": f"sha256:{HASH}"},
        **kw,
    )


def _apply(cfg, shell, max_attempts=1):
    host = NodeHost(shell)
    return run(build_steps(cfg, host), cfg, MemoryRunStateStore(), HostExecutor(host),
               options=RunOptions(max_attempts=max_attempts))


def test_catalog_order_is_stable():
    order = resolve_order(build_steps(_master(), verify=False))
    assert order == [
        "install_prereqs",
        "disable_swap",
        "configure_sysctl",
        "install_container_runtime",
        "install_cluster_tools",
        "configure_network",
        "set_hostname",
        "init_control_plane",
        "install_pod_network",
        "join_cluster",
    ]


def test_control_plane_waits_for_base_steps():
    steps = {s.name: s for s in build_steps(_master(), verify=False)}
    assert set(steps["init_control_plane"].depends_on) == set(BASE_STEPS)
    assert set(steps["join_cluster"].depends_on) == set(BASE_STEPS)
    assert steps["install_pod_network"].depends_on == ("init_control_plane",)


def test_verify_needs_a_host():
    with pytest.raises(ValueError):
        build_steps(_master())


def test_dry_run_for_worker_skips_master_steps():
    cfg = _worker()
    ex = NoopExecutor()
    summary = run(build_steps(cfg, verify=False), cfg, MemoryRunStateStore(), ex)
    st = {r.step_name: r.status for r in summary.records}
    assert st["join_cluster"] is StepStatus.SUCCEEDED
    assert st["init_control_plane"] is StepStatus.SKIPPED
    assert st["install_pod_network"] is StepStatus.SKIPPED
    assert st["configure_network"] is StepStatus.SKIPPED
    assert "init_control_plane" not in ex.calls
    assert summary.status is RunStatus.COMPLETED


def test_master_end_to_end_against_fake_host(fake_shell, join_line):
    shell = fake_shell()
    summary = _apply(_master(), shell)

    assert summary.status is RunStatus.COMPLETED, [(r.step_name, r.last_error) for r in summary.records]
    assert summary.join_command == join_line
    assert summary.kubeconfig == "/root/.kube/config"
    assert "kubeadm init --pod-network-cidr='192.168.0.0/16'" in shell.commands
    assert "swapoff -a" in shell.commands
    assert any(c.startswith("kubectl --kubeconfig /etc/kubernetes/admin.conf apply -f") for c in shell.commands)
    assert "apt-mark hold 'kubelet' 'kubeadm' 'kubectl'" in shell.commands
    assert "/core:/stable:/v1.30/deb/" in shell.files["/etc/apt/sources.list.d/kubernetes.list"]
    assert shell.files["/etc/modules-load.d/k8s.conf"] == "overlay\nbr_netfilter\n"
    assert "net.ipv4.ip_forward = 1" in shell.files["/etc/sysctl.d/k8s.conf"]
    assert summary.record("join_cluster").status is StepStatus.SKIPPED


def test_worker_join_normalises_ca_hash(fake_shell):
    shell = fake_shell()
    summary = _apply(_worker(), shell)
    assert summary.status is RunStatus.COMPLETED
    join = [c for c in shell.commands if c.startswith("kubeadm join")]
    assert join == [
        f"kubeadm join 10.0.0.10:6443 --token '{TOKEN}' --discovery-token-ca-cert-hash sha256:{HASH}"
    ]
    assert not any(c.startswith("kubeadm init") for c in shell.commands)


def test_postcondition_catches_silent_failure(fake_shell):
    # swapoff "succeeds" but swap is still on
    shell = fake_shell({"swapon --noheadings --show": (0, "/swap.img file 2G 0B -2\n")})
    summary = _apply(_master(), shell, max_attempts=2)
    rec = summary.record("disable_swap")
    assert rec.status is StepStatus.FAILED
    assert rec.attempts == 2
    assert rec.last_error == "postcondition not met"
    assert summary.record("init_control_plane").last_error == "dependency 'disable_swap' failed"
    # independent branches still ran
    assert summary.record("install_cluster_tools").status is StepStatus.SUCCEEDED
    assert summary.status is RunStatus.ABORTED


def test_network_and_hostname_steps(fake_shell):
    cfg = _master(
        hostname="k8s-master",
        domain="lab.local",
        network={"address": "192.168.1.10/24"},
    )
    shell = fake_shell(
        {
            "ip -o -4 route show to default": (0, "default via 192.168.1.1 dev ens18 proto static\n"),
            "ip -o addr show dev": (0, "2: ens18    inet 192.168.1.10/24 brd 192.168.1.255 scope global ens18\n"),
            r"grep -q '^192\.168\.1\.10[[:space:]]' /etc/hosts": (1, ""),
        },
        exact={"hostname": (0, "k8s-master.lab.local\n")},
    )
    summary = _apply(cfg, shell)

    assert summary.record("configure_network").status is StepStatus.SUCCEEDED
    assert summary.record("configure_network").data["interface"] == "ens18"
    netplan = yaml.safe_load(shell.files["/etc/netplan/99-kubernetes.yaml"])
    eth = netplan["network"]["ethernets"]["ens18"]
    assert eth["addresses"] == ["192.168.1.10/24"]
    assert eth["routes"] == [{"to": "default", "via": "192.168.1.1"}]
    assert eth["nameservers"]["addresses"] == ["1.1.1.1", "8.8.8.8"]

    assert summary.record("set_hostname").status is StepStatus.SUCCEEDED
    assert "hostnamectl set-hostname 'k8s-master.lab.local'" in shell.commands
    assert any("192.168.1.10 k8s-master.lab.local k8s-master" in c and ">> /etc/hosts" in c for c in shell.commands)
