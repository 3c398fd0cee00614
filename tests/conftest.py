import pytest

from kubeprov.execution.shell import BudgetMixin, CommandResult


class FakeShell(BudgetMixin):
    """
    In-memory Shell. `exact` answers a command verbatim, `responses` by
    substring (first match wins); anything else exits 0 with no output.
    """

    def __init__(self, responses=None, exact=None):
        self.responses = dict(responses or {})
        self.exact = dict(exact or {})
        self.commands = []
        self.sudo = []
        self.files = {}
        self.closed = False

    def run(self, cmd, *, sudo=False, timeout=None, check=False):
        self._effective_timeout(cmd, timeout)
        self.commands.append(cmd)
        self.sudo.append(sudo)
        rc, out = self.exact.get(cmd, (None, None))
        if rc is None:
            rc, out = 0, ""
            for key, resp in self.responses.items():
                if key in cmd:
                    rc, out = resp
                    break
        result = CommandResult(cmd=cmd, rc=rc, stdout=out, stderr="" if rc == 0 else "fake failure")
        return result.check() if check else result

    def put_text(self, content, remote_path, *, mode=0o644, sudo=True):
        self.files[remote_path] = content

    def close(self):
        self.closed = True


JOIN = (
    "kubeadm join 10.0.0.10:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:" + "a" * 64
)

# A host where every action works and every probe reports the desired state.
HEALTHY_NODE = {
    "dpkg-query": (0, "install ok installed"),
    "swapon --noheadings --show": (0, ""),
    "grep -Eq '^[^#].*\\sswap\\s' /etc/fstab": (1, ""),
    "sysctl -n": (0, "1\n"),
    "apt-mark showhold": (0, "kubelet\nkubeadm\nkubectl\n"),
    "test -f /etc/kubernetes/admin.conf": (1, ""),
    "kubeadm token create --print-join-command": (0, JOIN + "\n"),
}


@pytest.fixture
def fake_shell():
    def _make(responses=None, exact=None, healthy=True):
        merged = dict(responses or {})
        if healthy:
            for k, v in HEALTHY_NODE.items():
                merged.setdefault(k, v)
        return FakeShell(merged, exact)
    return _make


@pytest.fixture
def join_line():
    return JOIN
