import socket
import stat
import types

import paramiko
import pytest

from kubeprov.execution.runner import CommandRunner
from kubeprov.execution.shell import q
from kubeprov.provision.errors import CommandError, ShellError, ShellTimeout
from kubeprov.utils import ssh_runner
from kubeprov.utils.ssh_runner import SSHRunner, open_ssh
from kubeprov.bootstrap.node.models import SSHTarget


# ----------------- local runner -----------------

def test_quote_survives_single_quotes():
    assert q("echo 'hi'") == "'echo '\"'\"'hi'\"'\"''"


def test_command_runner_captures_output_and_exit_code():
    r = CommandRunner()
    res = r.run("echo hello")
    assert res.ok and "hello" in res.stdout
    assert r.run("exit 3").rc == 3
    with pytest.raises(CommandError) as ei:
        r.run("exit 4", check=True)
    assert ei.value.rc == 4


def test_command_runner_budget_times_out():
    r = CommandRunner()
    with r.budget(0.2):
        with pytest.raises(ShellTimeout) as ei:
            r.run("sleep 5")
    assert str(ei.value).startswith("timed out after 0.2s")


def test_command_runner_put_text_is_atomic(tmp_path):
    target = tmp_path / "etc" / "k8s.conf"
    CommandRunner().put_text("a = 1\n", str(target), mode=0o600)
    assert target.read_text() == "a = 1\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert [p.name for p in target.parent.iterdir()] == ["k8s.conf"]


def test_sudo_prefix_only_when_not_root(monkeypatch):
    r = CommandRunner()
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    assert r._argv("id", sudo=True)[:3] == ["sudo", "-n", "-E"]
    assert r._argv("id", sudo=False) == ["bash", "-lc", "id"]
    monkeypatch.setattr("os.geteuid", lambda: 0)
    assert r._argv("id", sudo=True) == ["bash", "-lc", "id"]


# ----------------- Fakes for Paramiko -----------------

class _FakeChannel:
    def __init__(self, rc=0): self._rc = rc
    def recv_exit_status(self): return self._rc


class _Buf:
    def __init__(self, s="", exc=None):
        self._s = s
        self._exc = exc
    def read(self):
        if self._exc:
            raise self._exc
        return self._s.encode()


class _FakeFile:
    def __init__(self, log, path):
        self.log, self.path, self._buf = log, path, []
    def write(self, data): self._buf.append(data)
    def __enter__(self): return self
    def __exit__(self, *exc): self.log.append(("sftp_write", self.path, "".join(self._buf)))


class FakeSFTP:
    def __init__(self, log): self.log = log
    def file(self, path, mode): return _FakeFile(self.log, path)
    def close(self): self.log.append(("sftp_close",))


class FakeSSHClient:
    remaining_failures = 0

    def __init__(self, log, responses=None):
        self.log = log
        self.responses = responses or {}
        self.written = []
    def set_missing_host_key_policy(self, policy): pass
    def connect(self, **kw):
        self.log.append(("connect", kw["hostname"]))
        if FakeSSHClient.remaining_failures > 0:
            FakeSSHClient.remaining_failures -= 1
            raise paramiko.SSHException("Error reading SSH protocol banner")
    def open_sftp(self): return FakeSFTP(self.log)
    def exec_command(self, cmd, timeout=None):
        self.log.append(("exec", cmd, timeout))
        resp = self.responses.get(cmd, ("", "", 0))
        if isinstance(resp, BaseException):
            stdout, stderr, rc = _Buf(exc=resp), _Buf(), 0
        else:
            stdout, stderr, rc = _Buf(resp[0]), _Buf(resp[1]), resp[2]
        stdout.channel = _FakeChannel(rc)
        stdin = types.SimpleNamespace(write=self.written.append, flush=lambda: None)
        return stdin, stdout, stderr
    def close(self): self.log.append(("close",))


@pytest.fixture(autouse=True)
def _reset_connect_failures():
    yield
    FakeSSHClient.remaining_failures = 0


# ----------------- SSH runner -----------------

def test_ssh_run_wraps_sudo_and_feeds_password():
    log = []
    client = FakeSSHClient(log, {"sudo -S -p '' bash -lc 'whoami'": ("root\n", "", 0)})
    r = SSHRunner(client, label="n1", become_password="pw")
    res = r.run("whoami", sudo=True, timeout=30)
    assert res.stdout == "root\n" and res.ok
    assert client.written == ["pw\n"]
    assert ("exec", "sudo -S -p '' bash -lc 'whoami'", 30) in log


def test_ssh_run_nonzero_exit_and_check():
    client = FakeSSHClient([], {"bash -lc 'false'": ("", "nope\n", 1)})
    r = SSHRunner(client)
    assert r.run("false").rc == 1
    with pytest.raises(CommandError) as ei:
        r.run("false", check=True)
    assert "nope" in str(ei.value)


def test_ssh_socket_timeout_is_shell_timeout():
    client = FakeSSHClient([], {"bash -lc 'kubeadm init'": socket.timeout("timed out")})
    r = SSHRunner(client)
    with r.budget(600):
        with pytest.raises(ShellTimeout) as ei:
            r.run("kubeadm init")
    assert ei.value.timeout == 600


def test_ssh_protocol_error_is_shell_error():
    client = FakeSSHClient([], {"bash -lc 'ls'": paramiko.SSHException("channel closed")})
    with pytest.raises(ShellError):
        SSHRunner(client).run("ls")


def test_ssh_put_text_uploads_then_installs():
    log = []
    r = SSHRunner(FakeSSHClient(log))
    r.put_text("network: {}\n", "/etc/netplan/99-kubernetes.yaml", mode=0o600)
    writes = [e for e in log if e[0] == "sftp_write"]
    assert len(writes) == 1 and writes[0][2] == "network: {}\n"
    tmp = writes[0][1]
    install = [e[1] for e in log if e[0] == "exec"][-1]
    assert install.startswith("sudo -S -p '' bash -lc ")
    assert f"install -m 600 {tmp} /etc/netplan/99-kubernetes.yaml" in install


def test_open_ssh_retries_until_banner(monkeypatch):
    log = []
    FakeSSHClient.remaining_failures = 2
    monkeypatch.setattr(ssh_runner.paramiko, "SSHClient", lambda: FakeSSHClient(log))
    monkeypatch.setattr(ssh_runner.time, "sleep", lambda s: None)
    runner = open_ssh(SSHTarget(address="10.0.0.11", username="ubuntu"), attempts=3)
    assert isinstance(runner, SSHRunner)
    assert runner.label == "10.0.0.11"
    assert [e for e in log if e[0] == "connect"] == [("connect", "10.0.0.11")] * 3


def test_open_ssh_gives_up(monkeypatch):
    FakeSSHClient.remaining_failures = 5
    monkeypatch.setattr(ssh_runner.paramiko, "SSHClient", lambda: FakeSSHClient([]))
    monkeypatch.setattr(ssh_runner.time, "sleep", lambda s: None)
    with pytest.raises(ShellError) as ei:
        open_ssh(SSHTarget(address="10.0.0.12"), attempts=2)
    assert "after 2 attempts" in str(ei.value)


def test_uploads_use_distinct_temp_names():
    log = []
    r = SSHRunner(FakeSSHClient(log))
    r.put_text("a\n", "/etc/a.conf")
    r.put_text("b\n", "/b.conf")
    tmps = [e[1] for e in log if e[0] == "sftp_write"]
    assert len(set(tmps)) == 2
    assert ssh_runner.posix_dirname("/etc/a.conf") == "/etc"
    assert ssh_runner.posix_dirname("/b.conf") == "/"
