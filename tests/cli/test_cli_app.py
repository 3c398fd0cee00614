import json

import pytest
from typer.testing import CliRunner

from kubeprov.cli import app as cli_app
from kubeprov.cli.app import EXIT_ABORTED, EXIT_FATAL, app

runner = CliRunner()

MASTER = ["--role", "master", "--pod-cidr", "10.244.0.0/16", "--host-id", "node-1"]


@pytest.fixture(autouse=True)
def _home(tmp_path, monkeypatch):
    # run logs and event files land under ~/.kubeprov/logs
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr("os.geteuid", lambda: 0)


@pytest.fixture
def local_shell(monkeypatch, fake_shell):
    """Replace the local command runner so nothing touches this machine."""
    def install(**kw):
        shell = fake_shell(**kw)
        monkeypatch.setattr(cli_app, "CommandRunner", lambda: shell)
        return shell

    return install


def test_plan_shows_order_and_skips():
    result = runner.invoke(app, ["plan", *MASTER[:4]])
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].endswith("(master)")
    assert lines[1].lstrip().startswith("1. install_prereqs")
    assert "init_control_plane" in lines[8] and "after: install_prereqs" in lines[8]
    assert "[skip: precondition not met]" in lines[10]  # join_cluster
    assert "[skip: precondition not met]" in lines[6]   # configure_network, no static address


def test_plan_with_invalid_config_exits_fatal():
    result = runner.invoke(app, ["plan", "--role", "worker"])
    assert result.exit_code == EXIT_FATAL
    assert "Error:" in result.output and "join" in result.output


def test_plan_from_config_file(tmp_path):
    f = tmp_path / "node.yaml"
    f.write_text("role: master\npod_cidr: 10.244.0.0/16\nhostname: cp-1\nnetwork:\n  address: 10.0.0.5/24\n")
    result = runner.invoke(app, ["plan", "-c", str(f)])
    assert result.exit_code == 0, result.output
    assert "configure_network" in result.output
    assert result.output.count("[skip: precondition not met]") == 1


def test_apply_refuses_local_run_without_root(monkeypatch, state_dir):
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    result = runner.invoke(app, ["apply", *MASTER, "--state-dir", str(state_dir)])
    assert result.exit_code == EXIT_FATAL
    assert "requires root" in result.output
    assert not state_dir.exists()


def test_dry_run_leaves_no_state(monkeypatch, state_dir):
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    result = runner.invoke(app, ["apply", *MASTER, "--state-dir", str(state_dir), "--dry-run", "--no-color"])
    assert result.exit_code == 0, result.output
    assert "Run status: completed" in result.output
    assert "join_cluster" in result.output
    assert not state_dir.exists()


def test_interactive_dry_run(monkeypatch, state_dir):
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    # no static IP, keep hostname, default pod CIDR
    result = runner.invoke(
        app,
        ["apply", "-i", "--role", "master", "--host-id", "node-9", "--state-dir", str(state_dir),
         "--dry-run", "--no-color"],
        input="n\n\n\n",
    )
    assert result.exit_code == 0, result.output
    assert "Provisioning Summary (node-9)" in result.output


def test_apply_master_persists_state_and_prints_join(as_root, local_shell, state_dir, join_line, tmp_path):
    shell = local_shell()
    result = runner.invoke(
        app, ["apply", *MASTER, "--state-dir", str(state_dir), "--backoff", "0", "--no-color"]
    )
    assert result.exit_code == 0, result.output
    assert "Run status: completed" in result.output
    assert "Join workers with:" in result.output and join_line in result.output
    assert shell.closed

    doc = json.loads((state_dir / "node-1.json").read_text())
    assert doc["records"]["init_control_plane"]["status"] == "succeeded"
    assert doc["records"]["join_cluster"]["status"] == "skipped"

    events = list((tmp_path / "home" / ".kubeprov" / "logs").glob("*.jsonl"))
    assert len(events) == 1
    types = [json.loads(x)["type"] for x in events[0].read_text().splitlines()]
    assert types[:2] == ["PlanComputed", "RunStarted"] and types[-1] == "RunFinished"

    # second apply has nothing left to do
    again = local_shell()
    result = runner.invoke(app, ["apply", *MASTER, "--state-dir", str(state_dir), "--no-color"])
    assert result.exit_code == 0, result.output
    assert again.commands == []


def test_apply_aborts_when_a_step_fails(as_root, local_shell, state_dir):
    local_shell(responses={"swapon --noheadings --show": (0, "/swap.img file 2G 0B -2\n")})
    result = runner.invoke(
        app,
        ["apply", *MASTER, "--state-dir", str(state_dir), "--max-attempts", "1", "--backoff", "0", "--no-color"],
    )
    assert result.exit_code == EXIT_ABORTED
    assert "Run status: aborted" in result.output
    assert "step 'disable_swap' failed after 1 attempt(s): postcondition not met" in result.output


def test_apply_rejects_bad_options(as_root, local_shell, state_dir):
    local_shell()
    result = runner.invoke(app, ["apply", *MASTER, "--state-dir", str(state_dir), "--max-attempts", "0"])
    assert result.exit_code == EXIT_FATAL
    assert "max_attempts" in result.output


def test_status_and_reset(as_root, local_shell, state_dir):
    result = runner.invoke(app, ["status", "--host-id", "node-1", "--state-dir", str(state_dir)])
    assert result.exit_code == 0
    assert "No provisioning state recorded for node-1" in result.output

    local_shell()
    runner.invoke(app, ["apply", *MASTER, "--state-dir", str(state_dir), "--backoff", "0"])

    result = runner.invoke(app, ["status", "--host-id", "node-1", "--state-dir", str(state_dir), "--no-color"])
    assert result.exit_code == 0
    assert result.output.startswith("Provisioning Status (node-1)")
    assert "pending=0 running=0 succeeded=7 failed=0 skipped=3" in result.output

    result = runner.invoke(app, ["reset", "--host-id", "node-1", "--state-dir", str(state_dir), "--yes"])
    assert result.exit_code == 0
    assert "Removed" in result.output
    assert not (state_dir / "node-1.json").exists()

    result = runner.invoke(app, ["reset", "--host-id", "node-1", "--state-dir", str(state_dir), "-y"])
    assert "No state recorded for node-1" in result.output


def test_reset_asks_for_confirmation(state_dir):
    result = runner.invoke(app, ["reset", "--host-id", "node-1", "--state-dir", str(state_dir)], input="n\n")
    assert result.exit_code == EXIT_ABORTED
