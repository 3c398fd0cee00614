# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/cli/app.py
from __future__ import annotations

import os
import signal
import socket
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import typer

from kubeprov.bootstrap.node.host import NodeHost
from kubeprov.bootstrap.node.models import SSHTarget
from kubeprov.cli.prompts import collect_config
from kubeprov.config.loader import build_config, default_state_dir, load_config
from kubeprov.config.models import NodeConfig
from kubeprov.execution.runner import CommandRunner
from kubeprov.logging.log import default_log_dir, init_logging
from kubeprov.observers.console import ConsoleObserver
from kubeprov.observers.jsonfile import JsonFileObserver
from kubeprov.observers.logger import LoggerObserver
from kubeprov.provision.catalog import build_steps
from kubeprov.provision.errors import ConfigurationError, ProvisionError
from kubeprov.provision.executor import HostExecutor, NoopExecutor
from kubeprov.provision.orchestrator import RunOptions, RunStatus, check, run
from kubeprov.provision.planner import resolve_order
from kubeprov.report.summary import render, render_summary
from kubeprov.state.store import JsonRunStateStore, MemoryRunStateStore
from kubeprov.utils.ssh_runner import open_ssh


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Kubernetes node provisioning CLI")

EXIT_ABORTED = 1
EXIT_FATAL = 2
EXIT_CANCELLED = 130


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _fatal(err: Exception) -> None:
    typer.secho(f"Error: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(EXIT_FATAL)


def _overrides(
    role: Optional[str],
    pod_cidr: Optional[str],
    host_id: Optional[str],
) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if role:
        out["role"] = role
    if pod_cidr:
        out["pod_cidr"] = pod_cidr
    if host_id:
        out["host_id"] = host_id
    return out


def resolve_config(
    *,
    config: Optional[Path],
    interactive: bool,
    role: Optional[str] = None,
    pod_cidr: Optional[str] = None,
    host_id: Optional[str] = None,
) -> NodeConfig:
    """
    Config sources, lowest to highest priority:
    YAML file (or interactive answers) < command line flags.
    """
    overrides = _overrides(role, pod_cidr, host_id)
    if interactive:
        return build_config(collect_config(role), overrides)
    if config:
        return load_config(config, overrides)
    return build_config({}, overrides)


def _require_root() -> None:
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        raise ConfigurationError(
            "Provisioning the local host requires root. "
            "Re-run with sudo, or use --ssh-host / --dry-run."
        )


def _install_cancel_handlers(cancel: threading.Event) -> Callable[[], None]:
    """SIGINT/SIGTERM let the running step finish, then stop. Returns a restore fn."""

    def _handler(signum, _frame):
        if not cancel.is_set():
            typer.secho(
                f"\nReceived {signal.Signals(signum).name}: finishing the current step, then stopping...",
                fg=typer.colors.YELLOW,
                err=True,
            )
        cancel.set()

    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    for sig in previous:
        signal.signal(sig, _handler)

    def _restore() -> None:
        for sig, h in previous.items():
            signal.signal(sig, h)

    return _restore


def _store_for(state_dir: Optional[Path], host_id: str) -> JsonRunStateStore:
    return JsonRunStateStore(state_dir or default_state_dir(), host_id)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def apply(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Node config YAML"),
    role: Optional[str] = typer.Option(None, "--role", help="master or worker (overrides config)"),
    pod_cidr: Optional[str] = typer.Option(None, "--pod-cidr", help="Pod network CIDR for a master"),
    host_id: Optional[str] = typer.Option(None, "--host-id", help="Identity the run state is keyed by"),
    ssh_host: Optional[str] = typer.Option(None, "--ssh-host", help="Provision a remote host over SSH"),
    ssh_user: str = typer.Option("root", "--ssh-user"),
    ssh_port: int = typer.Option(22, "--ssh-port"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    ssh_password: Optional[str] = typer.Option(None, "--ssh-password"),
    state_dir: Optional[Path] = typer.Option(None, "--state-dir", help="Where run state is persisted"),
    max_attempts: int = typer.Option(3, "--max-attempts", help="Attempts per step in this run"),
    backoff: float = typer.Option(5.0, "--backoff", help="Seconds between attempts of a step"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Prompt for the configuration"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Walk the plan without touching the host"),
    events: bool = typer.Option(False, "--events", help="Print every lifecycle event"),
    no_color: bool = typer.Option(False, "--no-color"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Provision this host (or --ssh-host) as a Kubernetes master or worker."""
    logger, run_id, log_path = init_logging(verbose=debug)

    typer.echo("")
    typer.secho("kubeprov apply", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    try:
        if ssh_host and not host_id:
            host_id = ssh_host
        cfg = resolve_config(
            config=config,
            interactive=interactive,
            role=role,
            pod_cidr=pod_cidr,
            host_id=host_id,
        )
        options = RunOptions(max_attempts=max_attempts, backoff_seconds=backoff)
        if not dry_run and not ssh_host:
            _require_root()
    except ConfigurationError as e:
        _fatal(e)

    logger.debug("config: %s", cfg.model_dump())

    observers = [
        LoggerObserver(logger),
        JsonFileObserver(default_log_dir() / f"{run_id}.jsonl"),
    ]
    if events:
        observers.append(ConsoleObserver(color=not no_color))

    persisted = _store_for(state_dir, cfg.host_id)
    shell = None
    try:
        if dry_run:
            # start from what is already recorded, but never write it
            store = MemoryRunStateStore(persisted.snapshot())
            executor = NoopExecutor()
            steps = build_steps(cfg, verify=False)
        else:
            if ssh_host:
                shell = open_ssh(SSHTarget(
                    address=ssh_host,
                    username=ssh_user,
                    port=ssh_port,
                    password=ssh_password,
                    pkey_path=ssh_key,
                    become_password=ssh_password,
                ))
            else:
                shell = CommandRunner()
            host = NodeHost(shell)
            store = persisted
            executor = HostExecutor(host)
            steps = build_steps(cfg, host)
    except (ProvisionError, OSError) as e:
        _fatal(e)

    cancel = threading.Event()
    restore = _install_cancel_handlers(cancel)
    try:
        summary = run(
            steps,
            cfg,
            store,
            executor,
            options=options,
            observers=observers,
            cancel=cancel,
            run_id=run_id,
        )
    except (ProvisionError, OSError) as e:
        logger.debug("run failed before completion", exc_info=True)
        _fatal(e)
    finally:
        restore()
        if shell is not None:
            shell.close()

    typer.echo("")
    typer.echo(render_summary(summary, color=not no_color))

    if summary.status is RunStatus.CANCELLED:
        raise typer.Exit(EXIT_CANCELLED)
    if summary.status is RunStatus.ABORTED:
        raise typer.Exit(EXIT_ABORTED)


@app.command()
def plan(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Node config YAML"),
    role: Optional[str] = typer.Option(None, "--role"),
    pod_cidr: Optional[str] = typer.Option(None, "--pod-cidr"),
):
    """Show the step order for a configuration and which steps would be skipped."""
    try:
        cfg = resolve_config(config=config, interactive=False, role=role, pod_cidr=pod_cidr)
        steps = build_steps(cfg, verify=False)
        order = resolve_order(steps)
    except ProvisionError as e:
        _fatal(e)

    by_name = {s.name: s for s in steps}
    typer.secho(f"Plan for {cfg.host_id} ({cfg.role})", bold=True)
    for i, name in enumerate(order, 1):
        step = by_name[name]
        ok, _ = check(step.precondition, cfg)
        deps = f"  after: {', '.join(step.depends_on)}" if step.depends_on else ""
        mark = "" if ok else "  [skip: precondition not met]"
        typer.echo(f"{i:>2}. {name:<26} {step.description}{deps}{mark}")


@app.command()
def status(
    host_id: Optional[str] = typer.Option(None, "--host-id", help="Defaults to this machine's hostname"),
    state_dir: Optional[Path] = typer.Option(None, "--state-dir"),
    no_color: bool = typer.Option(False, "--no-color"),
):
    """Print the recorded step statuses. Safe while a run is in progress."""
    host_id = host_id or socket.gethostname()
    store = _store_for(state_dir, host_id)
    try:
        records = store.snapshot()
    except (ProvisionError, OSError) as e:
        _fatal(e)

    if not records:
        typer.echo(f"No provisioning state recorded for {host_id} ({store.path})")
        return
    typer.echo(render(records, title=f"Provisioning Status ({host_id})", color=not no_color))


@app.command()
def reset(
    host_id: Optional[str] = typer.Option(None, "--host-id", help="Defaults to this machine's hostname"),
    state_dir: Optional[Path] = typer.Option(None, "--state-dir"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Forget the recorded state so the next apply starts from scratch."""
    host_id = host_id or socket.gethostname()
    store = _store_for(state_dir, host_id)
    if not yes and not typer.confirm(f"Delete recorded state for {host_id}?", default=False):
        raise typer.Exit(EXIT_ABORTED)
    try:
        removed = store.reset()
    except (ProvisionError, OSError) as e:
        _fatal(e)
    typer.echo(f"Removed {store.path}" if removed else f"No state recorded for {host_id}")


if __name__ == "__main__":
    app()
