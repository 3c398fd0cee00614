# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/utils/ssh_runner.py

from __future__ import annotations

import itertools
import logging
import os
import socket
import time
from typing import Optional

import paramiko

from ..bootstrap.node.models import SSHTarget
from ..execution.shell import BudgetMixin, CommandResult, q
from ..provision.errors import ShellError

log = logging.getLogger("kubeprov")

# unique temp names for uploads
_counter = itertools.count(1)


def posix_dirname(path: str) -> str:
    head = path.rsplit("/", 1)[0]
    return head or "/"


def _load_pkey(path: str):
    for key_cls in (
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(path)
        except paramiko.SSHException:
            continue
    raise ShellError(f"Unsupported private key format for {path}")


def open_ssh(
    target: SSHTarget,
    *,
    connect_timeout: float = 20.0,
    attempts: int = 3,
    delay: float = 5.0,
) -> "SSHRunner":
    """
    Connect with a few retries; freshly booted nodes may not accept SSH yet.
    """
    pkey = _load_pkey(str(target.pkey_path)) if target.pkey_path else None

    for attempt in range(1, attempts + 1):
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=target.address,
                port=target.port,
                username=target.username,
                password=target.password if not pkey else None,
                pkey=pkey,
                timeout=connect_timeout,
                allow_agent=pkey is None,
                look_for_keys=pkey is None,
            )
            return SSHRunner(client, label=target.address, become_password=target.become_password)
        except (paramiko.SSHException, OSError) as e:
            client.close()
            if attempt == attempts:
                raise ShellError(
                    f"Failed to SSH into {target.address} as '{target.username}' "
                    f"after {attempts} attempts: {e}"
                ) from e
            log.info(
                "[%s] SSH not ready (attempt %d/%d, %s: %s), retrying in %.0fs...",
                target.address, attempt, attempts, type(e).__name__, e, delay,
            )
            time.sleep(delay)
    raise ShellError(f"Failed to SSH into {target.address}")


class SSHRunner(BudgetMixin):
    def __init__(self, client: paramiko.SSHClient, label: str = "ssh", become_password: Optional[str] = None):
        self.client = client
        self.label = label
        self.become_password = become_password

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> CommandResult:
        """
        Run a shell command. If sudo=True, feed the become password to sudo -S.
        """
        eff_timeout = self._effective_timeout(cmd, timeout)
        final = f"sudo -S -p '' bash -lc {q(cmd)}" if sudo else f"bash -lc {q(cmd)}"
        log.debug(f"[{self.label}] $ {cmd}")

        start = time.time()
        try:
            stdin, stdout, stderr = self.client.exec_command(final, timeout=eff_timeout)
            if sudo and self.become_password:
                stdin.write(self.become_password + "\n")
            stdin.flush()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            rc = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            raise self._timeout_error(cmd, eff_timeout) from e
        except paramiko.SSHException as e:
            raise ShellError(f"[{self.label}] SSH failure running {cmd!r}: {e}") from e

        if out:
            log.debug(f"[{self.label}][stdout]\n{out.rstrip()}")
        if err:
            log.debug(f"[{self.label}][stderr]\n{err.rstrip()}")
        log.debug(f"[{self.label}][exit {rc}] ({time.time() - start:.2f}s)")

        result = CommandResult(cmd=cmd, rc=rc, stdout=out, stderr=err)
        return result.check() if check else result

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644, sudo: bool = True) -> None:
        """
        Upload content to a temp path then move with sudo to final destination to preserve root-owned targets.
        """
        tmp_remote = f"/tmp/.kubeprov_tmp_{os.getpid()}_{next(_counter)}"
        try:
            sftp = self.client.open_sftp()
            try:
                with sftp.file(tmp_remote, "w") as f:
                    f.write(content)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise ShellError(f"[{self.label}] upload to {remote_path} failed: {e}") from e

        parent = posix_dirname(remote_path)
        self.run(
            f"install -d {parent} && install -m {oct(mode)[2:]} {tmp_remote} {remote_path} ; rm -f {tmp_remote}",
            sudo=sudo,
            check=True,
        )

    def close(self) -> None:
        self.client.close()

