# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Optional

from ..provision.errors import ShellError
from .shell import BudgetMixin, CommandResult

log = logging.getLogger("kubeprov")


class CommandRunner(BudgetMixin):
    """
    Runs commands on the local machine through bash.
    Non-zero exits are returned, not raised, unless check=True.
    """

    def __init__(self, label: Optional[str] = None, env: Optional[dict] = None):
        self.label = label or "local"
        self.env = env

    def _argv(self, cmd: str, sudo: bool) -> list[str]:
        argv = ["bash", "-lc", cmd]
        if sudo and hasattr(os, "geteuid") and os.geteuid() != 0:
            argv = ["sudo", "-n", "-E"] + argv
        return argv

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> CommandResult:
        label = self.label
        eff_timeout = self._effective_timeout(cmd, timeout)

        # --- Log command ---
        log.debug(f"[{label}] $ {cmd}")

        start = time.time()
        try:
            proc = subprocess.run(
                self._argv(cmd, sudo),
                capture_output=True,
                text=True,
                env={**os.environ, **self.env} if self.env else None,
                timeout=eff_timeout,
            )
        except subprocess.TimeoutExpired as e:
            log.debug(f"[{label}][timeout] {cmd}")
            raise self._timeout_error(cmd, eff_timeout) from e
        except FileNotFoundError as e:
            raise ShellError(f"[{label}] cannot execute {cmd!r}: {e}") from e

        duration = time.time() - start

        # --- Log outputs ---
        if proc.stdout:
            log.debug(f"[{label}][stdout]\n{proc.stdout.rstrip()}")
        if proc.stderr:
            log.debug(f"[{label}][stderr]\n{proc.stderr.rstrip()}")
        log.debug(f"[{label}][exit {proc.returncode}] ({duration:.2f}s)")

        result = CommandResult(cmd=cmd, rc=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
        return result.check() if check else result

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644, sudo: bool = True) -> None:
        path = Path(remote_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.kubeprov.{os.getpid()}")
        tmp.write_text(content, encoding="utf-8")
        os.chmod(tmp, mode)
        os.replace(tmp, path)
        log.debug(f"[{self.label}] wrote {remote_path} ({len(content)} bytes)")

    def close(self) -> None:
        pass
