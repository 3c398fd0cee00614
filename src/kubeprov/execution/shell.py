# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/execution/shell.py

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

from ..provision.errors import CommandError, ShellTimeout


@dataclass(frozen=True)
class CommandResult:
    cmd: str
    rc: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.rc == 0

    def check(self) -> "CommandResult":
        if self.rc != 0:
            raise CommandError(self.cmd, self.rc, self.stdout, self.stderr)
        return self


class Shell(Protocol):
    """Command transport to one host (local subprocess or SSH)."""

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> CommandResult: ...

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o644, sudo: bool = True) -> None: ...

    def budget(self, seconds: Optional[float]) -> contextlib.AbstractContextManager: ...


def q(s: str) -> str:
    """
    Quote for bash -lc.
    """
    return "'" + s.replace("'", "'\"'\"'") + "'"


class BudgetMixin:
    """
    Per-step time budget. While a budget is active every command gets the
    remaining time as its timeout, and an exhausted budget fails fast.
    """

    _deadline: Optional[float] = None
    _budget_s: Optional[float] = None

    @contextlib.contextmanager
    def budget(self, seconds: Optional[float]) -> Iterator[None]:
        if seconds is None:
            yield
            return
        prev = (self._deadline, self._budget_s)
        self._deadline = time.monotonic() + seconds
        self._budget_s = seconds
        try:
            yield
        finally:
            self._deadline, self._budget_s = prev

    def _effective_timeout(self, cmd: str, timeout: Optional[float]) -> Optional[float]:
        if self._deadline is None:
            return timeout
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise ShellTimeout(cmd, self._budget_s or 0)
        return remaining if timeout is None else min(timeout, remaining)

    def _timeout_error(self, cmd: str, timeout: Optional[float]) -> ShellTimeout:
        # report the step budget rather than whatever slice of it was left
        return ShellTimeout(cmd, self._budget_s if self._deadline is not None else (timeout or 0))
