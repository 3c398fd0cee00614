# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/provision/errors.py
from __future__ import annotations

from typing import Optional, Sequence


class ProvisionError(RuntimeError):
    """Base class for provisioning failures."""


class ConfigurationError(ProvisionError):
    """Invalid or missing configuration. Raised before any step runs."""


class UnknownDependencyError(ProvisionError, ValueError):
    pass


class CycleError(ProvisionError, ValueError):
    def __init__(self, stuck: Sequence[str]):
        self.stuck = list(stuck)
        super().__init__(
            f"Cyclic dependency detected among steps: {', '.join(self.stuck)}"
        )


class DuplicateStepError(ProvisionError, ValueError):
    pass


class StepFailure(ProvisionError):
    """
    A step's executor outcome or postcondition failed.
    Contained to the step's dependency subtree, never fatal for the run.
    """

    def __init__(self, step: str, message: str, attempts: int = 0):
        self.step = step
        self.message = message
        self.attempts = attempts
        super().__init__(f"step '{step}' failed after {attempts} attempt(s): {message}")


class InterruptedRunError(StepFailure):
    """A step was left 'running' by a process that did not finish it."""

    def __init__(self, step: str, attempts: int = 0):
        super().__init__(step, "interrupted", attempts)


class StoreError(ProvisionError):
    pass


class StoreLockedError(StoreError):
    def __init__(self, host_id: str, lock_path: Optional[str] = None):
        self.host_id = host_id
        self.lock_path = lock_path
        super().__init__(
            f"Another provisioning run holds the lock for host '{host_id}'"
            + (f" ({lock_path})" if lock_path else "")
        )


# ---------------------------------------------------------------------
# Shell / host errors (operational, reported as failed outcomes)
# ---------------------------------------------------------------------
class ShellError(ProvisionError):
    """The command transport itself failed (SSH dropped, binary missing)."""


class CommandError(ShellError):
    def __init__(self, cmd: str, rc: int, stdout: str = "", stderr: str = ""):
        self.cmd = cmd
        self.rc = rc
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        super().__init__(f"command failed (rc={rc}): {cmd}" + (f": {tail}" if tail else ""))


class ShellTimeout(ShellError):
    def __init__(self, cmd: str, timeout: float):
        self.cmd = cmd
        self.timeout = timeout
        super().__init__(f"timed out after {timeout:g}s: {cmd}")


# Failures an executor reports as Outcome(succeeded=False) instead of raising.
OPERATIONAL_ERRORS = (ShellError, OSError, TimeoutError)
