# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/provision/executor.py

from __future__ import annotations

import logging
from typing import Any, List, Protocol

from .errors import OPERATIONAL_ERRORS
from .steps import Outcome, Step

log = logging.getLogger("kubeprov")


class ExecutorAdapter(Protocol):
    """The only seam through which host state is mutated."""

    def execute(self, step: Step, config: Any) -> Outcome: ...


def _check_call(step: Step, config: Any) -> None:
    # programming errors: raised, never turned into a failed Outcome
    if config is None:
        raise ValueError(f"Step '{step.name}': configuration is required")
    if not callable(step.action):
        raise TypeError(f"Step '{step.name}': action is not callable")


def to_outcome(step: Step, result: Any) -> Outcome:
    """Normalise what an action returned into an Outcome."""
    if isinstance(result, Outcome):
        return result
    if result is None:
        return Outcome.ok()
    if isinstance(result, dict):
        return Outcome(True, "ok", dict(result))
    raise TypeError(
        f"Step '{step.name}': action returned {type(result).__name__}, "
        "expected Outcome, dict or None"
    )


class HostExecutor:
    """
    Runs step actions against a NodeHost. The host's shell enforces the
    step's time budget; operational failures come back as failed outcomes.
    """

    def __init__(self, host):
        self.host = host

    def execute(self, step: Step, config: Any) -> Outcome:
        _check_call(step, config)
        try:
            with self.host.shell.budget(step.timeout_seconds):
                result = step.action(self.host, config)
        except OPERATIONAL_ERRORS as e:
            log.debug("step '%s' failed: %s", step.name, e)
            return Outcome.fail(str(e) or type(e).__name__)
        return to_outcome(step, result)


class NoopExecutor:
    """
    Never touches a host: every step succeeds. Records which steps it was
    asked to run, which makes it handy for tests and --dry-run.
    """

    def __init__(self, message: str = "dry run"):
        self.message = message
        self.calls: List[str] = []

    def execute(self, step: Step, config: Any) -> Outcome:
        _check_call(step, config)
        self.calls.append(step.name)
        return Outcome.ok(self.message)

