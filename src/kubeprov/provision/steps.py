# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/provision/steps.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

# Predicates look at configuration (and, through closures, at host probes).
Predicate = Callable[[Any], bool]
# Actions receive the mutating host handle from the executor and the config.
Action = Callable[[Any, Any], Any]


def always(_config: Any) -> bool:
    return True


def never(_config: Any) -> bool:
    return False


@dataclass(frozen=True)
class Outcome:
    """
    Result of one executor invocation.
    `data` carries JSON-safe outputs (join command, kubeconfig path, ...).
    """
    succeeded: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "ok", **data: Any) -> "Outcome":
        return cls(True, message, dict(data))

    @classmethod
    def fail(cls, message: str, **data: Any) -> "Outcome":
        return cls(False, message, dict(data))


@dataclass(frozen=True)
class Step:
    """
    A named, idempotent unit of provisioning work.

    - depends_on: steps that must have succeeded before this one may run
    - precondition: false -> the step is recorded as skipped, never executed
    - action: only ever invoked through an executor adapter
    - postcondition: decides success independently of the action's own signal
    - timeout_seconds: budget handed to the executor, which enforces it
    """
    name: str
    action: Action
    depends_on: Tuple[str, ...] = ()
    precondition: Predicate = always
    postcondition: Predicate = always
    description: str = ""
    timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name or not isinstance(self.name, str):
            raise ValueError(f"Step name must be a non-empty string, got {self.name!r}")
        # accept any iterable of names but store an immutable tuple
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"Step '{self.name}' timeout must be positive")
