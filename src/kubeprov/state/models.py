# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/state/models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class StepStatus(str, Enum):
    """Per-step status stored in a RunRecord."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)


# Allowed forward transitions; failed -> running is the retry edge.
_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING, StepStatus.SKIPPED},
    StepStatus.RUNNING: {StepStatus.SUCCEEDED, StepStatus.FAILED},
    StepStatus.FAILED: {StepStatus.RUNNING, StepStatus.SKIPPED},
    StepStatus.SUCCEEDED: set(),
    StepStatus.SKIPPED: set(),
}


def can_transition(src: StepStatus, dst: StepStatus) -> bool:
    return dst in _TRANSITIONS[src]


@dataclass
class RunRecord:
    """Persisted status entry for one step."""
    step_name: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    started_at: Optional[str] = None   # ISO format
    finished_at: Optional[str] = None  # ISO format
    data: Dict[str, Any] = field(default_factory=dict)

    def copy(self, **changes: Any) -> "RunRecord":
        changes.setdefault("data", dict(self.data))
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_name": self.step_name,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        return cls(
            step_name=data["step_name"],
            status=StepStatus(data.get("status", "pending")),
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            data=dict(data.get("data") or {}),
        )
