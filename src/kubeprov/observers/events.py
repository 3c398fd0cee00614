# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single provisioning run
    host: str         # host identity the run targets
    role: Optional[str]  # master / worker

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(host: str, role: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": utcnow(),
        "run_id": run_id or str(uuid.uuid4()),
        "host": host,
        "role": role,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context, fresh timestamp."""
    return {**ctx, "ts": utcnow()}


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    steps: int
    max_attempts: int

@dataclass(frozen=True)
class StepInterrupted(BaseEvent):
    name: str
    attempts: int

@dataclass(frozen=True)
class RunCancelled(BaseEvent):
    pending: List[str]

@dataclass(frozen=True)
class RunFinished(BaseEvent):
    status: str       # "completed" | "aborted" | "cancelled"
    succeeded: int
    failed: int
    skipped: int
    pending: int


# ---------------------------------------------------------------------
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    name: str
    description: str

@dataclass(frozen=True)
class StepAlreadySucceeded(BaseEvent):
    name: str

@dataclass(frozen=True)
class StepAttempt(BaseEvent):
    name: str
    attempt: int

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    name: str
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class StepAttemptFailed(BaseEvent):
    name: str
    attempt: int
    error: str

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    name: str
    attempts: int
    error: str

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    name: str
    reason: str
