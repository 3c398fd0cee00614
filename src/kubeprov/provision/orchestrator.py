# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/provision/orchestrator.py

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import (
    OPERATIONAL_ERRORS,
    ConfigurationError,
    InterruptedRunError,
    ProvisionError,
    StepFailure,
)
from .executor import ExecutorAdapter
from .planner import resolve_order
from .steps import Outcome, Predicate, Step
from ..config.loader import build_config
from ..state.models import RunRecord, StepStatus, can_transition
from ..state.store import RunStateStore

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    stamp,
    RunStarted,
    RunCancelled,
    RunFinished,
    StepInterrupted,
    StepStarted,
    StepAlreadySucceeded,
    StepAttempt,
    StepSucceeded,
    StepAttemptFailed,
    StepFailed,
    StepSkipped,
)

log = logging.getLogger("kubeprov")

PRECONDITION_NOT_MET = "precondition not met"


@dataclass
class RunOptions:
    max_attempts: int = 3          # attempts per step within one invocation
    backoff_seconds: float = 0.0   # sleep between attempts of the same step

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ConfigurationError("backoff_seconds cannot be negative")


class RunStatus(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class RunSummary:
    status: RunStatus
    records: List[RunRecord]                  # plan order
    run_id: str
    host_id: str
    failures: List[StepFailure] = field(default_factory=list)
    recovered: List[InterruptedRunError] = field(default_factory=list)
    join_command: Optional[str] = None
    kubeconfig: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def record(self, name: str) -> Optional[RunRecord]:
        for r in self.records:
            if r.step_name == name:
                return r
        return None

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in StepStatus}
        for r in self.records:
            out[r.status.value] += 1
        return out


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _transition(rec: RunRecord, dst: StepStatus, **changes: Any) -> RunRecord:
    if not can_transition(rec.status, dst):
        raise ProvisionError(
            f"Illegal transition for step '{rec.step_name}': {rec.status.value} -> {dst.value}"
        )
    return rec.copy(status=dst, **changes)


def _validate_config(config: Any) -> Any:
    if config is None:
        raise ConfigurationError("A configuration is required to start a run")
    if isinstance(config, Mapping):
        return build_config(dict(config))
    return config


def check(predicate: Predicate, config: Any) -> Tuple[bool, str]:
    """
    Evaluate a pre/postcondition. A predicate that hits an operational
    error (probe command failed, host unreachable) counts as false.
    """
    try:
        return bool(predicate(config)), ""
    except OPERATIONAL_ERRORS as e:
        return False, str(e) or type(e).__name__


def _evaluate(step: Step, config: Any, outcome: Outcome) -> Tuple[bool, str]:
    post_ok, post_err = check(step.postcondition, config)
    post_msg = "postcondition not met" + (f": {post_err}" if post_err else "")
    if not outcome.succeeded:
        diag = outcome.message or "action failed"
        return False, diag if post_ok else f"{diag}; {post_msg}"
    if not post_ok:
        return False, post_msg
    return True, ""


def _first_blocker(step: Step, records: Dict[str, RunRecord]) -> Optional[RunRecord]:
    for dep in step.depends_on:
        if records[dep].status is not StepStatus.SUCCEEDED:
            return records[dep]
    return None


def run(
    steps: Iterable[Step],
    config: Any,
    store: RunStateStore,
    executor: ExecutorAdapter,
    options: Optional[RunOptions] = None,
    observers: Optional[List] = None,
    cancel: Optional[threading.Event] = None,
    run_id: Optional[str] = None,
) -> RunSummary:
    """
    Apply steps to one host in dependency order.

    Fatal problems (configuration, step graph, state store) raise before
    any step runs. Step failures never raise: a failed step only blocks its
    own dependents, which are recorded as skipped, while independent
    branches keep going. Already succeeded steps are never re-executed.
    """
    options = options or RunOptions()
    steps = list(steps)
    config = _validate_config(config)

    host_id = getattr(config, "host_id", None) or getattr(store, "host_id", None) or "-"
    bus = EventBus(observers or [])
    ctx = new_ctx(host=host_id, role=getattr(config, "role", None), run_id=run_id)

    order = resolve_order(steps, bus=bus, run_ctx=ctx)
    by_name = {s.name: s for s in steps}

    with store.lock():
        recovered = store.recover_interrupted()
        for err in recovered:
            bus.emit(StepInterrupted(name=err.step, attempts=err.attempts, **stamp(ctx)))

        # stored: what is durable right now; records: this invocation's view
        stored: Dict[str, Optional[RunRecord]] = {n: store.get(n) for n in order}
        records: Dict[str, RunRecord] = {}
        for n in order:
            rec = stored[n]
            if rec is None:
                rec = RunRecord(step_name=n)
                store.put(rec)
                stored[n] = rec
            elif rec.status is StepStatus.SKIPPED:
                # the reason for skipping may be gone; decide again
                rec = rec.copy(status=StepStatus.PENDING)
            records[n] = rec

        bus.emit(RunStarted(steps=len(order), max_attempts=options.max_attempts, **stamp(ctx)))

        def save(rec: RunRecord) -> RunRecord:
            store.put(rec)
            stored[rec.step_name] = rec
            records[rec.step_name] = rec
            return rec

        def skip(rec: RunRecord, reason: str) -> None:
            prev = stored[rec.step_name]
            if prev is not None and prev.status is StepStatus.SKIPPED and prev.last_error == reason:
                # unchanged since the last invocation: leave the record alone
                records[rec.step_name] = prev
            else:
                save(_transition(rec, StepStatus.SKIPPED, last_error=reason, finished_at=_now()))
            bus.emit(StepSkipped(name=rec.step_name, reason=reason, **stamp(ctx)))

        failures: List[StepFailure] = []
        cancelled = False

        for idx, name in enumerate(order):
            if cancel is not None and cancel.is_set():
                cancelled = True
                for n in order[idx:]:
                    # not reached: report what the store holds
                    records[n] = stored[n]
                bus.emit(RunCancelled(pending=order[idx:], **stamp(ctx)))
                log.info("Run cancelled; %d step(s) not started", len(order) - idx)
                break

            step = by_name[name]
            rec = records[name]

            if rec.status is StepStatus.SUCCEEDED:
                bus.emit(StepAlreadySucceeded(name=name, **stamp(ctx)))
                continue

            blocker = _first_blocker(step, records)
            if blocker is not None:
                skip(rec, f"dependency '{blocker.step_name}' {blocker.status.value}")
                continue

            pre_ok, pre_err = check(step.precondition, config)
            if not pre_ok:
                skip(rec, PRECONDITION_NOT_MET + (f": {pre_err}" if pre_err else ""))
                continue

            bus.emit(StepStarted(name=name, description=step.description, **stamp(ctx)))
            t0 = time.time()
            diag = ""
            for attempt in range(1, options.max_attempts + 1):
                rec = save(_transition(
                    rec,
                    StepStatus.RUNNING,
                    attempts=rec.attempts + 1,
                    last_error=None,
                    started_at=_now(),
                    finished_at=None,
                ))
                bus.emit(StepAttempt(name=name, attempt=rec.attempts, **stamp(ctx)))

                outcome = executor.execute(step, config)
                ok, diag = _evaluate(step, config, outcome)
                if ok:
                    rec = save(_transition(
                        rec,
                        StepStatus.SUCCEEDED,
                        finished_at=_now(),
                        data={**rec.data, **outcome.data},
                    ))
                    bus.emit(StepSucceeded(
                        name=name,
                        attempts=rec.attempts,
                        duration_ms=int((time.time() - t0) * 1000),
                        **stamp(ctx),
                    ))
                    break

                rec = save(_transition(rec, StepStatus.FAILED, last_error=diag, finished_at=_now()))
                bus.emit(StepAttemptFailed(name=name, attempt=rec.attempts, error=diag, **stamp(ctx)))

                if cancel is not None and cancel.is_set():
                    # no further attempts once cancelled; the next invocation retries
                    cancelled = True
                    break
                if attempt < options.max_attempts and options.backoff_seconds:
                    time.sleep(options.backoff_seconds)

            if rec.status is StepStatus.FAILED:
                failures.append(StepFailure(name, diag, rec.attempts))
                bus.emit(StepFailed(name=name, attempts=rec.attempts, error=diag, **stamp(ctx)))

        final = [records[n] for n in order]

    if cancelled:
        status = RunStatus.CANCELLED
    elif failures:
        status = RunStatus.ABORTED
    else:
        status = RunStatus.COMPLETED

    summary = RunSummary(
        status=status,
        records=final,
        run_id=ctx["run_id"],
        host_id=host_id,
        failures=failures,
        recovered=recovered,
        join_command=_find_data(final, "join_command"),
        kubeconfig=_find_data(final, "kubeconfig"),
    )
    c = summary.counts()
    bus.emit(RunFinished(
        status=status.value,
        succeeded=c["succeeded"],
        failed=c["failed"],
        skipped=c["skipped"],
        pending=c["pending"],
        **stamp(ctx),
    ))
    return summary


def _find_data(records: List[RunRecord], key: str) -> Optional[str]:
    for r in records:
        if r.status is StepStatus.SUCCEEDED and r.data.get(key):
            return r.data[key]
    return None
