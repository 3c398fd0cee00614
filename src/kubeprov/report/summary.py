# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/report/summary.py

from __future__ import annotations

from typing import Iterable, List

import typer

from ..state.models import RunRecord, StepStatus

_COLORS = {
    StepStatus.SUCCEEDED: typer.colors.GREEN,
    StepStatus.FAILED: typer.colors.RED,
    StepStatus.SKIPPED: typer.colors.YELLOW,
    StepStatus.RUNNING: typer.colors.CYAN,
}

_RUN_COLORS = {
    "completed": typer.colors.GREEN,
    "aborted": typer.colors.RED,
    "cancelled": typer.colors.YELLOW,
}


def _paint(text: str, fg, color: bool) -> str:
    return typer.style(text, fg=fg) if color and fg else text


def render(records: Iterable[RunRecord], *, title: str = "Provisioning Summary", color: bool = False) -> str:
    """
    Render step statuses as text. Pure: reads records, returns a string.

    Failed and skipped steps carry their last diagnostic so a reader can
    tell what broke without opening the logs.
    """
    records = list(records)
    width = max([len(r.step_name) for r in records] + [4])
    lines: List[str] = [title, "=" * len(title)]

    if not records:
        lines.append("  (no steps recorded)")

    counts = {s: 0 for s in StepStatus}
    for r in records:
        counts[r.status] += 1
        status = _paint(f"{r.status.value:<9}", _COLORS.get(r.status), color)
        line = f"  {r.step_name:<{width}}  {status}  attempts={r.attempts}"
        if r.last_error and r.status in (StepStatus.FAILED, StepStatus.SKIPPED):
            label = "error" if r.status is StepStatus.FAILED else "reason"
            line += f"  {label}: {r.last_error}"
        lines.append(line)

    lines.append("")
    lines.append(" ".join(f"{s.value}={counts[s]}" for s in StepStatus))
    return "\n".join(lines)


def render_summary(summary, *, color: bool = False) -> str:
    """Report for a finished run: step table, overall status, join details."""
    out = [render(summary.records, title=f"Provisioning Summary ({summary.host_id})", color=color)]
    status = summary.status.value
    out.append("Run status: " + _paint(status, _RUN_COLORS.get(status), color))
    for f in summary.failures:
        out.append(f"  ! {f}")
    if summary.kubeconfig:
        out.append(f"Kubeconfig: {summary.kubeconfig}")
    if summary.join_command:
        out.append("Join workers with:")
        out.append(f"  {summary.join_command}")
    return "\n".join(out)
