# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeprov/observers/console.py
import typer

from .events import BaseEvent, StepFailed, StepSkipped, StepSucceeded

_COLORS = {
    StepSucceeded: typer.colors.GREEN,
    StepFailed: typer.colors.RED,
    StepSkipped: typer.colors.YELLOW,
}


class ConsoleObserver:
    def __init__(self, color: bool = True):
        self.color = color

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        line = (
            f"[{d['ts']}] {k} host={d['host']} data={{"
            + ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "host", "role"))
            + "}"
        )
        fg = _COLORS.get(type(event)) if self.color else None
        typer.echo(typer.style(line, fg=fg) if fg else line)
