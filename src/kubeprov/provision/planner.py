# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import heapq
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from .errors import CycleError, DuplicateStepError, UnknownDependencyError
from .steps import Step

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx, stamp


def _index_steps(steps: Iterable[Step]) -> Dict[str, Step]:
    by_name: Dict[str, Step] = {}
    for s in steps:
        if s.name in by_name:
            raise DuplicateStepError(f"Duplicate step name: '{s.name}'")
        by_name[s.name] = s
    return by_name


def _validate_dependencies(by_name: Dict[str, Step]) -> None:
    for s in by_name.values():
        for d in s.depends_on:
            if d not in by_name:
                raise UnknownDependencyError(
                    f"Step '{s.name}' depends on unknown step '{d}'"
                )


def _dependents(by_name: Dict[str, Step]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {n: [] for n in by_name}
    for s in by_name.values():
        for d in dict.fromkeys(s.depends_on):
            out[d].append(s.name)
    return out


def resolve_order(
    steps: Iterable[Step],
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> List[str]:
    """
    Stable topological sort of steps based on 'depends_on'.
    Among steps whose dependencies are satisfied, declaration order wins,
    so identical input always yields identical output.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(host="-", role=None)
    try:
        by_name = _index_steps(steps)
        _validate_dependencies(by_name)

        position = {name: i for i, name in enumerate(by_name)}
        indeg: Dict[str, int] = {n: len(set(s.depends_on)) for n, s in by_name.items()}
        dependents = _dependents(by_name)

        ready = [(position[n], n) for n, deg in indeg.items() if deg == 0]
        heapq.heapify(ready)
        order: List[str] = []

        while ready:
            _, n = heapq.heappop(ready)
            order.append(n)
            for m in dependents[n]:
                indeg[m] -= 1
                if indeg[m] == 0:
                    heapq.heappush(ready, (position[m], m))

        if len(order) != len(by_name):
            raise CycleError([n for n in by_name if indeg[n] > 0])

        if bus:
            bus.emit(PlanComputed(order=list(order), **stamp(ctx)))
        return order

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **stamp(ctx)))
        raise


def dependents_of(steps: Iterable[Step], name: str) -> List[str]:
    """Transitive dependents of `name`, in declaration order."""
    by_name = _index_steps(steps)
    if name not in by_name:
        raise UnknownDependencyError(f"Unknown step '{name}'")
    direct = _dependents({n: s for n, s in by_name.items() if all(d in by_name for d in s.depends_on)})

    seen: Set[str] = set()
    queue = deque(direct.get(name, []))
    while queue:
        n = queue.popleft()
        if n in seen:
            continue
        seen.add(n)
        queue.extend(direct.get(n, []))
    seen.discard(name)
    return [n for n in by_name if n in seen]
