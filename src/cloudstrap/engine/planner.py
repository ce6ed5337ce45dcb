# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import deque
from typing import Dict, List, Optional, Sequence, Set

from ..errors import CloudstrapError
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, now_ts
from .models import Step


class PlanError(CloudstrapError):
    pass


class UnknownDependencyError(PlanError):
    pass


class CyclicDependencyError(PlanError):
    pass


class DuplicateStepError(PlanError):
    pass


def _validate(steps: Sequence[Step]) -> None:
    seen: Set[str] = set()
    for s in steps:
        if s.name in seen:
            raise DuplicateStepError(f"Step '{s.name}' is declared twice")
        seen.add(s.name)
    for s in steps:
        for d in s.depends_on:
            if d not in seen:
                raise UnknownDependencyError(
                    f"Step '{s.name}' depends on unknown step '{d}'"
                )


def plan(
    steps: Sequence[Step],
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> List[Step]:
    """
    Stable topological sort of steps based on 'depends_on'.
    Ties keep declaration order, so a list that is already ordered
    comes back unchanged.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = dict(run_ctx or {"run_id": "-", "phase": "plan", "target": None})
    ctx["ts"] = now_ts()
    try:
        _validate(steps)

        position: Dict[str, int] = {s.name: i for i, s in enumerate(steps)}
        by_name: Dict[str, Step] = {s.name: s for s in steps}
        indeg: Dict[str, int] = {s.name: len(set(s.depends_on)) for s in steps}
        dependents: Dict[str, List[str]] = {s.name: [] for s in steps}
        for s in steps:
            for d in set(s.depends_on):
                dependents[d].append(s.name)

        queue = deque(sorted((n for n, deg in indeg.items() if deg == 0), key=position.get))
        order: List[Step] = []

        while queue:
            n = queue.popleft()
            order.append(by_name[n])
            for m in dependents[n]:
                indeg[m] -= 1
                if indeg[m] == 0:
                    queue.append(m)
            queue = deque(sorted(queue, key=position.get))  # deterministic

        if len(order) != len(steps):
            stuck = sorted(n for n, deg in indeg.items() if deg > 0)
            raise CyclicDependencyError(f"Cyclic dependency detected among steps: {', '.join(stuck)}")

        if bus:
            bus.emit(PlanComputed(order=[s.name for s in order], **ctx))
        return order

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx))
        raise
