# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/engine/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..config.models import RetryPolicy


class StepStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    CLEANED_UP = "CLEANED_UP"


DONE = (StepStatus.SUCCEEDED, StepStatus.SKIPPED)

NO_RETRY = RetryPolicy(attempts=1)


@dataclass
class Step:
    """
    One named unit of work.

    action  -- does the work; may return outputs to persist in the run state
    check   -- True when the work is already done (check-before-act)
    verify  -- post-condition, False fails the step
    cleanup -- best-effort undo used by the cleanup-on-failure policy
    """
    name: str
    action: Callable[[], Optional[Dict[str, str]]]
    depends_on: List[str] = field(default_factory=list)
    check: Optional[Callable[[], bool]] = None
    verify: Optional[Callable[[], bool]] = None
    cleanup: Optional[Callable[[], None]] = None
    retry: RetryPolicy = field(default_factory=lambda: NO_RETRY)
    description: str = ""


@dataclass
class StepOutcome:
    name: str
    status: StepStatus
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class RunReport:
    outcomes: List[StepOutcome] = field(default_factory=list)
    error: Optional[str] = None
    failed_step: Optional[str] = None

    def add(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def ok(self) -> bool:
        return self.failed_step is None and self.error is None

    def count(self, status: StepStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def summary(self) -> str:
        return (
            f"SUCCEEDED={self.count(StepStatus.SUCCEEDED)} "
            f"SKIPPED={self.count(StepStatus.SKIPPED)} "
            f"FAILED={self.count(StepStatus.FAILED)} "
            f"CLEANED_UP={self.count(StepStatus.CLEANED_UP)}"
        )
