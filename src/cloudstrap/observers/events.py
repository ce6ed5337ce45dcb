# src/cloudstrap/observers/events.py

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
    ts: str                 # ISO timestamp
    run_id: str             # correlates all events in a single invocation
    phase: str              # provision/bootstrap/cleanup
    target: Optional[str]   # VM name or SSH host

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(phase: str, target: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": now_ts(),
        "run_id": run_id or str(uuid.uuid4()),
        "phase": phase,
        "target": target,
    }


# ---------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PreconditionsChecked(BaseEvent):
    ok: bool
    missing: List[str]


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
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    name: str

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    name: str
    reason: str

@dataclass(frozen=True)
class StepAttempt(BaseEvent):
    name: str
    attempt: int

@dataclass(frozen=True)
class StepRetrying(BaseEvent):
    name: str
    attempt: int
    delay_s: float
    error: str

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    name: str
    attempts: int
    duration_ms: int

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    name: str
    attempts: int
    error: str


# ---------------------------------------------------------------------
# Cleanup & Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class CleanupStarted(BaseEvent):
    name: str

@dataclass(frozen=True)
class CleanupResult(BaseEvent):
    name: str
    status: str       # "CLEANED_UP" | "FAILED"
    error: Optional[str] = None

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    succeeded: int
    skipped: int
    failed: int
    cleaned_up: int
