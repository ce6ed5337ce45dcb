# src/cloudstrap/engine/state.py
from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigError
from ..naming import NamingContext
from ..observers.events import now_ts
from .models import StepStatus


def default_state_dir() -> Path:
    return Path.home() / ".cloudstrap" / "state"


class StepRecord(BaseModel):
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    outputs: Dict[str, str] = Field(default_factory=dict)


class RunState(BaseModel):
    """
    Per-step outcomes of one provisioning run, persisted as JSON after every
    transition so an interrupted run can be resumed with --resume.
    """

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    naming: Optional[Dict[str, Any]] = None
    steps: Dict[str, StepRecord] = Field(default_factory=dict)
    artifacts: List[str] = Field(default_factory=list)
    path: Optional[Path] = Field(default=None, exclude=True)

    @classmethod
    def for_naming(cls, naming: NamingContext, state_dir: Optional[Path] = None) -> "RunState":
        base = state_dir or default_state_dir()
        return cls(naming=naming.dict(), path=base / f"{naming.run_name}.json")

    @classmethod
    def load(cls, path: str | Path) -> "RunState":
        p = Path(path)
        try:
            state = cls.model_validate_json(p.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"Cannot read state file {p}: {exc.strerror or exc}") from exc
        except ValidationError as exc:
            raise ConfigError(f"State file {p} is not a cloudstrap run state") from exc
        state.path = p
        return state

    def naming_context(self) -> NamingContext:
        if not self.naming:
            raise ConfigError(f"State file {self.path} carries no naming context; it cannot be resumed")
        try:
            return NamingContext(**self.naming)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"State file {self.path} has a malformed naming context: {exc}") from exc

    def step(self, name: str) -> StepRecord:
        return self.steps.setdefault(name, StepRecord())

    def status(self, name: str) -> StepStatus:
        rec = self.steps.get(name)
        return rec.status if rec else StepStatus.PENDING

    def outputs(self, name: str) -> Dict[str, str]:
        rec = self.steps.get(name)
        return dict(rec.outputs) if rec else {}

    def mark(self, name: str, status: StepStatus, *, error: Optional[str] = None,
             attempts: Optional[int] = None, outputs: Optional[Dict[str, str]] = None) -> None:
        rec = self.step(name)
        if rec.started_at is None or status == StepStatus.PENDING:
            rec.started_at = now_ts()
        rec.status = status
        rec.error = error
        if attempts is not None:
            rec.attempts = attempts
        if outputs:
            rec.outputs.update(outputs)
        if status != StepStatus.PENDING:
            rec.finished_at = now_ts()
        self.save()

    def add_artifact(self, artifact: str) -> None:
        if artifact not in self.artifacts:
            self.artifacts.append(artifact)
            self.save()

    def remove_artifact(self, artifact: str) -> None:
        if artifact in self.artifacts:
            self.artifacts.remove(artifact)
            self.save()

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
