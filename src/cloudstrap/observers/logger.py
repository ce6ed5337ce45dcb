# src/cloudstrap/observers/logger.py
from __future__ import annotations

import logging

from ..secrets import scrub
from .events import BaseEvent

# carried by every event; the log line prefix already shows phase and target
_CONTEXT = ("ts", "run_id", "phase", "target")


class LoggerObserver:
    """
    Mirrors lifecycle events into the run log at DEBUG, one line per event:

        [provision:demo1-vm-1] StepFailed name=vm, attempts=1, error=...

    Console output stays at the executor's own INFO lines; the log file gets
    the full event trail.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        where = d["phase"] if not d["target"] else f"{d['phase']}:{d['target']}"
        fields = ", ".join(f"{k}={v}" for k, v in d.items() if k not in _CONTEXT and v not in (None, [], ""))
        self.logger.debug(scrub(f"[{where}] {event.__class__.__name__} {fields}".rstrip()))
