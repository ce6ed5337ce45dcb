# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Sequence

from ..errors import StepFailedError, VerificationError
from ..execution.retry import call_with_retry
from ..observers.dispatcher import EventBus
from ..observers.interface import Observers
from ..observers.events import (
    new_ctx,
    now_ts,
    StepStarted,
    StepSkipped,
    StepAttempt,
    StepRetrying,
    StepSucceeded,
    StepFailed,
    CleanupStarted,
    CleanupResult,
    RunSummary,
)
from ..secrets import scrub
from .models import DONE, RunReport, Step, StepOutcome, StepStatus
from .planner import plan
from .state import RunState

log = logging.getLogger("cloudstrap")

FailurePolicy = Literal["leave", "cleanup"]


@dataclass
class RunOptions:
    on_failure: FailurePolicy = "leave"
    phase: str = "provision"
    target: Optional[str] = None


def _stamp(run_ctx: dict) -> dict:
    return {**run_ctx, "ts": now_ts()}


def _attempt(step: Step, bus: EventBus, run_ctx: dict, counter: List[int]):
    counter[0] += 1
    bus.emit(StepAttempt(name=step.name, attempt=counter[0], **_stamp(run_ctx)))
    outputs = step.action()
    if step.verify is not None and not step.verify():
        raise VerificationError(f"post-condition of '{step.name}' does not hold")
    return outputs


def _cleanup(
    ordered: Sequence[Step],
    state: RunState,
    report: RunReport,
    bus: EventBus,
    run_ctx: dict,
) -> None:
    # everything that exists, whether created by this run or a resumed one
    for step in reversed(ordered):
        if step.cleanup is None or state.status(step.name) not in DONE:
            continue
        bus.emit(CleanupStarted(name=step.name, **_stamp(run_ctx)))
        log.warning(f"Cleaning up '{step.name}'")
        try:
            step.cleanup()
            state.mark(step.name, StepStatus.CLEANED_UP)
            report.add(StepOutcome(name=step.name, status=StepStatus.CLEANED_UP))
            bus.emit(CleanupResult(name=step.name, status="CLEANED_UP", error=None, **_stamp(run_ctx)))
        except Exception as ce:
            err = scrub(str(ce))
            log.error(f"Cleanup of '{step.name}' failed: {err}")
            bus.emit(CleanupResult(name=step.name, status="FAILED", error=err, **_stamp(run_ctx)))


def run_steps(
    steps: Sequence[Step],
    state: RunState,
    *,
    options: Optional[RunOptions] = None,
    observers: Optional[Observers] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Execute steps in dependency order, strictly sequentially.

    Steps already recorded as done in `state` are skipped, as are steps whose
    check() reports the work already present. The first failing step aborts
    the run; nothing after it is executed. With on_failure="cleanup" the
    cleanup hooks of completed steps then run in reverse order.
    """
    options = options or RunOptions()
    report = RunReport()
    bus = EventBus(observers or [])
    run_ctx = new_ctx(phase=options.phase, target=options.target, run_id=state.run_id)

    ordered = plan(steps, bus=bus, run_ctx=run_ctx)
    log.debug(f"plan: {[s.name for s in ordered]}")

    for step in ordered:
        bus.emit(StepStarted(name=step.name, **_stamp(run_ctx)))

        if state.status(step.name) in DONE:
            log.info(f"[{step.name}] already completed in a previous run, skipping")
            report.add(StepOutcome(name=step.name, status=StepStatus.SKIPPED))
            bus.emit(StepSkipped(name=step.name, reason="recorded", **_stamp(run_ctx)))
            continue

        counter = [0]
        t0 = time.time()
        try:
            if step.check is not None and call_with_retry(step.check, step.retry, sleep=sleep):
                log.info(f"[{step.name}] already present, skipping")
                state.mark(step.name, StepStatus.SKIPPED)
                report.add(StepOutcome(name=step.name, status=StepStatus.SKIPPED))
                bus.emit(StepSkipped(name=step.name, reason="present", **_stamp(run_ctx)))
                continue

            log.info(f"[{step.name}] {step.description or 'running'}")

            def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
                err = scrub(str(exc))
                log.warning(f"[{step.name}] attempt {attempt} failed ({err}); retrying in {delay:.1f}s")
                bus.emit(StepRetrying(name=step.name, attempt=attempt, delay_s=delay, error=err, **_stamp(run_ctx)))

            outputs = call_with_retry(
                lambda: _attempt(step, bus, run_ctx, counter),
                step.retry,
                on_retry=_on_retry,
                sleep=sleep,
            )
        except Exception as e:
            err = scrub(str(e))
            log.error(f"[{step.name}] failed after {counter[0]} attempt(s): {err}")
            state.mark(step.name, StepStatus.FAILED, error=err, attempts=counter[0])
            report.add(StepOutcome(name=step.name, status=StepStatus.FAILED, attempts=counter[0], error=err))
            report.failed_step = step.name
            report.error = scrub(str(StepFailedError(step.name, e)))
            bus.emit(StepFailed(name=step.name, attempts=counter[0], error=err, **_stamp(run_ctx)))
            break

        duration_ms = int((time.time() - t0) * 1000)
        state.mark(step.name, StepStatus.SUCCEEDED, attempts=counter[0], outputs=outputs or None)
        report.add(StepOutcome(name=step.name, status=StepStatus.SUCCEEDED, attempts=counter[0]))
        bus.emit(StepSucceeded(name=step.name, attempts=counter[0], duration_ms=duration_ms, **_stamp(run_ctx)))

    if not report.ok:
        if options.on_failure == "cleanup":
            _cleanup(ordered, state, report, bus, run_ctx)
        else:
            log.warning("Leaving created resources in place (--on-failure leave)")

    bus.emit(RunSummary(
        succeeded=report.count(StepStatus.SUCCEEDED),
        skipped=report.count(StepStatus.SKIPPED),
        failed=report.count(StepStatus.FAILED),
        cleaned_up=report.count(StepStatus.CLEANED_UP),
        **_stamp(run_ctx),
    ))
    log.info(f"Run summary: {report.summary()}")
    return report
