# src/cloudstrap/bootstrap/bootstrapper.py
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Union

from ..config.models import BootstrapConfig, RetryPolicy
from ..engine.executor import RunOptions, run_steps
from ..engine.models import RunReport, Step
from ..engine.state import RunState
from ..execution.retry import call_with_retry
from ..observers.interface import Observers
from ..preconditions import check_remote_tools
from ..remote.interface import CommandResult, RemoteExecutor
from .steps import Command, InstallStep, default_install_steps, select

log = logging.getLogger("cloudstrap")

ExecutorLike = Union[RemoteExecutor, Callable[[], RemoteExecutor]]

PREFLIGHT = "preflight"


class Bootstrapper:
    """
    Runs the install steps on a target machine through a RemoteExecutor.

    The executor may be passed as a zero-argument callable so the provisioner
    can hand over its SSH channel before the VM address is known.
    """

    def __init__(
        self,
        executor: ExecutorLike,
        config: Optional[BootstrapConfig] = None,
        *,
        retry: Optional[RetryPolicy] = None,
        install_steps: Optional[List[InstallStep]] = None,
    ):
        self._executor = executor
        self.config = config or BootstrapConfig()
        self.retry = retry or RetryPolicy()
        self.install_steps = select(
            install_steps if install_steps is not None else default_install_steps(self.config),
            self.config.only,
        )

    @property
    def remote(self) -> RemoteExecutor:
        ex = self._executor
        if callable(ex) and not hasattr(ex, "run"):
            ex = ex()
        return ex

    # ------------------ step compilation ------------------

    def _run(self, step: InstallStep, cmd: Command) -> CommandResult:
        label = f"{step.name}: {cmd.script.splitlines()[0][:80]}"

        def _once() -> CommandResult:
            return self.remote.run(cmd.script, sudo=cmd.sudo).check(label)

        if not cmd.fetch:
            return _once()
        return call_with_retry(
            _once,
            self.retry,
            on_retry=lambda a, e, d: log.warning(f"[{step.name}] fetch attempt {a} failed ({e}); retrying in {d:.1f}s"),
        )

    def _predicate(self, script: str) -> bool:
        return self.remote.run(script).ok

    def _action(self, step: InstallStep):
        def _do():
            if step.remove:
                log.info(f"[{step.name}] removing previously installed versions...")
                for cmd in step.remove:
                    self._run(step, cmd)
            log.info(f"[{step.name}] installing {step.version or ''}".rstrip())
            for cmd in step.install:
                self._run(step, cmd)
            return {"version": step.version} if step.version else None
        return _do

    def compile(self, step: InstallStep) -> Step:
        return Step(
            name=step.name,
            description=f"install {step.name}" + (f" {step.version}" if step.version else ""),
            depends_on=list(step.depends_on),
            action=self._action(step),
            check=(lambda s=step.present: self._predicate(s)) if step.present else None,
            verify=(lambda s=step.verify: self._predicate(s)) if step.verify else None,
        )

    def preflight(self) -> Step:
        """Fails with every missing remote tool before anything is removed or installed."""

        def _check():
            check_remote_tools(self.remote, self.config.remote_tools).raise_for_missing()

        return Step(
            name=PREFLIGHT,
            description="check the target for " + ", ".join(self.config.remote_tools),
            action=_check,
        )

    def steps(self, after: Optional[str] = None) -> List[Step]:
        """
        Engine steps for the selected install routines, behind the remote
        preflight. With `after`, every step also waits for that (external) step.
        """
        compiled = [self.compile(s) for s in self.install_steps]
        if self.config.remote_tools:
            for s in compiled:
                s.depends_on = [PREFLIGHT] + s.depends_on
            compiled = [self.preflight()] + compiled
        if after:
            for s in compiled:
                s.depends_on = [after] + s.depends_on
        return compiled

    def run(
        self,
        state: Optional[RunState] = None,
        *,
        observers: Optional[Observers] = None,
        options: Optional[RunOptions] = None,
    ) -> RunReport:
        state = state or RunState()
        options = options or RunOptions(phase="bootstrap", target=getattr(self._executor, "target", None))
        return run_steps(self.steps(), state, options=options, observers=observers)
