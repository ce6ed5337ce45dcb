# src/cloudstrap/preconditions.py
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Sequence

from .errors import MissingPrerequisiteError
from .remote.interface import RemoteExecutor
from .remote.ssh import quote

log = logging.getLogger("cloudstrap")


@dataclass
class PreconditionReport:
    missing_env: List[str] = field(default_factory=list)
    missing_tools: List[str] = field(default_factory=list)
    missing_remote_tools: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.missing_env or self.missing_tools or self.missing_remote_tools)

    @property
    def missing(self) -> List[str]:
        return (
            [f"env:{v}" for v in self.missing_env]
            + [f"tool:{t}" for t in self.missing_tools]
            + [f"remote-tool:{t}" for t in self.missing_remote_tools]
        )

    def raise_for_missing(self) -> None:
        if not self.ok:
            raise MissingPrerequisiteError(self.missing)


def check_preconditions(
    env_vars: Sequence[str],
    tools: Sequence[str],
    *,
    environ: Optional[Mapping[str, str]] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> PreconditionReport:
    """
    Check every required environment variable and executable and collect all
    violations. An empty variable counts as missing. Never raises; call
    raise_for_missing() to abort.
    """
    env = os.environ if environ is None else environ
    report = PreconditionReport()

    for var in env_vars:
        if env.get(var):
            log.info(f"${var} has a value")
        else:
            log.error(f"The environment variable {var} must be set. Set it with {var}=\"your value\"")
            report.missing_env.append(var)

    for tool in tools:
        if which(tool):
            log.info(f"{tool} is installed")
        else:
            log.error(f"{tool} could not be found. cloudstrap requires {tool}")
            report.missing_tools.append(tool)

    return report


def remote_tools_script(tools: Sequence[str]) -> str:
    """Shell loop that prints the name of every tool missing on the target, one per line."""
    names = " ".join(quote(t) for t in tools)
    return f'for t in {names}; do command -v "$t" >/dev/null 2>&1 || echo "$t"; done'


def check_remote_tools(executor: RemoteExecutor, tools: Sequence[str]) -> PreconditionReport:
    """
    Check the target machine for the tools the install steps rely on, in one
    round trip. Every missing tool is reported, not just the first.
    """
    report = PreconditionReport()
    if not tools:
        return report
    out = executor.run(remote_tools_script(tools)).check("remote tool check").stdout
    found_missing = {line.strip() for line in out.splitlines() if line.strip()}
    for tool in tools:
        if tool in found_missing:
            log.error(f"{tool} could not be found on {executor.target}")
            report.missing_remote_tools.append(tool)
        else:
            log.debug(f"{tool} is installed on {executor.target}")
    return report
