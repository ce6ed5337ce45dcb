# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..errors import ExternalCallError
from ..secrets import scrub


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self, command: str) -> "CommandResult":
        if not self.ok:
            raise ExternalCallError(scrub(command), self.returncode, scrub(self.stderr or self.stdout))
        return self


class RemoteExecutor(Protocol):
    """Runs shell scripts on the target machine."""

    target: str

    def run(self, script: str, *, sudo: bool = False, timeout: Optional[float] = None) -> CommandResult: ...

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o600) -> None: ...

    def close(self) -> None: ...
