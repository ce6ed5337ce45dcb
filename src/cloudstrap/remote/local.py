# src/cloudstrap/remote/local.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from ..execution.runner import CommandRunner
from .interface import CommandResult


class LocalExecutor:
    """RemoteExecutor for running the bootstrap on the machine itself."""

    target = "localhost"

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner(label="local")

    def run(self, script: str, *, sudo: bool = False, timeout: Optional[float] = None) -> CommandResult:
        cmd = ["sudo", "-H", "-E", "bash", "-lc", script] if sudo else ["bash", "-lc", script]
        cp = self.runner.run(cmd, check=False)
        return CommandResult(returncode=cp.returncode, stdout=cp.stdout or "", stderr=cp.stderr or "")

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o600) -> None:
        path = Path(os.path.expanduser(remote_path))
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(path, mode)

    def close(self) -> None:
        pass
