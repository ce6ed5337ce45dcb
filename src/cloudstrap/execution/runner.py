# src/cloudstrap/execution/runner.py
from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from ..errors import ExternalCallError
from ..secrets import scrub

log = logging.getLogger("cloudstrap")


@dataclass
class CommandRunner:
    """
    Runs local commands with logging. Every external CLI call (az, git,
    ssh-keygen, installers on the local machine) goes through here.
    """

    label: Optional[str] = None
    timeout: Optional[float] = None

    def run(
        self,
        cmd: Sequence[str],
        *,
        check: bool = True,
        input: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        label = self.label or (cmd[0] if cmd else "cmd")
        cmd_str = scrub(" ".join(shlex.quote(str(c)) for c in cmd))

        log.debug(f"[{label}] $ {cmd_str}")

        start = time.time()
        try:
            result = subprocess.run(
                [str(c) for c in cmd],
                capture_output=True,
                text=True,
                check=False,
                input=input,
                env=env,
                cwd=cwd,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ExternalCallError(cmd_str, 127, str(exc), retriable=False) from exc
        except subprocess.TimeoutExpired as exc:
            raise ExternalCallError(cmd_str, -1, f"timed out after {self.timeout}s", retriable=True) from exc

        duration = time.time() - start
        if result.stdout:
            log.debug(f"[{label}][stdout]\n{result.stdout.rstrip()}")
        if result.stderr:
            log.debug(f"[{label}][stderr]\n{result.stderr.rstrip()}")
        log.debug(f"[{label}][exit {result.returncode}] ({duration:.2f}s)")

        if check and result.returncode != 0:
            raise ExternalCallError(cmd_str, result.returncode, scrub(result.stderr or result.stdout or ""))
        return result
