# src/cloudstrap/remote/azure_run_command.py
from __future__ import annotations

import logging
from typing import Optional

from ..cloud.interface import CloudProvider
from ..errors import CloudstrapError
from .interface import CommandResult

log = logging.getLogger("cloudstrap")


class AzureRunCommandExecutor:
    """
    RemoteExecutor over `az vm run-command invoke`. Works before SSH is
    reachable; scripts run as root, so `sudo` is implied.
    """

    def __init__(self, cloud: CloudProvider, group: str, vm: str):
        self.cloud = cloud
        self.group = group
        self.vm = vm
        self.target = vm

    def run(self, script: str, *, sudo: bool = False, timeout: Optional[float] = None) -> CommandResult:
        return self.cloud.run_shell(self.group, self.vm, script)

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o600) -> None:
        # the script body is visible in the VM's run-command history
        raise CloudstrapError("run-command cannot transfer file content privately; use the SSH channel")

    def close(self) -> None:
        pass
