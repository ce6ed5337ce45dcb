# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/cloud/azure.py
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from ..errors import ExternalCallError
from ..execution.runner import CommandRunner
from ..remote.interface import CommandResult

log = logging.getLogger("cloudstrap")

_NOT_FOUND = re.compile(r"ResourceNotFound|ResourceGroupNotFound|was not found|could not be found", re.IGNORECASE)
_RC_MARKER = "__CLOUDSTRAP_RC="
_RC_RE = re.compile(re.escape(_RC_MARKER) + r"(\d+)")


def parse_run_command_output(raw: str) -> CommandResult:
    """
    Turn `az vm run-command invoke` JSON into a CommandResult.

    The platform reports stdout/stderr inside a single message string; the
    exit status is recovered from the marker appended by AzureCli.run_shell.
    """
    data = json.loads(raw or "{}")
    values = data.get("value") or []
    message = "\n".join(v.get("message", "") for v in values)
    failed = any("failed" in (v.get("code") or "").lower() for v in values)

    stdout, stderr = message, ""
    if "[stdout]" in message:
        after = message.split("[stdout]", 1)[1]
        stdout, _, stderr = after.partition("[stderr]")
    stdout = stdout.strip("\n")
    stderr = stderr.strip("\n")

    m = _RC_RE.search(stdout)
    if m:
        rc = int(m.group(1))
        stdout = _RC_RE.sub("", stdout).rstrip("\n")
    else:
        # no marker: the script exited early. The platform code is not its exit status
        rc = 1
        reason = "platform reported failure" if failed else "exit status marker missing"
        stderr = f"{stderr}\n{reason}".lstrip("\n")
    return CommandResult(returncode=rc, stdout=stdout, stderr=stderr)


class AzureCli:
    """CloudProvider backed by the `az` command line."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner(label="az")

    def _az(self, *args: str) -> str:
        return self.runner.run(["az", *args]).stdout

    def _exists(self, *args: str) -> bool:
        try:
            self._az(*args)
            return True
        except ExternalCallError as exc:
            if _NOT_FOUND.search(exc.stderr or ""):
                return False
            raise

    # ---------------- resource group ----------------

    def group_exists(self, name: str) -> bool:
        out = self._az("group", "exists", "--name", name)
        return out.strip().lower() == "true"

    def create_group(self, name: str, region: str) -> None:
        log.info(f"Creating resource group \"{name}\"...")
        self._az("group", "create", "--location", region, "--name", name, "--output", "none")

    def delete_group(self, name: str, *, wait: bool = False) -> None:
        log.info(f"Deleting resource group \"{name}\"...")
        args = ["group", "delete", "--name", name, "--yes"]
        if not wait:
            args.append("--no-wait")
        self._az(*args)

    # ---------------- public ip ----------------

    def public_ip_exists(self, group: str, name: str) -> bool:
        return self._exists("network", "public-ip", "show", "--resource-group", group, "--name", name)

    def create_public_ip(self, group: str, name: str, *, sku: str, version: str, zones: List[str]) -> None:
        log.info(f"Creating public IP address \"{name}\"...")
        self._az(
            "network", "public-ip", "create",
            "--resource-group", group,
            "--name", name,
            "--version", version,
            "--sku", sku,
            "--zone", *zones,
            "--output", "none",
        )

    # ---------------- virtual machine ----------------

    def vm_exists(self, group: str, name: str) -> bool:
        return self._exists("vm", "show", "--resource-group", group, "--name", name)

    def create_vm(
        self,
        group: str,
        name: str,
        *,
        image: str,
        admin_username: str,
        public_key_path: Path,
        public_ip: str,
        os_disk_size_gb: int,
        size: str,
    ) -> None:
        log.info(f"Creating virtual machine \"{name}\"...")
        self._az(
            "vm", "create",
            "--resource-group", group,
            "--name", name,
            "--image", image,
            "--admin-username", admin_username,
            "--ssh-key-values", str(public_key_path),
            "--public-ip-address", public_ip,
            "--os-disk-size-gb", str(os_disk_size_gb),
            "--size", size,
            "--output", "none",
        )

    def open_port(self, group: str, name: str, port: int) -> None:
        log.info(f"Opening port {port} on virtual machine \"{name}\"...")
        self._az("vm", "open-port", "--resource-group", group, "--name", name, "--port", str(port), "--output", "none")

    def run_shell(self, group: str, name: str, script: str) -> CommandResult:
        wrapped = f"{script}\necho \"{_RC_MARKER}$?\""
        out = self._az(
            "vm", "run-command", "invoke",
            "--resource-group", group,
            "--name", name,
            "--command-id", "RunShellScript",
            "--scripts", wrapped,
            "--output", "json",
            "--only-show-errors",
        )
        return parse_run_command_output(out)

    def get_public_ip(self, group: str, name: str) -> str:
        log.info(f"Retrieving IP Address of virtual machine \"{name}\"...")
        out = self._az(
            "vm", "list-ip-addresses",
            "--resource-group", group,
            "--name", name,
            "--query", "[].virtualMachine.network.publicIpAddresses[0].ipAddress",
            "--output", "tsv",
        )
        return out.strip()
