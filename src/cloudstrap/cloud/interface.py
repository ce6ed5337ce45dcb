# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path
from typing import List, Protocol

from ..remote.interface import CommandResult


class CloudProvider(Protocol):
    """The slice of the infrastructure API the provisioner needs."""

    def group_exists(self, name: str) -> bool: ...
    def create_group(self, name: str, region: str) -> None: ...
    def delete_group(self, name: str, *, wait: bool = False) -> None: ...

    def public_ip_exists(self, group: str, name: str) -> bool: ...
    def create_public_ip(self, group: str, name: str, *, sku: str, version: str, zones: List[str]) -> None: ...

    def vm_exists(self, group: str, name: str) -> bool: ...
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
    ) -> None: ...
    def open_port(self, group: str, name: str, port: int) -> None: ...

    def run_shell(self, group: str, name: str, script: str) -> CommandResult: ...
    def get_public_ip(self, group: str, name: str) -> str: ...
