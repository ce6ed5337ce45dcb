# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/hosts.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .cloud.interface import CloudProvider
from .errors import EmptyResultError
from .template_renderer import TemplateRenderer

log = logging.getLogger("cloudstrap")


@dataclass(frozen=True)
class HostEntry:
    alias: str
    hostname: str
    user: str
    port: int
    identity_file: str

    def render(self, renderer: Optional[TemplateRenderer] = None) -> str:
        return (renderer or TemplateRenderer()).render("ssh_host.j2", {
            "alias": self.alias,
            "hostname": self.hostname,
            "user": self.user,
            "port": self.port,
            "identity_file": self.identity_file,
        })


def split_stanzas(text: str) -> List[Tuple[Optional[str], str]]:
    """
    Split an ssh config text into (alias, block) pairs. Lines before the
    first `Host` line form a block with alias None.
    """
    blocks: List[Tuple[Optional[str], List[str]]] = []
    alias: Optional[str] = None
    current: List[str] = []
    for line in text.splitlines(keepends=True):
        parts = line.split()
        if line[:1] not in (" ", "\t") and len(parts) >= 2 and parts[0].lower() == "host":
            if current:
                blocks.append((alias, current))
            alias, current = parts[1], [line]
        else:
            current.append(line)
    if current:
        blocks.append((alias, current))
    return [(a, "".join(lines)) for a, lines in blocks]


def upsert_stanza(path: Path, entry: HostEntry, renderer: Optional[TemplateRenderer] = None) -> None:
    """
    Write entry into path, replacing any stanza with the same Host alias.
    Other stanzas are kept untouched; the file ends up with exactly one
    stanza per alias.
    """
    stanza = entry.render(renderer)
    existing = path.read_text(encoding="utf-8") if path.exists() else ""

    out: List[str] = []
    replaced = False
    for alias, block in split_stanzas(existing):
        if alias == entry.alias:
            if not replaced:
                out.append(stanza)
                replaced = True
            continue
        out.append(block if block.endswith("\n") else block + "\n")
    if not replaced:
        out.append(stanza)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text("".join(out), encoding="utf-8")
    os.replace(tmp, path)


class HostEntryWriter:
    def __init__(self, cloud: CloudProvider, renderer: Optional[TemplateRenderer] = None):
        self.cloud = cloud
        self.renderer = renderer or TemplateRenderer()

    def write(
        self,
        *,
        group: str,
        vm: str,
        user: str,
        port: int,
        identity_file: str,
        path: Path,
    ) -> HostEntry:
        public_ip = self.cloud.get_public_ip(group, vm)
        if not public_ip:
            raise EmptyResultError(f"The IP Address could not be retrieved from virtual machine \"{vm}\"")
        log.info(f"Retrieved IP Address \"{public_ip}\" from virtual machine \"{vm}\"")

        entry = HostEntry(alias=vm, hostname=public_ip, user=user, port=port, identity_file=identity_file)
        log.info(f"Writing a hosts entry for the new virtual machine at \"{path}\"...")
        upsert_stanza(path, entry, self.renderer)
        return entry
