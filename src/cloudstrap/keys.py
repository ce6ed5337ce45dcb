# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/keys.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ExternalCallError, KeyGenerationError
from .execution.runner import CommandRunner

log = logging.getLogger("cloudstrap")


@dataclass(frozen=True)
class KeyPair:
    private: Path
    public: Path

    def exists(self) -> bool:
        return self.private.exists() and self.public.exists()


class KeyPairGenerator:
    """Generates an RSA 4096 SSH key pair with ssh-keygen (no passphrase)."""

    def __init__(self, runner: Optional[CommandRunner] = None, bits: int = 4096):
        self.runner = runner or CommandRunner(label="ssh-keygen")
        self.bits = bits

    def generate(self, key_path: Path) -> KeyPair:
        pair = KeyPair(private=Path(key_path), public=Path(f"{key_path}.pub"))
        for p in (pair.private, pair.public):
            if p.exists():
                raise KeyGenerationError(f"Unable to create SSH key pair at \"{key_path}\": {p} already exists")

        pair.private.parent.mkdir(parents=True, exist_ok=True)
        log.info(f"Creating SSH key pair at \"{key_path}\"...")
        try:
            self.runner.run(
                ["ssh-keygen", "-q", "-f", str(pair.private), "-t", "rsa", "-b", str(self.bits), "-N", ""]
            )
        except ExternalCallError as exc:
            raise KeyGenerationError(f"Unable to create SSH key pair at \"{key_path}\": {exc}") from exc

        if not pair.exists():
            raise KeyGenerationError(f"ssh-keygen reported success but \"{key_path}\" is missing")
        return pair

    @staticmethod
    def remove(pair: KeyPair) -> None:
        for p in (pair.private, pair.public):
            if p.exists():
                p.unlink()
                log.info(f"Removed {p}")
