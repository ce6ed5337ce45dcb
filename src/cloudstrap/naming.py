# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/naming.py
from __future__ import annotations

import re
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

MAX_PREFIX_LENGTH = 24
_PREFIX_RE = re.compile(r"^[a-z][a-z0-9-]*$")

_lock = threading.Lock()
_last_suffix = 0


class InvalidPrefixError(ValueError):
    pass


def validate_prefix(prefix: str) -> str:
    if not prefix or len(prefix) > MAX_PREFIX_LENGTH:
        raise InvalidPrefixError(
            f"Naming prefix must be 1-{MAX_PREFIX_LENGTH} characters, got {len(prefix)}"
        )
    if not _PREFIX_RE.match(prefix):
        raise InvalidPrefixError(
            f"Naming prefix '{prefix}' must start with a letter and contain only "
            "lowercase letters, digits and hyphens"
        )
    return prefix


def _next_suffix(clock: Callable[[], float]) -> int:
    # time based, but never repeats inside one process
    global _last_suffix
    with _lock:
        suffix = max(int(clock()), _last_suffix + 1)
        _last_suffix = suffix
        return suffix


@dataclass(frozen=True)
class NamingContext:
    prefix: str
    region: str
    suffix: int
    home: str

    @classmethod
    def generate(
        cls,
        prefix: str,
        region: str,
        *,
        home: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> "NamingContext":
        validate_prefix(prefix)
        return cls(
            prefix=prefix,
            region=region,
            suffix=_next_suffix(clock),
            home=str(home or Path.home()),
        )

    @property
    def resource_group(self) -> str:
        return f"{self.prefix}-rg-{self.suffix}"

    @property
    def public_ip(self) -> str:
        return f"{self.prefix}-pip-{self.suffix}"

    @property
    def vm(self) -> str:
        return f"{self.prefix}-vm-{self.suffix}"

    @property
    def key_name(self) -> str:
        return f"{self.prefix}-{self.suffix}-key"

    @property
    def key_path(self) -> Path:
        return Path(self.home) / self.key_name

    @property
    def public_key_path(self) -> Path:
        return Path(self.home) / f"{self.key_name}.pub"

    @property
    def hosts_path(self) -> Path:
        # one file per prefix; stanzas are upserted by VM name
        return Path(self.home) / f"{self.prefix}-hosts-entry.txt"

    @property
    def run_name(self) -> str:
        return f"{self.prefix}-{self.suffix}"

    def dict(self) -> Dict[str, Any]:
        return asdict(self)
