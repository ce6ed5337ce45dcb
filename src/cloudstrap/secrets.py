# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/secrets.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .errors import MissingPrerequisiteError, redact

# values that must never reach a log line or an error message
_REGISTERED: List[str] = []


def register(value: str) -> None:
    if value and value not in _REGISTERED:
        _REGISTERED.append(value)


def scrub(text: str) -> str:
    return redact(text, _REGISTERED)


@dataclass(frozen=True)
class RemoteSecret:
    """
    Username + access token handed to the remote machine.

    Only the token is registered for redaction. The username is an account
    name that also shows up in home directories and key paths, so it stays
    readable in logs. Both are hidden from repr().
    """

    username_env: str
    token_env: str
    username: str = field(repr=False)
    token: str = field(repr=False)

    def __post_init__(self) -> None:
        register(self.token)

    @classmethod
    def from_env(
        cls,
        username_env: str,
        token_env: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RemoteSecret":
        env = os.environ if environ is None else environ
        missing = [name for name in (username_env, token_env) if not env.get(name)]
        if missing:
            raise MissingPrerequisiteError([f"env:{m}" for m in missing])
        return cls(
            username_env=username_env,
            token_env=token_env,
            username=env[username_env],
            token=env[token_env],
        )

    def as_env(self) -> dict:
        return {self.username_env: self.username, self.token_env: self.token}
