# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/errors.py
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence


class CloudstrapError(RuntimeError):
    """Base class for every checked failure. The CLI maps these to exit code 1."""


class MissingPrerequisiteError(CloudstrapError):
    def __init__(self, missing: Sequence[str]):
        self.missing: List[str] = list(missing)
        super().__init__("Missing prerequisites: " + ", ".join(self.missing))


class ConfigError(CloudstrapError):
    """A configuration or state file is missing, unreadable or invalid."""


class KeyGenerationError(CloudstrapError):
    pass


class EmptyResultError(CloudstrapError):
    """A query that must return a value returned nothing."""


class VerificationError(CloudstrapError):
    """A step ran but its post-condition does not hold."""


# curl exit codes: 6 resolve, 7 connect, 28 timeout, 35 TLS, 52 empty reply, 56 recv
# HTTP status codes only count next to a status context, never as bare numbers
_TRANSIENT_PATTERNS = [
    r"timed? ?out",
    r"connection (reset|refused|aborted)",
    r"could not resolve host",
    r"temporary failure in name resolution",
    r"network is unreachable",
    r"status(?: ?code)?[:=]? ?(429|5\d\d)\b",
    r"HTTP/[\d.]+ (429|5\d\d)\b",
    r"\((429|5\d\d)\)",
    r"\b(429|5\d\d) (too many requests|internal server error|bad gateway|service unavailable|gateway time)",
    r"too ?many ?requests",
    r"internalservererror",
    r"serviceunavailable",
    r"retryable",
    r"curl: \((6|7|28|35|52|56)\)",
]
_TRANSIENT_RE = re.compile("|".join(_TRANSIENT_PATTERNS), re.IGNORECASE)

# Azure error codes that no amount of retrying fixes; they win over any transient match
_PERMANENT_PATTERNS = [
    r"quotaexceeded",
    r"exceeding approved .*quota",
    r"invalidparameter",
    r"imagenotfound",
    r"skunotavailable",
    r"authorizationfailed",
    r"invalidauthenticationtoken",
    r"unable to locate package",
]
_PERMANENT_RE = re.compile("|".join(_PERMANENT_PATTERNS), re.IGNORECASE)


def is_transient(text: str) -> bool:
    if not text or _PERMANENT_RE.search(text):
        return False
    return bool(_TRANSIENT_RE.search(text))


class ExternalCallError(CloudstrapError):
    """
    A cloud API, remote invocation or installer command exited non-zero.

    `retriable` separates network blips from permanent failures (bad image,
    quota exceeded, auth). Only retriable errors are retried by the engine.
    """

    def __init__(
        self,
        command: str,
        returncode: int,
        stderr: str = "",
        *,
        retriable: Optional[bool] = None,
    ):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.retriable = is_transient(stderr) if retriable is None else retriable
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"`{command}` failed (rc={returncode}): {detail}")


class StepFailedError(CloudstrapError):
    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause}")


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret value in text with ***."""
    for value in secrets:
        if value:
            text = text.replace(value, "***")
    return text
