# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import time
from typing import Callable, Optional, TypeVar

from ..config.models import RetryPolicy
from ..errors import ExternalCallError

T = TypeVar("T")


def is_retriable(exc: BaseException) -> bool:
    """Only external calls flagged transient are worth another attempt."""
    return isinstance(exc, ExternalCallError) and exc.retriable


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[BaseException], bool] = is_retriable,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run fn, retrying retriable failures with capped exponential backoff.

    The last exception is re-raised unchanged once attempts are exhausted or
    as soon as a failure is not retriable.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= policy.attempts or not should_retry(exc):
                raise
            delay = policy.delay(attempt)
            if on_retry:
                on_retry(attempt, exc, delay)
            sleep(delay)
