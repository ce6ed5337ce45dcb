# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations
from typing import List, Protocol
from .events import BaseEvent


class Observer(Protocol):
    """Receives every lifecycle event of a provisioning or bootstrap run."""

    def notify(self, event: BaseEvent) -> None: ...


Observers = List[Observer]
