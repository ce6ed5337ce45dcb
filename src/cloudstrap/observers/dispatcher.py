# src/cloudstrap/observers/dispatcher.py
from __future__ import annotations

import logging
from typing import Optional

from ..secrets import scrub
from .events import BaseEvent
from .interface import Observers

log = logging.getLogger("cloudstrap")


class EventBus:
    """
    Fans events out to observers. An observer that raises is detached for
    the rest of the bus's life and the run carries on.
    """

    def __init__(self, observers: Optional[Observers] = None):
        self._observers = list(observers or [])

    @property
    def observers(self) -> Observers:
        return list(self._observers)

    def emit(self, event: BaseEvent) -> None:
        for ob in list(self._observers):
            try:
                ob.notify(event)
            except Exception as exc:
                self._observers.remove(ob)
                log.warning(scrub(
                    f"observer {ob.__class__.__name__} failed on {event.__class__.__name__} "
                    f"and was detached: {exc}"
                ))
