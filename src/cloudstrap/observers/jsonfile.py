# src/cloudstrap/observers/jsonfile.py
from __future__ import annotations

import json
from pathlib import Path

from ..secrets import scrub
from .events import BaseEvent


class JsonFileObserver:
    """
    Appends every event as one JSON object per line next to the run log.
    `seq` orders events of the same run even when timestamps collide.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._seq = 0

    def notify(self, event: BaseEvent) -> None:
        self._seq += 1
        record = {"event": event.__class__.__name__, "seq": self._seq, **event.dict()}
        line = json.dumps(record, sort_keys=True, default=str)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(scrub(line) + "\n")
