# src/cloudstrap/observers/console.py
import typer

from ..secrets import scrub
from .events import BaseEvent


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "phase", "target"))
        typer.echo(scrub(f"[{d['ts']}] [{d['phase']}] {k} target={d['target']} {data}"))
