"""
cli.py
──────
Terminal companion front end.

Starts an N-minute timer in the shared record store and renders it once a
second.  Quitting with Ctrl+C leaves the timer running in the store, where
the web front end (or the next run) picks it up from the wall clock.
"""

import sys
import time
import logging
import argparse
from typing import Callable, Optional

from . import config
from .errors import InvalidArgument
from .models import TimerView
from .notifications import LocalAlertScheduler
from .storage import TimerStore
from .timer_engine import TimerEngine

logger = logging.getLogger(__name__)

_BAR_WIDTH = 20


def render(view: TimerView) -> str:
    filled = int(round(view.progress * _BAR_WIDTH))
    bar = "#" * filled + "-" * (_BAR_WIDTH - filled)
    state = "done" if view.is_complete else ("running" if view.is_running else "paused")
    return f"{view.name}  {view.formatted_remaining}  [{bar}]  {state}"


def watch(
    engine: TimerEngine,
    timer_id: str,
    interval: float = config.TICK_INTERVAL,
    out: Callable[[str], None] = print,
    sleep: Callable[[float], None] = time.sleep,
) -> TimerView:
    """Render `timer_id` every `interval` seconds until it completes or stops running."""
    while True:
        view = engine.reconcile_tick(timer_id).timer
        out(render(view))
        if view.is_complete:
            out(f"⏰ {view.name} is done! ⏰")
            return view
        if not view.is_running:
            return view
        sleep(interval)


def _ask(prompt: str, reader: Callable[[str], str]) -> str:
    return reader(prompt).strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cooking-timers", description="Start a cooking timer")
    parser.add_argument("--minutes", type=int, help="timer length in minutes")
    parser.add_argument("--name", help="timer label")
    parser.add_argument("--data-dir", default=config.DATA_DIR, help="shared record store directory")
    parser.add_argument("--interval", type=float, default=config.TICK_INTERVAL, help="refresh period in seconds")
    return parser


def main(argv: Optional[list] = None, reader: Callable[[str], str] = input) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    minutes = args.minutes
    if minutes is None:
        answer = _ask("Enter time (in minutes): ", reader)
        try:
            minutes = int(answer)
        except ValueError:
            print(f"Not a whole number of minutes: {answer!r}", file=sys.stderr)
            return 2
    name = args.name
    if name is None:
        name = _ask("Enter timer name: ", reader) or None

    alerts = LocalAlertScheduler(desktop=config.DESKTOP_NOTIFICATIONS)
    engine = TimerEngine(TimerStore(args.data_dir), alerts)

    try:
        view = engine.start_new(minutes, name=name)
    except InvalidArgument as e:
        print(str(e), file=sys.stderr)
        return 2
    print(f"Timer set successfully! ({view.id})")

    try:
        watch(engine, view.id, interval=args.interval)
    except KeyboardInterrupt:
        print(f"\nTimer keeps running in {engine.store.root}")
    finally:
        alerts.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
