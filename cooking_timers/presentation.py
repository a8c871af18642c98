"""
presentation.py
───────────────
Periodic observer that keeps a front end's display fresh.

One background thread wakes every `interval` seconds, reconciles each running
timer through the engine and hands the resulting snapshot to the front end.
Ticking is advisory: missed ticks, bursts after a suspension, or several
observers ticking the same store all converge on the same state.
"""

import logging
import threading
from typing import Callable, List, Optional

from . import config
from .errors import TimerNotFound
from .models import TimerView
from .timer_engine import TimerEngine

logger = logging.getLogger(__name__)


class PresentationSync:

    def __init__(
        self,
        engine: TimerEngine,
        on_snapshot: Optional[Callable[[List[TimerView]], None]] = None,
        on_complete: Optional[Callable[[TimerView], None]] = None,
        interval: float = config.TICK_INTERVAL,
        name: str = "timer-presentation",
    ):
        self._engine = engine
        self._on_snapshot = on_snapshot
        self._on_complete = on_complete
        self._interval = interval
        self._stopping = threading.Event()
        self._last: Optional[List[TimerView]] = None
        self._thread = threading.Thread(target=self._tick_loop, daemon=True, name=name)

    def start(self):
        """Start the background tick thread."""
        self._stopping.clear()
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Signal the tick thread to stop and wait for it."""
        self._stopping.set()
        if self._thread.is_alive():
            self._thread.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stopping.is_set()

    def tick(self) -> List[TimerView]:
        """Reconcile running timers once and publish the snapshot if it changed."""
        for timer_id in self._engine.running_ids():
            try:
                result = self._engine.reconcile_tick(timer_id)
            except TimerNotFound:
                continue
            if result.completed and self._on_complete:
                self._on_complete(result.timer)

        views = self._engine.list()
        if views != self._last:
            self._last = views
            if self._on_snapshot:
                self._on_snapshot(views)
        return views

    def _tick_loop(self):
        while not self._stopping.is_set():
            try:
                self.tick()
            except Exception:
                # The next tick retries from stored state
                logger.exception("Presentation tick failed")
            self._stopping.wait(timeout=self._interval)
