"""
timer_engine.py
───────────────
The single place timer records are mutated.

Every operation is one read-modify-write of one record, performed while
holding that record's store lock.  The engine keeps no copy of its own: each
operation re-reads the store, so two engines (one per front end) over the
same store directory never act on each other's stale state, and a failed
write leaves nothing advanced in memory.

Alerts are armed and disarmed inside the same critical section so the
scheduler sees start/pause/reset/delete in commit order.
"""

import logging
from datetime import datetime
from typing import Callable, List, NamedTuple, Optional

from .clock import effective_remaining, snapshot
from .errors import InvalidArgument, TimerNotFound
from .models import TimerRecord, TimerView, utcnow
from .notifications import NotificationScheduler
from .storage import TimerStore

logger = logging.getLogger(__name__)

ALERT_TITLE = "Timer Complete!"

STATUS_FILTERS = ("active", "running", "completed")


class TickResult(NamedTuple):
    timer: TimerView
    completed: bool      # this tick committed Running → Complete


class TimerEngine:
    """
    Coordinates a set of countdowns held in a TimerStore.

    `now` is injectable so tests can drive the wall clock.
    """

    def __init__(
        self,
        store: TimerStore,
        scheduler: NotificationScheduler,
        now: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._scheduler = scheduler
        self._now = now

    @property
    def store(self) -> TimerStore:
        return self._store

    # ── Queries ───────────────────────────────────────────────────────────────

    def get(self, timer_id: str) -> TimerView:
        """Snapshot of one timer; a timer found finished is committed as complete."""
        return self.reconcile_tick(timer_id).timer

    def list(self, status: Optional[str] = None) -> List[TimerView]:
        if status is not None and status not in STATUS_FILTERS:
            raise InvalidArgument(f"Unknown status filter: {status}")

        views = []
        for record in self._store.list():
            if record.is_running:
                try:
                    view = self.reconcile_tick(record.id).timer
                except TimerNotFound:
                    continue    # deleted by another front end mid-listing
            else:
                view = snapshot(record, self._now())
            views.append(view)

        if status == "active":
            views = [v for v in views if not v.is_complete]
        elif status == "running":
            views = [v for v in views if v.is_running]
        elif status == "completed":
            views = [v for v in views if v.is_complete]

        views.sort(key=lambda v: v.created_at, reverse=True)
        return views

    def running_ids(self) -> List[str]:
        return [r.id for r in self._store.list() if r.is_running]

    # ── Mutations ─────────────────────────────────────────────────────────────

    def create(self, name: str = "Timer", duration_seconds: int = 300) -> TimerView:
        if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
            raise InvalidArgument(f"duration_seconds must be an integer, got {duration_seconds!r}")
        if duration_seconds < 0:
            raise InvalidArgument(f"duration_seconds must be >= 0, got {duration_seconds}")

        record = TimerRecord(name=name, duration_seconds=duration_seconds, created_at=self._now())
        self._store.insert(record)
        logger.info(f"Timer created: {record.id} '{record.name}' ({duration_seconds}s)")
        return snapshot(record, self._now())

    def start_new(self, minutes: int, name: Optional[str] = None) -> TimerView:
        """Create and start an N-minute timer in one step (recipe step shortcut)."""
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
            raise InvalidArgument(f"minutes must be a non-negative integer, got {minutes!r}")
        view = self.create(name=name if name is not None else f"{minutes} min timer",
                           duration_seconds=minutes * 60)
        return self.start(view.id)

    def start(self, timer_id: str) -> TimerView:
        with self._store.locked(timer_id):
            record = self._store.get(timer_id)
            now = self._now()

            if record.is_running:
                # Duplicate start keeps the original start instant
                return self._commit_if_finished(record, now).timer
            if record.remaining_seconds == 0:
                return snapshot(record, now)

            started = self._store.put(record.replace(is_running=True, started_at=now))
            self._scheduler.schedule(
                started.id,
                started.remaining_seconds,
                ALERT_TITLE,
                f"{started.name} is done",
            )
            logger.info(f"Timer started: {timer_id} with {started.remaining_seconds}s left")
            return snapshot(started, now)

    def pause(self, timer_id: str) -> TimerView:
        with self._store.locked(timer_id):
            record = self._store.get(timer_id)
            now = self._now()
            if not record.is_running:
                return snapshot(record, now)

            remaining = effective_remaining(record, now).remaining
            paused = self._store.put(
                record.replace(remaining_seconds=remaining, is_running=False, started_at=None)
            )
            self._scheduler.cancel(timer_id)
            logger.info(f"Timer paused: {timer_id} at {remaining}s")
            return snapshot(paused, now)

    def reset(self, timer_id: str) -> TimerView:
        with self._store.locked(timer_id):
            record = self._store.get(timer_id)
            restored = self._store.put(
                record.replace(
                    remaining_seconds=record.duration_seconds,
                    is_running=False,
                    started_at=None,
                )
            )
            self._scheduler.cancel(timer_id)
            logger.info(f"Timer reset: {timer_id}")
            return snapshot(restored, self._now())

    def rename(self, timer_id: str, name: str) -> TimerView:
        with self._store.locked(timer_id):
            record = self._store.get(timer_id)
            renamed = self._store.put(record.replace(name=name))
            return snapshot(renamed, self._now())

    def reconcile_tick(self, timer_id: str, now: Optional[datetime] = None) -> TickResult:
        """
        Refresh a timer against the wall clock.  Only the Running → Complete
        transition is written back; the stored budget of a running timer is
        left alone so later reconciliations measure from the same start.
        """
        with self._store.locked(timer_id):
            record = self._store.get(timer_id)
            return self._commit_if_finished(record, now if now is not None else self._now())

    def delete(self, timer_id: str) -> None:
        with self._store.locked(timer_id):
            self._store.delete(timer_id)
            self._scheduler.cancel(timer_id)
        logger.info(f"Timer deleted: {timer_id}")

    def clear_completed(self) -> List[str]:
        """Delete every complete timer; returns the removed ids."""
        removed = []
        for record in self._store.list():
            with self._store.locked(record.id):
                try:
                    current = self._store.get(record.id)
                except TimerNotFound:
                    continue
                if effective_remaining(current, self._now()).remaining != 0:
                    continue
                self._store.delete(current.id)
                self._scheduler.cancel(current.id)
                removed.append(current.id)
        if removed:
            logger.info(f"Cleared {len(removed)} completed timer(s)")
        return removed

    # ── Internal ──────────────────────────────────────────────────────────────

    def _commit_if_finished(self, record: TimerRecord, now: datetime) -> TickResult:
        # Caller holds the record's lock
        if not record.is_running:
            return TickResult(snapshot(record, now), False)

        remaining, _ = effective_remaining(record, now)
        if remaining > 0:
            return TickResult(snapshot(record, now), False)

        # No cancel: the alert has fired or will fire on its own
        finished = self._store.put(
            record.replace(remaining_seconds=0, is_running=False, started_at=None)
        )
        logger.info(f"Timer complete: {record.id} '{record.name}'")
        return TickResult(snapshot(finished, now), True)
