from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest

from cooking_timers.notifications import NotificationScheduler
from cooking_timers.storage import TimerStore
from cooking_timers.timer_engine import TimerEngine


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingScheduler(NotificationScheduler):
    def __init__(self):
        self.calls: List[Tuple] = []

    def schedule(self, timer_id, fire_after_seconds, title, body):
        self.calls.append(("schedule", timer_id, fire_after_seconds, title, body))

    def cancel(self, timer_id):
        self.calls.append(("cancel", timer_id))

    def for_timer(self, timer_id: str) -> List[Tuple]:
        return [c for c in self.calls if c[1] == timer_id]

    def max_outstanding(self, timer_id: str) -> int:
        """Most schedule calls seen without an intervening cancel."""
        outstanding = worst = 0
        for call in self.for_timer(timer_id):
            if call[0] == "schedule":
                outstanding += 1
                worst = max(worst, outstanding)
            else:
                outstanding = 0
        return worst


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def store(tmp_path) -> TimerStore:
    return TimerStore(str(tmp_path))


@pytest.fixture
def engine(store, scheduler, clock) -> TimerEngine:
    return TimerEngine(store, scheduler, now=clock)
