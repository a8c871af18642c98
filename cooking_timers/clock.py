"""
clock.py
────────
Wall-clock reconciliation for timer records.

A running record does not count down in place.  Its remaining time is always
rebuilt from the budget stored when it was started plus the instant it was
started, so a record stays correct no matter how long every observer was
suspended.  Nothing in this module mutates a record.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from .models import TimerRecord, TimerView


class Reconciliation(NamedTuple):
    remaining: int
    just_completed: bool


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    """Whole seconds since `started_at`, never negative under clock skew."""
    return max(0, int((now - started_at).total_seconds()))


def effective_remaining(record: TimerRecord, now: datetime) -> Reconciliation:
    if not record.is_running or record.started_at is None:
        return Reconciliation(record.remaining_seconds, False)

    elapsed = elapsed_seconds(record.started_at, now)
    remaining = max(0, record.remaining_seconds - elapsed)
    return Reconciliation(remaining, remaining == 0 and record.remaining_seconds > 0)


def is_complete(record: TimerRecord, now: datetime) -> bool:
    return effective_remaining(record, now).remaining == 0


def ends_at(record: TimerRecord) -> Optional[datetime]:
    if not record.is_running or record.started_at is None:
        return None
    return record.started_at + timedelta(seconds=record.remaining_seconds)


def progress(duration_seconds: int, remaining_seconds: int) -> float:
    if duration_seconds <= 0:
        return 0.0
    return (duration_seconds - remaining_seconds) / duration_seconds


def format_seconds(seconds: int) -> str:
    """`H:MM:SS` from one hour up, `M:SS` below."""
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def snapshot(record: TimerRecord, now: datetime) -> TimerView:
    remaining = effective_remaining(record, now).remaining
    return TimerView(
        id=record.id,
        name=record.name,
        duration_seconds=record.duration_seconds,
        remaining_seconds=remaining,
        is_running=record.is_running,
        started_at=record.started_at,
        created_at=record.created_at,
        is_complete=remaining == 0,
        progress=progress(record.duration_seconds, remaining),
        formatted_remaining=format_seconds(remaining),
        formatted_duration=format_seconds(record.duration_seconds),
        ends_at=ends_at(record),
    )
