"""Cooking timer engine: wall-clock reconciled countdowns shared by several front ends."""

from .errors import InvalidArgument, StorageFailure, TimerError, TimerNotFound
from .models import TimerRecord, TimerView
from .notifications import LocalAlertScheduler, NotificationScheduler
from .storage import TimerStore
from .timer_engine import TickResult, TimerEngine

__all__ = [
    "InvalidArgument",
    "LocalAlertScheduler",
    "NotificationScheduler",
    "StorageFailure",
    "TickResult",
    "TimerEngine",
    "TimerError",
    "TimerNotFound",
    "TimerRecord",
    "TimerStore",
    "TimerView",
]
