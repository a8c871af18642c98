"""
errors.py
─────────
Error conditions raised by the timer engine and its store.
"""


class TimerError(Exception):
    """Base class for every timer engine error."""


class TimerNotFound(TimerError):
    """An operation referenced an id the store does not hold."""

    def __init__(self, timer_id: str):
        super().__init__(f"Timer not found: {timer_id}")
        self.timer_id = timer_id


class InvalidArgument(TimerError, ValueError):
    """Rejected before any mutation (e.g. a negative duration)."""


class StorageFailure(TimerError):
    """The record store could not complete a read or an atomic write."""
