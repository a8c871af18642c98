"""
models.py
─────────
Shared Pydantic data models for the cooking timer engine and its API.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Fields that never change once a record exists
_IMMUTABLE_FIELDS = ("id", "duration_seconds", "created_at")


class TimerRecord(BaseModel):
    """Persisted state of one countdown. Instances are frozen values."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Timer"
    duration_seconds: int = Field(default=300, ge=0)
    remaining_seconds: int = Field(default=0, ge=0)   # budget as of the last mutation
    is_running: bool = False
    started_at: Optional[datetime] = None             # set iff is_running
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _clamp_remaining(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        duration = data.get("duration_seconds", 300)
        remaining = data.get("remaining_seconds")
        if remaining is None:
            remaining = duration
        if isinstance(duration, int) and isinstance(remaining, int):
            remaining = max(0, min(remaining, duration))
        data["remaining_seconds"] = remaining
        return data

    @model_validator(mode="after")
    def _check_running(self) -> "TimerRecord":
        if self.is_running != (self.started_at is not None):
            raise ValueError("started_at must be set exactly while the timer is running")
        return self

    def replace(self, **changes: Any) -> "TimerRecord":
        """Return a validated copy with `changes` applied."""
        for field in _IMMUTABLE_FIELDS:
            if field in changes and changes[field] != getattr(self, field):
                raise ValueError(f"{field} cannot change after creation")
        return TimerRecord.model_validate({**self.model_dump(), **changes})


class TimerView(BaseModel):
    """Read-only snapshot rendered by front ends."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    duration_seconds: int
    remaining_seconds: int                 # effective remaining at snapshot time
    is_running: bool
    started_at: Optional[datetime] = None
    created_at: datetime
    is_complete: bool
    progress: float
    formatted_remaining: str
    formatted_duration: str
    ends_at: Optional[datetime] = None


class TimerCreate(BaseModel):
    name: str = "Timer"
    duration_seconds: int = 300


class QuickTimerCreate(BaseModel):
    minutes: int
    name: Optional[str] = None


class TimerUpdate(BaseModel):
    name: Optional[str] = None


class TimerPreset(BaseModel):
    name: str
    seconds: int

    @property
    def formatted_duration(self) -> str:
        minutes = self.seconds // 60
        if minutes < 60:
            return f"{minutes} min"
        hours, rest = divmod(minutes, 60)
        if rest == 0:
            return f"{hours} hr"
        return f"{hours} hr {rest} min"


COMMON_PRESETS: List[TimerPreset] = [
    TimerPreset(name="1 Minute", seconds=60),
    TimerPreset(name="3 Minutes", seconds=180),
    TimerPreset(name="5 Minutes", seconds=300),
    TimerPreset(name="10 Minutes", seconds=600),
    TimerPreset(name="15 Minutes", seconds=900),
    TimerPreset(name="20 Minutes", seconds=1200),
    TimerPreset(name="30 Minutes", seconds=1800),
    TimerPreset(name="45 Minutes", seconds=2700),
    TimerPreset(name="1 Hour", seconds=3600),
]
