"""Injected time source: keeps the scheduler and recorder free of ad-hoc clock reads."""
from __future__ import annotations
from datetime import datetime, timezone


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(round(value.timestamp() * 1000))


def from_millis(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
