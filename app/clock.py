import time
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Clock:
    def now(self) -> int:
        """Current time as epoch milliseconds (UTC)."""
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> int:
        return time.time_ns() // 1_000_000


class ManualClock(Clock):
    """Deterministic clock for tests. Only moves when told to."""

    def __init__(self, start_ms: int = 0):
        self._now = start_ms

    def now(self) -> int:
        return self._now

    def set(self, ms: int):
        self._now = ms

    def advance(self, seconds: int = 0, ms: int = 0):
        self._now += seconds * 1000 + ms


def to_epoch_ms(value: datetime) -> int:
    # naive datetimes coming back from the database are UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)
