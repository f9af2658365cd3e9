"""
Store-assigned timestamps.
"""
from datetime import datetime, timedelta, timezone

_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    """Naive UTC now; stored timestamps are naive UTC in every backend"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Offset-aware values are converted to UTC and lose their tzinfo"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value: datetime) -> str:
    """ISO-8601 with a ``Z`` suffix, e.g. ``2024-05-01T10:00:00Z``"""
    return as_naive_utc(value).isoformat() + "Z"


class MonotonicClock:
    """Hands out strictly increasing naive-UTC timestamps.

    Two writes in the same microsecond still get distinct, ordered
    ``created_at`` values, which keeps "newest first" a total order.
    """

    def __init__(self) -> None:
        self._last: datetime | None = None

    def observe(self, value: datetime | None) -> None:
        """Never issue a timestamp at or before ``value`` (e.g. the newest stored row)"""
        if value is None:
            return
        value = as_naive_utc(value)
        if self._last is None or value > self._last:
            self._last = value

    def now(self) -> datetime:
        current = utc_now()
        if self._last is not None and current <= self._last:
            current = self._last + _TICK
        self._last = current
        return current
