"""Time sources.

All timestamps are naive UTC. The database columns are timezone-less and
every component reads "now" from an injected clock so tests can move time.
"""

from datetime import datetime, UTC


class Clock:
    """Supplies the current instant."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time in naive UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC).replace(tzinfo=None)


system_clock = SystemClock()


def get_clock() -> Clock:
    """Clock dependency; tests override it with a controllable clock."""
    return system_clock


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an incoming instant to the naive UTC form stored in the database."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
