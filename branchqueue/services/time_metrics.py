"""Minute-based timing statistics shared by the analytics services."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from branchqueue.core.exceptions import InvalidSample
from branchqueue.db.schemas import TimeDistributionBucket, TimeMetrics

# A wait over a day or a service over a shift is stale data, not a measurement.
MAX_WAIT_MINUTES = 24 * 60
MAX_SERVICE_MINUTES = 8 * 60

DISTRIBUTION_RANGES = (
    (0, 5, "0-5 min"),
    (6, 15, "6-15 min"),
    (16, 30, "16-30 min"),
    (31, 60, "31-60 min"),
    (61, None, "60+ min"),
)


@dataclass(frozen=True)
class QueueTimes:
    """Validated wait and service durations in whole minutes."""
    wait_time: int
    service_time: int


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round half up (0.5 -> 1, 2.5 -> 3, -0.5 -> 0)."""
    factor = 10 ** ndigits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if ndigits == 0 else rounded


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded half up."""
    return round_half_up((end - start).total_seconds() / 60)


def percentage(part: int, total: int, ndigits: int = 2) -> float:
    """part/total as a percentage; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return round_half_up(part / total * 100, ndigits)


def validate_sample(
    created_at: datetime,
    called_at: Optional[datetime],
    completed_at: Optional[datetime],
) -> QueueTimes:
    """
    Compute wait and service minutes for one queue entry.

    Raises:
        InvalidSample: If timestamps are missing, out of order or out of bounds
    """
    context = {
        "created_at": created_at.isoformat() if created_at else None,
        "called_at": called_at.isoformat() if called_at else None,
        "completed_at": completed_at.isoformat() if completed_at else None,
    }
    if created_at is None or called_at is None or completed_at is None:
        raise InvalidSample("Queue entry is missing timestamps", context=context)
    if called_at <= created_at or completed_at <= called_at:
        raise InvalidSample("Queue timestamps are out of order", context=context)

    wait_time = minutes_between(created_at, called_at)
    service_time = minutes_between(called_at, completed_at)
    context.update(wait_time=wait_time, service_time=service_time)

    if wait_time < 0 or service_time < 0:
        raise InvalidSample("Negative queue duration", context=context)
    if wait_time > MAX_WAIT_MINUTES or service_time > MAX_SERVICE_MINUTES:
        raise InvalidSample("Queue duration out of range", context=context)

    return QueueTimes(wait_time=wait_time, service_time=service_time)


def median(sorted_values: Sequence[float]) -> float:
    """Classic median of an already sorted sequence."""
    length = len(sorted_values)
    if length == 0:
        return 0
    middle = length // 2
    if length % 2 == 0:
        return (sorted_values[middle - 1] + sorted_values[middle]) / 2
    return sorted_values[middle]


def calculate_time_metrics(times: Iterable[float]) -> TimeMetrics:
    """Average, median, extremes and count; all zero for no usable values."""
    valid = sorted(
        t for t in times
        if isinstance(t, (int, float)) and math.isfinite(t) and t >= 0
    )
    if not valid:
        return TimeMetrics()

    return TimeMetrics(
        average=round_half_up(sum(valid) / len(valid)),
        median=round_half_up(median(valid)),
        minimum=round_half_up(valid[0]),
        maximum=round_half_up(valid[-1]),
        count=len(valid),
    )


def average_minutes(times: Sequence[int]) -> int:
    """Rounded mean, 0 for an empty sequence."""
    if not times:
        return 0
    return round_half_up(sum(times) / len(times))


def calculate_time_distribution(wait_times: Iterable[int]) -> list[TimeDistributionBucket]:
    """Bucket wait times into fixed ranges with a whole-number percentage."""
    valid = [t for t in wait_times if isinstance(t, (int, float)) and math.isfinite(t) and t >= 0]
    total = len(valid)

    buckets = []
    for low, high, label in DISTRIBUTION_RANGES:
        if high is None:
            count = sum(1 for t in valid if t >= low)
        else:
            count = sum(1 for t in valid if low <= t <= high)
        buckets.append(
            TimeDistributionBucket(
                time_range=label,
                count=count,
                percentage=round_half_up(count / total * 100) if total else 0,
            )
        )
    return buckets
