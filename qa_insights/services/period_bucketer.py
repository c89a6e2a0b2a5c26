"""
Calendar bucketing of timestamps for trend reports.

All boundaries are computed in UTC. A bucket's end is the last millisecond
before the next bucket's start, so consecutive buckets never overlap and
month/quarter/year lengths come from the calendar, not from day counts.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Union

from qa_insights.utils.helpers import ensure_utc, to_iso_utc

ONE_MILLISECOND = timedelta(milliseconds=1)


class DateGrouping(str, enum.Enum):
    """Period length used to bucket trend rows."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

    @classmethod
    def parse(cls, value: Union[str, "DateGrouping", None]) -> "DateGrouping":
        """Resolve a request value; unknown or missing groupings fall back to weekly."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.WEEKLY


@dataclass(frozen=True, order=True)
class PeriodBucket:
    """Inclusive [start, end] UTC range of one trend period."""
    start: datetime
    end: datetime

    def to_dict(self) -> dict:
        return {"periodStart": to_iso_utc(self.start), "periodEnd": to_iso_utc(self.end)}


def _add_months(year: int, month: int, months: int) -> datetime:
    """First instant of the month ``months`` after (year, month)."""
    index = year * 12 + (month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


def get_period_dates(
    timestamp: datetime,
    grouping: Union[DateGrouping, str] = DateGrouping.WEEKLY
) -> PeriodBucket:
    """
    Map a timestamp to the calendar bucket containing it.

    The time of day is dropped before bucketing. Weeks start on Monday and
    quarters are calendar quarters (Jan, Apr, Jul, Oct).

    Args:
        timestamp: Instant to bucket (naive values are read as UTC)
        grouping: Bucket length

    Returns:
        PeriodBucket with start at 00:00:00.000 and end at the last
        millisecond of the period

    Example:
        >>> get_period_dates(datetime(2024, 2, 10, tzinfo=timezone.utc), "monthly").end
        datetime.datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=datetime.timezone.utc)
    """
    grouping = DateGrouping.parse(grouping)
    moment = ensure_utc(timestamp)
    day = datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)

    if grouping == DateGrouping.DAILY:
        start = day
        next_start = day + timedelta(days=1)
    elif grouping == DateGrouping.WEEKLY:
        start = day - timedelta(days=day.weekday())
        next_start = start + timedelta(days=7)
    elif grouping == DateGrouping.MONTHLY:
        start = datetime(day.year, day.month, 1, tzinfo=timezone.utc)
        next_start = _add_months(day.year, day.month, 1)
    elif grouping == DateGrouping.QUARTERLY:
        first_month = ((day.month - 1) // 3) * 3 + 1
        start = datetime(day.year, first_month, 1, tzinfo=timezone.utc)
        next_start = _add_months(day.year, first_month, 3)
    else:
        start = datetime(day.year, 1, 1, tzinfo=timezone.utc)
        next_start = datetime(day.year + 1, 1, 1, tzinfo=timezone.utc)

    return PeriodBucket(start=start, end=next_start - ONE_MILLISECOND)


def unique_periods(
    timestamps: Iterable[datetime],
    grouping: Union[DateGrouping, str] = DateGrouping.WEEKLY
) -> List[PeriodBucket]:
    """Distinct buckets covering the given timestamps, sorted by start ascending."""
    buckets = {get_period_dates(ts, grouping) for ts in timestamps if ts is not None}
    return sorted(buckets)
