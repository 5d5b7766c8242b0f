"""
Period Bucketing

Turns reporting windows ("last 6 months", "last 8 weeks", "this quarter")
into ordered calendar buckets. Every calendar boundary is taken in IST
(fixed +05:30); buckets are half-open [start, end) aware instants.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from backoffice.database.models import TargetPeriod

IST = timezone(timedelta(hours=5, minutes=30), "IST")

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


class RevenueWindow(str, Enum):
    """Month-based revenue chart windows"""
    THREE_MONTHS = "3months"
    SIX_MONTHS = "6months"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {"3months": 3, "6months": 6, "yearly": 12}[self.value]


class GrowthWindow(str, Enum):
    """Week-based user growth windows"""
    FOUR_WEEKS = "4weeks"
    EIGHT_WEEKS = "8weeks"
    TWELVE_WEEKS = "12weeks"

    @property
    def weeks(self) -> int:
        return int(self.value.replace("weeks", ""))


@dataclass(frozen=True)
class Bucket:
    """One labelled reporting interval, [start, end)."""
    label: str
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class DayProgress:
    """Calendar-day position of `now` inside a window"""
    total: int
    elapsed: int
    remaining: int


# =============================================================================
# INSTANT CONVERSION
# =============================================================================

def to_ist(instant: Optional[datetime] = None) -> datetime:
    """Express an instant in IST. Naive values are taken to be UTC."""
    if instant is None:
        instant = datetime.now(timezone.utc)
    elif instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(IST)


def to_storage(instant: datetime) -> datetime:
    """Naive UTC, the representation used by every DateTime column."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage(value: datetime) -> datetime:
    """Aware UTC instant from a stored naive UTC value."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# CALENDAR ARITHMETIC
# =============================================================================

def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    """Move (year, month) by `delta` months across year boundaries."""
    shifted = date(year, month, 1) + relativedelta(months=delta)
    return shifted.year, shifted.month


def month_start(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=IST)


def month_bucket(year: int, month: int) -> Bucket:
    start = month_start(year, month)
    return Bucket(label=MONTH_NAMES[month - 1], start=start, end=start + relativedelta(months=1))


def year_bounds(year: int) -> Tuple[datetime, datetime]:
    start = month_start(year, 1)
    return start, start + relativedelta(years=1)


def start_of_day(now: Optional[datetime] = None) -> datetime:
    """IST midnight of the day containing `now`."""
    local = to_ist(now)
    return datetime.combine(local.date(), time.min, tzinfo=IST)


def trailing_window(now: datetime, days: int, periods_back: int = 0) -> Tuple[datetime, datetime]:
    """
    A rolling window of `days` ending at `now`.

    `periods_back=1` gives the equally sized window immediately before it,
    used as the growth baseline.
    """
    end = to_ist(now) - timedelta(days=days * periods_back)
    return end - timedelta(days=days), end


def add_months(instant: datetime, months: int) -> datetime:
    """Calendar month addition; the day is clamped to the length of the target month."""
    return instant + relativedelta(months=months)


def add_period(start: datetime, period: TargetPeriod) -> datetime:
    """
    End of a target window that begins at `start`.

    Raises:
        ValueError: for custom periods, which have no implied length
    """
    period = TargetPeriod(period)
    if period == TargetPeriod.DAILY:
        return start + timedelta(days=1)
    if period == TargetPeriod.WEEKLY:
        return start + timedelta(days=7)
    if period == TargetPeriod.MONTHLY:
        return start + relativedelta(months=1)
    if period == TargetPeriod.QUARTERLY:
        return start + relativedelta(months=3)
    if period == TargetPeriod.HALF_YEARLY:
        return start + relativedelta(months=6)
    if period in (TargetPeriod.YEARLY, TargetPeriod.ANNUALLY):
        return start + relativedelta(years=1)
    raise ValueError(f"Period '{period.value}' has no implied length")


def period_window(period: TargetPeriod, now: Optional[datetime] = None) -> Tuple[Bucket, Bucket]:
    """
    The calendar window of `period` containing `now`, and the one before it.

    Supports monthly, quarterly, half-yearly and yearly/annually.
    """
    period = TargetPeriod(period)
    local = to_ist(now)
    year, month = local.year, local.month

    if period == TargetPeriod.MONTHLY:
        first, length = (year, month), 1
    elif period == TargetPeriod.QUARTERLY:
        first, length = (year, ((month - 1) // 3) * 3 + 1), 3
    elif period == TargetPeriod.HALF_YEARLY:
        first, length = (year, 1 if month <= 6 else 7), 6
    elif period in (TargetPeriod.YEARLY, TargetPeriod.ANNUALLY):
        first, length = (year, 1), 12
    else:
        raise ValueError(f"Period '{period.value}' is not a calendar window")

    current_start = month_start(*first)
    span = relativedelta(months=length)
    current = Bucket(period.value, current_start, current_start + span)
    previous = Bucket(period.value, current_start - span, current_start)
    return current, previous


def day_progress(start: datetime, end: datetime, now: Optional[datetime] = None) -> DayProgress:
    """Inclusive calendar-day counts of a [start, end) window as seen from `now`, in IST."""
    first_day = to_ist(start).date()
    last_day = (to_ist(end) - timedelta(microseconds=1)).date()
    today = to_ist(now).date()

    total = (last_day - first_day).days + 1
    elapsed = min(max((today - first_day).days + 1, 0), total)
    return DayProgress(total=total, elapsed=elapsed, remaining=max(0, total - elapsed))


# =============================================================================
# BUCKET SEQUENCES
# =============================================================================

def revenue_buckets(window: RevenueWindow, now: Optional[datetime] = None) -> List[Bucket]:
    """
    Month buckets for a revenue chart, oldest first.

    `yearly` is always Jan..Dec of the current year; the other windows are
    the last N months including the current one.
    """
    window = RevenueWindow(window)
    local = to_ist(now)

    if window == RevenueWindow.YEARLY:
        return [month_bucket(local.year, month) for month in range(1, 13)]

    return last_months(window.months, local)


def last_months(count: int, now: Optional[datetime] = None) -> List[Bucket]:
    """The last `count` month buckets including the current month, oldest first."""
    local = to_ist(now)
    return [
        month_bucket(*shift_month(local.year, local.month, -offset))
        for offset in range(count - 1, -1, -1)
    ]


def _day_label(day: date) -> str:
    return f"{day.day} {MONTH_NAMES[day.month - 1]}"


def week_buckets(window: GrowthWindow, now: Optional[datetime] = None) -> List[Bucket]:
    """
    Complete Monday-Sunday weeks, oldest first.

    The sequence ends on the Sunday before the current week, so the week in
    progress (including a Sunday that is still running) is never reported.
    """
    window = GrowthWindow(window)
    today = to_ist(now).date()
    current_monday = today - timedelta(days=today.weekday())
    first_monday = current_monday - timedelta(weeks=window.weeks)

    buckets = []
    for index in range(window.weeks):
        monday = first_monday + timedelta(weeks=index)
        start = datetime.combine(monday, time.min, tzinfo=IST)
        buckets.append(Bucket(
            label=f"{_day_label(monday)} - {_day_label(monday + timedelta(days=6))}",
            start=start,
            end=start + timedelta(days=7),
        ))
    return buckets
