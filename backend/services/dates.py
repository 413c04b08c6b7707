"""Date parsing and reporting windows."""

from collections import namedtuple
from datetime import datetime, time, timedelta, timezone
from typing import Optional

PERIODS = ("this-sprint", "today", "yesterday", "this-week", "last-7-days", "this-month", "last-month")

PERIOD_LABELS = {
    "this-sprint": "This Sprint",
    "today": "Today",
    "yesterday": "Yesterday",
    "this-week": "This Week",
    "last-7-days": "Last 7 Days",
    "this-month": "This Month",
    "last-month": "Last Month",
}

Window = namedtuple("Window", ["start", "end", "label", "period", "use_sprint_filter"])

_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
)


def parse_datetime(value, tz=None) -> Optional[datetime]:
    """Parse Jira/GitHub timestamps into timezone-aware datetimes.

    Jira sends ``2024-10-31T12:11:56.289-0400``; GitHub sends
    ``2024-10-31T16:11:56Z``. Values without an offset are taken as UTC,
    except bare dates, which are midnight in ``tz`` when given.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    for fmt in _FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            if fmt == "%Y-%m-%d" and tz is not None:
                parsed = parsed.replace(tzinfo=tz)
            else:
                parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    return None


def whole_days(later: datetime, earlier: datetime) -> int:
    """Elapsed days, truncated toward zero."""
    return int((later - earlier).total_seconds() / 86400)


def fractional_days(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 86400


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max, tzinfo=value.tzinfo)


def _month_start(value: datetime) -> datetime:
    return start_of_day(value.replace(day=1))


def _month_end(value: datetime) -> datetime:
    if value.month == 12:
        next_month = value.replace(year=value.year + 1, month=1, day=1)
    else:
        next_month = value.replace(month=value.month + 1, day=1)
    return end_of_day(next_month - timedelta(days=1))


def resolve_period(period: Optional[str], now: datetime, days: Optional[int] = None,
                   fallback: str = "this-month") -> Window:
    """Reporting window for a ``period`` query value, in ``now``'s time zone.

    ``days`` overrides the period with the last N days including today.
    Unknown periods fall back to ``fallback``.
    """
    if days and days > 0:
        return Window(
            start_of_day(now - timedelta(days=days - 1)),
            end_of_day(now),
            f"Last {days} Days",
            period or "custom",
            False,
        )

    if period not in PERIODS:
        period = fallback

    if period == "this-sprint":
        start, end = start_of_day(now - timedelta(days=365)), end_of_day(now)
    elif period == "today":
        start, end = start_of_day(now), end_of_day(now)
    elif period == "yesterday":
        yesterday = now - timedelta(days=1)
        start, end = start_of_day(yesterday), end_of_day(yesterday)
    elif period == "this-week":
        # Weeks start on Sunday
        week_start = now - timedelta(days=(now.weekday() + 1) % 7)
        start = start_of_day(week_start)
        end = end_of_day(week_start + timedelta(days=6))
    elif period == "last-7-days":
        start, end = start_of_day(now - timedelta(days=6)), end_of_day(now)
    elif period == "last-month":
        last_month = _month_start(now) - timedelta(days=1)
        start, end = _month_start(last_month), _month_end(last_month)
    else:
        start, end = _month_start(now), _month_end(now)

    return Window(start, end, PERIOD_LABELS[period], period, period == "this-sprint")
