"""Human-readable durations, dates and labels for the report templates."""

import re
from datetime import datetime
from typing import Optional

from services.dates import whole_days

STATUS_ORDER = [
    "to do", "ready for development", "in progress", "in review",
    "done", "won't do", "wont do", "backlog", "open", "closed",
]

_KEY_NUMBER_RE = re.compile(r"-(\d+)$")


def _plural(count, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def _scaled(value: float, unit: str) -> str:
    rounded = round(value, 1)
    if rounded == 1.0:
        return f"1 {unit}"
    return f"{value:.1f} {unit}s"


def format_duration(days: float) -> str:
    """Age text such as "5 days", "1 week", "2.3 weeks" or "1.5 years"."""
    if days < 7:
        return _plural(int(days + 0.5), "day")
    if days < 30:
        return _scaled(days / 7, "week")
    if days < 365:
        return _scaled(days / 30, "month")
    return _scaled(days / 365, "year")


def format_completion_duration(created: datetime, completed: datetime) -> str:
    """Time to complete: hours under a day, days under a week, then weeks and days."""
    days = whole_days(completed, created)
    if days == 0:
        hours = int((completed - created).total_seconds() / 3600)
        return _plural(hours, "hour")
    if days < 7:
        return _plural(days, "day")
    weeks, remaining = divmod(days, 7)
    if remaining == 0:
        return _plural(weeks, "week")
    return f"{_plural(weeks, 'week')}, {_plural(remaining, 'day')}"


def format_pr_age(days: float) -> str:
    if days < 7:
        return f"{max(0, int(days + 0.5))}d"
    if days < 30:
        return f"{days / 7:.1f}w"
    if days < 365:
        return f"{days / 30:.1f}mo"
    return f"{days / 365:.1f}y"


def format_date_range(start: Optional[datetime], end: Optional[datetime]) -> str:
    """Compact sprint range: "Jan 14-27, 2026", "Feb 27–Mar 15, 2026" or a full span."""
    if start is None or end is None:
        return "—"
    if start.year == end.year and start.month == end.month:
        return f"{start:%b} {start.day}-{end.day}, {end.year}"
    if start.year == end.year:
        return f"{start:%b} {start.day}–{end:%b} {end.day}, {end.year}"
    return f"{start:%b} {start.day}, {start.year}–{end:%b} {end.day}, {end.year}"


def format_long_date(value: Optional[datetime]) -> Optional[str]:
    """Date as "Jan 5, 2026"."""
    if value is None:
        return None
    return f"{value:%b} {value.day}, {value.year}"


def format_short_date(value: datetime) -> str:
    return value.strftime("%m/%d/%y")


def format_date_time(value: datetime) -> str:
    """Date and time as "Jan 5, 3:04 PM"."""
    hour = value.hour % 12 or 12
    return f"{value:%b} {value.day}, {hour}:{value:%M %p}"


def status_slug(status: Optional[str]) -> str:
    return re.sub(r"\s+", "-", (status or "—").lower()).replace("'", "")


def status_rank(status: Optional[str]) -> int:
    key = (status or "").lower().strip()
    return STATUS_ORDER.index(key) if key in STATUS_ORDER else len(STATUS_ORDER)


def first_name(display_name) -> str:
    if not display_name or not isinstance(display_name, str):
        return display_name or "—"
    parts = display_name.strip().split()
    return parts[0] if parts else display_name


def key_number(issue_key: str) -> int:
    match = _KEY_NUMBER_RE.search(issue_key or "")
    return int(match.group(1)) if match else 0
