import re
from datetime import date, datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from config import get_settings


class Granularity(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    semiannual = "semiannual"
    annual = "annual"


class ParseError(ValueError):
    pass


_DAILY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WEEKLY_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTHLY_RE = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTERLY_RE = re.compile(r"^(\d{4})-Q([1-4])$")
_SEMIANNUAL_RE = re.compile(r"^(\d{4})-H([12])$")
_ANNUAL_RE = re.compile(r"^(\d{4})$")

# Months spanned by one period, for the granularities that step by month.
_MONTH_STEPS = {
    Granularity.monthly: 1,
    Granularity.quarterly: 3,
    Granularity.semiannual: 6,
    Granularity.annual: 12,
}


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_end(year: int, month: int) -> date:
    return date(year, month, days_in_month(year, month))


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by whole months, clamping the day to the target month."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def period_key(on: date, granularity: Granularity) -> str:
    granularity = Granularity(granularity)
    if granularity == Granularity.daily:
        return on.strftime("%Y-%m-%d")
    if granularity == Granularity.weekly:
        iso_year, iso_week, _ = on.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == Granularity.monthly:
        return on.strftime("%Y-%m")
    if granularity == Granularity.quarterly:
        return f"{on.year}-Q{(on.month - 1) // 3 + 1}"
    if granularity == Granularity.semiannual:
        return f"{on.year}-H{(on.month - 1) // 6 + 1}"
    return f"{on.year:04d}"


def parse_period_key(key: str, granularity: Granularity) -> date:
    """Return the first day of the period identified by ``key``."""
    granularity = Granularity(granularity)
    key = (key or "").strip()
    try:
        if granularity == Granularity.daily:
            if not _DAILY_RE.match(key):
                raise ParseError(f"Invalid daily period key: {key!r}")
            return date.fromisoformat(key)
        if granularity == Granularity.weekly:
            match = _WEEKLY_RE.match(key)
            if not match:
                raise ParseError(f"Invalid weekly period key: {key!r}")
            return date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)
        if granularity == Granularity.monthly:
            match = _MONTHLY_RE.match(key)
            if not match:
                raise ParseError(f"Invalid monthly period key: {key!r}")
            return date(int(match.group(1)), int(match.group(2)), 1)
        if granularity == Granularity.quarterly:
            match = _QUARTERLY_RE.match(key)
            if not match:
                raise ParseError(f"Invalid quarterly period key: {key!r}")
            quarter = int(match.group(2))
            return date(int(match.group(1)), (quarter - 1) * 3 + 1, 1)
        if granularity == Granularity.semiannual:
            match = _SEMIANNUAL_RE.match(key)
            if not match:
                raise ParseError(f"Invalid semiannual period key: {key!r}")
            half = int(match.group(2))
            return date(int(match.group(1)), (half - 1) * 6 + 1, 1)
        match = _ANNUAL_RE.match(key)
        if not match:
            raise ParseError(f"Invalid annual period key: {key!r}")
        return date(int(match.group(1)), 1, 1)
    except ParseError:
        raise
    except ValueError as exc:
        raise ParseError(f"Invalid {granularity.value} period key: {key!r}") from exc


def period_start(on: date, granularity: Granularity) -> date:
    granularity = Granularity(granularity)
    if granularity == Granularity.daily:
        return on
    if granularity == Granularity.weekly:
        return on - timedelta(days=on.weekday())
    step = _MONTH_STEPS[granularity]
    month = ((on.month - 1) // step) * step + 1
    return date(on.year, month, 1)


def following_keys(on: date, granularity: Granularity, count: int) -> list[str]:
    """Keys of the ``count`` periods after the one containing ``on``."""
    granularity = Granularity(granularity)
    start = period_start(on, granularity)
    keys: list[str] = []
    for offset in range(1, count + 1):
        if granularity == Granularity.daily:
            nxt = start + timedelta(days=offset)
        elif granularity == Granularity.weekly:
            nxt = start + timedelta(weeks=offset)
        else:
            nxt = add_months(start, offset * _MONTH_STEPS[granularity])
        keys.append(period_key(nxt, granularity))
    return keys


def covered_months(start: date, duration_months: int) -> list[str]:
    """Month keys a bill starting on ``start`` projects into."""
    first = start.replace(day=1)
    return [
        period_key(add_months(first, offset), Granularity.monthly)
        for offset in range(max(duration_months, 0))
    ]
