"""
Period Resolver
================

Maps a symbolic date-range token ("thisQuarter", "lastFiscalYear", "last30Days",
"custom", ...) plus optional explicit bounds into a concrete date interval,
honouring a configurable fiscal-year start month (0-11, default February).

Fiscal periods that straddle a calendar-year boundary carry two segments, one
per calendar year, so date filters are rendered as a disjunction of ranges.

Functions:
  resolve_period()     - token + bounds + today -> Period
  get_period_name()    - human label for a token ("2026", "FY2026 Q4", ...)
  build_date_filter()  - Period rendered as a query condition on a date field
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Tuple

from hub_engine.lib.config import FISCAL_YEAR_START_MONTH
from hub_engine.lib.utils import parse_date, today_utc
from hub_engine.query_builder import AllOf, AnyOf, Condition, Filter

DEFAULT_TOKEN = "thisYear"

ROLLING_DAYS = {
    "last7Days": 7,
    "last30Days": 30,
    "last90Days": 90,
    "last120Days": 120,
}

PERIOD_TOKENS = (
    "today", "yesterday",
    "thisWeek", "lastWeek",
    "thisMonth", "lastMonth",
    "thisQuarter", "lastQuarter", "nextQuarter",
    "thisFiscalQuarter", "lastFiscalQuarter",
    "thisFiscalYear", "lastFiscalYear",
    "thisYear", "lastYear", "nextYear",
    *ROLLING_DAYS,
    "custom", "all",
)


# ─── Types ──────────────────────────────────────────────────

@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


@dataclass(frozen=True)
class Period:
    """
    A resolved, inclusive date interval.

    `date.min` / `date.max` stand in for an open lower / upper bound.
    `segments` is the interval split at calendar-year boundaries
    (empty for the unbounded "all" period).
    """
    start: date
    end: date
    label: str
    token: str
    segments: Tuple[DateRange, ...] = ()

    @property
    def is_unbounded(self) -> bool:
        return self.start == date.min and self.end == date.max

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class DateFilter:
    token: str
    period: Period
    condition: Optional[Condition]


# ─── Calendar helpers ───────────────────────────────────────

def _shift_month(year: int, month0: int, delta: int) -> Tuple[int, int]:
    """(year, 0-based month) moved by delta months."""
    total = year * 12 + month0 + delta
    return total // 12, total % 12


def _month_start(year: int, month0: int) -> date:
    return date(year, month0 + 1, 1)


def _month_end(year: int, month0: int) -> date:
    return date(year, month0 + 1, calendar.monthrange(year, month0 + 1)[1])


def _months_span(year: int, month0: int, months: int) -> Tuple[date, date]:
    """Start of (year, month0) through end of the month `months - 1` later."""
    end_year, end_month = _shift_month(year, month0, months - 1)
    return _month_start(year, month0), _month_end(end_year, end_month)


def _split_by_year(start: date, end: date) -> Tuple[DateRange, ...]:
    if start == date.min and end == date.max:
        return ()
    if start == date.min or end == date.max or start.year == end.year:
        return (DateRange(start, end),)
    segments = [DateRange(start, date(start.year, 12, 31))]
    for year in range(start.year + 1, end.year):
        segments.append(DateRange(date(year, 1, 1), date(year, 12, 31)))
    segments.append(DateRange(date(end.year, 1, 1), end))
    return tuple(segments)


def fiscal_position(today: date, fiscal_start_month: int) -> Tuple[int, int]:
    """
    (fiscal year, fiscal quarter 1-4) for a day.

    The fiscal year is named after the calendar year in which it starts.
    """
    month0 = today.month - 1
    fiscal_year = today.year if month0 >= fiscal_start_month else today.year - 1
    fiscal_month = (month0 - fiscal_start_month) % 12
    return fiscal_year, fiscal_month // 3 + 1


def _fiscal_quarter_span(fiscal_year: int, quarter: int, fiscal_start_month: int) -> Tuple[date, date]:
    year, month0 = _shift_month(fiscal_year, fiscal_start_month, (quarter - 1) * 3)
    return _months_span(year, month0, 3)


def _calendar_quarter(today: date) -> Tuple[int, int]:
    """(year, 0-based quarter index)."""
    return today.year, (today.month - 1) // 3


def _fmt(day: date) -> str:
    return day.isoformat()


# ─── Resolution ─────────────────────────────────────────────

def _resolve_custom(start_date, end_date, today: date) -> Tuple[date, date, str]:
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start and end:
        if start > end:
            start, end = end, start
        return start, end, f"{_fmt(start)} to {_fmt(end)}"
    if start:
        return start, date.max, f"Since {_fmt(start)}"
    if end:
        return date.min, end, f"Through {_fmt(end)}"
    year, quarter = _calendar_quarter(today)
    start, end = _months_span(year, quarter * 3, 3)
    return start, end, f"Q{quarter + 1} {year}"


def _resolve_token(token: str, today: date, fiscal_start_month: int) -> Tuple[date, date, str]:
    year, quarter = _calendar_quarter(today)

    if token == "today":
        return today, today, "Today"
    if token == "yesterday":
        day = today - timedelta(days=1)
        return day, day, "Yesterday"

    if token in ("thisWeek", "lastWeek"):
        # Weeks start on Sunday
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        if token == "lastWeek":
            start -= timedelta(days=7)
        label = "This Week" if token == "thisWeek" else "Last Week"
        return start, start + timedelta(days=6), label

    if token in ("thisMonth", "lastMonth"):
        y, m = _shift_month(today.year, today.month - 1, 0 if token == "thisMonth" else -1)
        return _month_start(y, m), _month_end(y, m), f"{calendar.month_name[m + 1]} {y}"

    if token in ("thisQuarter", "lastQuarter", "nextQuarter"):
        delta = {"thisQuarter": 0, "lastQuarter": -3, "nextQuarter": 3}[token]
        y, m = _shift_month(year, quarter * 3, delta)
        start, end = _months_span(y, m, 3)
        return start, end, f"Q{m // 3 + 1} {y}"

    if token in ("thisFiscalQuarter", "lastFiscalQuarter"):
        fiscal_year, fiscal_quarter = fiscal_position(today, fiscal_start_month)
        if token == "lastFiscalQuarter":
            if fiscal_quarter == 1:
                fiscal_year, fiscal_quarter = fiscal_year - 1, 4
            else:
                fiscal_quarter -= 1
        start, end = _fiscal_quarter_span(fiscal_year, fiscal_quarter, fiscal_start_month)
        return start, end, f"FY{fiscal_year} Q{fiscal_quarter}"

    if token in ("thisFiscalYear", "lastFiscalYear"):
        fiscal_year, _ = fiscal_position(today, fiscal_start_month)
        if token == "lastFiscalYear":
            fiscal_year -= 1
        start, end = _months_span(fiscal_year, fiscal_start_month, 12)
        return start, end, f"FY{fiscal_year}"

    if token in ("thisYear", "lastYear", "nextYear"):
        y = today.year + {"thisYear": 0, "lastYear": -1, "nextYear": 1}[token]
        return date(y, 1, 1), date(y, 12, 31), str(y)

    if token in ROLLING_DAYS:
        days = ROLLING_DAYS[token]
        return today - timedelta(days=days), today, f"Last {days} Days"

    if token == "all":
        return date.min, date.max, "All Time"

    raise KeyError(token)


def resolve_period(
    token: Optional[str] = None,
    start_date=None,
    end_date=None,
    fiscal_start_month: int = FISCAL_YEAR_START_MONTH,
    today: Optional[date] = None,
) -> Period:
    """
    Resolve a symbolic token into a Period.

    Never raises: unknown or missing tokens resolve to the current calendar
    year, unparseable explicit bounds are ignored.

    Args:
        token: One of PERIOD_TOKENS.
        start_date: Explicit lower bound for "custom" (ISO string or date).
        end_date: Explicit upper bound for "custom".
        fiscal_start_month: 0-based month the fiscal year starts in.
        today: Reference day; defaults to today (UTC).
    """
    today = today or today_utc()
    fiscal_start_month = fiscal_start_month % 12
    if token not in PERIOD_TOKENS:
        token = DEFAULT_TOKEN

    if token == "custom":
        start, end, label = _resolve_custom(start_date, end_date, today)
    else:
        start, end, label = _resolve_token(token, today, fiscal_start_month)

    return Period(
        start=start,
        end=end,
        label=label,
        token=token,
        segments=_split_by_year(start, end),
    )


def get_period_name(
    token: Optional[str] = None,
    fiscal_start_month: int = FISCAL_YEAR_START_MONTH,
    today: Optional[date] = None,
) -> str:
    """Human label for a token, e.g. "2026" for thisYear."""
    return resolve_period(token, fiscal_start_month=fiscal_start_month, today=today).label


def period_condition(period: Period, field: str = "CloseDate") -> Optional[Condition]:
    """Render a Period as a condition on a date field (None when unbounded)."""
    if period.is_unbounded:
        return None

    def _range(segment: DateRange) -> Condition:
        parts = []
        if segment.start != date.min:
            parts.append(Filter(field, "gte", segment.start))
        if segment.end != date.max:
            parts.append(Filter(field, "lte", segment.end))
        return parts[0] if len(parts) == 1 else AllOf(*parts)

    ranges = [_range(s) for s in period.segments]
    return ranges[0] if len(ranges) == 1 else AnyOf(*ranges)


def build_date_filter(
    date_range: Optional[str] = None,
    start_date=None,
    end_date=None,
    field: str = "CloseDate",
    fiscal_start_month: int = FISCAL_YEAR_START_MONTH,
    today: Optional[date] = None,
) -> DateFilter:
    """Resolve a dashboard date-range selection into a filter on `field`."""
    period = resolve_period(
        date_range, start_date, end_date,
        fiscal_start_month=fiscal_start_month, today=today,
    )
    return DateFilter(token=period.token, period=period, condition=period_condition(period, field))
