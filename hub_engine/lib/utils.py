"""
Conversion helpers for raw CRM records.
Every helper tolerates None, blanks and junk and returns a safe default,
so scoring code never raises on a malformed record.

Usage:
    from hub_engine.lib.utils import safe_float, parse_date, days_between
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional


def safe_float(val: Any, default: float = 0.0) -> float:
    """Safely convert a value to float."""
    if val is None or isinstance(val, bool):
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def safe_int(val: Any, default: int = 0) -> int:
    """Safely convert a value to int."""
    if val is None or isinstance(val, bool):
        return default
    try:
        return int(float(val))
    except (ValueError, TypeError):
        return default


def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning default when the denominator is zero."""
    if not denominator:
        return default
    return numerator / denominator


def parse_date(val: Any) -> Optional[date]:
    """Parse an ISO date or timestamp string (or date/datetime) to a date."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    if not isinstance(val, str):
        return None
    text = val.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        # Salesforce timestamps: 2026-03-01T10:15:00.000+0000
        cleaned = text.replace("Z", "+00:00")
        if len(cleaned) > 5 and cleaned[-5] in "+-" and cleaned[-3] != ":":
            cleaned = f"{cleaned[:-2]}:{cleaned[-2:]}"
        return datetime.fromisoformat(cleaned).date()
    except ValueError:
        return None


def days_between(earlier: Any, later: Any) -> Optional[int]:
    """Whole days from earlier to later, or None if either is unparseable."""
    d1 = parse_date(earlier)
    d2 = parse_date(later)
    if d1 is None or d2 is None:
        return None
    return (d2 - d1).days


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def text_length(val: Any) -> int:
    """Length of a field's trimmed text, 0 for None and non-strings."""
    if not isinstance(val, str):
        return 0
    return len(val.strip())


def nested(record: dict, path: str, default: Any = None) -> Any:
    """Read a dotted relationship path such as 'Account.Name' from a record."""
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict):
            return default
        current = current.get(part)
        if current is None:
            return default
    return current
