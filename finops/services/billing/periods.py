"""
Date and billing-period parsing helpers.

Providers label periods inconsistently ("2024-09", "2024-9", "September 2024",
full ISO timestamps). Everything here maps those onto naive UTC datetimes so
that periods sort by calendar date rather than by string.
"""

import calendar
import re
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

# Priority order for deriving a line item's effective date
EFFECTIVE_DATE_FIELDS = ("invoice_period", "start", "created_at", "date")
DATE_SORT_FIELDS = frozenset({"date", "start", "end", "created_at", "invoice_period"})

_YEAR_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_MONTH_YEAR_RE = re.compile(r"^([A-Za-z]+)\.?,?\s+(\d{4})$")

_MONTH_LOOKUP = {}
for _index in range(1, 13):
    _MONTH_LOOKUP[calendar.month_name[_index].lower()] = _index
    _MONTH_LOOKUP[calendar.month_abbr[_index].lower()] = _index
_MONTH_LOOKUP["sept"] = 9

_PARSE_DEFAULT = datetime(1900, 1, 1)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _match_month_label(text: str) -> Optional[datetime]:
    match = _YEAR_MONTH_RE.match(text)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if 1 <= month <= 12:
            return datetime(year, month, 1)
        return None

    match = _MONTH_YEAR_RE.match(text)
    if match:
        month = _MONTH_LOOKUP.get(match.group(1).lower())
        if month:
            return datetime(int(match.group(2)), month, 1)
    return None


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a provider-supplied date or period value.

    Args:
        value: datetime, date, or string in any common date/period format

    Returns:
        Naive UTC datetime, or None when the value cannot be interpreted
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if _YEAR_MONTH_RE.match(text):
        return _match_month_label(text)
    month_label = _match_month_label(text)
    if month_label is not None:
        return month_label

    try:
        parsed = date_parser.parse(text, default=_PARSE_DEFAULT)
    except (ValueError, OverflowError):
        return None
    return as_naive_utc(parsed)


def parse_period_label(label: Any) -> Optional[datetime]:
    """Parse a period label to the first day of its calendar month"""
    parsed = parse_date(label)
    if parsed is None:
        return None
    return datetime(parsed.year, parsed.month, 1)


def month_key(value: datetime) -> str:
    """Format a datetime as a YYYY-MM month label"""
    return f"{value.year:04d}-{value.month:02d}"


def normalize_period_label(label: Any) -> str:
    """Return YYYY-MM for parseable labels, the stripped label otherwise"""
    parsed = parse_period_label(label)
    if parsed is not None:
        return month_key(parsed)
    return str(label).strip()


def period_sort_key(label: str) -> Tuple[int, datetime, str]:
    """Chronological sort key; unparseable labels sort after all dated ones"""
    parsed = parse_period_label(label)
    if parsed is None:
        return (1, datetime.min, str(label))
    return (0, parsed, str(label))


def shift_months(value: datetime, months: int) -> datetime:
    """Add (or with a negative count, subtract) calendar months"""
    return value + relativedelta(months=months)


def next_period_label(label: str) -> str:
    """
    Label of the period after `label`, keeping its format.

    "2024-12" -> "2025-01", "March 2024" -> "April 2024"; labels that cannot be
    interpreted become "<label> (Forecast)".
    """
    text = str(label).strip()

    if _YEAR_MONTH_RE.match(text):
        parsed = _match_month_label(text)
        if parsed is not None:
            return month_key(shift_months(parsed, 1))

    match = _MONTH_YEAR_RE.match(text)
    if match and _MONTH_LOOKUP.get(match.group(1).lower()):
        following = shift_months(_match_month_label(text), 1)
        return f"{calendar.month_name[following.month]} {following.year}"

    return f"{text} (Forecast)"


def effective_date(item: Mapping[str, Any]) -> Optional[datetime]:
    """
    Derive the date a line item or invoice applies to.

    Checks invoice_period, start, created_at, date in that order and returns
    the first one that parses.
    """
    for field_name in EFFECTIVE_DATE_FIELDS:
        parsed = parse_date(item.get(field_name))
        if parsed is not None:
            return parsed
    return None
