"""
Time-Window Filter for invoices and line items.

Invoice filtering and line-item filtering deliberately differ:

- Invoices arrive in monthly batches, so "last month" is anchored to the most
  recent invoice, and the rolling windows carry a one-month buffer for
  invoices still arriving for the edge month. A fixed epoch floor rejects
  corrupt dates.
- Line items are queried interactively, so every window is a fixed look-back
  from wall-clock now, and items whose date cannot be determined are kept.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import structlog

from finops.core.config import get_settings

from .models import Invoice, LineItem
from .periods import as_naive_utc, effective_date, parse_date, parse_period_label, shift_months

logger = structlog.get_logger(__name__)


class TimeWindow(str, Enum):
    """Named relative time ranges"""
    LAST_MONTH = "lastMonth"
    LAST_3_MONTHS = "last3Months"
    LAST_6_MONTHS = "last6Months"
    LAST_12_MONTHS = "last12Months"
    ALL_TIME = "allTime"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            return _WINDOW_ALIASES.get(value.strip().lower())
        return None


_WINDOW_ALIASES = {
    "1month": TimeWindow.LAST_MONTH,
    "lastmonth": TimeWindow.LAST_MONTH,
    "3months": TimeWindow.LAST_3_MONTHS,
    "last3months": TimeWindow.LAST_3_MONTHS,
    "6months": TimeWindow.LAST_6_MONTHS,
    "last6months": TimeWindow.LAST_6_MONTHS,
    "12months": TimeWindow.LAST_12_MONTHS,
    "last12months": TimeWindow.LAST_12_MONTHS,
    "all": TimeWindow.ALL_TIME,
    "alltime": TimeWindow.ALL_TIME,
}

# Nominal look-back per rolling window
WINDOW_MONTHS = {
    TimeWindow.LAST_MONTH: 1,
    TimeWindow.LAST_3_MONTHS: 3,
    TimeWindow.LAST_6_MONTHS: 6,
    TimeWindow.LAST_12_MONTHS: 12,
}


def invoice_date(invoice: Invoice) -> Optional[datetime]:
    """Effective date of an invoice: its billing period, else its creation time"""
    period = parse_period_label(invoice.period)
    if period is not None:
        return period
    return parse_date(invoice.created_at)


def _most_recent_date(invoices: Sequence[Invoice]) -> Optional[datetime]:
    dates = [d for d in (invoice_date(invoice) for invoice in invoices) if d is not None]
    return max(dates) if dates else None


def filter_invoices(
    invoices: Iterable[Invoice],
    window: TimeWindow,
    now: Optional[datetime] = None,
) -> List[Invoice]:
    """
    Select the invoices that fall inside a time window.

    Args:
        invoices: Invoices to filter
        window: Named time window
        now: Reference time for rolling windows (defaults to the current time)

    Returns:
        New list with the selected invoices, in input order
    """
    window = TimeWindow(window)
    invoices = list(invoices)
    if not invoices:
        return []

    if window == TimeWindow.LAST_MONTH:
        anchor = _most_recent_date(invoices)
        if anchor is None:
            return []
        # No fallback to an earlier month when the latest month is empty
        return [
            invoice for invoice in invoices
            if (d := invoice_date(invoice)) is not None
            and d.year == anchor.year and d.month == anchor.month
        ]

    billing = get_settings().billing
    if window == TimeWindow.ALL_TIME:
        floor = datetime(billing.invoice_epoch_year, 1, 1)
    else:
        now = as_naive_utc(now or datetime.now(timezone.utc))
        floor = shift_months(now, -(WINDOW_MONTHS[window] + billing.invoice_window_buffer_months))

    selected = [
        invoice for invoice in invoices
        if (d := invoice_date(invoice)) is not None and d >= floor
    ]
    logger.debug(
        "invoices_filtered",
        window=window.value,
        floor=floor.isoformat(),
        total=len(invoices),
        selected=len(selected),
    )
    return selected


def filter_line_items(
    items: Iterable[LineItem],
    window: TimeWindow,
    now: Optional[datetime] = None,
) -> List[LineItem]:
    """
    Select line items whose effective date falls inside a time window.

    allTime returns every item. Items with no determinable date are included
    rather than silently hidden.

    Args:
        items: Line items to filter
        window: Named time window
        now: Reference time (defaults to the current time)

    Returns:
        New list with the selected items, in input order
    """
    window = TimeWindow(window)
    items = list(items)
    if window == TimeWindow.ALL_TIME:
        return items

    now = as_naive_utc(now or datetime.now(timezone.utc))
    floor = shift_months(now, -WINDOW_MONTHS[window])

    selected = []
    undated = 0
    for item in items:
        item_date = effective_date(item)
        if item_date is None:
            undated += 1
            selected.append(item)
        elif item_date >= floor:
            selected.append(item)

    if undated:
        logger.debug("undated_line_items_included", window=window.value, count=undated)
    return selected
