"""
Aggregation Engine for billing line items and invoices.

Folds line items into labeled buckets (category, project, product, month) and
runs the full pipeline: window filter -> aggregation -> trend and forecast.

Key rules:
- Every amount is summed with its sign; discounts reduce the bucket they land in.
- Totals are Decimal, so the result does not depend on input order.
- Sentinel labels (Unknown, Unassigned, No Project Data) are ordinary buckets;
  they are only marked, never hidden or reordered.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from .forecaster import compute_trend_and_forecast
from .models import BucketMapping, Dimension, Invoice, LineItem, MonthlyPoint, SpendSummary
from .normalizer import ZERO, discount_category, extract_amount, is_discount, parse_currency
from .periods import month_key, normalize_period_label, parse_date, parse_period_label, period_sort_key
from .time_window import TimeWindow, filter_invoices, filter_line_items

logger = structlog.get_logger(__name__)

UNKNOWN_LABEL = "Unknown"
UNASSIGNED_LABEL = "Unassigned"
NO_PROJECT_DATA_LABEL = "No Project Data"
SENTINEL_LABELS = frozenset({UNKNOWN_LABEL, UNASSIGNED_LABEL, NO_PROJECT_DATA_LABEL})

# Single-bucket labels used when only invoice totals are available
ALL_SERVICES_LABEL = "All Services"
ALL_PROJECTS_LABEL = "All Projects"
ALL_PRODUCTS_LABEL = "All Products"

CATEGORY_FIELDS: Tuple[str, ...] = ("name", "product", "group_description", "description")
PROJECT_FIELDS: Tuple[str, ...] = ("project_name", "project")
PRODUCT_FIELDS: Tuple[str, ...] = ("product", "name", "type")


def _first_text(item: LineItem, field_names: Sequence[str]) -> Optional[str]:
    for field_name in field_names:
        value = item.get(field_name)
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def category_label(item: LineItem, amount: Optional[Decimal] = None) -> str:
    """
    Category bucket label of a line item.

    An explicit category wins. Otherwise discounts go to the discount taxonomy
    and charges fall back to name, product, group_description, description.
    """
    explicit = _first_text(item, ("category",))
    if explicit:
        return explicit
    if is_discount(item, amount):
        return discount_category(item)
    return _first_text(item, CATEGORY_FIELDS) or UNKNOWN_LABEL


def project_label(item: LineItem) -> str:
    return _first_text(item, PROJECT_FIELDS) or UNASSIGNED_LABEL


def product_label(item: LineItem) -> str:
    return _first_text(item, PRODUCT_FIELDS) or UNKNOWN_LABEL


def month_label(item: LineItem) -> Optional[str]:
    """YYYY-MM label of a line item, or None when no month can be derived"""
    period = item.get("invoice_period")
    if period is not None and str(period).strip():
        return normalize_period_label(period)
    start = parse_date(item.get("start"))
    if start is not None:
        return month_key(start)
    return None


def label_for(item: LineItem, dimension: Dimension, amount: Optional[Decimal] = None) -> Optional[str]:
    """Bucket label of a line item along a dimension; None excludes the item"""
    dimension = Dimension(dimension)
    if dimension == Dimension.CATEGORY:
        return category_label(item, amount)
    if dimension == Dimension.PROJECT:
        return project_label(item)
    if dimension == Dimension.PRODUCT:
        return product_label(item)
    return month_label(item)


def aggregate(items: Iterable[LineItem], dimension: Dimension) -> BucketMapping:
    """
    Sum signed line-item amounts per label along one dimension.

    Args:
        items: Line items, typically already window-filtered
        dimension: category, project, product or month

    Returns:
        Mapping of label to signed total
    """
    buckets: BucketMapping = {}
    for item in items:
        amount = extract_amount(item)
        label = label_for(item, dimension, amount)
        if label is None:
            continue
        buckets[label] = buckets.get(label, ZERO) + amount
    return buckets


def sort_buckets(buckets: Mapping[str, Decimal]) -> List[Tuple[str, Decimal]]:
    """Presentation order: descending total, ties by label ascending"""
    return sorted(buckets.items(), key=lambda entry: (-entry[1], entry[0]))


def is_sentinel_label(label: str) -> bool:
    return label in SENTINEL_LABELS


def build_monthly_series(month_buckets: Mapping[str, Decimal]) -> List[MonthlyPoint]:
    """
    Order month buckets chronologically.

    Labels that describe the same month ("2024-2", "Feb 2024") are merged
    under their YYYY-MM form before sorting.
    """
    merged: Dict[str, Decimal] = {}
    for label, total in month_buckets.items():
        key = normalize_period_label(label)
        merged[key] = merged.get(key, ZERO) + total
    return [
        MonthlyPoint(label=label, total=merged[label])
        for label in sorted(merged, key=period_sort_key)
    ]


def line_items_for_invoices(items: Iterable[LineItem], invoices: Iterable[Invoice]) -> List[LineItem]:
    """Line items whose invoice_uuid belongs to one of the given invoices"""
    invoice_ids = {invoice.invoice_id for invoice in invoices}
    return [item for item in items if item.get("invoice_uuid") in invoice_ids]


def distinct_invoice_count(items: Iterable[LineItem]) -> int:
    return len({item.get("invoice_uuid") for item in items if item.get("invoice_uuid")})


def aggregate_invoice_totals(items: Iterable[LineItem]) -> Tuple[BucketMapping, Decimal, int]:
    """
    Monthly totals from the invoice_amount tagged on each line item.

    Each invoice is counted once. Items without an invoice id or period, and
    invoices whose total is not positive, are skipped.

    Returns:
        (month buckets, grand total, number of invoices counted)
    """
    seen: Set[Any] = set()
    months: BucketMapping = {}
    total = ZERO
    for item in items:
        invoice_id = item.get("invoice_uuid")
        period = item.get("invoice_period")
        if not invoice_id or not period or invoice_id in seen:
            continue
        amount = parse_currency(item.get("invoice_amount"))
        if amount is None or amount <= 0:
            continue
        seen.add(invoice_id)
        label = normalize_period_label(period)
        months[label] = months.get(label, ZERO) + amount
        total += amount
    return months, total, len(seen)


def _summarize_invoice_totals(items: List[LineItem]) -> SpendSummary:
    month_buckets, total, invoice_count = aggregate_invoice_totals(items)
    if total == 0:
        return SpendSummary.empty()

    series = build_monthly_series(month_buckets)
    return SpendSummary(
        total_amount=total,
        item_count=len(items),
        invoice_count=invoice_count,
        category_totals={ALL_SERVICES_LABEL: total},
        project_totals={ALL_PROJECTS_LABEL: total},
        product_totals={ALL_PRODUCTS_LABEL: total},
        monthly_series=series,
        forecast=compute_trend_and_forecast(series),
        used_invoice_totals=True,
    )


def summarize_line_items(
    items: Iterable[LineItem],
    window: TimeWindow = TimeWindow.ALL_TIME,
    now: Optional[datetime] = None,
) -> SpendSummary:
    """
    Run the line-item pipeline: window filter, all four aggregations, forecast.

    When no line item carries a non-zero amount, the invoice totals tagged on
    the items are used instead.

    Args:
        items: Tagged line items
        window: Time window to report on
        now: Reference time for the window (defaults to the current time)

    Returns:
        SpendSummary for the window
    """
    window = TimeWindow(window)
    selected = filter_line_items(items, window, now=now)
    if not selected:
        return SpendSummary.empty()

    amounts = [extract_amount(item) for item in selected]
    if not any(amounts):
        logger.info("line_items_without_amounts", window=window.value, items=len(selected))
        return _summarize_invoice_totals(selected)

    category_totals: BucketMapping = {}
    project_totals: BucketMapping = {}
    product_totals: BucketMapping = {}
    month_totals: BucketMapping = {}
    builders: List[Tuple[BucketMapping, Callable[[LineItem, Decimal], Optional[str]]]] = [
        (category_totals, category_label),
        (project_totals, lambda item, _amount: project_label(item)),
        (product_totals, lambda item, _amount: product_label(item)),
        (month_totals, lambda item, _amount: month_label(item)),
    ]
    for item, amount in zip(selected, amounts):
        for buckets, labeler in builders:
            label = labeler(item, amount)
            if label is not None:
                buckets[label] = buckets.get(label, ZERO) + amount

    series = build_monthly_series(month_totals)
    total = sum(amounts, ZERO)
    summary = SpendSummary(
        total_amount=total,
        item_count=len(selected),
        invoice_count=distinct_invoice_count(selected),
        category_totals=category_totals,
        project_totals=project_totals,
        product_totals=product_totals,
        monthly_series=series,
        forecast=compute_trend_and_forecast(series),
    )
    logger.info(
        "line_items_summarized",
        window=window.value,
        items=summary.item_count,
        invoices=summary.invoice_count,
        months=len(series),
        total=str(total),
    )
    return summary


def summarize_invoices(
    invoices: Iterable[Invoice],
    window: TimeWindow = TimeWindow.ALL_TIME,
    now: Optional[datetime] = None,
    line_items: Optional[Iterable[LineItem]] = None,
) -> SpendSummary:
    """
    Run the invoice-level pipeline.

    The monthly series comes from invoice totals per period. When line items
    are supplied, those belonging to the selected invoices also fill the
    category, project and product buckets.

    Args:
        invoices: Invoices to report on
        window: Time window to report on
        now: Reference time for the window (defaults to the current time)
        line_items: Optional tagged line items for the dimension breakdowns
    """
    window = TimeWindow(window)
    selected = filter_invoices(invoices, window, now=now)
    if not selected:
        return SpendSummary.empty()

    month_totals: BucketMapping = {}
    for invoice in selected:
        period = parse_period_label(invoice.period) or parse_date(invoice.created_at)
        label = month_key(period) if period is not None else str(invoice.period)
        month_totals[label] = month_totals.get(label, ZERO) + invoice.amount

    series = build_monthly_series(month_totals)
    summary = SpendSummary(
        total_amount=sum((invoice.amount for invoice in selected), ZERO),
        item_count=0,
        invoice_count=len(selected),
        monthly_series=series,
        forecast=compute_trend_and_forecast(series),
    )

    if line_items is not None:
        joined = line_items_for_invoices(line_items, selected)
        summary.item_count = len(joined)
        summary.category_totals = aggregate(joined, Dimension.CATEGORY)
        summary.product_totals = aggregate(joined, Dimension.PRODUCT)
        summary.project_totals = aggregate(joined, Dimension.PROJECT) or {NO_PROJECT_DATA_LABEL: ZERO}

    logger.info(
        "invoices_summarized",
        window=window.value,
        invoices=summary.invoice_count,
        months=len(series),
        total=str(summary.total_amount),
    )
    return summary
