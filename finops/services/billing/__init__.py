"""
Billing Aggregation & Forecasting Engine.

Turns provider billing line items and invoices into time-windowed spend
breakdowns and a next-month forecast. Every stage is a pure function of its
input; fetching and caching live in the ingestion and cache services.

Main Components:
- normalizer: amount extraction and discount classification
- time_window: invoice and line-item window filters
- aggregator: category/project/product/month buckets and full pipelines
- forecaster: regime-dependent trend and forecast
- explorer: drill-down, search, grouping and sorting of line items
"""

from .aggregator import (
    aggregate,
    aggregate_invoice_totals,
    build_monthly_series,
    is_sentinel_label,
    line_items_for_invoices,
    sort_buckets,
    summarize_invoices,
    summarize_line_items,
)
from .explorer import (
    LineItemGroup,
    distinct_labels,
    group_line_items,
    items_in_bucket,
    search_line_items,
    sort_line_items,
)
from .forecaster import append_forecast_point, compute_trend_and_forecast
from .models import (
    Dimension,
    ForecastMethod,
    ForecastResult,
    Invoice,
    MonthlyPoint,
    SpendSummary,
    TrendDirection,
)
from .normalizer import discount_category, extract_amount, format_currency, is_discount
from .periods import next_period_label
from .time_window import TimeWindow, filter_invoices, filter_line_items

__all__ = [
    "Dimension",
    "ForecastMethod",
    "ForecastResult",
    "Invoice",
    "LineItemGroup",
    "MonthlyPoint",
    "SpendSummary",
    "TimeWindow",
    "TrendDirection",
    "aggregate",
    "aggregate_invoice_totals",
    "append_forecast_point",
    "build_monthly_series",
    "compute_trend_and_forecast",
    "discount_category",
    "distinct_labels",
    "extract_amount",
    "filter_invoices",
    "filter_line_items",
    "format_currency",
    "group_line_items",
    "is_discount",
    "is_sentinel_label",
    "items_in_bucket",
    "line_items_for_invoices",
    "next_period_label",
    "search_line_items",
    "sort_buckets",
    "sort_line_items",
    "summarize_invoices",
    "summarize_line_items",
]
