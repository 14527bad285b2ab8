#!/usr/bin/env python3
"""
FinOps billing report.

Fetches invoices and their CSV line items from the billing API (or the local
cache), then prints the spend breakdown, trend and forecast for a time window.

Usage:
    # Report on the last 3 months
    finops-report --token $FINOPS_API_TOKEN --window last3Months

    # Same report as JSON
    finops-report --window last3Months --json

    # Report on a local CSV export instead of the API
    finops-report --csv invoice.csv

    # Show or clear the cache
    finops-report --cache-status
    finops-report --clear-cache
"""

import argparse
import asyncio
import json
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from finops.core.config import get_settings
from finops.core.logging_config import configure_logging
from finops.services.billing import (
    SpendSummary,
    TimeWindow,
    filter_line_items,
    format_currency,
    is_sentinel_label,
    sort_buckets,
    summarize_invoices,
    summarize_line_items,
)
from finops.services.billing.models import Invoice
from finops.services.cache import CacheStore
from finops.services.ingestion import BillingAPIClient, IngestionResult, parse_csv, parse_invoices, write_csv

TOP_BUCKETS = 5


def _invoice_entry(invoice: Invoice) -> Dict[str, Any]:
    return {
        "invoice_uuid": invoice.invoice_id,
        "invoice_period": invoice.period,
        "amount": str(invoice.amount),
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }


def fetch_data(token: Optional[str]) -> IngestionResult:
    """Fetch all invoices and line items from the billing API"""

    async def _fetch() -> IngestionResult:
        async with BillingAPIClient(token=token) as client:
            return await client.fetch_all_invoice_data()

    return asyncio.run(_fetch())


def load_data(args, store: Optional[CacheStore]) -> Tuple[List[Invoice], List[Dict[str, Any]]]:
    """Invoices and line items from a CSV file, the cache, or the API"""
    if args.csv:
        return [], parse_csv(Path(args.csv).read_text(encoding="utf-8"))

    if store is not None and not args.refresh and not store.needs_refresh(args.account, "line_items"):
        cached_items = store.load(args.account, "line_items")
        cached_invoices = store.load(args.account, "invoices")
        if cached_items is not None and cached_invoices is not None:
            print(f"📦 Using cached data from {cached_items.last_updated:%Y-%m-%d %H:%M} UTC", file=sys.stderr)
            invoices, _ = parse_invoices(cached_invoices.data or [])
            return invoices, cached_items.data or []

    print("🔍 Fetching invoices from the billing API...", file=sys.stderr)
    result = fetch_data(args.token)
    print(f"   ✅ {len(result.invoices)} invoices, {len(result.line_items):,} line items", file=sys.stderr)
    for failure in result.failures:
        print(f"   ⚠️ Invoice {failure.invoice_id}: {failure.error}", file=sys.stderr)
    for rejection in result.rejections:
        print(f"   ⚠️ Skipped invoice entry {rejection.index}: {rejection.reason}", file=sys.stderr)

    if store is not None:
        store.save(args.account, "invoices", [_invoice_entry(invoice) for invoice in result.invoices])
        store.save(args.account, "line_items", result.line_items)
    return result.invoices, result.line_items


def print_buckets(title: str, buckets) -> None:
    print(f"{title}:")
    ranked = sort_buckets(buckets)
    for label, total in ranked[:TOP_BUCKETS]:
        marker = " *" if is_sentinel_label(label) else ""
        print(f"   {label}{marker}: {format_currency(total)}")
    if len(ranked) > TOP_BUCKETS:
        print(f"   ... {len(ranked) - TOP_BUCKETS} more")
    print()


def print_summary(summary: SpendSummary, window: TimeWindow) -> None:
    print()
    print(f"📊 Spend Summary ({window.value})")
    print(f"   Total Spend: {format_currency(summary.total_amount)}")
    print(f"   Line Items: {summary.item_count:,}")
    print(f"   Invoices: {summary.invoice_count:,}")
    if summary.used_invoice_totals:
        print("   ℹ️ No line-item amounts found, using invoice totals")
    print()

    forecast = summary.forecast
    if forecast is not None:
        print("📈 Trend & Forecast:")
        print(f"   Trend: {forecast.trend_text}")
        print(f"   Next Month: {format_currency(forecast.forecast_amount)}")
        print(f"   Confidence: {forecast.confidence_label}")
        print()

    print_buckets("💰 Top Categories", summary.category_totals)
    print_buckets("📁 Top Projects", summary.project_totals)
    print_buckets("📦 Top Products", summary.product_totals)

    if summary.monthly_series:
        print("🗓️ Monthly Spend:")
        for point in summary.monthly_series:
            print(f"   {point.label}: {format_currency(point.total)}")


def print_cache_status(store: CacheStore, account: str) -> None:
    status = store.cache_status(account)
    print(f"📦 Cache Status for {account}")
    if not status["is_cached"]:
        print("   No cached line items")
        return
    print(f"   Last Updated: {status['last_updated']}")
    print(f"   Age: {status['age_hours']} hours")
    print(f"   Line Items: {status['item_count']:,}")
    print(f"   Stale: {'⚠️ yes' if status['is_stale'] else '✅ no'}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function."""
    parser = argparse.ArgumentParser(
        description="FinOps Billing Report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  finops-report --window last3Months
  finops-report --window allTime --json
  finops-report --csv invoice.csv
  finops-report --window last3Months --export line_items.csv
  finops-report --cache-status
        """,
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--cache-status", action="store_true",
                            help="Show cache status for the account")
    mode_group.add_argument("--clear-cache", action="store_true",
                            help="Delete cached data for the account")
    mode_group.add_argument("--csv", metavar="FILE",
                            help="Report on a local CSV export instead of the API")

    parser.add_argument("--token", help="Billing API token (default: FINOPS_API_TOKEN)")
    parser.add_argument("--account", default="default",
                        help="Account id used as the cache key (default: default)")
    parser.add_argument("--window", default=TimeWindow.ALL_TIME.value,
                        choices=[window.value for window in TimeWindow],
                        help="Time window to report on (default: allTime)")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.add_argument("--export", metavar="FILE",
                        help="Also write the line items in the window to a CSV file")
    parser.add_argument("--no-cache", action="store_true", help="Neither read nor write the cache")
    parser.add_argument("--refresh", action="store_true", help="Ignore cached data and fetch again")
    parser.add_argument("--log-level", help="Log level (default: FINOPS_LOG_LEVEL)")

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, json_logs=get_settings().app.log_json)

    store = None if args.no_cache else CacheStore()

    try:
        if args.cache_status or args.clear_cache:
            if store is None:
                print("❌ --no-cache cannot be combined with cache commands")
                return 1
            if args.cache_status:
                print_cache_status(store, args.account)
            else:
                removed = store.clear_account(args.account)
                print(f"🗑️ Cleared {removed} cached documents for {args.account}")
            return 0

        window = TimeWindow(args.window)
        invoices, line_items = load_data(args, store)
        if line_items or not invoices:
            summary = summarize_line_items(line_items, window)
        else:
            summary = summarize_invoices(invoices, window)

        if args.export:
            exported = filter_line_items(line_items, window)
            Path(args.export).write_text(write_csv(exported), encoding="utf-8")
            print(f"💾 Exported {len(exported):,} line items to {args.export}", file=sys.stderr)

        if args.json:
            output = summary.to_dict()
            output["window"] = window.value
            print(json.dumps(output, indent=2))
        else:
            print_summary(summary, window)

    except Exception as e:
        print(f"❌ Report failed: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
