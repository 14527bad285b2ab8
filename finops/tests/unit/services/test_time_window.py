"""
Tests for invoice and line-item time-window filtering.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from finops.services.billing.models import Invoice
from finops.services.billing.time_window import TimeWindow, filter_invoices, filter_line_items

NOW = datetime(2024, 6, 15, 12, 0)


def make_invoice(invoice_id, period, amount="100.00", created_at=None):
    return Invoice(invoice_id=invoice_id, period=period, amount=Decimal(amount), created_at=created_at)


class TestTimeWindow:
    """Test cases for TimeWindow parsing"""

    def test_canonical_values(self):
        assert TimeWindow("lastMonth") == TimeWindow.LAST_MONTH
        assert TimeWindow("allTime") == TimeWindow.ALL_TIME

    @pytest.mark.parametrize("alias,expected", [
        ("1month", TimeWindow.LAST_MONTH),
        ("3months", TimeWindow.LAST_3_MONTHS),
        ("6months", TimeWindow.LAST_6_MONTHS),
        ("12months", TimeWindow.LAST_12_MONTHS),
        ("all", TimeWindow.ALL_TIME),
    ])
    def test_aliases(self, alias, expected):
        assert TimeWindow(alias) == expected

    def test_unknown_window_raises(self):
        with pytest.raises(ValueError):
            TimeWindow("lastDecade")


class TestFilterInvoices:
    """Test cases for invoice window filtering"""

    def test_last_month_is_anchored_to_latest_invoice(self):
        """Test lastMonth selects only the most recent invoice month, not the calendar month"""
        invoices = [
            make_invoice("jan", "2024-01"),
            make_invoice("feb", "2024-02"),
            make_invoice("mar", "2024-03"),
        ]

        selected = filter_invoices(invoices, TimeWindow.LAST_MONTH, now=NOW)

        assert [invoice.invoice_id for invoice in selected] == ["mar"]

    def test_last_month_keeps_every_invoice_of_that_month(self):
        invoices = [
            make_invoice("a", "2024-03"),
            make_invoice("b", "March 2024"),
            make_invoice("c", "2024-02"),
        ]

        selected = filter_invoices(invoices, TimeWindow.LAST_MONTH)

        assert {invoice.invoice_id for invoice in selected} == {"a", "b"}

    def test_rolling_window_includes_buffer_month(self):
        """Test last3Months reaches back N + 1 months"""
        invoices = [make_invoice(f"m{month}", f"2024-{month:02d}") for month in range(1, 7)]

        selected = filter_invoices(invoices, TimeWindow.LAST_3_MONTHS, now=NOW)

        assert [invoice.invoice_id for invoice in selected] == ["m3", "m4", "m5", "m6"]

    def test_all_time_uses_epoch_floor(self):
        invoices = [
            make_invoice("old", "1999-12"),
            make_invoice("ok", "2000-01"),
            make_invoice("new", "2024-05"),
        ]

        selected = filter_invoices(invoices, TimeWindow.ALL_TIME, now=NOW)

        assert [invoice.invoice_id for invoice in selected] == ["ok", "new"]

    def test_undated_invoices_are_excluded(self):
        invoices = [
            make_invoice("undated", "unknown"),
            make_invoice("created", None, created_at=datetime(2024, 5, 2)),
        ]

        selected = filter_invoices(invoices, TimeWindow.ALL_TIME, now=NOW)

        assert [invoice.invoice_id for invoice in selected] == ["created"]

    def test_empty_input(self):
        assert filter_invoices([], TimeWindow.LAST_MONTH) == []
        assert filter_invoices([make_invoice("x", "unknown")], TimeWindow.LAST_MONTH) == []

    def test_input_is_not_mutated(self):
        invoices = [make_invoice("a", "2020-01"), make_invoice("b", "2024-06")]

        filter_invoices(invoices, TimeWindow.LAST_3_MONTHS, now=NOW)

        assert [invoice.invoice_id for invoice in invoices] == ["a", "b"]


class TestFilterLineItems:
    """Test cases for line-item window filtering"""

    def items(self):
        return [
            {"id": "2023-01", "start": "2023-01-10"},
            {"id": "2023-09", "start": "2023-09-10"},
            {"id": "2024-01", "start": "2024-01-10"},
            {"id": "2024-03-10", "start": "2024-03-10"},
            {"id": "2024-03-20", "start": "2024-03-20"},
            {"id": "2024-06", "start": "2024-06-01"},
            {"id": "undated", "description": "Droplet"},
        ]

    def ids(self, items):
        return {item["id"] for item in items}

    def test_all_time_returns_everything(self):
        assert len(filter_line_items(self.items(), TimeWindow.ALL_TIME, now=NOW)) == 7

    def test_rolling_window_from_now(self):
        """Test last3Months keeps items on or after now - 3 months"""
        selected = filter_line_items(self.items(), TimeWindow.LAST_3_MONTHS, now=NOW)

        assert self.ids(selected) == {"2024-03-20", "2024-06", "undated"}

    def test_undated_items_are_included(self):
        """Test fail-open inclusion of items without a determinable date"""
        for window in TimeWindow:
            selected = filter_line_items(self.items(), window, now=NOW)
            assert "undated" in self.ids(selected)

    def test_windows_are_monotonic(self):
        """Test allTime >= last12 >= last6 >= last3"""
        items = self.items()
        all_time = self.ids(filter_line_items(items, TimeWindow.ALL_TIME, now=NOW))
        last12 = self.ids(filter_line_items(items, TimeWindow.LAST_12_MONTHS, now=NOW))
        last6 = self.ids(filter_line_items(items, TimeWindow.LAST_6_MONTHS, now=NOW))
        last3 = self.ids(filter_line_items(items, TimeWindow.LAST_3_MONTHS, now=NOW))

        assert all_time >= last12 >= last6 >= last3
        assert "2023-01" not in last12
        assert "2023-09" in last12
        assert "2024-01" in last6

    def test_timezone_aware_now(self):
        from datetime import timezone

        selected = filter_line_items(self.items(), TimeWindow.LAST_MONTH, now=NOW.replace(tzinfo=timezone.utc))

        assert self.ids(selected) == {"2024-06", "undated"}
