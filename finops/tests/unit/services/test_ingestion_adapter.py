"""
Tests for the ingestion adapter.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from finops.services.billing.models import Invoice
from finops.services.ingestion.adapter import (
    FetchFailure,
    IngestionContext,
    PayloadError,
    build_ingestion_result,
    parse_invoices,
    tag_line_items,
)


class TestParseInvoices:
    """Test cases for invoice list validation"""

    def test_valid_entries(self):
        entries = [
            {"invoice_uuid": "a-1", "invoice_period": "2024-01", "amount": "$1,234.56",
             "created_at": "2024-02-01T10:00:00Z", "extra": "ignored"},
            {"id": 42, "invoice_period": "2024-02", "amount": 10},
        ]

        invoices, rejections = parse_invoices(entries)

        assert rejections == []
        assert invoices[0] == Invoice(
            invoice_id="a-1",
            period="2024-01",
            amount=Decimal("1234.56"),
            created_at=datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc),
        )
        assert invoices[1].invoice_id == "42"
        assert invoices[1].amount == Decimal("10")

    def test_missing_amount_is_zero(self):
        invoices, _ = parse_invoices([{"invoice_uuid": "a", "amount": ""}])

        assert invoices[0].amount == Decimal("0")
        assert invoices[0].created_at is None

    def test_invalid_entries_are_rejected_individually(self):
        entries = [
            {"invoice_period": "2024-01", "amount": "5"},
            {"invoice_uuid": "ok", "amount": "5"},
            {"invoice_uuid": "bad", "amount": "five dollars"},
            {"invoice_uuid": "  ", "amount": "5"},
        ]

        invoices, rejections = parse_invoices(entries)

        assert [invoice.invoice_id for invoice in invoices] == ["ok"]
        assert [rejection.index for rejection in rejections] == [0, 2, 3]
        assert "unparseable amount" in rejections[1].reason

    @pytest.mark.parametrize("payload", [None, {"invoices": []}, "invoices"])
    def test_payload_must_be_a_list(self, payload):
        with pytest.raises(PayloadError):
            parse_invoices(payload)

    def test_entries_must_be_mappings(self):
        with pytest.raises(PayloadError):
            parse_invoices([{"invoice_uuid": "a"}, ["not", "a", "mapping"]])


class TestTagLineItems:
    """Test cases for tagging records with their invoice"""

    INVOICE = Invoice(
        invoice_id="inv-1",
        period="2024-03",
        amount=Decimal("42.00"),
        created_at=datetime(2024, 4, 1, tzinfo=timezone.utc),
    )

    def test_tags_are_added(self):
        records = [{"product": "Droplets", "USD": 5.0}]

        tagged = tag_line_items(self.INVOICE, records)

        assert tagged == [{
            "product": "Droplets",
            "USD": 5.0,
            "invoice_uuid": "inv-1",
            "invoice_period": "2024-03",
            "invoice_amount": Decimal("42.00"),
            "date": "2024-04-01T00:00:00+00:00",
        }]

    def test_records_are_not_mutated(self):
        records = [{"product": "Droplets"}]

        tag_line_items(self.INVOICE, records)

        assert records == [{"product": "Droplets"}]

    def test_existing_date_is_kept(self):
        tagged = tag_line_items(self.INVOICE, [{"date": "2024-03-15"}])

        assert tagged[0]["date"] == "2024-03-15"


class TestBuildIngestionResult:
    """Test cases for flattening invoices and records"""

    def test_flattens_in_invoice_order(self):
        invoices = [
            Invoice(invoice_id="b", period="2024-02", amount=Decimal("2")),
            Invoice(invoice_id="a", period="2024-01", amount=Decimal("1")),
        ]
        records = {"a": [{"product": "A"}], "b": [{"product": "B1"}, {"product": "B2"}]}

        result = build_ingestion_result(invoices, records)

        assert [item["product"] for item in result.line_items] == ["B1", "B2", "A"]
        assert result.is_complete

    def test_failures_are_carried_through(self):
        invoices = [Invoice(invoice_id="a", period="2024-01", amount=Decimal("1"))]
        failure = FetchFailure(invoice_id="a", error="HTTP 500")

        result = build_ingestion_result(invoices, {}, failures=[failure])

        assert result.line_items == []
        assert result.failures == [failure]
        assert not result.is_complete

    def test_schema_is_described_once_per_context(self):
        context = IngestionContext()
        invoices = [Invoice(invoice_id="a", period="2024-01", amount=Decimal("1"))]

        build_ingestion_result(invoices, {"a": [{"USD": 1}]}, context=context)

        assert context.schema_described
        assert not IngestionContext().schema_described

    def test_empty_records_do_not_mark_schema(self):
        context = IngestionContext()

        context.describe_schema([])

        assert not context.schema_described
