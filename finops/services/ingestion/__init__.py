"""
Billing data ingestion: API retrieval, CSV tokenizing and tagging of line items.
"""

from .adapter import (
    FetchFailure,
    IngestionContext,
    IngestionResult,
    InvoicePayload,
    InvoiceRejection,
    PayloadError,
    build_ingestion_result,
    parse_invoices,
    tag_line_items,
)
from .client import BillingAPIClient, BillingAPIError
from .tokenizer import parse_csv, write_csv

__all__ = [
    "BillingAPIClient",
    "BillingAPIError",
    "FetchFailure",
    "IngestionContext",
    "IngestionResult",
    "InvoicePayload",
    "InvoiceRejection",
    "PayloadError",
    "build_ingestion_result",
    "parse_csv",
    "parse_invoices",
    "tag_line_items",
    "write_csv",
]
