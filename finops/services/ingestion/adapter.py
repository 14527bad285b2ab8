"""
Ingestion Adapter between the billing API payloads and the billing engine.

Validates the invoice list, tags each CSV record with its owning invoice and
flattens everything into one IngestionResult. Malformed payloads are reported
as explicit failure values here so the billing engine only ever receives
well-formed invoices and flat records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from finops.services.billing.models import Invoice, LineItem
from finops.services.billing.normalizer import parse_currency

logger = structlog.get_logger(__name__)


class PayloadError(Exception):
    """Raised when an API payload does not have the expected shape"""
    pass


class InvoicePayload(BaseModel):
    """One entry of the provider's invoice list"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    invoice_id: str = Field(validation_alias=AliasChoices("invoice_uuid", "invoice_id", "id"))
    invoice_period: Optional[str] = None
    amount: Decimal = Decimal("0")
    created_at: Optional[datetime] = None

    @field_validator("invoice_id", mode="before")
    @classmethod
    def coerce_invoice_id(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("invoice id must not be empty")
        return str(v).strip()

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        """Accept numbers and display strings such as '$1,234.56'"""
        if v is None or v == "":
            return Decimal("0")
        amount = parse_currency(v)
        if amount is None:
            raise ValueError(f"unparseable amount: {v!r}")
        return amount

    @field_validator("created_at", mode="before")
    @classmethod
    def empty_created_at(cls, v):
        return v or None

    def to_invoice(self) -> Invoice:
        return Invoice(
            invoice_id=self.invoice_id,
            period=self.invoice_period,
            amount=self.amount,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class InvoiceRejection:
    """An invoice-list entry that failed validation"""
    index: int
    entry: Any
    reason: str


@dataclass(frozen=True)
class FetchFailure:
    """A per-invoice record fetch that failed"""
    invoice_id: str
    error: str


@dataclass
class IngestionContext:
    """
    Per-run ingestion state.

    schema_described records whether the shape of a record batch has already
    been logged, so it is described once per run rather than once per process.
    """
    schema_described: bool = False

    def describe_schema(self, records: Sequence[Mapping[str, Any]]) -> None:
        if self.schema_described or not records:
            return
        sample = records[0]
        logger.debug(
            "record_schema",
            fields=list(sample.keys()),
            numeric_fields=[
                key for key, value in sample.items()
                if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)
            ],
        )
        self.schema_described = True


@dataclass
class IngestionResult:
    """Invoices and tagged line items ready for the billing engine"""
    invoices: List[Invoice] = field(default_factory=list)
    line_items: List[LineItem] = field(default_factory=list)
    failures: List[FetchFailure] = field(default_factory=list)
    rejections: List[InvoiceRejection] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.failures and not self.rejections


def parse_invoices(entries: Any) -> Tuple[List[Invoice], List[InvoiceRejection]]:
    """
    Validate an invoice list payload.

    Args:
        entries: Decoded JSON invoice list

    Returns:
        (valid invoices, rejected entries)

    Raises:
        PayloadError: If the payload is not a list of mappings
    """
    if not isinstance(entries, list):
        raise PayloadError(f"invoice list must be a list, got {type(entries).__name__}")

    invoices: List[Invoice] = []
    rejections: List[InvoiceRejection] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise PayloadError(f"invoice entry {index} must be a mapping, got {type(entry).__name__}")
        try:
            invoices.append(InvoicePayload.model_validate(dict(entry)).to_invoice())
        except ValidationError as e:
            reason = "; ".join(error["msg"] for error in e.errors())
            rejections.append(InvoiceRejection(index=index, entry=entry, reason=reason))
            logger.warning("invoice_rejected", index=index, reason=reason)
    return invoices, rejections


def tag_line_items(invoice: Invoice, records: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Copy each record and tag it with its owning invoice.

    Adds invoice_uuid, invoice_period and invoice_amount, plus date (the
    invoice creation date) when the record has none. Inputs are not mutated.
    """
    tagged = []
    for record in records:
        item = dict(record)
        item["invoice_uuid"] = invoice.invoice_id
        item["invoice_period"] = invoice.period
        item["invoice_amount"] = invoice.amount
        if not item.get("date") and invoice.created_at is not None:
            item["date"] = invoice.created_at.isoformat()
        tagged.append(item)
    return tagged


def build_ingestion_result(
    invoices: Sequence[Invoice],
    records_by_invoice: Mapping[str, Sequence[Mapping[str, Any]]],
    failures: Optional[Sequence[FetchFailure]] = None,
    context: Optional[IngestionContext] = None,
    rejections: Optional[Sequence[InvoiceRejection]] = None,
) -> IngestionResult:
    """
    Flatten an invoice list and its per-invoice records.

    Args:
        invoices: Already paginated and validated invoices
        records_by_invoice: invoice id -> parsed CSV records
        failures: Per-invoice fetch failures to carry through
        context: Ingestion context for one-time schema description
        rejections: Invoice-list entries that failed validation

    Returns:
        IngestionResult with line items in invoice order
    """
    context = context or IngestionContext()
    result = IngestionResult(
        invoices=list(invoices),
        failures=list(failures or []),
        rejections=list(rejections or []),
    )
    for invoice in invoices:
        records = records_by_invoice.get(invoice.invoice_id) or []
        context.describe_schema(records)
        result.line_items.extend(tag_line_items(invoice, records))

    logger.info(
        "ingestion_result_built",
        invoices=len(result.invoices),
        line_items=len(result.line_items),
        failures=len(result.failures),
        rejections=len(result.rejections),
    )
    return result
