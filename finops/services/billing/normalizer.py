"""
Record Normalizer for billing export line items.

Provider exports do not share a fixed schema: the monetary column may be called
USD, amount, cost, or something else entirely, and values arrive either as
numbers (after tokenizer coercion) or as display strings like "-$1,779.55".
All of the field-name guessing lives here so consumers never hard-code
candidate column names.

Key rules:
- Amounts are signed. Discounts and credits are negative and must never be
  dropped or clamped to zero.
- The invoice's own total (invoice_amount) is never a line-item amount.
- Extraction never raises; a record with no usable value is worth 0.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence, Tuple

from finops.core.config import get_settings

# Checked in order when the primary currency column is absent
AMOUNT_FIELDS: Tuple[str, ...] = ("amount", "cost", "price", "charge")

# Never considered as the amount of a line item
AMOUNT_DENY_LIST = frozenset({
    "hours",
    "invoice_amount",
    "invoice_uuid",
    "invoice_id",
    "invoice_period",
    "start",
    "end",
    "date",
    "created_at",
    "updated_at",
    "description",
    "category",
    "product",
    "name",
    "group_description",
    "type",
    "project_name",
    "project",
    "resource_id",
    "resource_name",
})

DISCOUNT_KEYWORDS: Tuple[str, ...] = ("discount", "credit", "refund", "rebate", "adjustment")
DISCOUNT_TEXT_FIELDS: Tuple[str, ...] = ("description", "category", "product", "name")

# (substring, label), evaluated top to bottom, first match wins
DISCOUNT_CATEGORY_RULES: Sequence[Tuple[str, str]] = (
    ("iaas", "IaaS Discount"),
    ("paas", "PaaS Discount"),
    ("contract", "Contract Discount"),
)
DISCOUNT_CATEGORY_FIELDS: Tuple[str, ...] = ("description", "category", "product")
DEFAULT_DISCOUNT_CATEGORY = "Discounts"

_CURRENCY_STRIP_RE = re.compile(r"[^\d.\-]")
_CURRENCY_LIKE_RE = re.compile(r"^\(?-?\s*[$]?\s*-?\s*[\d,]*\.?\d+\s*\)?$")
_PLAIN_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")

ZERO = Decimal("0")


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a number to a finite Decimal"""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def parse_currency(value: Any) -> Optional[Decimal]:
    """
    Parse a currency value such as "-$1,779.55", "$12.00" or 4.5.

    Every character that is not a digit, decimal point or minus sign is
    stripped. A minus sign counts only when it precedes the first digit.

    Returns:
        Signed Decimal, or None when nothing numeric remains
    """
    if value is None:
        return None
    numeric = _to_decimal(value)
    if numeric is not None or not isinstance(value, str):
        return numeric

    text = value.strip()
    if not text:
        return None

    negative = False
    first_digit = re.search(r"\d", text)
    if first_digit is None:
        return None
    if "-" in text[:first_digit.start()]:
        negative = True
    # Accounting notation: (12.50)
    if text.startswith("(") and text.endswith(")"):
        negative = True

    cleaned = _CURRENCY_STRIP_RE.sub("", text[first_digit.start():]).replace("-", "")
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def _is_currency_like(value: Any) -> bool:
    """A string that is nothing but an amount and carries '$' or a minus sign"""
    if not isinstance(value, str):
        return False
    text = value.strip()
    if "$" not in text and "-" not in text:
        return False
    return bool(_CURRENCY_LIKE_RE.match(text))


def _plain_numeric(value: Any) -> Optional[Decimal]:
    numeric = _to_decimal(value)
    if numeric is not None:
        return numeric
    if isinstance(value, str) and _PLAIN_NUMERIC_RE.match(value.strip()):
        return Decimal(value.strip())
    return None


def extract_amount(record: Mapping[str, Any], currency_field: Optional[str] = None) -> Decimal:
    """
    Extract the signed monetary value of a billing record.

    Priority (first match wins):
    1. The primary currency column (USD unless configured otherwise)
    2. amount, cost, price, charge
    3. The first remaining currency-like or numeric field, skipping the deny-list
    4. Zero

    Args:
        record: Flat key/value billing record
        currency_field: Primary currency column name override

    Returns:
        Signed Decimal amount; negative for discounts and credits
    """
    if currency_field is None:
        currency_field = get_settings().billing.primary_currency_field

    if currency_field in record:
        amount = parse_currency(record.get(currency_field))
        if amount is not None:
            return amount

    for field_name in AMOUNT_FIELDS:
        if field_name in record:
            amount = parse_currency(record.get(field_name))
            if amount is not None:
                return amount

    skipped = set(AMOUNT_FIELDS) | {currency_field}
    for field_name, value in record.items():
        if field_name in skipped or field_name in AMOUNT_DENY_LIST:
            continue
        if _is_currency_like(value):
            amount = parse_currency(value)
            if amount is not None:
                return amount
        amount = _plain_numeric(value)
        if amount is not None:
            return amount

    return ZERO


def _text_fields(record: Mapping[str, Any], field_names: Sequence[str]):
    for field_name in field_names:
        value = record.get(field_name)
        if value is None or isinstance(value, bool):
            continue
        text = str(value).strip().lower()
        if text:
            yield text


def has_discount_keyword(record: Mapping[str, Any]) -> bool:
    """True when a descriptive field names a discount, credit, refund, rebate or adjustment"""
    return any(
        keyword in text
        for text in _text_fields(record, DISCOUNT_TEXT_FIELDS)
        for keyword in DISCOUNT_KEYWORDS
    )


def is_discount(record: Mapping[str, Any], amount: Optional[Decimal] = None) -> bool:
    """
    Classify a record as a discount/credit.

    A record is a discount if its amount is negative OR its description,
    category, product or name mentions a discount keyword, so a $0.00
    "Contract Discount" line is still a discount.

    Args:
        record: Flat key/value billing record
        amount: Already extracted amount, to avoid extracting twice
    """
    if amount is None:
        amount = extract_amount(record)
    if amount < 0:
        return True
    return has_discount_keyword(record)


def discount_category(record: Mapping[str, Any]) -> str:
    """Map a discount record onto the discount taxonomy"""
    texts = list(_text_fields(record, DISCOUNT_CATEGORY_FIELDS))
    for substring, label in DISCOUNT_CATEGORY_RULES:
        if any(substring in text for text in texts):
            return label
    return DEFAULT_DISCOUNT_CATEGORY


def format_currency(value: Any) -> str:
    """Format an amount as US dollars, e.g. '$1,234.56' or '-$20.00'"""
    amount = _to_decimal(value)
    if amount is None:
        amount = parse_currency(value) or ZERO
    quantized = amount.quantize(Decimal("0.01"))
    if quantized < 0:
        return f"-${-quantized:,.2f}"
    return f"${quantized:,.2f}"
