"""
CSV tokenizer for per-invoice billing exports.

Turns CSV text into a list of flat dicts keyed by the header row, with numeric
strings coerced to int/float, true/false to bool and empty cells to None.
"""

import csv
import io
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

CANDIDATE_DELIMITERS = ",\t|;"

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?$")


def coerce_value(value: Optional[str]) -> Any:
    """Best-effort typing of a single CSV cell"""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_RE.match(text):
        # Leading zeros are identifiers, not numbers
        if len(text.lstrip("-")) > 1 and text.lstrip("-").startswith("0"):
            return text
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return text


def _sniff_dialect(text: str):
    # Blank lines make every delimiter look inconsistent
    sample = "\n".join(line for line in text.splitlines() if line.strip())[:4096]
    try:
        return csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS)
    except csv.Error:
        return csv.excel


def parse_csv(text: str) -> List[Dict[str, Any]]:
    """
    Parse CSV text with a header row.

    Args:
        text: Raw CSV text; the delimiter is detected among , TAB | ;

    Returns:
        One dict per non-empty data row
    """
    text = (text or "").lstrip("\ufeff")
    if not text or not text.strip():
        return []

    dialect = _sniff_dialect(text)
    reader = csv.DictReader(io.StringIO(text), dialect=dialect)

    rows: List[Dict[str, Any]] = []
    for raw in reader:
        if not any(value and str(value).strip() for value in raw.values() if not isinstance(value, list)):
            continue
        row = {}
        for key, value in raw.items():
            if key is None:
                # Extra cells without a header
                continue
            row[key.strip()] = coerce_value(value)
        rows.append(row)

    logger.debug(
        "csv_parsed",
        rows=len(rows),
        fields=len(reader.fieldnames or []),
        delimiter=getattr(dialect, "delimiter", ","),
    )
    return rows


def write_csv(items: Iterable[Dict[str, Any]], fieldnames: Optional[Sequence[str]] = None) -> str:
    """
    Export line items as CSV text.

    Columns default to the keys of the first item followed by any keys that
    only appear later. Missing values become empty cells.
    """
    items = list(items)
    if not items:
        return ""
    if fieldnames is None:
        fieldnames = []
        for item in items:
            for key in item:
                if key not in fieldnames:
                    fieldnames.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(fieldnames), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for item in items:
        writer.writerow({key: ("" if item.get(key) is None else item.get(key)) for key in fieldnames})
    return buffer.getvalue()
