"""
Line-item drill-down helpers.

A bucket selected in a summary is drilled into with items_in_bucket, which
matches on exactly the same derived label the aggregation used, so the items
returned always add up to the bucket total.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple

from .aggregator import label_for
from .models import Dimension, LineItem
from .normalizer import ZERO, extract_amount, parse_currency
from .periods import DATE_SORT_FIELDS, parse_date

SEARCH_FIELDS: Tuple[str, ...] = ("description", "project_name", "product", "category", "group_description")
AMOUNT_SORT_FIELDS = frozenset({"USD", "amount"})
NUMERIC_SORT_FIELDS = frozenset({"hours"})
UNKNOWN_DATE_LABEL = "Unknown Date"


@dataclass
class LineItemGroup:
    """Line items sharing one label, with their signed total"""
    label: str
    items: List[LineItem] = field(default_factory=list)
    total: Decimal = ZERO


def items_in_bucket(items: Iterable[LineItem], dimension: Dimension, label: str) -> List[LineItem]:
    """Line items whose derived label along `dimension` equals `label` exactly"""
    return [item for item in items if label_for(item, dimension) == label]


def search_line_items(items: Iterable[LineItem], term: str) -> List[LineItem]:
    """Case-insensitive substring search over the descriptive fields"""
    needle = (term or "").strip().lower()
    items = list(items)
    if not needle:
        return items
    return [
        item for item in items
        if any(
            isinstance(item.get(field_name), str) and needle in item[field_name].lower()
            for field_name in SEARCH_FIELDS
        )
    ]


def group_line_items(items: Iterable[LineItem], dimension: Dimension) -> List[LineItemGroup]:
    """
    Group line items by their derived label.

    Groups are ordered by descending total, then label. Items without a month
    are grouped under "Unknown Date" when grouping by month.
    """
    groups: Dict[str, LineItemGroup] = {}
    for item in items:
        amount = extract_amount(item)
        label = label_for(item, dimension, amount) or UNKNOWN_DATE_LABEL
        group = groups.setdefault(label, LineItemGroup(label=label))
        group.items.append(item)
        group.total += amount
    return sorted(groups.values(), key=lambda group: (-group.total, group.label))


def _sort_key(item: LineItem, field_name: str) -> Any:
    if field_name in AMOUNT_SORT_FIELDS:
        return extract_amount(item)
    if field_name in NUMERIC_SORT_FIELDS:
        return parse_currency(item.get(field_name)) or ZERO
    if field_name in DATE_SORT_FIELDS:
        return parse_date(item.get(field_name)) or datetime.min
    value = item.get(field_name)
    return "" if value is None else str(value).lower()


def sort_line_items(items: Iterable[LineItem], field_name: str = "USD", descending: bool = True) -> List[LineItem]:
    """Sort line items by amount, hours, a date field, or any text field"""
    return sorted(items, key=lambda item: _sort_key(item, field_name), reverse=descending)


def distinct_labels(items: Iterable[LineItem], dimension: Dimension) -> List[str]:
    """Sorted distinct labels along a dimension"""
    labels = {label_for(item, dimension) for item in items}
    labels.discard(None)
    return sorted(labels)
