"""
Tests for line-item drill-down, search, grouping and sorting.
"""

from decimal import Decimal

from finops.services.billing.aggregator import aggregate
from finops.services.billing.explorer import (
    distinct_labels,
    group_line_items,
    items_in_bucket,
    search_line_items,
    sort_line_items,
)
from finops.services.billing.models import Dimension
from finops.services.billing.normalizer import extract_amount

DROPLET_SMALL = {"category": "Compute", "product": "Droplets", "project_name": "web",
                 "description": "Droplet s-1vcpu", "USD": 10, "start": "2024-01-02"}
DROPLET_LARGE = {"category": "Compute", "product": "Droplets",
                 "description": "Droplet s-2vcpu", "USD": 20, "start": "2024-01-05"}
BACKUPS = {"category": "Compute Extras", "product": "Backups", "description": "Backups", "USD": 5}
DISCOUNT = {"description": "Contract Discount", "USD": -3}

ITEMS = [DROPLET_SMALL, DROPLET_LARGE, BACKUPS, DISCOUNT]


class TestDrillDown:
    """Test cases for items_in_bucket"""

    def test_exact_label_match(self):
        """Test 'Compute' does not pick up 'Compute Extras'"""
        assert items_in_bucket(ITEMS, Dimension.CATEGORY, "Compute") == [DROPLET_SMALL, DROPLET_LARGE]

    def test_drill_down_adds_up_to_bucket_total(self):
        buckets = aggregate(ITEMS, Dimension.CATEGORY)

        for label, total in buckets.items():
            items = items_in_bucket(ITEMS, Dimension.CATEGORY, label)
            assert sum(extract_amount(item) for item in items) == total

    def test_discount_bucket(self):
        assert items_in_bucket(ITEMS, Dimension.CATEGORY, "Contract Discount") == [DISCOUNT]

    def test_unknown_label(self):
        assert items_in_bucket(ITEMS, Dimension.PRODUCT, "Kubernetes") == []


class TestSearch:
    """Test cases for search_line_items"""

    def test_case_insensitive_substring(self):
        assert search_line_items(ITEMS, "DROPLET") == [DROPLET_SMALL, DROPLET_LARGE]

    def test_searches_project_name(self):
        assert search_line_items(ITEMS, "web") == [DROPLET_SMALL]

    def test_empty_term_returns_everything(self):
        assert search_line_items(ITEMS, "") == ITEMS
        assert search_line_items(ITEMS, "   ") == ITEMS


class TestGrouping:
    """Test cases for group_line_items"""

    def test_group_by_project(self):
        groups = group_line_items(ITEMS, Dimension.PROJECT)

        assert [(group.label, group.total) for group in groups] == [
            ("Unassigned", Decimal("22")),
            ("web", Decimal("10")),
        ]
        assert groups[0].items == [DROPLET_LARGE, BACKUPS, DISCOUNT]

    def test_group_by_month_marks_undated(self):
        groups = group_line_items(ITEMS, Dimension.MONTH)

        labels = {group.label: group.total for group in groups}
        assert labels == {"2024-01": Decimal("30"), "Unknown Date": Decimal("2")}


class TestSorting:
    """Test cases for sort_line_items"""

    def test_sort_by_amount(self):
        assert sort_line_items(ITEMS, "USD") == [DROPLET_LARGE, DROPLET_SMALL, BACKUPS, DISCOUNT]
        assert sort_line_items(ITEMS, "USD", descending=False) == [DISCOUNT, BACKUPS, DROPLET_SMALL, DROPLET_LARGE]

    def test_sort_by_date_puts_undated_last(self):
        assert sort_line_items(ITEMS, "start") == [DROPLET_LARGE, DROPLET_SMALL, BACKUPS, DISCOUNT]

    def test_sort_by_text_field(self):
        ordered = sort_line_items(ITEMS, "description", descending=False)

        assert [item["description"] for item in ordered] == [
            "Backups", "Contract Discount", "Droplet s-1vcpu", "Droplet s-2vcpu",
        ]

    def test_input_is_not_mutated(self):
        items = list(ITEMS)

        sort_line_items(items, "USD", descending=False)

        assert items == ITEMS


class TestDistinctLabels:
    """Test cases for distinct_labels"""

    def test_category_labels(self):
        assert distinct_labels(ITEMS, Dimension.CATEGORY) == ["Compute", "Compute Extras", "Contract Discount"]

    def test_month_labels_skip_undated(self):
        assert distinct_labels(ITEMS, Dimension.MONTH) == ["2024-01"]
