"""
Tests for the CSV tokenizer.
"""

import pytest

from finops.services.ingestion.tokenizer import coerce_value, parse_csv, write_csv


class TestCoerceValue:
    """Test cases for cell typing"""

    @pytest.mark.parametrize("raw,expected", [
        ("42", 42),
        ("-7", -7),
        ("1.50", 1.5),
        ("TRUE", True),
        ("false", False),
        ("", None),
        ("   ", None),
        (None, None),
        ("Droplet", "Droplet"),
        ("007", "007"),
        ("-$1,779.55", "-$1,779.55"),
    ])
    def test_coercion(self, raw, expected):
        assert coerce_value(raw) == expected

    def test_zero_is_a_number(self):
        assert coerce_value("0") == 0


class TestParseCSV:
    """Test cases for parse_csv"""

    def test_comma_separated_with_blank_line(self):
        text = (
            "product,description,hours,USD\n"
            "Droplets,Droplet s-1vcpu,744,5.00\n"
            "\n"
            "Spaces,Spaces subscription,,5.00\n"
        )

        rows = parse_csv(text)

        assert rows == [
            {"product": "Droplets", "description": "Droplet s-1vcpu", "hours": 744, "USD": 5.0},
            {"product": "Spaces", "description": "Spaces subscription", "hours": None, "USD": 5.0},
        ]

    @pytest.mark.parametrize("delimiter", [";", "\t", "|"])
    def test_delimiter_detection(self, delimiter):
        text = delimiter.join(["product", "USD"]) + "\n" + delimiter.join(["Droplets", "12.5"]) + "\n"

        assert parse_csv(text) == [{"product": "Droplets", "USD": 12.5}]

    def test_quoted_currency_string_is_kept(self):
        text = 'description,USD\n"Contract Discount","-$1,779.55"\n'

        assert parse_csv(text) == [{"description": "Contract Discount", "USD": "-$1,779.55"}]

    def test_header_whitespace_and_bom(self):
        text = "\ufeff product , USD \nDroplets,3\n"

        assert parse_csv(text) == [{"product": "Droplets", "USD": 3}]

    def test_empty_text(self):
        assert parse_csv("") == []
        assert parse_csv("  \n ") == []
        assert parse_csv(None) == []

    def test_header_only(self):
        assert parse_csv("product,USD\n") == []


class TestWriteCSV:
    """Test cases for write_csv"""

    def test_explicit_columns(self):
        items = [{"a": 1, "b": None}, {"a": 2, "c": "x"}]

        assert write_csv(items, fieldnames=["a", "b", "c"]) == "a,b,c\n1,,\n2,,x\n"

    def test_columns_from_items(self):
        items = [{"product": "Droplets", "USD": 5}, {"product": "Spaces", "project_name": "web"}]

        assert write_csv(items) == "product,USD,project_name\nDroplets,5,\nSpaces,,web\n"

    def test_empty(self):
        assert write_csv([]) == ""

    def test_output_parses_back(self):
        items = [{"description": "Droplet, large", "USD": 5.5}]

        assert parse_csv(write_csv(items)) == items
