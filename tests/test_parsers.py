from decimal import Decimal

import pytest

from fipe_etl.errors import MalformedCode, MalformedPrice, ParseError, UnknownMonth
from fipe_etl.parsers import (
    decode_reference_label,
    decode_year_code,
    encode_year_code,
    normalize_price,
)


@pytest.mark.parametrize(
    "code, expected",
    [("2020-1", (2020, 1)), ("32000-1", (32000, 1)), ("1995-3", (1995, 3)), ("2024-6", (2024, 6))],
)
def test_decode_year_code(code, expected):
    assert decode_year_code(code) == expected
    assert encode_year_code(*expected) == code


@pytest.mark.parametrize("code", ["2020", "2020-1-2", "-1", "2020-", "abcd-1", "2020-x", "", "2020--1"])
def test_decode_year_code_rejects_malformed(code):
    with pytest.raises(MalformedCode):
        decode_year_code(code)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("R$ 4.147,00", "4147.00"),
        ("R$ 147,90", "147.90"),
        ("R$ 1.234.567,89", "1234567.89"),
        ("R$ 0,50", "0.50"),
        ("R$ 85.311,00 ", "85311.00"),
    ],
)
def test_normalize_price(raw, expected):
    normalized = normalize_price(raw)
    assert normalized == expected
    assert normalized.count(".") == 1
    assert "," not in normalized


def test_normalized_price_keeps_value():
    raw = "R$ 12.345.678,05"
    assert Decimal(normalize_price(raw)) == Decimal(12345678) + Decimal("0.05")


@pytest.mark.parametrize("raw", ["4147.00", "R$ 4,147.00", "R$ 41.47,00", "R$ abc,00", "US$ 10,00", ""])
def test_normalize_price_rejects_unexpected_shapes(raw):
    with pytest.raises(MalformedPrice):
        normalize_price(raw)


@pytest.mark.parametrize(
    "label, expected",
    [
        ("dezembro/2025 ", (12, 2025)),
        ("janeiro/2024", (1, 2024)),
        ("  Março/2023  ", (3, 2023)),
        ("marco/2023", (3, 2023)),
        ("SETEMBRO/2001 ", (9, 2001)),
    ],
)
def test_decode_reference_label(label, expected):
    assert decode_reference_label(label) == expected


def test_decode_reference_label_rejects_unknown_month():
    with pytest.raises(UnknownMonth):
        decode_reference_label("xyz/2025")


@pytest.mark.parametrize("label", ["dezembro 2025", "dezembro/", "dezembro/20x5"])
def test_decode_reference_label_rejects_malformed(label):
    with pytest.raises(MalformedCode):
        decode_reference_label(label)


def test_parse_errors_are_value_errors():
    assert issubclass(ParseError, ValueError)
