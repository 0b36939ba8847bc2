"""Decoders for raw FIPE field encodings."""
from __future__ import annotations

import re
import unicodedata
from typing import Dict, Tuple

from fipe_etl.errors import MalformedCode, MalformedPrice, UnknownMonth

MONTHS: Dict[str, int] = {
    "janeiro": 1,
    "fevereiro": 2,
    "marco": 3,
    "abril": 4,
    "maio": 5,
    "junho": 6,
    "julho": 7,
    "agosto": 8,
    "setembro": 9,
    "outubro": 10,
    "novembro": 11,
    "dezembro": 12,
}

# "R$ 4.147,00", "R$ 147,00", "R$ 1.234.567,89"
_PRICE_RE = re.compile(r"^R\$\s*(?P<units>\d{1,3}(?:\.\d{3})*|\d+),(?P<cents>\d{2})$")
_DIGITS_RE = re.compile(r"^\d+$")


def decode_year_code(value: str) -> Tuple[int, int]:
    """Split a ``"<year>-<fuelCode>"`` code into ``(year, fuel_code)``.

    >>> decode_year_code("2020-1")
    (2020, 1)
    """
    parts = value.strip().split("-")
    if len(parts) != 2:
        raise MalformedCode(f"expected '<year>-<fuel>' but got {value!r}")
    year_str, fuel_str = parts
    if not _DIGITS_RE.match(year_str) or not _DIGITS_RE.match(fuel_str):
        raise MalformedCode(f"non-numeric year/fuel code {value!r}")
    return int(year_str), int(fuel_str)


def encode_year_code(year: int, fuel_code: int) -> str:
    return f"{year}-{fuel_code}"


def normalize_price(value: str) -> str:
    """Convert ``"R$ 4.147,00"`` into ``"4147.00"``."""
    match = _PRICE_RE.match(value.strip())
    if match is None:
        raise MalformedPrice(f"unrecognised price {value!r}")
    units = match.group("units").replace(".", "")
    return f"{int(units)}.{match.group('cents')}"


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def decode_reference_label(label: str) -> Tuple[int, int]:
    """Decode ``"dezembro/2025 "`` into ``(month, year)``.

    Month names are matched case-insensitively, with or without accents.
    """
    parts = label.strip().lower().split("/")
    if len(parts) != 2:
        raise MalformedCode(f"expected '<month>/<year>' but got {label!r}")
    month_name, year_str = (part.strip() for part in parts)
    month = MONTHS.get(_fold(month_name))
    if month is None:
        raise UnknownMonth(f"unknown month {month_name!r} in {label!r}")
    if not _DIGITS_RE.match(year_str):
        raise MalformedCode(f"non-numeric year in {label!r}")
    return month, int(year_str)
