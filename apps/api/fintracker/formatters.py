"""Locale-aware value normalization for brokerage statement cells.

Statements exported by the B3 investor area mix Brazilian (``1.234,56``) and
American (``1,234.56``) number formats across files and even across columns,
so numbers are normalized by looking at the separators each token carries
instead of relying on a per-column locale table.
"""

import re
import unicodedata
from datetime import date, datetime

from .errors import DateFormatError, ParseError

EMPTY_MARKERS = {"", "-"}
CURRENCY_MARKERS = ("R$",)
DATE_REGEX = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
CANONICAL_NUMBER_REGEX = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def _is_empty(value: str | None) -> bool:
    return value is None or str(value).strip() in EMPTY_MARKERS


def normalize_text(value: str | None) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    normalized = unicodedata.normalize("NFKD", value)
    cleaned = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    return cleaned.strip().lower()


def fix_mojibake(value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    if "Ã" in value or "Â" in value:
        try:
            return value.encode("latin-1").decode("utf-8")
        except UnicodeError:
            return value
    return value


def sanitize_string(value: str | float | int | None) -> str | None:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if value is None:
        return None
    text = str(value).strip()
    if text in EMPTY_MARKERS:
        return None
    return text


def _canonical_number(text: str) -> str:
    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma == -1 and last_dot == -1:
        return text
    if last_comma != -1 and last_dot != -1:
        if last_comma > last_dot:
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    # Only one separator kind: two trailing digits make it the decimal mark.
    separator = "," if last_comma != -1 else "."
    position = max(last_comma, last_dot)
    head = text[:position].replace(separator, "")
    tail = text[position + 1 :]
    if len(tail) == 2 and tail.isdigit():
        return f"{head}.{tail}"
    return head + tail


def parse_ambiguous_number(value: str | float | int | None) -> float | None:
    """Convert a Brazilian or American formatted number to a float.

    Empty cells and the ``-`` placeholder become ``None``. Anything else that
    does not reduce to a finite float raises :class:`ParseError`.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ParseError(str(value))
    if isinstance(value, (int, float)):
        return float(value)
    raw = str(value)
    text = raw.replace('"', "").strip()
    if text in EMPTY_MARKERS:
        return None
    for marker in CURRENCY_MARKERS:
        text = text.replace(marker, "")
    text = re.sub(r"\s+", "", text)
    if text in EMPTY_MARKERS:
        return None
    canonical = _canonical_number(text)
    if not CANONICAL_NUMBER_REGEX.match(canonical):
        raise ParseError(raw)
    return float(canonical)


def parse_brazilian_date(value: str | date | datetime | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_empty(value):
        return None
    text = str(value).strip()
    match = DATE_REGEX.match(text)
    if not match:
        raise DateFormatError(text)
    day, month, year = (int(part) for part in match.groups())
    try:
        parsed = date(year, month, day)
    except ValueError as exc:
        raise DateFormatError(text, "not a calendar date") from exc
    if (parsed.day, parsed.month, parsed.year) != (day, month, year):
        raise DateFormatError(text, "not a calendar date")
    return parsed


def tokenize(line: str, delimiter: str = ",") -> list[str]:
    """Split one CSV line, honouring double quotes around fields.

    Quotes only toggle the quoted state; escaped quotes (``""``) inside a
    quoted field are not supported.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    fields.append("".join(current).strip())
    return fields


def detect_delimiter(header_line: str) -> str:
    return ";" if ";" in header_line else ","


def extract_ticker(product: str | None) -> str:
    """Return the trading code at the start of a product description.

    ``"PETR4 - PETROLEO BRASILEIRO S.A."`` becomes ``"PETR4"``.
    """
    text = str(product or "")
    hyphen = text.find("-")
    if hyphen == -1:
        return text.strip()
    return text[:hyphen].strip()
