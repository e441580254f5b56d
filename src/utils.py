import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d{3}(\D|$))")

# ISO-8601 variants first, then locale formats
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%d-%b-%Y",
    "%d %b %Y",
    "%b %d, %Y",
    "%d.%m.%Y",
)


def is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def parse_decimal(text: Any) -> Optional[Decimal]:
    """Locale-invariant decimal parse. Returns None instead of raising."""
    if text is None:
        return None
    if isinstance(text, Decimal):
        return text
    s = str(text).strip()
    if not s:
        return None
    s = _THOUSANDS_RE.sub("", s)
    if not _NUMBER_RE.match(s):
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def safe_decimal(value: Any) -> Decimal:
    d = parse_decimal(value)
    return d if d is not None else Decimal(0)


def parse_date(text: Any) -> Optional[date]:
    if text is None:
        return None
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text
    s = str(text).strip()
    if not s:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def format_decimal(d: Decimal) -> str:
    """Invariant text, no exponent, scale kept ("2.50" stays "2.50")."""
    if d == 0:
        d = abs(d)
    return format(d, "f")


def _two_places(d: Decimal) -> str:
    q = d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    s = format(q, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return "0" if s in ("-0", "") else s


def format_money(d: Decimal) -> str:
    return _two_places(d)


def format_percent(d: Decimal) -> str:
    return _two_places(d) + "%"


def format_signed(d: Decimal) -> str:
    s = _two_places(d)
    return s if s.startswith("-") or s == "0" else "+" + s


def get_value(row: Mapping[str, Any], column: str) -> Optional[str]:
    """
    Schema-aware cell lookup: None when the column does not exist,
    "" when it exists but is blank.
    """
    if column not in row:
        return None
    value = row[column]
    if value is None:
        return ""
    try:
        if value != value:  # NaN
            return ""
    except TypeError:
        pass
    return str(value)


def cell_text(row: Mapping[str, Any], column: str) -> str:
    return (get_value(row, column) or "").strip()


def normalize_key_part(value: Any) -> str:
    return "" if value is None else str(value).strip().upper()
