import re
import unicodedata

import pandas as pd

from errorlog import LogSink, Severity
from utils import format_date, format_decimal, parse_date, parse_decimal

NUMERIC_COLUMNS = {
    c.lower() for c in (
        "UnitPrice", "EffectiveUnitPrice", "Quantity", "Subtotal", "TaxTotal", "Total",
        "BillableQuantity", "PartnerUnitPrice", "PartnerEffectiveUnitPrice",
        "PartnerSubTotal", "PartnerTaxTotal", "PartnerTotal",
    )
}
DATE_SUFFIXES = ("date", "datetime")
_KEEP_CONTROL = {"\r", "\n", "\t"}
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_WHITESPACE = re.compile(r"\s+")
_LEADING_ZEROS = re.compile(r"^0+(?=\d)")


def clean_string(s) -> str:
    if s is None or (isinstance(s, float) and s != s):
        return ""
    s = str(s)
    s = "".join(ch for ch in s
                if ch in _KEEP_CONTROL or not unicodedata.category(ch).startswith("C"))
    return s.strip()


def is_date_column(name: str) -> bool:
    return name.strip().lower().endswith(DATE_SUFFIXES)


def is_numeric_column(name: str) -> bool:
    return name.strip().lower() in NUMERIC_COLUMNS


def keeps_leading_zeros(name: str) -> bool:
    n = name.lower()
    return "id" in n or "sku" in n


def normalize_text(value: str, column: str) -> str:
    s = _WHITESPACE.sub(" ", value)
    if not keeps_leading_zeros(column):
        s = _LEADING_ZEROS.sub("", s)
    return s


def normalize_cell(value, column: str, row: int, log: LogSink, source_file: str = "") -> str:
    """Canonical text for one cell. Unparsable values are logged and kept as-is."""
    cleaned = clean_string(value)
    if not cleaned:
        return ""

    if is_date_column(column):
        d = parse_date(cleaned)
        if d is not None:
            return format_date(d)
        log.record(Severity.WARNING, row, column,
                   f"The column '{column}' expected a date but found '{cleaned}'",
                   cleaned, source_file)
        return cleaned

    if is_numeric_column(column):
        num = parse_decimal(_NON_NUMERIC.sub("", cleaned))
        if num is not None:
            return format_decimal(num)
        log.record(Severity.WARNING, row, column,
                   f"The column '{column}' expected a numeric value but found '{cleaned}'",
                   cleaned, source_file)
        return cleaned

    return normalize_text(cleaned, column)


def standardize(df: pd.DataFrame, log: LogSink, source_file: str = "") -> pd.DataFrame:
    """
    Returns a cleaned copy of a raw text table: control characters stripped,
    dates rewritten as YYYY-MM-DD, numeric columns as invariant decimals and
    text whitespace collapsed. Row numbers in log entries are 1-based data rows.
    """
    columns = [clean_string(c) for c in df.columns]
    data = {}
    for pos, col in enumerate(columns):
        values = df.iloc[:, pos].tolist()
        data[pos] = [
            normalize_cell(v, col, i, log, source_file)
            for i, v in enumerate(values, start=1)
        ]
    out = pd.DataFrame(data, index=df.index, dtype=object)
    out.columns = columns
    return out
