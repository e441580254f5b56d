import csv
import io
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Sequence

import pandas as pd

from suggest import is_fuzzy_match
from utils import format_money, format_percent, get_value, normalize_key_part, parse_date, parse_decimal

# canonical column -> label shown to reviewers
FRIENDLY_NAMES = {
    "skuid": "Product Code",
    "chargeenddate": "Invoice Date",
    "customerdomainname": "Customer Website",
    "partnerid": "Partner ID",
    "partnertaxtotal": "Partner Tax Amount",
}

GROUP_MISSING = "Missing Rows"
GROUP_PRODUCT = "Product Code mismatches"
GROUP_QUANTITY = "Quantity mismatches"
GROUP_DATE = "Date mismatches"
GROUP_OTHER = "Other mismatches"

SUGGESTED_ACTIONS = {
    GROUP_MISSING: "Check whether the row was omitted from one of the invoices.",
    GROUP_PRODUCT: "Please verify the correct product was invoiced.",
    GROUP_QUANTITY: "Investigate reason for quantity difference.",
    GROUP_DATE: "Review and confirm correct invoice date.",
    GROUP_OTHER: "",
}

EXPORT_COLUMNS = ["Row Number", "Field Name", "Our Value", "Microsoft Value",
                  "Explanation", "Suggested Action"]


def friendly_name(column: str) -> str:
    return FRIENDLY_NAMES.get(column.lower(), column)


def _is_percent(column: str) -> bool:
    return "percent" in column.lower()


def format_value(value: str, column: str) -> str:
    raw = value.strip()
    d = parse_decimal(raw.rstrip("%"))
    if d is None:
        return value
    if _is_percent(column) or raw.endswith("%"):
        return format_percent(d)
    return format_money(d)


def group_for(column: str, explanation: str) -> str:
    if explanation.startswith("Row missing"):
        return GROUP_MISSING
    col = column.lower()
    if col == "skuid":
        return GROUP_PRODUCT
    if col == "quantity":
        return GROUP_QUANTITY
    if "date" in col:
        return GROUP_DATE
    return GROUP_OTHER


@dataclass(frozen=True)
class Discrepancy:
    row: int
    column: str
    left_value: str
    right_value: str
    explanation: str
    key: str = ""

    @property
    def group(self) -> str:
        return group_for(self.column, self.explanation)


class DiscrepancyDetector:
    """
    Field-by-field comparison of two canonical tables, either positionally
    (``compare``) or by business key (``compare_by_key``). Each call resets the
    previous results.
    """

    def __init__(self, numeric_tolerance=Decimal("0.01"), date_tolerance_days: int = 0,
                 text_distance: int = 2):
        self.numeric_tolerance = Decimal(str(numeric_tolerance))
        self.date_tolerance_days = int(date_tolerance_days)
        self.text_distance = int(text_distance)
        self.discrepancies: List[Discrepancy] = []
        self.summary: "OrderedDict[str, int]" = OrderedDict()
        self.rows_compared = 0

    @classmethod
    def from_options(cls, options) -> "DiscrepancyDetector":
        return cls(options.numeric_tolerance, options.date_tolerance_days, options.text_distance)

    def _reset(self) -> None:
        self.discrepancies = []
        self.summary = OrderedDict()
        self.rows_compared = 0

    def _add(self, d: Discrepancy) -> None:
        self.discrepancies.append(d)
        self.summary[d.group] = self.summary.get(d.group, 0) + 1

    def is_equal(self, a: str, b: str) -> bool:
        a = (a or "").strip()
        b = (b or "").strip()
        if not a and not b:
            return True
        if not a or not b:
            return False
        da, db = parse_decimal(a), parse_decimal(b)
        if da is not None and db is not None:
            return abs(da - db) <= self.numeric_tolerance
        ta, tb = parse_date(a), parse_date(b)
        if ta is not None and tb is not None:
            return abs((ta - tb).days) <= self.date_tolerance_days
        return is_fuzzy_match(a, b, self.text_distance)

    def explain(self, a: str, b: str, column: str) -> str:
        friendly = friendly_name(column)
        da, db = parse_decimal(a), parse_decimal(b)
        if da is not None and db is not None:
            fmt = format_percent if _is_percent(column) else format_money
            return f"Numeric mismatch in {friendly}: {fmt(da)} vs {fmt(db)}"
        ta, tb = parse_date(a), parse_date(b)
        if ta is not None and tb is not None:
            return f"Date mismatch in {friendly}: {ta.isoformat()} vs {tb.isoformat()}"
        return f"Text mismatch in {friendly}: '{a}' vs '{b}'"

    def _compare_rows(self, row_number: int, left: dict, right: dict,
                      columns: Sequence[str], key: str = "") -> None:
        for col in columns:
            a = get_value(left, col) or ""
            b = get_value(right, col) or ""
            if self.is_equal(a, b):
                continue
            self._add(Discrepancy(row_number, col, a, b, self.explain(a, b, col), key))

    def compare(self, left: pd.DataFrame, right: pd.DataFrame) -> List[Discrepancy]:
        self._reset()
        left_rows = left.to_dict("records")
        right_rows = right.to_dict("records")
        columns = [c for c in left.columns if c in right.columns]
        self.rows_compared = max(len(left_rows), len(right_rows))

        for i in range(self.rows_compared):
            if i >= len(left_rows):
                self._add(Discrepancy(i + 1, "", "", "", "Row missing in left table"))
                continue
            if i >= len(right_rows):
                self._add(Discrepancy(i + 1, "", "", "", "Row missing in right table"))
                continue
            self._compare_rows(i + 1, left_rows[i], right_rows[i], columns)
        return list(self.discrepancies)

    def compare_by_key(self, left: pd.DataFrame, right: pd.DataFrame,
                       key_columns: Sequence[str]) -> List[Discrepancy]:
        """
        Pairs rows sharing a business key, in order of appearance on each side.
        Surplus rows on either side are reported as missing.
        """
        self._reset()
        columns = [c for c in left.columns if c in right.columns and c not in key_columns]

        def index(df: pd.DataFrame) -> "OrderedDict[str, List[tuple]]":
            out: "OrderedDict[str, List[tuple]]" = OrderedDict()
            for line, row in enumerate(df.to_dict("records"), start=1):
                key = "|".join(normalize_key_part(get_value(row, c)) for c in key_columns)
                out.setdefault(key, []).append((line, row))
            return out

        left_idx, right_idx = index(left), index(right)
        keys = list(left_idx) + [k for k in right_idx if k not in left_idx]
        for key in keys:
            lrows = left_idx.get(key, [])
            rrows = right_idx.get(key, [])
            for i in range(max(len(lrows), len(rrows))):
                self.rows_compared += 1
                if i >= len(lrows):
                    self._add(Discrepancy(rrows[i][0], "", "", "", "Row missing in left table", key))
                elif i >= len(rrows):
                    self._add(Discrepancy(lrows[i][0], "", "", "", "Row missing in right table", key))
                else:
                    self._compare_rows(lrows[i][0], lrows[i][1], rrows[i][1], columns, key)
        return list(self.discrepancies)

    def summary_line(self) -> str:
        return ", ".join(f"{count} {group}" for group, count in self.summary.items())

    def summary_text(self) -> str:
        lines = [f"Summary: {self.summary_line()}",
                 f"Total rows compared: {self.rows_compared}",
                 f"Discrepancies found: {len(self.discrepancies)}"]
        lines += [f"{count} rows in group: {group}" for group, count in self.summary.items()]
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for d in self.discrepancies:
            rows.append({
                "Row Number": d.row,
                "Field Name": friendly_name(d.column),
                "Our Value": format_value(d.left_value, d.column),
                "Microsoft Value": format_value(d.right_value, d.column),
                "Explanation": d.explanation,
                "Suggested Action": SUGGESTED_ACTIONS.get(d.group, ""),
            })
        return pd.DataFrame(rows, columns=EXPORT_COLUMNS)

    def to_csv_text(self) -> str:
        buf = io.StringIO()
        buf.write(f"Summary: {self.summary_line()}\n")
        self.to_frame().to_csv(buf, index=False, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
        return buf.getvalue()

    def export_csv(self, path: str) -> None:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(self.to_csv_text())
