from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

import pandas as pd

from errorlog import LogSink, Severity
from utils import cell_text, get_value, parse_date, safe_decimal

PRICING_FIELDS = [
    "PartnerDiscountPercentage",
    "PartnerEffectiveUnitPrice",
    "CustomerUnitPrice",
    "CustomerPerDayUnitPrice",
    "CustomerEffectiveUnitPrice",
    "PartnerTaxTotal",
]

CRITICAL_FIELDS = [
    "CustomerSubTotal",
    "EffectiveDays",
    "Quantity",
    "PartnerTotal",
    "PartnerDiscountPercentage",
    "CustomerDiscountPercentage",
]

DISCOUNT_PAIR = ("PartnerDiscountPercentage", "CustomerDiscountPercentage")
TOTAL_PAIR = ("PartnerTotal", "CustomerSubTotal")


@dataclass
class QualityReport:
    source_file: str
    row_count: int = 0
    errors: Counter = field(default_factory=Counter)
    warnings: Counter = field(default_factory=Counter)
    blank_counts: Dict[str, int] = field(default_factory=dict)
    blank_threshold: Decimal = Decimal("0.1")

    @property
    def error_count(self) -> int:
        return sum(self.errors.values())

    @property
    def warning_count(self) -> int:
        return sum(self.warnings.values())

    def blank_columns(self) -> Dict[str, int]:
        limit = self.blank_threshold * self.row_count
        return {k: v for k, v in self.blank_counts.items() if self.row_count and v > limit}

    def summary(self) -> str:
        top = self.errors.most_common(1)
        top_error = top[0][0] if top else "None"
        blanks = "; ".join(f"{k}: {v}/{self.row_count}" for k, v in self.blank_columns().items())
        return (f"Total rows: {self.row_count}\n"
                f"Errors: {self.error_count}\n"
                f"Warnings: {self.warning_count}\n"
                f"Most common error: {top_error}\n"
                f"Columns with blanks >{int(self.blank_threshold * 100)}%: {blanks}")


def _context(row) -> str:
    customer = cell_text(row, "CustomerName")
    sku = cell_text(row, "SkuId") or cell_text(row, "PartNumber")
    return f"Customer: {customer}, SKU: {sku}"


def _check_hierarchy(row, note, line, ctx, check_discounts, check_totals) -> None:
    partner_discount, customer_discount = (cell_text(row, c) for c in DISCOUNT_PAIR)
    if check_discounts and partner_discount and customer_discount and \
            safe_decimal(partner_discount) < safe_decimal(customer_discount):
        note(Severity.ERROR, line, "PartnerDiscountPercentage",
             f"Partner discount below customer discount ({customer_discount}%)", partner_discount, ctx)

    partner_total, customer_subtotal = (cell_text(row, c) for c in TOTAL_PAIR)
    if check_totals and partner_total and customer_subtotal and \
            abs(safe_decimal(partner_total)) > abs(safe_decimal(customer_subtotal)):
        note(Severity.ERROR, line, "PartnerTotal",
             f"Partner total exceeds customer subtotal ({customer_subtotal})", partner_total, ctx)


def validate(df: pd.DataFrame,
             log: LogSink,
             source_file: str = "",
             blank_threshold=Decimal("0.1")) -> QualityReport:
    """
    Business-rule checks on one table, independent of the other side.
    Findings go to the log and are counted in the returned report; the table
    is never modified.
    """
    report = QualityReport(source_file, len(df), blank_threshold=Decimal(str(blank_threshold)))

    def note(severity, row, column, message, raw="", context=""):
        log.record(severity, row, column, message, raw, source_file, context)
        if severity == Severity.ERROR:
            report.errors[message] += 1
        elif severity == Severity.WARNING:
            report.warnings[message] += 1

    present = [c for c in PRICING_FIELDS if c in df.columns]
    for col in PRICING_FIELDS:
        if col not in df.columns:
            log.record(Severity.INFO, 0, col, "Column not present in source", "", source_file)

    discount_cols = [c for c in df.columns if "discountpercentage" in c.lower()]
    check_discounts = all(c in df.columns for c in DISCOUNT_PAIR)
    check_totals = all(c in df.columns for c in TOTAL_PAIR)
    date_cols = [c for c in df.columns if "date" in c.lower()]
    total_cols = [c for c in df.columns if "total" in c.lower()]

    for line, row in enumerate(df.to_dict("records"), start=1):
        quantity = safe_decimal(get_value(row, "Quantity"))
        qty_positive = quantity > 0
        ctx = _context(row)

        for col in present:
            raw = cell_text(row, col)
            if qty_positive and (raw == "" or safe_decimal(raw) == 0):
                note(Severity.WARNING, line, col,
                     f"Value is 0 or blank while Quantity is {quantity}", raw, ctx)

        for col in discount_cols:
            raw = cell_text(row, col)
            if raw == "":
                continue
            val = safe_decimal(raw)
            if val < 0 or val > 100:
                note(Severity.ERROR, line, col, "Discount percentage out of bounds (0-100)", raw, ctx)
            elif val < 1 or val > 90:
                note(Severity.WARNING, line, col, "Suspicious discount (<1% or >90%)", raw, ctx)

        # absent pricing columns count as zero; skipped when the source has none
        if present and qty_positive and all(safe_decimal(get_value(row, c)) == 0 for c in PRICING_FIELDS):
            note(Severity.ERROR, line, "-",
                 "All pricing fields zero or blank while Quantity not zero", "", ctx)

        # a fully discounted customer line carries no margin to check
        if safe_decimal(get_value(row, "CustomerDiscountPercentage")) != 100:
            _check_hierarchy(row, note, line, ctx, check_discounts, check_totals)

        for col in date_cols:
            raw = cell_text(row, col)
            if raw and parse_date(raw) is None:
                note(Severity.ERROR, line, col, "Invalid date format", raw, ctx)

        for col in total_cols:
            val = safe_decimal(get_value(row, col))
            if val < 0:
                note(Severity.WARNING, line, col, "Negative total value", str(val), ctx)

    for col in CRITICAL_FIELDS:
        if col not in df.columns:
            continue
        affected = sum(1 for v in df[col].tolist()
                       if str(v).strip() == "" or safe_decimal(v) == 0)
        report.blank_counts[col] = affected
        ratio = Decimal(affected) / Decimal(len(df)) if len(df) else Decimal(0)
        if ratio > report.blank_threshold:
            note(Severity.WARNING, 0, col,
                 f"More than {int(ratio * 100)}% of rows have zero or blank values in column {col}")

    return report
