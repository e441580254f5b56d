import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pandas as pd

from errorlog import ErrorLog, LogSink, Severity
from mapping import CANONICAL_COLUMNS
from rules import ReconciliationOptions
from utils import (
    format_date, format_money, format_signed, is_blank, normalize_key_part,
    parse_date, safe_decimal,
)

logger = logging.getLogger(__name__)

STATUS_MATCHED = "Matched"
STATUS_MISMATCHED = "Mismatched"
STATUS_MISSING_IN_VENDOR = "Missing in vendor"
STATUS_MISSING_IN_HUB = "Missing in hub"
STATUS_DATA_ERROR = "Data Error"

HUB = "Hub"
VENDOR = "Vendor"

# legacy header -> canonical column
ALIASES = OrderedDict([
    ("SubscriptionGuid", "SubscriptionId"),
    ("SubId", "SubscriptionId"),
    ("CustomerName", "CustomerDomainName"),
    ("CustomerId", "CustomerDomainName"),
    ("DomainUrl", "CustomerDomainName"),
    ("ProductGuid", "ProductId"),
    ("MPNId", "ProductId"),
    ("PartNumber", "ProductId"),
    ("MSRP", "MSRPPrice"),
    ("BillableQuantity", "Quantity"),
])

FINANCIAL_COLUMNS = ["Quantity", "Subtotal", "Total", "TaxTotal", "UnitPrice", "EffectiveUnitPrice"]

DUPLICATE_ERROR_THRESHOLD = 5

RESULT_VALUE_FIELDS = ["Quantity", "Subtotal", "Total", "TaxTotal", "UnitPrice"]


@dataclass
class GroupTotals:
    quantity: Decimal = Decimal(0)
    subtotal: Decimal = Decimal(0)
    total: Decimal = Decimal(0)
    tax_total: Decimal = Decimal(0)
    price_x_qty: Decimal = Decimal(0)
    rows: int = 0

    def add(self, row) -> None:
        qty = safe_decimal(row.get("Quantity"))
        price = safe_decimal(row.get("EffectiveUnitPrice"))
        if price == 0:
            price = safe_decimal(row.get("UnitPrice"))
        self.quantity += qty
        self.subtotal += safe_decimal(row.get("Subtotal"))
        self.total += safe_decimal(row.get("Total"))
        self.tax_total += safe_decimal(row.get("TaxTotal"))
        self.price_x_qty += price * qty
        self.rows += 1

    @property
    def unit_price(self) -> Decimal:
        if self.quantity == 0:
            return Decimal(0)
        return self.price_x_qty / self.quantity

    def values(self) -> Dict[str, Decimal]:
        return {
            "Quantity": self.quantity,
            "Subtotal": self.subtotal,
            "Total": self.total,
            "TaxTotal": self.tax_total,
            "UnitPrice": self.unit_price,
        }


@dataclass
class ReconciliationSummary:
    matched: int = 0
    missing_in_vendor: int = 0
    missing_in_hub: int = 0
    mismatched: int = 0
    data_errors: int = 0
    total_keys: int = 0
    reported_keys: int = 0
    skipped_keys: int = 0
    duplicate_keys: int = 0
    hidden_keys: int = 0
    hub_rows: int = 0
    vendor_rows: int = 0
    partner_filtered_rows: int = 0
    over_billed: Decimal = Decimal(0)
    under_billed: Decimal = Decimal(0)

    def to_text(self) -> str:
        return (f"Matched: {self.matched}\n"
                f"Missing in vendor: {self.missing_in_vendor}\n"
                f"Missing in hub: {self.missing_in_hub}\n"
                f"Mismatched: {self.mismatched}\n"
                f"Data errors: {self.data_errors}\n"
                f"Keys: total {self.total_keys}, reported {self.reported_keys}, "
                f"skipped {self.skipped_keys}, duplicate {self.duplicate_keys}, "
                f"hidden {self.hidden_keys}\n"
                f"Rows: hub {self.hub_rows}, vendor {self.vendor_rows}, "
                f"partner filtered {self.partner_filtered_rows}\n"
                f"Over-billed: {format_money(self.over_billed)}\n"
                f"Under-billed: {format_money(self.under_billed)}")

    def as_dict(self) -> Dict[str, object]:
        out = dict(self.__dict__)
        out["over_billed"] = format_money(self.over_billed)
        out["under_billed"] = format_money(self.under_billed)
        return out


@dataclass
class ReconciliationResult:
    table: pd.DataFrame
    summary: ReconciliationSummary
    key_columns: Tuple[str, ...] = ()

    def by_status(self, status: str) -> pd.DataFrame:
        return self.table.loc[self.table["Status"] == status]


def result_columns(key_columns) -> List[str]:
    cols = ["Status", "Key"] + list(key_columns)
    for f in RESULT_VALUE_FIELDS:
        cols += [f"Hub{f}", f"Vendor{f}"]
    return cols + ["Differences", "IsHighPriority", "Reason"]


def merge_aliases(df: pd.DataFrame) -> pd.DataFrame:
    """
    Folds legacy headers into their canonical column. Blank target cells are
    filled from the alias; the alias column is dropped unless it is itself
    canonical.
    """
    out = df.astype(object).fillna("")
    for alias, target in ALIASES.items():
        if alias not in out.columns:
            continue
        if target not in out.columns:
            out[target] = out[alias]
        else:
            blank = out[target].map(is_blank)
            out.loc[blank, target] = out.loc[blank, alias]
        if alias not in CANONICAL_COLUMNS:
            out = out.drop(columns=[alias])
    return out


def prepare(df: pd.DataFrame, options: ReconciliationOptions) -> pd.DataFrame:
    out = merge_aliases(df)
    needed = list(options.key_columns) + FINANCIAL_COLUMNS + ["PartnerId", options.tenant_column]
    for col in needed:
        if col not in out.columns:
            out[col] = ""
    out = out.fillna("")
    for col in options.key_columns:
        out[col] = out[col].map(normalize_key_part)
    if "ChargeStartDate" in out.columns:
        out["ChargeStartDate"] = out["ChargeStartDate"].map(_canonical_date)
    return out


def _canonical_date(value) -> str:
    d = parse_date(value)
    return format_date(d) if d is not None else normalize_key_part(value)


def filter_partner(hub: pd.DataFrame, vendor: pd.DataFrame, log: LogSink) -> pd.DataFrame:
    """
    Restricts vendor rows to the partner id when hub and vendor each name
    exactly one, identical id. Any other combination leaves vendor untouched.
    """
    hub_ids = sorted({normalize_key_part(v) for v in hub["PartnerId"] if normalize_key_part(v)})
    vendor_ids = [normalize_key_part(v) for v in vendor["PartnerId"]]
    vendor_set = sorted({v for v in vendor_ids if v})
    if len(hub_ids) != 1:
        log.record(Severity.WARNING, 0, "PartnerId",
                   f"Partner filter skipped: hub names {len(hub_ids)} partner ids", ", ".join(hub_ids), HUB)
        return vendor
    partner = hub_ids[0]
    if vendor_set != hub_ids:
        log.record(Severity.WARNING, 0, "PartnerId",
                   f"Partner filter skipped: vendor names {len(vendor_set)} partner ids, hub names {partner}",
                   ", ".join(vendor_set), VENDOR)
        return vendor
    keep = []
    for line, value in enumerate(vendor_ids, start=1):
        if value == partner:
            keep.append(True)
            continue
        keep.append(False)
        log.record(Severity.WARNING, line, "PartnerId",
                   f"Row excluded by partner filter (partner {partner})", value, VENDOR)
    return vendor.loc[keep]


@dataclass
class _Side:
    name: str
    totals: "OrderedDict[Tuple[str, ...], GroupTotals]" = field(default_factory=OrderedDict)
    data_errors: List[dict] = field(default_factory=list)
    excluded_keys: List[Tuple[str, ...]] = field(default_factory=list)


def _index(df: pd.DataFrame, name: str, options: ReconciliationOptions, log: LogSink) -> _Side:
    side = _Side(name)
    excluded = {t.strip().upper() for t in options.excluded_tenants if t.strip()}
    keys = options.key_columns

    for line, row in enumerate(df.to_dict("records"), start=1):
        parts = tuple(normalize_key_part(row.get(c)) for c in keys)
        if not all(parts):
            empty = [c for c, p in zip(keys, parts) if not p]
            log.record(Severity.ERROR, line, ",".join(empty),
                       "Incomplete business key", "|".join(parts), name)
            side.data_errors.append({"line": line, "row": row, "parts": parts, "missing": empty})
            continue
        tenant = normalize_key_part(row.get(options.tenant_column))
        if tenant and tenant in excluded:
            log.record(Severity.INFO, line, options.tenant_column, "Excluded tenant", tenant, name)
            if parts not in side.excluded_keys:
                side.excluded_keys.append(parts)
            continue
        side.totals.setdefault(parts, GroupTotals()).add(row)
    return side


def _log_duplicates(side: _Side, log: LogSink) -> int:
    count = 0
    for key, totals in side.totals.items():
        if totals.rows <= 1:
            continue
        count += 1
        severity = Severity.ERROR if totals.rows > DUPLICATE_ERROR_THRESHOLD else Severity.WARNING
        log.record(severity, 0, "Key", "Duplicate business key",
                   f"{totals.rows} occurrences", side.name, f"Key: {'|'.join(key)}")
    return count


def _row(status, key, key_columns, hub: Optional[GroupTotals], vendor: Optional[GroupTotals],
         differences="", high_priority=False, reason="") -> dict:
    out = {"Status": status, "Key": "|".join(key)}
    for col, part in zip(key_columns, key):
        out[col] = part
    hv = (hub or GroupTotals()).values()
    vv = (vendor or GroupTotals()).values()
    for f in RESULT_VALUE_FIELDS:
        out[f"Hub{f}"] = format_money(hv[f])
        out[f"Vendor{f}"] = format_money(vv[f])
    out["Differences"] = differences
    out["IsHighPriority"] = bool(high_priority)
    out["Reason"] = reason
    return out


def _data_error_row(side: _Side, error: dict, key_columns) -> dict:
    totals = GroupTotals()
    totals.add(error["row"])
    hub, vendor = (totals, None) if side.name == HUB else (None, totals)
    reason = f"{side.name} row {error['line']}: missing {', '.join(error['missing'])}"
    return _row(STATUS_DATA_ERROR, error["parts"], key_columns, hub, vendor, reason=reason)


def _differences(hub: GroupTotals, vendor: GroupTotals, options: ReconciliationOptions) -> List[str]:
    checks = [
        ("Quantity", hub.quantity - vendor.quantity, options.quantity_tolerance),
        ("Subtotal", hub.subtotal - vendor.subtotal, options.amount_tolerance),
        ("Total", hub.total - vendor.total, options.amount_tolerance),
        ("TaxTotal", hub.tax_total - vendor.tax_total, options.amount_tolerance),
    ]
    return [f"{name}:{format_signed(delta)}" for name, delta, tol in checks if abs(delta) > tol]


def _tally_billing(summary: ReconciliationSummary, delta: Decimal) -> None:
    if delta > 0:
        summary.over_billed += delta
    elif delta < 0:
        summary.under_billed += -delta


def reconcile(hub: pd.DataFrame,
              vendor: pd.DataFrame,
              options: Optional[ReconciliationOptions] = None,
              log: Optional[LogSink] = None) -> ReconciliationResult:
    """
    Groups both canonical tables by business key, sums the financial columns
    per key and classifies every key. Every input row ends up in a result row
    or behind a logged reason.
    """
    if options is None:
        options = ReconciliationOptions()
    if log is None:
        log = ErrorLog()
    key_columns = options.key_columns
    hub_df = prepare(hub, options)
    vendor_df = prepare(vendor, options)
    vendor_rows = len(vendor_df)
    if options.filter_partner:
        vendor_df = filter_partner(hub_df, vendor_df, log)

    hub_side = _index(hub_df, HUB, options, log)
    vendor_side = _index(vendor_df, VENDOR, options, log)

    summary = ReconciliationSummary(hub_rows=len(hub_df), vendor_rows=vendor_rows,
                                    partner_filtered_rows=vendor_rows - len(vendor_df))
    summary.duplicate_keys = _log_duplicates(hub_side, log) + _log_duplicates(vendor_side, log)

    for side in (hub_side, vendor_side):
        for key in side.totals:
            log.record(Severity.INFO, 0, "Key", "Unique key", "|".join(key), side.name)
    common = [k for k in hub_side.totals if k in vendor_side.totals]
    for key in common:
        log.record(Severity.INFO, 0, "Key", "Key present on both sides", "|".join(key))
    logger.info("Unique keys: hub=%d vendor=%d common=%d",
                len(hub_side.totals), len(vendor_side.totals), len(common))

    all_keys: "OrderedDict[Tuple[str, ...], None]" = OrderedDict()
    for side in (hub_side, vendor_side):
        for key in list(side.totals) + side.excluded_keys:
            all_keys[key] = None
    summary.total_keys = len(all_keys)

    rows: List[dict] = []
    reported = set()
    hidden = set()

    for error in hub_side.data_errors:
        rows.append(_data_error_row(hub_side, error, key_columns))

    for key, h in hub_side.totals.items():
        v = vendor_side.totals.get(key)
        reported.add(key)
        if v is None:
            summary.missing_in_vendor += 1
            _tally_billing(summary, h.total)
            rows.append(_row(STATUS_MISSING_IN_VENDOR, key, key_columns, h, None,
                             high_priority=True, reason="Key not found in vendor invoice"))
            continue
        diffs = _differences(h, v, options)
        if not diffs:
            summary.matched += 1
            rows.append(_row(STATUS_MATCHED, key, key_columns, h, v))
            continue
        delta = h.total - v.total
        summary.mismatched += 1
        _tally_billing(summary, delta)
        rows.append(_row(STATUS_MISMATCHED, key, key_columns, h, v,
                         differences="; ".join(diffs),
                         high_priority=abs(delta) >= options.high_priority_threshold,
                         reason="Totals differ beyond tolerance"))

    for key, v in vendor_side.totals.items():
        if key in hub_side.totals:
            continue
        if options.hide_missing:
            hidden.add(key)
            log.record(Severity.INFO, 0, "Key", "Missing in hub hidden by configuration",
                       "|".join(key), VENDOR)
            continue
        reported.add(key)
        summary.missing_in_hub += 1
        _tally_billing(summary, -v.total)
        rows.append(_row(STATUS_MISSING_IN_HUB, key, key_columns, None, v,
                         high_priority=True, reason="Key not found in hub invoice"))

    for error in vendor_side.data_errors:
        rows.append(_data_error_row(vendor_side, error, key_columns))

    skipped = [k for k in all_keys if k not in reported and k not in hidden]
    for key in skipped:
        log.record(Severity.ERROR, 0, "Key", "Business key computed but not reported", "|".join(key))
        rows.append(_row(STATUS_DATA_ERROR, key, key_columns, None, None,
                         reason="Key computed but not reported (all rows excluded)"))

    summary.reported_keys = len(reported)
    summary.hidden_keys = len(hidden)
    summary.skipped_keys = len(skipped)
    summary.data_errors = len(hub_side.data_errors) + len(vendor_side.data_errors) + len(skipped)

    table = pd.DataFrame(rows, columns=result_columns(key_columns))
    logger.info("Reconciliation finished: %s", summary.to_text().replace("\n", "; "))
    return ReconciliationResult(table, summary, tuple(key_columns))
