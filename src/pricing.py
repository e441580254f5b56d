from collections import OrderedDict
from decimal import Decimal
from typing import List, Tuple

import pandas as pd

from errorlog import LogSink, Severity
from utils import cell_text, format_money, format_signed, normalize_key_part, safe_decimal

CATEGORY_COLUMNS = ("ProductName", "SubscriptionDescription")

PRICE_COLUMNS = ["ChargeType", "HubPrice", "VendorPrice", "PriceDifference",
                 "HubQuantity", "VendorQuantity", "QuantityDifference"]


def price_key(row) -> Tuple[str, str]:
    customer = cell_text(row, "CustomerDomainName") or cell_text(row, "CustomerName")
    product = cell_text(row, "ProductId") or cell_text(row, "PartNumber")
    return normalize_key_part(customer), normalize_key_part(product)


def _effective_price(row) -> Decimal:
    price = safe_decimal(row.get("EffectiveUnitPrice"))
    if price == 0:
        price = safe_decimal(row.get("UnitPrice"))
    return price


def _drop_category(df: pd.DataFrame, category: str, side: str, log: LogSink) -> List[dict]:
    target = category.strip().lower()
    kept = []
    for line, row in enumerate(df.to_dict("records"), start=1):
        hit = next((c for c in CATEGORY_COLUMNS if target and cell_text(row, c).lower() == target), None)
        if hit is None:
            kept.append(row)
            continue
        log.record(Severity.INFO, line, hit, f"Excluded category '{category}'", cell_text(row, hit), side)
    return kept


def _group(rows: List[dict]) -> "OrderedDict[Tuple[str, str], List[dict]]":
    out: "OrderedDict[Tuple[str, str], List[dict]]" = OrderedDict()
    for row in rows:
        out.setdefault(price_key(row), []).append(row)
    return out


def find_price_mismatches(hub: pd.DataFrame,
                          vendor: pd.DataFrame,
                          log: LogSink,
                          excluded_category: str = "Azure plan",
                          tolerance=Decimal("0.01")) -> pd.DataFrame:
    """
    Keys present on both sides whose summed price x quantity differs by more
    than the tolerance. Each reported key carries its first hub row.
    """
    tolerance = Decimal(str(tolerance))
    hub_groups = _group(_drop_category(hub, excluded_category, "Hub", log))
    vendor_groups = _group(_drop_category(vendor, excluded_category, "Vendor", log))

    columns = list(hub.columns) + [c for c in PRICE_COLUMNS if c not in hub.columns]
    out = []
    for key, hrows in hub_groups.items():
        vrows = vendor_groups.get(key)
        if vrows is None:
            log.record(Severity.WARNING, 0, "Key", "Price check skipped: key only in hub", "|".join(key), "Hub")
            continue
        hub_price = sum((_effective_price(r) * safe_decimal(r.get("Quantity")) for r in hrows), Decimal(0))
        vendor_price = sum((_effective_price(r) * safe_decimal(r.get("Quantity")) for r in vrows), Decimal(0))
        diff = hub_price - vendor_price
        if abs(diff) <= tolerance:
            continue
        hub_qty = sum((safe_decimal(r.get("Quantity")) for r in hrows), Decimal(0))
        vendor_qty = sum((safe_decimal(r.get("Quantity")) for r in vrows), Decimal(0))

        row = {c: hrows[0].get(c, "") for c in hub.columns}
        charge_types = []
        for r in hrows:
            ct = cell_text(r, "ChargeType")
            if ct and ct not in charge_types:
                charge_types.append(ct)
        row["ChargeType"] = ", ".join(charge_types)
        row["HubPrice"] = format_money(hub_price)
        row["VendorPrice"] = format_money(vendor_price)
        row["PriceDifference"] = format_signed(diff)
        row["HubQuantity"] = format_money(hub_qty)
        row["VendorQuantity"] = format_money(vendor_qty)
        row["QuantityDifference"] = format_signed(hub_qty - vendor_qty)
        out.append(row)

    for key in vendor_groups:
        if key not in hub_groups:
            log.record(Severity.WARNING, 0, "Key", "Price check skipped: key only in vendor",
                       "|".join(key), "Vendor")

    return pd.DataFrame(out, columns=columns)
