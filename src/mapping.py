import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd

from errorlog import LogSink, Severity
from errors import MappingDocumentError, MissingColumnError, UnknownSourceTypeError
from expressions import EvaluationError, Node, parse_expression, product, product_plus
from suggest import DEFAULT_MAX_DISTANCE, find_closest
from utils import format_decimal, get_value, is_blank, safe_decimal

CANONICAL_COLUMNS = [
    "PartnerId", "CustomerId", "CustomerName", "CustomerDomainName", "CustomerCountry",
    "InvoiceNumber", "MpnId", "Tier2MpnId", "OrderId", "OrderDate", "ProductId", "SkuId",
    "AvailabilityId", "SkuName", "ProductName", "ChargeType", "UnitPrice", "Quantity",
    "Subtotal", "TaxTotal", "Total", "Currency", "PriceAdjustmentDescription",
    "PublisherName", "PublisherId", "SubscriptionDescription", "SubscriptionId",
    "ChargeStartDate", "ChargeEndDate", "TermAndBillingCycle", "EffectiveUnitPrice",
    "UnitType", "AlternateId", "BillableQuantity", "BillingFrequency", "PricingCurrency",
    "PCToBCExchangeRate", "PCToBCExchangeRateDate", "MeterDescription", "ReservationOrderId",
    "CreditReasonCode", "SubscriptionStartDate", "SubscriptionEndDate", "ReferenceId",
    "ProductQualifiers", "PromotionId", "ProductCategory",
]


class SourceType(Enum):
    VENDOR = "Vendor"
    PARTNER = "Partner"
    DISTRIBUTOR = "Distributor"


# file name prefix -> source family
SOURCE_PREFIXES = (
    ("G0", SourceType.VENDOR),
    ("IND", SourceType.PARTNER),
    ("BILLINGTRANSACTIONS_", SourceType.DISTRIBUTOR),
)


def detect_source_type(path: str) -> SourceType:
    name = os.path.basename(path).upper()
    for prefix, source in SOURCE_PREFIXES:
        if name.startswith(prefix):
            return source
    raise UnknownSourceTypeError(
        f"Unable to detect source type for {os.path.basename(path)}; "
        f"expected a file name starting with one of: {', '.join(p for p, _ in SOURCE_PREFIXES)}"
    )


@dataclass(frozen=True)
class Alias:
    column: str

    def resolve(self, row: Mapping[str, Any]) -> str:
        return get_value(row, self.column) or ""

    def columns(self) -> Tuple[str, ...]:
        return (self.column,)


@dataclass(frozen=True)
class Fallback:
    sources: Tuple[str, ...]

    def resolve(self, row: Mapping[str, Any]) -> str:
        for col in self.sources:
            value = get_value(row, col)
            if not is_blank(value):
                return value
        return ""

    def columns(self) -> Tuple[str, ...]:
        return self.sources


@dataclass(frozen=True)
class Computed:
    expression: Node
    text: str

    def resolve(self, row: Mapping[str, Any]) -> str:
        value = self.expression.evaluate(lambda col: safe_decimal(get_value(row, col)))
        return format_decimal(value)

    def columns(self) -> Tuple[str, ...]:
        return self.expression.columns()


Definition = Union[Alias, Fallback, Computed]


def compile_definition(canonical: str, raw: Any) -> Optional[Definition]:
    """
    Encodings accepted in the mapping document:
      "Col"                      alias
      "{A}*{B}+{C}"              arithmetic expression
      ["A", "B", ...]            first non-blank wins
      ["A", "B", "*"]            A * B
      ["A", "B", "+", "C"]       A * B + C
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
        if "{" in raw:
            return Computed(parse_expression(raw), raw)
        return Alias(raw)
    if isinstance(raw, list):
        items = [str(x).strip() for x in raw]
        if len(items) == 3 and items[2] == "*":
            return Computed(product(items[0], items[1]), f"{{{items[0]}}}*{{{items[1]}}}")
        if len(items) == 4 and items[2] == "+":
            return Computed(product_plus(items[0], items[1], items[3]),
                            f"{{{items[0]}}}*{{{items[1]}}}+{{{items[3]}}}")
        if any(i in ("*", "+") for i in items):
            raise MappingDocumentError(f"Unsupported pattern for '{canonical}': {raw}")
        if not items:
            return None
        return Fallback(tuple(items))
    raise MappingDocumentError(f"Unsupported mapping value for '{canonical}': {raw!r}")


@dataclass(frozen=True)
class SourceMapping:
    source: SourceType
    definitions: Dict[str, Definition]

    def required_source_columns(self, canonical: Iterable[str]) -> List[str]:
        """Source columns the given canonical columns are aliased to."""
        out = []
        for col in canonical:
            d = self.definitions.get(col)
            if isinstance(d, Alias) and d.column not in out:
                out.append(d.column)
        return out


def parse_column_map(doc: Mapping[str, Any]) -> Dict[SourceType, SourceMapping]:
    by_name = {s.value.lower(): s for s in SourceType}
    out = {}
    for name, defs in doc.items():
        source = by_name.get(str(name).strip().lower())
        if source is None:
            raise MappingDocumentError(f"Unknown source type '{name}' in column map")
        if not isinstance(defs, dict):
            raise MappingDocumentError(f"Column map for '{name}' must be an object")
        compiled = {}
        for canonical, raw in defs.items():
            d = compile_definition(canonical, raw)
            if d is not None:
                compiled[canonical] = d
        out[source] = SourceMapping(source, compiled)
    return out


def load_column_map(path: str = "config/column_map.json") -> Dict[SourceType, SourceMapping]:
    if not os.path.exists(path):
        raise MappingDocumentError(f"Column map not found: {path}")
    with open(path, "r", encoding="utf-8-sig") as f:
        try:
            doc = json.load(f)
        except json.JSONDecodeError as exc:
            raise MappingDocumentError(f"Column map {path} is not valid JSON: {exc}") from exc
    return parse_column_map(doc)


def map_to_canonical(raw: pd.DataFrame,
                     source: SourceType,
                     mappings: Mapping[SourceType, SourceMapping],
                     log: LogSink,
                     source_file: str = "") -> pd.DataFrame:
    """
    Builds the canonical table for one source family. The output always has
    exactly CANONICAL_COLUMNS in order; anything the mapping cannot resolve is "".
    """
    mapping = mappings.get(source)
    if mapping is None:
        raise MappingDocumentError(f"No column mapping found for source='{source.value}'")

    rows = []
    for line, row in enumerate(raw.to_dict("records"), start=1):
        out = {}
        for col in CANONICAL_COLUMNS:
            d = mapping.definitions.get(col)
            if d is None:
                out[col] = ""
                continue
            try:
                out[col] = d.resolve(row)
            except EvaluationError as exc:
                log.record(Severity.WARNING, line, col,
                           f"Could not evaluate '{d.text}': {exc}", "", source_file)
                out[col] = "0"
        rows.append(out)
    return pd.DataFrame(rows, columns=CANONICAL_COLUMNS, dtype=object)


def require_columns(df: pd.DataFrame,
                    file_name: str,
                    required: Iterable[str],
                    log: LogSink,
                    allow_fuzzy: bool = True,
                    max_distance: int = DEFAULT_MAX_DISTANCE) -> pd.DataFrame:
    """
    Raises MissingColumnError for a required column that is absent and cannot
    be resolved by fuzzy name matching. Resolved columns are renamed in place.
    """
    required = list(required)
    for column in required:
        if column in df.columns:
            continue
        candidates = [c for c in df.columns if c not in required]
        closest = find_closest(column, candidates, max_distance)
        if allow_fuzzy and closest is not None:
            log.record(Severity.WARNING, 0, column,
                       f"Column '{closest}' renamed to '{column}'", closest, file_name)
            df.rename(columns={closest: column}, inplace=True)
            continue
        log.record(Severity.ERROR, 0, column,
                   f"The expected column '{column}' is missing", "", file_name)
        raise MissingColumnError(column, file_name, closest)
    return df
