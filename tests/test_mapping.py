import os

import pandas as pd
import pytest

from errorlog import CollectingSink, Severity
from errors import (
    ExpressionSyntaxError, MappingDocumentError, MissingColumnError, UnknownSourceTypeError,
)
from mapping import (
    CANONICAL_COLUMNS, Alias, Fallback, SourceType, compile_definition, detect_source_type,
    load_column_map, map_to_canonical, parse_column_map, require_columns,
)

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "..", "config")

DOC = {
    "Distributor": {
        "Subtotal": ["UnitPrice", "Quantity", "*"],
        "Total": ["UnitPrice", "Quantity", "+", "Tax"],
        "TaxTotal": "{Missing}*2",
        "UnitPrice": "{UnitPrice}/{Zero}",
        "CustomerName": ["A", "B"],
        "ProductId": "Sku",
    }
}


def _raw():
    return pd.DataFrame([{"UnitPrice": "2", "Quantity": "3", "Tax": "1.5", "Zero": "0",
                          "A": "", "B": "Contoso", "Sku": "X1"}], dtype=object)


def test_map_to_canonical():
    sink = CollectingSink()
    out = map_to_canonical(_raw(), SourceType.DISTRIBUTOR, parse_column_map(DOC), sink, "BILLINGTRANSACTIONS_1.csv")

    assert list(out.columns) == CANONICAL_COLUMNS
    row = out.iloc[0]
    assert row["Subtotal"] == "6"
    assert row["Total"] == "7.5"
    assert row["TaxTotal"] == "0"
    assert row["CustomerName"] == "Contoso"
    assert row["ProductId"] == "X1"
    assert row["SkuName"] == ""


def test_division_by_zero_is_logged_and_zero():
    sink = CollectingSink()
    out = map_to_canonical(_raw(), SourceType.DISTRIBUTOR, parse_column_map(DOC), sink)
    assert out.iloc[0]["UnitPrice"] == "0"
    warnings = [e for e in sink.entries if e.severity == Severity.WARNING]
    assert len(warnings) == 1 and warnings[0].column == "UnitPrice"


def test_unconfigured_source_raises():
    with pytest.raises(MappingDocumentError):
        map_to_canonical(_raw(), SourceType.VENDOR, parse_column_map(DOC), CollectingSink())


def test_compile_definition_encodings():
    assert compile_definition("X", "Col") == Alias("Col")
    assert compile_definition("X", ["A", "B"]) == Fallback(("A", "B"))
    assert compile_definition("X", "") is None
    with pytest.raises(MappingDocumentError):
        compile_definition("X", ["A", "*", "B"])
    with pytest.raises(MappingDocumentError):
        compile_definition("X", 42)
    with pytest.raises(ExpressionSyntaxError):
        parse_column_map({"Vendor": {"Total": "{A}*"}})


def test_load_column_map(tmp_path):
    with pytest.raises(MappingDocumentError):
        load_column_map(str(tmp_path / "nope.json"))
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(MappingDocumentError):
        load_column_map(str(bad))

    shipped = load_column_map(os.path.join(CONFIG_DIR, "column_map.json"))
    assert set(shipped) == set(SourceType)
    vendor = shipped[SourceType.VENDOR]
    assert vendor.required_source_columns(["CustomerDomainName", "ProductId"]) == \
        ["CustomerDomainName", "ProductId"]


def test_detect_source_type():
    assert detect_source_type("data/G0_invoice.csv") == SourceType.VENDOR
    assert detect_source_type("ind_export.csv") == SourceType.PARTNER
    assert detect_source_type("/tmp/BillingTransactions_2024.csv") == SourceType.DISTRIBUTOR
    with pytest.raises(UnknownSourceTypeError):
        detect_source_type("random.csv")


def test_require_columns_fuzzy_rename():
    sink = CollectingSink()
    df = pd.DataFrame(columns=["SubscriptonId", "CustomerName"])
    require_columns(df, "G0_a.csv", ["SubscriptionId"], sink)
    assert "SubscriptionId" in df.columns
    assert sink.entries[0].severity == Severity.WARNING


def test_require_columns_raises_with_suggestion():
    df = pd.DataFrame(columns=["SubscriptonId"])
    with pytest.raises(MissingColumnError) as exc:
        require_columns(df, "G0_a.csv", ["SubscriptionId"], CollectingSink(), allow_fuzzy=False)
    assert exc.value.suggestion == "SubscriptonId"
    assert "Did you mean 'SubscriptonId'?" in str(exc.value)

    with pytest.raises(MissingColumnError) as exc:
        require_columns(pd.DataFrame(columns=["Foo"]), "G0_a.csv", ["SubscriptionId"], CollectingSink())
    assert exc.value.suggestion is None
    assert "G0_a.csv" in str(exc.value)
