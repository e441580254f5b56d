import pandas as pd

from errorlog import CollectingSink
from standardize import clean_string, standardize


def _raw():
    return pd.DataFrame({
        " Quantity\u200b": ["1", "", "abc", " 2.50 "],
        "UnitPrice": ["$1,234.50", "3", "", "0.5"],
        "ChargeStartDate": ["01/31/2024", "2024-02-01", "someday", ""],
        "CustomerName": ["  Contoso   Ltd ", "Fab\x00rikam", "007", ""],
        "SkuId": ["0007", "0001", "", "A1"],
    }, dtype=object)


def test_cells_are_canonicalized():
    sink = CollectingSink()
    out = standardize(_raw(), sink, "G0_test.csv")

    assert list(out.columns) == ["Quantity", "UnitPrice", "ChargeStartDate", "CustomerName", "SkuId"]
    assert out["UnitPrice"].tolist() == ["1234.50", "3", "", "0.5"]
    assert out["ChargeStartDate"].tolist() == ["2024-01-31", "2024-02-01", "someday", ""]
    assert out["CustomerName"].tolist() == ["Contoso Ltd", "Fabrikam", "7", ""]
    assert out["SkuId"].tolist() == ["0007", "0001", "", "A1"]


def test_bad_numeric_is_kept_and_logged_once():
    sink = CollectingSink()
    raw = pd.DataFrame({"Quantity": ["1", "", "abc"]}, dtype=object)
    out = standardize(raw, sink, "G0_test.csv")

    assert out["Quantity"].tolist() == ["1", "", "abc"]
    assert len(sink.entries) == 1
    entry = sink.entries[0]
    assert (entry.row, entry.column, entry.raw_value) == (3, "Quantity", "abc")
    assert entry.source_file == "G0_test.csv"


def test_blank_numeric_produces_no_log():
    sink = CollectingSink()
    out = standardize(pd.DataFrame({"Total": ["", "  "]}, dtype=object), sink)
    assert out["Total"].tolist() == ["", ""]
    assert sink.entries == []


def test_bad_date_is_logged():
    sink = CollectingSink()
    standardize(_raw(), sink)
    dates = [e for e in sink.entries if e.column == "ChargeStartDate"]
    assert len(dates) == 1
    assert dates[0].row == 3
    assert "expected a date" in dates[0].description


def test_normalization_is_idempotent():
    once = standardize(_raw(), CollectingSink())
    twice = standardize(once, CollectingSink())
    assert twice.to_dict("records") == once.to_dict("records")


def test_input_is_untouched():
    raw = _raw()
    before = raw.copy()
    standardize(raw, CollectingSink())
    assert raw.equals(before)


def test_clean_string():
    assert clean_string(None) == ""
    assert clean_string(float("nan")) == ""
    assert clean_string(" a\u200bb\x07 ") == "ab"
    assert clean_string("line\tone") == "line\tone"
