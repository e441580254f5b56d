import pytest

from errorlog import CollectingSink, Severity
from errors import MissingColumnError, UnknownSourceTypeError
from ingest import import_file, load_csv
from mapping import CANONICAL_COLUMNS, SourceType, parse_column_map
from rules import Rules

MAPPINGS = parse_column_map({
    "Vendor": {
        "CustomerDomainName": "CustomerDomainName",
        "ProductId": "ProductId",
        "SkuId": "SkuId",
        "Quantity": "Quantity",
        "UnitPrice": "UnitPrice",
        "Subtotal": ["UnitPrice", "Quantity", "*"],
    }
})


def _write(path, text):
    path.write_bytes(text.encode("utf-8"))
    return str(path)


def test_load_csv_reads_text_with_bom_and_blank_lines(tmp_path):
    path = _write(tmp_path / "G0_a.csv", "\ufeff SkuId ,Quantity\n0001,2\n\n0002,\n")
    df = load_csv(path)
    assert list(df.columns) == ["SkuId", "Quantity"]
    assert df["SkuId"].tolist() == ["0001", "0002"]
    assert df["Quantity"].tolist() == ["2", ""]


def test_import_file_produces_canonical_table(tmp_path):
    path = _write(tmp_path / "G0_invoice.csv",
                  "\ufeffCustomerDomainName,ProductId,SkuId,Quantity,UnitPrice\n"
                  "contoso.com,P1,0007,2,$5.00\n\n")
    result = import_file(path, Rules(), CollectingSink(), MAPPINGS)

    assert result.source_type == SourceType.VENDOR
    assert list(result.table.columns) == CANONICAL_COLUMNS
    row = result.table.iloc[0]
    assert (row["SkuId"], row["Quantity"], row["UnitPrice"], row["Subtotal"]) == ("0007", "2", "5.00", "10.00")
    assert result.quality is not None and result.quality.row_count == 1


def test_near_miss_header_is_renamed(tmp_path):
    sink = CollectingSink()
    path = _write(tmp_path / "G0_invoice.csv", "CustomerDomainNam,ProductId\ncontoso.com,P1\n")
    result = import_file(path, Rules(), sink, MAPPINGS)

    assert result.table.iloc[0]["CustomerDomainName"] == "contoso.com"
    assert "Column 'CustomerDomainNam' renamed to 'CustomerDomainName'" in sink.messages(Severity.WARNING)


def test_missing_required_column_raises(tmp_path):
    path = _write(tmp_path / "G0_invoice.csv", "Customer,ProductId\ncontoso.com,P1\n")
    with pytest.raises(MissingColumnError) as exc:
        import_file(path, Rules(), CollectingSink(), MAPPINGS)
    assert exc.value.column == "CustomerDomainName"
    assert exc.value.file_name == "G0_invoice.csv"


def test_empty_file_is_logged_not_fatal(tmp_path):
    sink = CollectingSink()
    path = _write(tmp_path / "G0_empty.csv", "")
    result = import_file(path, Rules(), sink, MAPPINGS)

    assert result.table.empty
    assert list(result.table.columns) == CANONICAL_COLUMNS
    assert "File is empty" in sink.messages(Severity.ERROR)


def test_unknown_prefix_raises(tmp_path):
    path = _write(tmp_path / "export.csv", "A\n1\n")
    with pytest.raises(UnknownSourceTypeError):
        import_file(path, Rules(), CollectingSink(), MAPPINGS)
