import pandas as pd

from errorlog import CollectingSink, ErrorLog, Severity
from quality import validate


def _frame(rows):
    return pd.DataFrame(rows, dtype=object).fillna("")


def test_summary_counts_errors_and_blank_columns():
    df = _frame([
        {"Quantity": "1", "PartnerDiscountPercentage": "200", "CustomerSubTotal": ""},
        {"Quantity": "1", "PartnerDiscountPercentage": "50", "CustomerSubTotal": "10"},
    ])
    report = validate(df, ErrorLog(), "IND_hub.csv")
    summary = report.summary()

    assert report.error_count == 1
    assert "Total rows: 2" in summary
    assert "Errors: 1" in summary
    assert "Most common error: Discount percentage out of bounds (0-100)" in summary
    assert "CustomerSubTotal: 1/2" in summary


def test_zero_pricing_field_with_quantity_warns_with_context():
    sink = CollectingSink()
    df = _frame([{"Quantity": "2", "PartnerEffectiveUnitPrice": "0", "CustomerUnitPrice": "5",
                  "CustomerName": "Contoso", "SkuId": "ABC"}])
    validate(df, sink, "IND_hub.csv")

    hits = [e for e in sink.entries if e.column == "PartnerEffectiveUnitPrice"]
    assert len(hits) == 1
    assert hits[0].severity == Severity.WARNING
    assert hits[0].row == 1
    assert hits[0].description == "Value is 0 or blank while Quantity is 2"
    assert hits[0].context == "Customer: Contoso, SKU: ABC"


def test_all_pricing_zero_is_an_error():
    sink = CollectingSink()
    validate(_frame([{"Quantity": "1", "PartnerEffectiveUnitPrice": "", "CustomerUnitPrice": "0"}]), sink)
    assert "All pricing fields zero or blank while Quantity not zero" in sink.messages(Severity.ERROR)


def test_no_pricing_columns_means_no_pricing_errors():
    sink = CollectingSink()
    validate(_frame([{"Quantity": "1", "Total": "5"}]), sink)
    assert sink.messages(Severity.ERROR) == []
    assert sink.messages(Severity.INFO).count("Column not present in source") == 6


def test_dates_totals_and_discounts():
    sink = CollectingSink()
    df = _frame([{"Quantity": "0", "ChargeStartDate": "not a date", "PartnerTotal": "-5",
                  "CustomerDiscountPercentage": "95"}])
    validate(df, sink)

    assert "Invalid date format" in sink.messages(Severity.ERROR)
    assert "Negative total value" in sink.messages(Severity.WARNING)
    assert "Suspicious discount (<1% or >90%)" in sink.messages(Severity.WARNING)


def test_table_is_not_modified():
    df = _frame([{"Quantity": "1", "PartnerDiscountPercentage": "-3"}])
    before = df.copy()
    validate(df, CollectingSink())
    assert df.equals(before)


def test_partner_discount_below_customer_discount_is_an_error():
    sink = CollectingSink()
    df = _frame([{"PartnerDiscountPercentage": "10", "CustomerDiscountPercentage": "15",
                  "CustomerName": "Contoso", "SkuId": "ABC"}])
    report = validate(df, sink, "IND_hub.csv")

    hits = [e for e in sink.entries if e.column == "PartnerDiscountPercentage" and e.severity == Severity.ERROR]
    assert [(e.row, e.description, e.raw_value) for e in hits] == [
        (1, "Partner discount below customer discount (15%)", "10")]
    assert hits[0].context == "Customer: Contoso, SKU: ABC"
    assert report.errors["Partner discount below customer discount (15%)"] == 1


def test_partner_total_above_customer_subtotal_is_an_error():
    sink = CollectingSink()
    df = _frame([
        {"PartnerTotal": "120", "CustomerSubTotal": "100"},
        {"PartnerTotal": "-80", "CustomerSubTotal": "-100"},
    ])
    validate(df, sink)

    hits = [e for e in sink.entries if e.column == "PartnerTotal" and e.severity == Severity.ERROR]
    assert [(e.row, e.description) for e in hits] == [(1, "Partner total exceeds customer subtotal (100)")]


def test_fully_discounted_customer_skips_margin_checks():
    sink = CollectingSink()
    df = _frame([{"PartnerDiscountPercentage": "20", "CustomerDiscountPercentage": "100",
                  "PartnerTotal": "50", "CustomerSubTotal": "0"}])
    validate(df, sink)

    errors = sink.messages(Severity.ERROR)
    assert not any(m.startswith("Partner discount below") for m in errors)
    assert not any(m.startswith("Partner total exceeds") for m in errors)
