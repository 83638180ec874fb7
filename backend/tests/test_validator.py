from decimal import Decimal

import pytest

from catalog_io.services.column_mapper import map_row, suggest_mapping
from catalog_io.services.product_schema import validate_record, Err, Ok
from catalog_io.services.validator import RowError, ValidatedRecord, validate_rows
from catalog_io.utils.batching import chunked, clamp_batch_size


def test_invalid_price_reports_row_and_raw_data():
    rows = [
        {"name": "A", "price": "10", "category": "X"},
        {"name": "B", "price": "abc", "category": "Y"},
        {"name": "C", "price": "5", "category": "Z"},
    ]

    report = validate_rows(rows)

    assert len(report.valid) == 2
    assert len(report.errors) == 1
    error = report.errors[0]
    assert error.row_number == 3
    assert error.message == "price: Price must be a valid number"
    assert error.column_name == "price"
    assert error.raw_data["price"] == "abc"
    assert report.total == 3


def test_every_row_yields_exactly_one_outcome_in_file_order():
    rows = [{"name": "A", "price": "1", "category": "X"}, {"price": "2"}, {"name": "C", "price": "3", "category": "Z"}]

    report = validate_rows(rows, row_numbers=[2, 5, 9])
    outcomes = report.in_file_order()

    assert [outcome.row_number for outcome in outcomes] == [2, 5, 9]
    assert isinstance(outcomes[1], RowError)
    assert outcomes[1].message == "name: Field required; category: Field required"


def test_price_and_commission_are_clamped():
    outcome = validate_record({"name": "A", "price": "2000000", "category": "X", "commission_rate": "150"})
    assert isinstance(outcome, Ok)
    assert outcome.record["price"] == Decimal("999999.99")
    assert outcome.record["commission_rate"] == Decimal("100.00")

    outcome = validate_record({"name": "A", "price": "'-5", "category": "X"})
    assert outcome.record["price"] == Decimal("0.00")


def test_price_tolerates_currency_and_thousands_separators():
    outcome = validate_record({"name": "A", "price": "$1,299.50", "category": "X"})

    assert outcome.record["price"] == Decimal("1299.50")


def test_defaults_and_tag_splitting():
    outcome = validate_record({"name": "A", "price": 3, "category": "X", "tags": " summer, ,trendy ", "availability": "bogus"})

    assert outcome.record["availability"] == "in_stock"
    assert outcome.record["tags"] == ["summer", "trendy"]
    assert outcome.record["commission_rate"] == Decimal("0.00")


def test_out_of_stock_spelling_is_normalized():
    outcome = validate_record({"name": "A", "price": 3, "category": "X", "availability": "Out Of Stock"})

    assert outcome.record["availability"] == "out_of_stock"


def test_formula_guard_survives_validation():
    outcome = validate_record({"name": "'=HYPERLINK(1)", "price": 1, "category": "X"})

    assert outcome.record["name"] == "'=HYPERLINK(1)"


def test_guarded_sku_passes_format_check():
    outcome = validate_record({"name": "A", "price": 1, "category": "X", "sku": "'-ABC"})

    assert isinstance(outcome, Ok)
    assert outcome.record["sku"] == "'-ABC"


@pytest.mark.parametrize(
    "record, field",
    [
        ({"name": "A", "price": 1, "category": "X", "sku": "bad sku!"}, "sku"),
        ({"name": "A", "price": 1, "category": "X", "image_url": "ftp://example.com/a.png"}, "image_url"),
        ({"name": "A" * 256, "price": 1, "category": "X"}, "name"),
    ],
)
def test_field_format_errors(record, field):
    outcome = validate_record(record)

    assert isinstance(outcome, Err)
    assert outcome.errors[0].field == field


def test_description_html_is_stripped():
    outcome = validate_record({"name": "A", "price": 1, "category": "X", "description": "<p>Soft</p> cotton"})

    assert outcome.record["description"] == "Soft cotton"


def test_aliases_resolve_to_canonical_fields():
    mapped = map_row({"product_name": "Lamp", "cost": "12", "type": "Home", "manufacturer": "Acme", "extra": "x"})

    assert mapped == {"name": "Lamp", "price": "12", "category": "Home", "brand": "Acme"}


def test_first_non_empty_alias_wins():
    mapped = map_row({"name": "", "product_name": "Lamp", "title": "Ignored", "price": "1", "category": "c"})

    assert mapped["name"] == "Lamp"


def test_explicit_mapping_uses_normalized_source_headers():
    rows = [{"item_title": "Lamp", "retail": "12", "dept": "Home"}]

    report = validate_rows(rows, column_mapping={"Item Title": "name", "Retail": "price", "Dept": "category"})

    assert len(report.valid) == 1
    assert report.valid[0].data["name"] == "Lamp"
    assert isinstance(report.valid[0], ValidatedRecord)


def test_auto_detect_maps_unknown_headers():
    rows = [{"item_title": "Lamp", "retail_cost": "12", "dept_group": "Home", "stock_status": "out_of_stock"}]

    report = validate_rows(rows, auto_detect=True)

    assert len(report.valid) == 1
    assert report.valid[0].data["availability"] == "out_of_stock"


def test_suggest_mapping_prefers_exact_aliases():
    suggestions = suggest_mapping(["product_title", "name", "unit_cost", "category", "sku_code"])

    assert suggestions["name"] == "name"
    assert suggestions["unit_cost"] == "price"
    assert suggestions["category"] == "category"
    assert suggestions["sku_code"] == "sku"
    # "name" is already claimed by the exact match
    assert "product_title" not in suggestions


def test_row_error_serializes_with_camel_keys():
    error = RowError(row_number=4, message="price: Price must be a valid number", raw_data={"price": "x"}, column_name="price")

    assert error.as_dict() == {
        "rowNumber": 4,
        "columnName": "price",
        "errorType": "validation",
        "errorMessage": "price: Price must be a valid number",
        "rawData": {"price": "x"},
    }


def test_chunking_helpers():
    assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]
    assert clamp_batch_size(None, 100, 500) == 100
    assert clamp_batch_size(10_000, 100, 500) == 500
    with pytest.raises(ValueError):
        list(chunked([1], 0))
