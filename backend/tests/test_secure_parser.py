import io
import itertools
import json
from types import SimpleNamespace

import pytest
from openpyxl import Workbook

from catalog_io.core.errors import ParseError, ParseTimeoutError
from catalog_io.services import secure_parser
from catalog_io.services.secure_parser import ParseLimits, parse_buffer
from catalog_io.utils.sanitize import normalize_header, sanitize_value

from conftest import csv_bytes


def _workbook_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_formula_cells_are_prefixed_with_guard():
    result = parse_buffer(csv_bytes("name,price", "=1+1,10", "@SUM(A1),5"), "csv")

    assert result.rows[0]["name"] == "'=1+1"
    assert result.rows[1]["name"] == "'@SUM(A1)"


def test_markup_and_script_prefixes_are_stripped():
    assert sanitize_value('<b>"Deal"</b>') == "bDeal/b"
    assert sanitize_value("javascript:javascript:alert(1)") == "alert(1)"
    assert sanitize_value("x" * 2000, max_length=1000) == "x" * 1000


def test_headers_are_normalized():
    result = parse_buffer(csv_bytes("Product Name,Unit Price ($),Category", "Widget,9.99,Tools"), "csv")

    assert result.headers == ["product_name", "unit_price", "category"]
    assert result.rows == [{"product_name": "Widget", "unit_price": "9.99", "category": "Tools"}]
    assert normalize_header("  Spaced   Out  ") == "spaced_out"


def test_dangerous_keys_are_dropped_with_warning():
    payload = json.dumps([{"name": "Widget", "__proto__": "x", "constructor": "y", "price": 1}])

    result = parse_buffer(payload.encode(), "json")

    assert result.rows == [{"name": "Widget", "price": 1}]
    assert "Column '__proto__' rejected: reserved name" in result.warnings
    assert "Column 'constructor' rejected: reserved name" in result.warnings


def test_json_row_cap_truncates():
    payload = json.dumps([{"name": f"item {i}", "price": i, "category": "c"} for i in range(12_000)])

    result = parse_buffer(payload.encode(), "json", ParseLimits(max_rows=10_000))

    assert len(result.rows) == 10_000
    assert result.truncated is True
    assert result.row_numbers[0] == 2
    assert result.row_numbers[-1] == 10_001


def test_json_top_level_must_be_array():
    with pytest.raises(ParseError, match="JSON file must contain an array of records"):
        parse_buffer(b'{"name": "Widget"}', "json")


def test_json_nested_object_is_rejected():
    with pytest.raises(ParseError, match="nested object"):
        parse_buffer(b'[{"name": {"first": "a"}}]', "json")


def test_invalid_json_reports_position():
    with pytest.raises(ParseError, match="Invalid JSON"):
        parse_buffer(b'[{"name": ', "json")


@pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
def test_json_non_finite_numbers_are_rejected(token):
    with pytest.raises(ParseError, match=f"Invalid JSON: {token} is not a valid number"):
        parse_buffer(f'[{{"name": "A", "price": {token}, "category": "c"}}]'.encode(), "json")


def test_parse_timeout_aborts_with_distinct_error(monkeypatch):
    clock = itertools.count(0, 10)
    monkeypatch.setattr(secure_parser, "time", SimpleNamespace(monotonic=lambda: next(clock)))
    lines = ["name,price,category"] + [f"Item {i},{i},Tools" for i in range(10)]

    with pytest.raises(ParseTimeoutError, match=r"Parse timeout exceeded \(30s\)"):
        parse_buffer(csv_bytes(*lines), "csv", ParseLimits(timeout_seconds=30))


def test_too_many_columns():
    header = ",".join(f"col{i}" for i in range(101))
    row = ",".join("x" for _ in range(101))

    with pytest.raises(ParseError, match="Too many columns"):
        parse_buffer(csv_bytes(header, row), "csv")


def test_duplicate_headers_fit_the_header_length_limit():
    long_header = "a" * 60

    result = parse_buffer(csv_bytes(f"{long_header},{long_header},{long_header}", "x,y,z"), "csv")

    assert result.headers == ["a" * 50, "a" * 48 + "_2", "a" * 48 + "_3"]
    assert all(len(header) <= 50 for header in result.headers)


def test_blank_lines_keep_physical_row_numbers():
    result = parse_buffer(csv_bytes("name,price", "A,1", "", "B,2"), "csv")

    assert [row["name"] for row in result.rows] == ["A", "B"]
    assert result.row_numbers == [2, 4]


def test_semicolon_delimiter_is_detected():
    result = parse_buffer(csv_bytes("name;price;category", "A;1;X", "B;2;Y"), "csv")

    assert result.rows[1] == {"name": "B", "price": "2", "category": "Y"}


def test_xlsx_without_zip_signature_falls_back_to_text():
    result = parse_buffer(csv_bytes("name,price,category", "A,1,X"), "xlsx")

    assert result.source_format == "csv"
    assert result.rows == [{"name": "A", "price": "1", "category": "X"}]
    assert result.warnings == ["File does not have a valid XLSX signature; parsed as delimited text"]


def test_xlsx_without_zip_signature_rejected_when_fallback_disabled():
    with pytest.raises(ParseError, match="valid XLSX signature"):
        parse_buffer(csv_bytes("name,price", "A,1"), "xlsx", ParseLimits(xlsx_text_fallback=False))


def test_real_workbook_is_parsed():
    data = _workbook_bytes(
        [
            ["Name", "Price", "Category", "Notes"],
            ["Widget", 9.5, "Tools", "-5 off"],
            [None, None, None, None],
            ["Gadget", 12, "Toys", "=1+1"],
        ]
    )

    result = parse_buffer(data, "xlsx")

    assert result.source_format == "xlsx"
    assert result.headers == ["name", "price", "category", "notes"]
    assert result.rows[0] == {"name": "Widget", "price": 9.5, "category": "Tools", "notes": "'-5 off"}
    assert result.row_numbers == [2, 4]
    # Formulas are never evaluated or passed through
    assert result.rows[1]["notes"] != "=1+1"


def test_zip_that_is_not_a_workbook_is_rejected():
    import zipfile

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("readme.txt", "hello")

    with pytest.raises(ParseError, match="not an XLSX workbook"):
        parse_buffer(buffer.getvalue(), "xlsx")


def test_empty_and_unsupported_inputs():
    with pytest.raises(ParseError, match="Empty file"):
        parse_buffer(b"", "csv")
    with pytest.raises(ParseError, match="Unsupported file type"):
        parse_buffer(b"a,b", "txt")
    with pytest.raises(ParseError, match="no header row"):
        parse_buffer(b"\n\n", "csv")


def test_oversized_buffer_is_rejected():
    with pytest.raises(ParseError, match="File too large"):
        parse_buffer(b"a" * 101, "csv", ParseLimits(max_binary_bytes=100))
