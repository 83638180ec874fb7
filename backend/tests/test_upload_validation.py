import pytest

from catalog_io.core.errors import FileRejectedError
from catalog_io.services.upload_validation import check_upload, safe_filename

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _check(filename, mime, data, **overrides):
    options = {"upload_type": "products", "max_bytes": 1024, "xlsx_text_fallback": True, **overrides}
    return check_upload(filename, mime, data, **options)


def test_accepts_csv_with_charset_parameter():
    accepted = _check("Spring Catalog.CSV", "text/csv; charset=utf-8", b"name,price\nA,1\n")

    assert accepted.file_type == "csv"
    assert accepted.mime_type == "text/csv"
    assert accepted.safe_name == "Spring_Catalog.CSV"
    assert accepted.size == 15


def test_safe_filename_drops_directories():
    assert safe_filename("../../etc/passwd") == "passwd"
    assert safe_filename("rapport été.csv") == "rapport__t_.csv"


@pytest.mark.parametrize(
    "filename, mime, data, status",
    [
        (None, "text/csv", b"a", 400),
        ("catalog.csv", "application/json", b"a", 400),
        ("catalog.xls", "application/vnd.ms-excel", b"a", 400),
        ("catalog.csv", "text/csv", b"a" * 1025, 413),
        ("catalog.csv", "text/csv", b"", 400),
        ("catalog.csv", "text/csv", b"name\x00price", 400),
        ("catalog.csv", "text/csv", b"\xff\xfename", 400),
        ("catalog.json", "application/json", b"name: x", 400),
    ],
)
def test_rejections(filename, mime, data, status):
    with pytest.raises(FileRejectedError) as excinfo:
        _check(filename, mime, data)

    assert excinfo.value.status_code == status


def test_unsupported_upload_type():
    with pytest.raises(FileRejectedError, match="Only product uploads"):
        _check("catalog.csv", "text/csv", b"a", upload_type="campaigns")


def test_json_with_bom_and_whitespace_is_accepted():
    accepted = _check("catalog.json", "application/json", b"\xef\xbb\xbf  \n[]")

    assert accepted.file_type == "json"


def test_xlsx_signature_checked_when_fallback_disabled():
    with pytest.raises(FileRejectedError, match="Excel workbook"):
        _check("catalog.xlsx", XLSX_MIME, b"name,price\n", xlsx_text_fallback=False)

    assert _check("catalog.xlsx", XLSX_MIME, b"name,price\n").file_type == "xlsx"
    assert _check("catalog.xlsx", XLSX_MIME, b"PK\x03\x04rest", xlsx_text_fallback=False).size == 8
