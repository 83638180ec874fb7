"""Structural checks run on an upload before any job is created."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePath

from catalog_io.core.errors import FileRejectedError
from catalog_io.services.secure_parser import has_zip_signature

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES: dict[str, frozenset[str]] = {
    "csv": frozenset({"text/csv"}),
    "xlsx": frozenset({"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}),
    "json": frozenset({"application/json"}),
}
UPLOAD_TYPES = ("products",)

UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")
UTF8_BOM = b"\xef\xbb\xbf"


@dataclass(frozen=True)
class AcceptedUpload:
    original_name: str
    safe_name: str
    file_type: str
    mime_type: str
    size: int


def safe_filename(name: str) -> str:
    return UNSAFE_FILENAME_CHARS_RE.sub("_", PurePath(name).name)


def _check_magic(data: bytes, file_type: str, xlsx_text_fallback: bool) -> None:
    if file_type == "json":
        head = data[:1024].removeprefix(UTF8_BOM).lstrip()
        if not head.startswith((b"[", b"{")):
            raise FileRejectedError("File content does not match a JSON document")
    elif file_type == "csv":
        if b"\x00" in data[:8192]:
            raise FileRejectedError("File content does not look like CSV text")
        try:
            data[:8192].decode("utf-8")
        except UnicodeDecodeError as exc:
            # A multi-byte character may straddle the probe boundary
            if exc.start < 8188:
                raise FileRejectedError("CSV files must be UTF-8 encoded") from exc
    elif file_type == "xlsx" and not has_zip_signature(data):
        if not xlsx_text_fallback:
            raise FileRejectedError("File content does not match an Excel workbook")
        logger.warning("Accepted .xlsx upload without a ZIP signature; it will be read as CSV text")


def check_upload(
    filename: str | None,
    mime_type: str | None,
    data: bytes,
    *,
    upload_type: str,
    max_bytes: int,
    xlsx_text_fallback: bool,
) -> AcceptedUpload:
    """Validate name, type, size and leading bytes; raises FileRejectedError."""
    if not filename:
        raise FileRejectedError("No file provided")
    if upload_type not in UPLOAD_TYPES:
        raise FileRejectedError("Only product uploads are currently supported")

    file_type = PurePath(filename).suffix.lower().lstrip(".")
    mime = (mime_type or "").split(";")[0].strip().lower()
    if file_type not in ALLOWED_MIME_TYPES or mime not in ALLOWED_MIME_TYPES[file_type]:
        raise FileRejectedError("Invalid file type. Allowed types: CSV, Excel (.xlsx), JSON")

    if len(data) > max_bytes:
        raise FileRejectedError(
            f"File size too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            status_code=413,
        )
    if not data:
        raise FileRejectedError("File is empty")

    _check_magic(data, file_type, xlsx_text_fallback)
    return AcceptedUpload(
        original_name=filename,
        safe_name=safe_filename(filename),
        file_type=file_type,
        mime_type=mime,
        size=len(data),
    )
