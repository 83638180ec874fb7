"""Bounded, sanitizing parsers for untrusted CSV, XLSX and JSON catalogs.

Every parser returns normalized rows keyed by canonical header names, or raises
``ParseError``; a partial row set is never returned. Limits are enforced
fail-fast: oversized payloads and too-wide tables are rejected, rows beyond the
cap are discarded, cells are truncated, and a wall-clock deadline is checked
per row.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import json
import logging
import time
import zipfile
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from openpyxl import load_workbook

from catalog_io.core.config import Settings
from catalog_io.core.errors import ParseError, ParseTimeoutError
from catalog_io.utils.sanitize import is_dangerous_key, normalize_header, sanitize_value

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "xlsx", "json")

ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
MAX_ARCHIVE_MEMBERS = 1000
CANDIDATE_DELIMITERS = ",;\t|"

# Row numbers reported to users count the header as row 1
FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class ParseLimits:
    max_rows: int = 10_000
    max_columns: int = 100
    max_cell_length: int = 1000
    max_header_length: int = 50
    max_binary_bytes: int = 10 * 1024 * 1024
    max_text_bytes: int = 50 * 1024 * 1024
    timeout_seconds: float = 30.0
    xlsx_text_fallback: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, max_rows: int | None = None) -> "ParseLimits":
        """Build limits from settings, clamping the caller's row cap to the absolute ceiling."""
        rows = settings.default_max_rows if max_rows is None else max_rows
        rows = max(1, min(rows, settings.absolute_max_rows))
        return cls(
            max_rows=rows,
            max_columns=settings.max_columns,
            max_cell_length=settings.max_cell_length,
            max_header_length=settings.max_header_length,
            max_binary_bytes=settings.max_upload_bytes,
            max_text_bytes=settings.max_text_bytes,
            timeout_seconds=settings.parse_timeout_seconds,
            xlsx_text_fallback=settings.xlsx_text_fallback,
        )


@dataclass
class ParseResult:
    rows: list[dict[str, Any]]
    headers: list[str]
    source_format: str
    row_numbers: list[int] = field(default_factory=list)
    truncated: bool = False
    warnings: list[str] = field(default_factory=list)


class _Deadline:
    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def check(self) -> None:
        if time.monotonic() > self.expires_at:
            raise ParseTimeoutError(f"Parse timeout exceeded ({self.seconds:g}s)")


def has_zip_signature(data: bytes) -> bool:
    """True when the buffer starts with a ZIP local-file/end-of-archive header."""
    return data[:4] in ZIP_SIGNATURES


def parse_buffer(data: bytes, file_format: str, limits: ParseLimits | None = None) -> ParseResult:
    """Parse an uploaded buffer in the declared format into normalized rows."""
    limits = limits or ParseLimits()
    file_format = (file_format or "").lower().lstrip(".")
    if file_format not in SUPPORTED_FORMATS:
        raise ParseError(f"Unsupported file type: {file_format or 'unknown'}")
    if not data:
        raise ParseError("Empty file")
    if len(data) > limits.max_binary_bytes:
        raise ParseError(
            f"File too large: {len(data)} bytes (maximum {limits.max_binary_bytes})"
        )

    started = time.monotonic()
    deadline = _Deadline(limits.timeout_seconds)

    try:
        if file_format == "csv":
            result = _parse_csv(data, limits, deadline)
        elif file_format == "json":
            result = _parse_json(data, limits, deadline)
        else:
            result = _parse_xlsx(data, limits, deadline)
    except ParseError:
        raise
    except MemoryError as exc:
        raise ParseError("File too large to parse") from exc
    except Exception as exc:
        logger.error(f"Unexpected error parsing {file_format} file: {exc}", exc_info=True)
        raise ParseError(f"Error reading {file_format} file: {exc}") from exc

    if result.truncated:
        logger.warning(
            f"Row cap reached: kept first {len(result.rows)} rows of {file_format} file"
        )
    logger.info(
        f"Parsed {len(result.rows)} rows ({len(result.headers)} columns) from "
        f"{file_format} as {result.source_format} in {time.monotonic() - started:.2f}s"
    )
    return result


def _decode_text(data: bytes, limits: ParseLimits) -> str:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"File encoding error: {e}") from e
    if len(text.encode("utf-8")) > limits.max_text_bytes:
        raise ParseError(f"Decoded text exceeds {limits.max_text_bytes} bytes")
    return text


def _normalize_keys(
    raw_keys: Sequence[Any], limits: ParseLimits, warnings: list[str]
) -> list[str | None]:
    """Map raw header cells to canonical keys; ``None`` marks a dropped column."""
    if len(raw_keys) > limits.max_columns:
        raise ParseError(
            f"Too many columns: {len(raw_keys)} (maximum {limits.max_columns})"
        )

    keys: list[str | None] = []
    seen: dict[str, int] = {}
    for index, raw in enumerate(raw_keys):
        raw_text = "" if raw is None else str(raw)
        normalized = normalize_header(raw_text, limits.max_header_length)
        if is_dangerous_key(raw_text) or (normalized and is_dangerous_key(normalized)):
            message = f"Column '{raw_text[:limits.max_header_length]}' rejected: reserved name"
            if message not in warnings:
                warnings.append(message)
                logger.warning(message)
            keys.append(None)
            continue
        if not normalized:
            normalized = f"column_{index + 1}"
        if normalized in seen:
            seen[normalized] += 1
            suffix = f"_{seen[normalized]}"
            normalized = normalized[: limits.max_header_length - len(suffix)].rstrip("_") + suffix
        else:
            seen[normalized] = 1
        keys.append(normalized)
    return keys


def _trim_trailing_blanks(cells: Sequence[Any]) -> list[Any]:
    trimmed = list(cells)
    while trimmed and (trimmed[-1] is None or str(trimmed[-1]).strip() == ""):
        trimmed.pop()
    return trimmed


def _is_blank(cells: Sequence[Any]) -> bool:
    return all(cell is None or str(cell).strip() == "" for cell in cells)


def _collect_table(
    table: Iterable[Sequence[Any]],
    limits: ParseLimits,
    deadline: _Deadline,
    convert: Callable[[Any], Any],
    source_format: str,
    warnings: list[str] | None = None,
) -> ParseResult:
    """Turn a header row plus data rows into normalized row mappings."""
    warnings = warnings if warnings is not None else []
    iterator = iter(table)

    header_cells: list[Any] = []
    header_line = 0
    for cells in iterator:
        header_line += 1
        deadline.check()
        if not _is_blank(cells):
            header_cells = _trim_trailing_blanks(cells)
            break
    if not header_cells:
        raise ParseError("File appears to be empty or has no header row")

    keys = _normalize_keys(header_cells, limits, warnings)
    headers = [key for key in keys if key is not None]
    if not headers:
        raise ParseError("No usable columns found in header row")

    rows: list[dict[str, Any]] = []
    row_numbers: list[int] = []
    truncated = False
    row_number = header_line
    for cells in iterator:
        row_number += 1
        deadline.check()
        if _is_blank(cells):
            continue
        if len(rows) >= limits.max_rows:
            truncated = True
            break
        record: dict[str, Any] = {}
        for key, cell in zip(keys, cells):
            if key is None:
                continue
            record[key] = convert(cell)
        rows.append(record)
        row_numbers.append(row_number)

    return ParseResult(
        rows=rows,
        headers=headers,
        source_format=source_format,
        row_numbers=row_numbers,
        truncated=truncated,
        warnings=warnings,
    )


def _detect_delimiter(text: str) -> str:
    sample = text[:4096]
    first_line = sample.splitlines()[0] if sample else ""
    try:
        delimiter = csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        return ","
    return delimiter if delimiter in first_line else ","


def _parse_csv(
    data: bytes,
    limits: ParseLimits,
    deadline: _Deadline,
    warnings: list[str] | None = None,
) -> ParseResult:
    text = _decode_text(data, limits)
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=_detect_delimiter(text))

    def convert(cell: Any) -> str:
        return sanitize_value(cell or "", limits.max_cell_length)

    try:
        return _collect_table(reader, limits, deadline, convert, "csv", warnings)
    except csv.Error as e:
        raise ParseError(f"CSV parsing error: {e}") from e


def _convert_xlsx_cell(limits: ParseLimits) -> Callable[[Any], Any]:
    def convert(value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, (dt.datetime, dt.date, dt.time)):
            return value.isoformat()
        return sanitize_value(str(value), limits.max_cell_length)

    return convert


def _inspect_archive(data: bytes, limits: ParseLimits) -> None:
    """Reject archives that are malformed, oversized once inflated, or not workbooks."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            members = archive.infolist()
    except zipfile.BadZipFile as e:
        raise ParseError(f"Invalid XLSX archive: {e}") from e

    if len(members) > MAX_ARCHIVE_MEMBERS:
        raise ParseError(f"XLSX archive has too many entries ({len(members)})")
    inflated = sum(member.file_size for member in members)
    if inflated > limits.max_text_bytes:
        raise ParseError(
            f"XLSX content too large when decompressed ({inflated} bytes, "
            f"maximum {limits.max_text_bytes})"
        )
    if "xl/workbook.xml" not in {member.filename for member in members}:
        raise ParseError("Archive is not an XLSX workbook")


def _parse_xlsx(data: bytes, limits: ParseLimits, deadline: _Deadline) -> ParseResult:
    if not has_zip_signature(data):
        if not limits.xlsx_text_fallback:
            raise ParseError("File does not have a valid XLSX signature")
        message = "File does not have a valid XLSX signature; parsed as delimited text"
        logger.warning(message)
        return _parse_csv(data, limits, deadline, warnings=[message])

    _inspect_archive(data, limits)

    # read_only streams rows without styles; data_only returns cached values, never formulas
    workbook = load_workbook(
        io.BytesIO(data), read_only=True, data_only=True, keep_links=False
    )
    try:
        if not workbook.worksheets:
            raise ParseError("Workbook contains no sheets")
        sheet = workbook.worksheets[0]
        table = sheet.iter_rows(values_only=True, max_col=limits.max_columns + 1)
        return _collect_table(table, limits, deadline, _convert_xlsx_cell(limits), "xlsx")
    finally:
        workbook.close()


def _convert_json_value(value: Any, key: str, limits: ParseLimits) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return sanitize_value(value, limits.max_cell_length)
    if isinstance(value, list):
        items = []
        for item in value:
            if isinstance(item, (dict, list)):
                raise ParseError(f"Field '{key}' contains nested values; records must be flat")
            items.append(_convert_json_value(item, key, limits))
        return items
    raise ParseError(f"Field '{key}' contains a nested object; records must be flat")


def _reject_constant(token: str) -> Any:
    raise ParseError(f"Invalid JSON: {token} is not a valid number")


def _parse_json(data: bytes, limits: ParseLimits, deadline: _Deadline) -> ParseResult:
    text = _decode_text(data, limits)
    try:
        payload = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})") from e
    except RecursionError as e:
        raise ParseError("JSON nesting too deep") from e
    deadline.check()

    if not isinstance(payload, list):
        raise ParseError("JSON file must contain an array of records")

    warnings: list[str] = []
    key_cache: dict[tuple[str, ...], list[str | None]] = {}
    headers: dict[str, None] = {}
    rows: list[dict[str, Any]] = []
    row_numbers: list[int] = []
    truncated = False

    for index, item in enumerate(payload):
        deadline.check()
        if len(rows) >= limits.max_rows:
            truncated = True
            break
        if not isinstance(item, dict):
            raise ParseError(f"Record {index + 1} is not an object")

        raw_keys = tuple(str(key) for key in item.keys())
        keys = key_cache.get(raw_keys)
        if keys is None:
            keys = _normalize_keys(raw_keys, limits, warnings)
            key_cache[raw_keys] = keys

        record: dict[str, Any] = {}
        for key, value in zip(keys, item.values()):
            if key is None:
                continue
            record[key] = _convert_json_value(value, key, limits)
            headers.setdefault(key, None)
        rows.append(record)
        row_numbers.append(index + FIRST_DATA_ROW)

    return ParseResult(
        rows=rows,
        headers=list(headers),
        source_format="json",
        row_numbers=row_numbers,
        truncated=truncated,
        warnings=warnings,
    )
