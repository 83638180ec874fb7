"""Row validation: column mapping, alias resolution and schema checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from catalog_io.services.column_mapper import map_row, suggest_mapping
from catalog_io.services.product_schema import Err, validate_record
from catalog_io.utils.sanitize import normalize_header

logger = logging.getLogger(__name__)

ERROR_TYPE_VALIDATION = "validation"
ERROR_TYPE_DATABASE = "database"


@dataclass
class ValidatedRecord:
    row_number: int
    data: dict[str, Any]
    raw_data: dict[str, Any]


@dataclass
class RowError:
    row_number: int
    message: str
    raw_data: dict[str, Any]
    column_name: str | None = None
    error_type: str = ERROR_TYPE_VALIDATION

    def as_dict(self) -> dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "columnName": self.column_name,
            "errorType": self.error_type,
            "errorMessage": self.message,
            "rawData": self.raw_data,
        }


@dataclass
class ValidationReport:
    valid: list[ValidatedRecord] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.errors)

    def in_file_order(self) -> list[ValidatedRecord | RowError]:
        """Merge valid records and row errors back into source order."""
        merged: list[ValidatedRecord | RowError] = [*self.valid, *self.errors]
        merged.sort(key=lambda outcome: outcome.row_number)
        return merged


def normalize_mapping(mapping: Mapping[str, str] | None) -> dict[str, str]:
    """Normalize mapping keys the same way the parser normalizes headers."""
    if not mapping:
        return {}
    normalized: dict[str, str] = {}
    for source, target in mapping.items():
        if not isinstance(source, str) or not isinstance(target, str):
            continue
        key = normalize_header(source)
        if key and target:
            normalized[key] = target.strip()
    return normalized


def validate_rows(
    rows: Sequence[Mapping[str, Any]],
    row_numbers: Sequence[int] | None = None,
    column_mapping: Mapping[str, str] | None = None,
    auto_detect: bool = False,
) -> ValidationReport:
    """Validate every row; each input row yields exactly one outcome.

    ``row_numbers`` carries the physical row numbers reported by the parser;
    without it rows are numbered ``index + 2`` (the header is row 1).
    """
    mapping = normalize_mapping(column_mapping)
    if auto_detect and rows:
        headers: list[str] = []
        for row in rows[:50]:
            headers.extend(key for key in row if key not in headers)
        detected = suggest_mapping([h for h in headers if h not in mapping])
        claimed = set(mapping.values())
        for header, target in detected.items():
            if target not in claimed:
                mapping[header] = target
                claimed.add(target)
        logger.info(f"Auto-detected column mapping: {detected}")

    report = ValidationReport()
    for index, row in enumerate(rows):
        row_number = row_numbers[index] if row_numbers and index < len(row_numbers) else index + 2
        raw = dict(row)
        outcome = validate_record(map_row(raw, mapping))
        if isinstance(outcome, Err):
            first = outcome.errors[0]
            report.errors.append(
                RowError(
                    row_number=row_number,
                    message="; ".join(str(error) for error in outcome.errors),
                    raw_data=raw,
                    column_name=first.field,
                )
            )
        else:
            report.valid.append(ValidatedRecord(row_number, outcome.record, raw))

    if report.errors:
        logger.info(f"Validation finished: {len(report.valid)} valid, {len(report.errors)} invalid rows")
    return report
