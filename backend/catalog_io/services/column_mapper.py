"""Map normalized source headers onto product fields."""

from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

from catalog_io.services.product_schema import FIELD_NAMES, PRODUCT_FIELDS

ALIASES: dict[str, tuple[str, ...]] = {spec.name: spec.aliases for spec in PRODUCT_FIELDS}

# Order matters: the first pattern that matches a header claims it.
DETECTION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("name", re.compile(r"name|title|product|item", re.IGNORECASE)),
    ("price", re.compile(r"price|cost|amount|value", re.IGNORECASE)),
    ("category", re.compile(r"category|type|genre|group", re.IGNORECASE)),
    ("description", re.compile(r"description|desc|details|summary", re.IGNORECASE)),
    ("brand", re.compile(r"brand|company|manufacturer", re.IGNORECASE)),
    ("sku", re.compile(r"sku|code|id|reference", re.IGNORECASE)),
    ("image_url", re.compile(r"image|photo|picture|url", re.IGNORECASE)),
    ("tags", re.compile(r"tags|keywords|labels", re.IGNORECASE)),
    ("availability", re.compile(r"availability|stock|status", re.IGNORECASE)),
    ("commission_rate", re.compile(r"commission", re.IGNORECASE)),
)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def apply_mapping(row: Mapping[str, Any], mapping: Mapping[str, str] | None) -> dict[str, Any]:
    """Rename source keys to target fields; unmapped keys pass through unchanged."""
    if not mapping:
        return dict(row)
    mapped: dict[str, Any] = {}
    for key, value in row.items():
        target = mapping.get(key)
        if target in FIELD_NAMES and _is_empty(mapped.get(target)):
            mapped[target] = value
    for key, value in row.items():
        if mapping.get(key) not in FIELD_NAMES:
            mapped.setdefault(key, value)
    return mapped


def resolve_aliases(row: Mapping[str, Any]) -> dict[str, Any]:
    """Collapse alias columns onto canonical fields; the first non-empty alias wins."""
    resolved: dict[str, Any] = {}
    for field_name, aliases in ALIASES.items():
        for alias in aliases:
            value = row.get(alias)
            if not _is_empty(value):
                resolved[field_name] = value
                break
    return resolved


def map_row(row: Mapping[str, Any], mapping: Mapping[str, str] | None = None) -> dict[str, Any]:
    return resolve_aliases(apply_mapping(row, mapping))


def suggest_mapping(headers: Sequence[str]) -> dict[str, str]:
    """Suggest a header -> field mapping.

    Headers that already equal a known alias are claimed first, then the
    remaining headers are matched against the detection patterns. Each field is
    assigned to at most one header.
    """
    suggestions: dict[str, str] = {}
    claimed: set[str] = set()

    for header in headers:
        for field_name, aliases in ALIASES.items():
            if field_name not in claimed and header.lower() in aliases:
                suggestions[header] = field_name
                claimed.add(field_name)
                break

    for header in headers:
        if header in suggestions:
            continue
        for field_name, pattern in DETECTION_PATTERNS:
            if field_name not in claimed and pattern.search(header):
                suggestions[header] = field_name
                claimed.add(field_name)
                break

    return suggestions
