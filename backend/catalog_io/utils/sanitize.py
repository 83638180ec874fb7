"""String sanitization for untrusted header names and cell values."""

from __future__ import annotations

import re

CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
MARKUP_CHARS_RE = re.compile(r"[<>'\"&]")
SCRIPT_PREFIX_RE = re.compile(r"^\s*(?:javascript|data|vbscript)\s*:", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"\s+")
UNSAFE_HEADER_CHARS_RE = re.compile(r"[^a-z0-9_]")
HTML_TAG_RE = re.compile(r"<[^>]*>")

FORMULA_PREFIXES = ("=", "+", "-", "@")
FORMULA_GUARD = "'"

DANGEROUS_KEYS = frozenset(
    {
        "__proto__",
        "constructor",
        "prototype",
        "hasownproperty",
        "isprototypeof",
        "propertyisenumerable",
        "tostring",
        "valueof",
    }
)


def is_dangerous_key(name: str) -> bool:
    """Return True for names that could shadow object internals when used as keys."""
    lowered = name.strip().lower()
    if lowered in DANGEROUS_KEYS:
        return True
    return lowered.startswith("__") and lowered.endswith("__")


def defuse_formula(value: str) -> str:
    """Prefix spreadsheet-formula triggers so the cell is treated as text."""
    if value.startswith(FORMULA_PREFIXES):
        return FORMULA_GUARD + value
    return value


def strip_script_prefixes(value: str) -> str:
    previous = None
    while previous != value:
        previous = value
        value = SCRIPT_PREFIX_RE.sub("", value, count=1)
    return value


def clean_text(value: str) -> str:
    """Strip control characters, markup characters and script URL prefixes."""
    value = CONTROL_CHARS_RE.sub("", value)
    value = MARKUP_CHARS_RE.sub("", value)
    value = strip_script_prefixes(value)
    return value.strip()


def sanitize_value(value: str, max_length: int = 1000) -> str:
    """Sanitize a single cell: truncate, clean, then apply the formula guard."""
    return defuse_formula(clean_text(value[:max_length]))


def normalize_header(header: str, max_length: int = 50) -> str:
    """Canonical header key: lowercase, underscores for spaces, [a-z0-9_] only.

    Returns an empty string when nothing survives normalization.
    """
    normalized = CONTROL_CHARS_RE.sub("", header or "").strip().lower()
    normalized = WHITESPACE_RE.sub("_", normalized)
    normalized = UNSAFE_HEADER_CHARS_RE.sub("", normalized)
    normalized = normalized.strip("_")
    return normalized[:max_length].rstrip("_")


def strip_html(value: str) -> str:
    return HTML_TAG_RE.sub("", value)
