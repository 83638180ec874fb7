"""Product record descriptor and the coercing schema applied to imported rows."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError

from catalog_io.utils.sanitize import FORMULA_GUARD, strip_html

PRICE_MAX = Decimal("999999.99")
COMMISSION_MAX = Decimal("100")
CENTS = Decimal("0.01")

AVAILABILITY_VALUES = ("in_stock", "out_of_stock", "discontinued")
DEFAULT_AVAILABILITY = "in_stock"

SKU_RE = re.compile(r"^[A-Za-z0-9_-]+$")
URL_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)

MAX_TAGS = 20
MAX_TAG_LENGTH = 50


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str
    required: bool
    description: str
    aliases: tuple[str, ...]


PRODUCT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("name", "string", True, "Product name", ("name", "product_name", "title")),
    FieldSpec("description", "string", False, "Product description", ("description", "desc")),
    FieldSpec("price", "decimal", True, "Price as a decimal number (0 - 999999.99)", ("price", "cost", "amount")),
    FieldSpec("category", "string", True, "Product category", ("category", "type")),
    FieldSpec("brand", "string", False, "Brand name", ("brand", "manufacturer")),
    FieldSpec("sku", "string", False, "Stock keeping unit, unique per brand (letters, digits, - and _)", ("sku", "product_id")),
    FieldSpec("image_url", "url", False, "URL of the product image", ("image_url", "image", "photo")),
    FieldSpec("tags", "list", False, "Comma-separated tags", ("tags",)),
    FieldSpec(
        "availability",
        "enum",
        False,
        "One of in_stock, out_of_stock, discontinued (default in_stock)",
        ("availability", "status"),
    ),
    FieldSpec("commission_rate", "decimal", False, "Commission percentage 0 - 100 (default 0)", ("commission_rate", "commission")),
)

FIELD_NAMES = tuple(spec.name for spec in PRODUCT_FIELDS)
REQUIRED_FIELDS = tuple(spec.name for spec in PRODUCT_FIELDS if spec.required)


def _to_text(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return value


def parse_decimal(value: Any, label: str) -> Decimal:
    """Parse a number from a cell, tolerating the formula-guard quote and thousands separators."""
    if isinstance(value, bool):
        raise PydanticCustomError("number_parsing", "{label} must be a valid number", {"label": label})
    if isinstance(value, float) and not math.isfinite(value):
        raise PydanticCustomError("number_parsing", "{label} must be a finite number", {"label": label})
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip().removeprefix(FORMULA_GUARD).replace(",", "").lstrip("$").strip()
    else:
        raise PydanticCustomError("number_parsing", "{label} must be a valid number", {"label": label})
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise PydanticCustomError("number_parsing", "{label} must be a valid number", {"label": label})
    if not number.is_finite():
        raise PydanticCustomError("number_parsing", "{label} must be a finite number", {"label": label})
    return number


def clamp(number: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return min(max(number, low), high).quantize(CENTS, rounding=ROUND_HALF_UP)


class ProductRecord(BaseModel):
    """Schema-conformant product ready for bulk insert."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    price: Decimal
    category: str = Field(..., min_length=1, max_length=100)
    brand: str | None = Field(None, max_length=100)
    sku: str | None = Field(None, max_length=50)
    image_url: str | None = Field(None, max_length=2048)
    tags: list[str] = Field(default_factory=list)
    availability: str = DEFAULT_AVAILABILITY
    commission_rate: Decimal = Decimal("0.00")

    @model_validator(mode="before")
    @classmethod
    def drop_blank_values(cls, data: Any) -> Any:
        """Treat empty cells as missing so required fields report 'Field required'."""
        if not isinstance(data, dict):
            return data
        return {
            key: value
            for key, value in data.items()
            if value is not None and not (isinstance(value, str) and not value.strip())
        }

    @field_validator("name", "category", "brand", "sku", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _to_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, value: Any) -> Any:
        value = _to_text(value)
        return strip_html(value).strip() if isinstance(value, str) else value

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, value: Any) -> Decimal:
        return clamp(parse_decimal(value, "Price"), Decimal("0"), PRICE_MAX)

    @field_validator("commission_rate", mode="before")
    @classmethod
    def coerce_commission(cls, value: Any) -> Decimal:
        return clamp(parse_decimal(value, "Commission rate"), Decimal("0"), COMMISSION_MAX)

    @field_validator("availability", mode="before")
    @classmethod
    def default_availability(cls, value: Any) -> str:
        text = str(_to_text(value)).strip().lower().replace(" ", "_")
        return text if text in AVAILABILITY_VALUES else DEFAULT_AVAILABILITY

    @field_validator("sku")
    @classmethod
    def check_sku(cls, value: str | None) -> str | None:
        if value is not None and not SKU_RE.match(value.removeprefix(FORMULA_GUARD)):
            raise PydanticCustomError("sku_format", "SKU contains invalid characters")
        return value

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, value: str | None) -> str | None:
        if value is not None and not URL_RE.match(value):
            raise PydanticCustomError("url_format", "Invalid image URL")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, list):
            items = [str(_to_text(item)) for item in value if item is not None]
        else:
            items = [str(_to_text(value))]
        tags = [item.strip() for item in items]
        tags = [tag for tag in tags if tag]
        if len(tags) > MAX_TAGS:
            raise PydanticCustomError("too_many_tags", "Too many tags (maximum {limit})", {"limit": MAX_TAGS})
        if any(len(tag) > MAX_TAG_LENGTH for tag in tags):
            raise PydanticCustomError("tag_too_long", "Tags must be at most {limit} characters", {"limit": MAX_TAG_LENGTH})
        return tags


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass(frozen=True)
class Ok:
    record: dict[str, Any]


@dataclass(frozen=True)
class Err:
    errors: list[FieldError]


def validate_record(mapped: dict[str, Any]) -> Ok | Err:
    """Validate one alias-resolved row; pure, never raises for bad data."""
    try:
        model = ProductRecord.model_validate(mapped)
    except ValidationError as exc:
        return Err(
            [
                FieldError(".".join(str(part) for part in error["loc"]) or "record", error["msg"])
                for error in exc.errors()
            ]
        )
    return Ok(model.model_dump())
