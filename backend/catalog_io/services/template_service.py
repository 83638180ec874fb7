"""Saved column-mapping templates and downloadable import templates."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from catalog_io.core.errors import TemplateNotFoundError
from catalog_io.db.models import ImportTemplate
from catalog_io.services.product_schema import FIELD_NAMES, PRODUCT_FIELDS, REQUIRED_FIELDS

logger = logging.getLogger(__name__)

TEMPLATE_FORMATS = ("csv", "xlsx", "json")

SAMPLE_PRODUCTS: list[dict[str, Any]] = [
    {
        "name": "Sample Product Name",
        "description": "Detailed product description",
        "price": 29.99,
        "category": "Fashion",
        "brand": "Your Brand",
        "sku": "SKU-001",
        "image_url": "https://example.com/image.jpg",
        "tags": "summer,trendy,popular",
        "availability": "in_stock",
        "commission_rate": 15.0,
    },
    {
        "name": "Another Product Example",
        "description": "Another example product with all fields",
        "price": 45.50,
        "category": "Beauty",
        "brand": "Beauty Brand",
        "sku": "SKU-002",
        "image_url": "https://example.com/image2.jpg",
        "tags": "beauty,skincare",
        "availability": "in_stock",
        "commission_rate": 20.0,
    },
]


@dataclass(frozen=True)
class TemplateFile:
    content: bytes
    mime_type: str
    file_name: str


def _csv_template() -> bytes:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(FIELD_NAMES))
    writer.writeheader()
    writer.writerows(SAMPLE_PRODUCTS)
    return buffer.getvalue().encode("utf-8")


def _xlsx_template() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Products"
    sheet.append(list(FIELD_NAMES))
    for product in SAMPLE_PRODUCTS:
        sheet.append([product[name] for name in FIELD_NAMES])

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="E7E6E6", end_color="E7E6E6", fill_type="solid")
    for cell in sheet[1]:
        cell.font = header_font
        cell.fill = header_fill

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _json_template() -> bytes:
    payload = {
        "instructions": {
            "description": "Product Import Template. Upload the products array as a top-level JSON array.",
            "required_fields": list(REQUIRED_FIELDS),
            "optional_fields": [name for name in FIELD_NAMES if name not in REQUIRED_FIELDS],
            "field_descriptions": {
                spec.name: f"{spec.description} ({'required' if spec.required else 'optional'})"
                for spec in PRODUCT_FIELDS
            },
        },
        "products": SAMPLE_PRODUCTS,
    }
    return json.dumps(payload, indent=2).encode("utf-8")


def build_template_file(file_format: str, template_type: str = "products") -> TemplateFile:
    if file_format not in TEMPLATE_FORMATS:
        raise ValueError("Invalid format. Supported formats: csv, xlsx, json")
    if template_type != "products":
        raise ValueError("Only products templates are currently supported")

    if file_format == "csv":
        return TemplateFile(_csv_template(), "text/csv", "product_import_template.csv")
    if file_format == "xlsx":
        return TemplateFile(
            _xlsx_template(),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "product_import_template.xlsx",
        )
    return TemplateFile(_json_template(), "application/json", "product_import_template.json")


def _clear_defaults(session: Session, owner_id: str, file_type: str, keep_id: str | None = None) -> None:
    stmt = (
        update(ImportTemplate)
        .where(
            ImportTemplate.owner_id == owner_id,
            ImportTemplate.file_type == file_type,
            ImportTemplate.is_default.is_(True),
        )
        .values(is_default=False)
    )
    if keep_id is not None:
        stmt = stmt.where(ImportTemplate.id != keep_id)
    session.execute(stmt)


def list_templates(session: Session, owner_id: str, file_type: str | None = None) -> list[ImportTemplate]:
    stmt = select(ImportTemplate).where(ImportTemplate.owner_id == owner_id)
    if file_type:
        stmt = stmt.where(ImportTemplate.file_type == file_type)
    stmt = stmt.order_by(ImportTemplate.is_default.desc(), ImportTemplate.name)
    return list(session.execute(stmt).scalars())


def get_template(session: Session, template_id: str, owner_id: str) -> ImportTemplate:
    template = session.get(ImportTemplate, template_id)
    if template is None or template.owner_id != owner_id:
        raise TemplateNotFoundError("Template not found")
    return template


def get_default_template(session: Session, owner_id: str, file_type: str) -> ImportTemplate | None:
    stmt = select(ImportTemplate).where(
        ImportTemplate.owner_id == owner_id,
        ImportTemplate.file_type == file_type,
        ImportTemplate.is_default.is_(True),
    )
    return session.execute(stmt).scalars().first()


def create_template(
    session: Session,
    owner_id: str,
    *,
    name: str,
    file_type: str,
    mapping_config: dict[str, str],
    description: str | None = None,
    is_default: bool = False,
) -> ImportTemplate:
    """Create a template; a new default replaces the previous one in the same transaction."""
    if is_default:
        _clear_defaults(session, owner_id, file_type)
    template = ImportTemplate(
        owner_id=owner_id,
        name=name,
        description=description,
        file_type=file_type,
        mapping_config=mapping_config,
        is_default=is_default,
    )
    session.add(template)
    session.flush()
    logger.info(f"Created import template {template.id} for {owner_id} ({file_type})")
    return template


def update_template(
    session: Session,
    owner_id: str,
    template_id: str,
    *,
    name: str,
    mapping_config: dict[str, str],
    description: str | None = None,
    is_default: bool = False,
) -> ImportTemplate:
    template = get_template(session, template_id, owner_id)
    if is_default:
        _clear_defaults(session, owner_id, template.file_type, keep_id=template.id)
    template.name = name
    template.description = description
    template.mapping_config = mapping_config
    template.is_default = is_default
    session.flush()
    return template


def delete_template(session: Session, owner_id: str, template_id: str) -> None:
    template = get_template(session, template_id, owner_id)
    session.delete(template)
    session.flush()
    logger.info(f"Deleted import template {template_id}")
