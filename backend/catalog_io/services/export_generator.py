"""Filtered, size-bounded exports delivered through signed links."""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog_io.core.config import get_settings
from catalog_io.core.errors import JobFatalError
from catalog_io.db.models import Campaign, ExportJob, JobStatus, Product
from catalog_io.services import job_store
from catalog_io.storage.object_store import ObjectStore, get_object_store
from catalog_io.utils.sanitize import defuse_formula

logger = logging.getLogger(__name__)

EXPORTS_BUCKET = "exports"
EXPORT_TYPES = ("products", "campaigns", "analytics")
EXPORT_FORMATS = ("csv", "xlsx", "json")

IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

PRODUCT_COLUMNS = (
    "id",
    "name",
    "description",
    "price",
    "category",
    "brand",
    "sku",
    "image_url",
    "tags",
    "availability",
    "commission_rate",
    "created_at",
    "updated_at",
)
CAMPAIGN_COLUMNS = (
    "id",
    "title",
    "description",
    "budget",
    "status",
    "start_date",
    "end_date",
    "application_deadline",
    "tags",
    "created_at",
    "updated_at",
)


class ExportFilters(BaseModel):
    """Optional filters; unknown keys are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    category: str | None = None
    availability: str | None = None
    status: str | None = None
    price_min: Decimal | None = None
    price_max: Decimal | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass(frozen=True)
class ExportResult:
    job_id: str
    file_name: str
    file_format: str
    record_count: int
    download_url: str
    expires_at: datetime
    mime_type: str


def _fetch_products(session: Session, owner_id: str, filters: ExportFilters, limit: int) -> list[dict[str, Any]]:
    stmt = select(Product).where(Product.brand_id == owner_id)
    if filters.category:
        stmt = stmt.where(Product.category == filters.category)
    if filters.availability:
        stmt = stmt.where(Product.availability == filters.availability)
    if filters.price_min is not None:
        stmt = stmt.where(Product.price >= filters.price_min)
    if filters.price_max is not None:
        stmt = stmt.where(Product.price <= filters.price_max)
    if filters.date_from:
        stmt = stmt.where(Product.created_at >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(Product.created_at <= filters.date_to)
    stmt = stmt.order_by(Product.id).limit(limit)
    return [{name: getattr(product, name) for name in PRODUCT_COLUMNS} for product in session.execute(stmt).scalars()]


def _fetch_campaigns(session: Session, owner_id: str, filters: ExportFilters, limit: int) -> list[dict[str, Any]]:
    stmt = select(Campaign).where(Campaign.brand_id == owner_id)
    if filters.status:
        stmt = stmt.where(Campaign.status == filters.status)
    if filters.date_from:
        stmt = stmt.where(Campaign.created_at >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(Campaign.created_at <= filters.date_to)
    stmt = stmt.order_by(Campaign.id).limit(limit)
    return [
        {name: getattr(campaign, name) for name in CAMPAIGN_COLUMNS}
        for campaign in session.execute(stmt).scalars()
    ]


def fetch_records(
    session: Session, export_type: str, owner_id: str, filters: ExportFilters, max_records: int
) -> tuple[list[dict[str, Any]], list[str]]:
    """Return owner-scoped records (at most ``max_records``) and their default columns."""
    if export_type == "products":
        records, columns = _fetch_products(session, owner_id, filters, max_records + 1), list(PRODUCT_COLUMNS)
    elif export_type == "campaigns":
        records, columns = _fetch_campaigns(session, owner_id, filters, max_records + 1), list(CAMPAIGN_COLUMNS)
    elif export_type == "analytics":
        analytics = job_store.compute_analytics(session, owner_id)
        records, columns = [analytics], list(analytics)
    else:
        raise ValueError(f"Invalid export type: {export_type}")

    if len(records) > max_records:
        logger.warning(f"{export_type} export for {owner_id} truncated to {max_records} records")
        records = records[:max_records]
    return records, columns


def project_columns(requested: Sequence[Any] | None, available: Sequence[str]) -> list[str]:
    """Keep requested columns that are plain identifiers present on the record."""
    if not requested:
        return list(available)
    selected: list[str] = []
    for name in requested:
        if isinstance(name, str) and IDENTIFIER_RE.match(name) and name in available:
            if name not in selected:
                selected.append(name)
        else:
            logger.warning(f"Dropping export column {name!r}")
    return selected or list(available)


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return defuse_formula(",".join(str(item) for item in value))
    if isinstance(value, str):
        return defuse_formula(value)
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_records(
    records: Sequence[dict[str, Any]], columns: Sequence[str], file_format: str
) -> tuple[bytes, str, str]:
    """Return (content, mime type, extension). XLSX requests are served as CSV."""
    if file_format == "json":
        rows = [{column: record.get(column) for column in columns} for record in records]
        return json.dumps(rows, indent=2, default=_json_default).encode("utf-8"), "application/json", "json"

    if file_format == "xlsx":
        logger.warning("XLSX export requested; serving CSV content instead")
    elif file_format != "csv":
        raise ValueError(f"Invalid format: {file_format}")

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), extrasaction="ignore")
    writer.writeheader()
    for record in records:
        writer.writerow({column: _csv_cell(record.get(column)) for column in columns})
    return buffer.getvalue().encode("utf-8"), "text/csv", "csv"


def generate_export(session: Session, job: ExportJob, storage: ObjectStore | None = None) -> ExportResult:
    """Run a pending export job to completion and issue its download link."""
    settings = get_settings()
    storage = storage or get_object_store()

    job_store.transition(job, JobStatus.PROCESSING)
    job_store.commit(session)

    try:
        filters = ExportFilters.model_validate(job.filters or {})
        records, available = fetch_records(
            session, job.export_type, job.owner_id, filters, settings.max_export_records
        )
        job.total_records = len(records)
        job.progress = 50
        job_store.commit(session)

        columns = project_columns(job.columns, available)
        content, mime_type, extension = serialize_records(records, columns, job.file_format)

        timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        file_name = f"{job.export_type}_export_{timestamp}.{extension}"
        storage_path = f"{job.owner_id}/{file_name}"
        size = storage.upload(EXPORTS_BUCKET, storage_path, content)
        signed = storage.create_signed_url(EXPORTS_BUCKET, storage_path, settings.signed_url_ttl_seconds)

        job.file_name = file_name
        job.storage_path = storage_path
        job.mime_type = mime_type
        job.file_size = size
        job.expires_at = signed.expires_at
        job.progress = 100
        job_store.transition(job, JobStatus.COMPLETED)
        job_store.commit(session)
    except Exception as exc:
        session.rollback()
        logger.error(f"Export job {job.id} failed: {exc}", exc_info=True)
        job_store.mark_failed(session, job, str(exc))
        raise JobFatalError(str(exc), job_id=job.id) from exc

    logger.info(f"Export job {job.id} completed: {len(records)} records -> {storage_path}")
    return ExportResult(
        job_id=job.id,
        file_name=file_name,
        file_format=job.file_format,
        record_count=len(records),
        download_url=signed.url,
        expires_at=signed.expires_at,
        mime_type=mime_type,
    )
